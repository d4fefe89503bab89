from typing import Optional

from pydantic import BaseModel

from clients.couchbase import CouchbaseConf
from clients.email import SmtpConf
from utils import env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class PaymentConf(BaseModel):
    secret_key: Optional[str] = None
    currency: str = "gbp"
    timeout_seconds: float = 20.0

class NotificationConf(BaseModel):
    site_url: str
    admin_email: Optional[str] = None
    team_name: str

class AuctionConf(BaseModel):
    cron_secret: Optional[str] = None
    admin_api_key: Optional[str] = None
    scheduler_interval_minutes: int = 5

#### Env Vars ####

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, value_type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    value_type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    value_type=(bool, ...),
)

## Couchbase ##
## Leave COUCHBASE_HOST unset to run against the in-memory store.

COUCHBASE_HOST = EnvVarSpec(id="COUCHBASE_HOST", is_optional=True)
COUCHBASE_USERNAME = EnvVarSpec(id="COUCHBASE_USERNAME", is_optional=True)
COUCHBASE_PASSWORD = EnvVarSpec(id="COUCHBASE_PASSWORD", is_optional=True, is_secret=True)
COUCHBASE_BUCKET = EnvVarSpec(id="COUCHBASE_BUCKET", default="auctions")
COUCHBASE_PROTOCOL = EnvVarSpec(id="COUCHBASE_PROTOCOL", default="couchbase")
COUCHBASE_SCOPE = EnvVarSpec(id="COUCHBASE_SCOPE", default="_default")

## Payments ##
## Leave STRIPE_SECRET_KEY unset for mock payment mode.

STRIPE_SECRET_KEY = EnvVarSpec(id="STRIPE_SECRET_KEY", is_optional=True, is_secret=True)

PAYMENT_CURRENCY = EnvVarSpec(id="PAYMENT_CURRENCY", default="gbp", parse=lambda x: x.lower())

PAYMENT_TIMEOUT_SECONDS = EnvVarSpec(
    id="PAYMENT_TIMEOUT_SECONDS",
    default="20",
    parse=float,
    value_type=(float, ...),
)

## Email ##
## Leave SMTP_HOST unset to log emails instead of sending them.

SMTP_HOST = EnvVarSpec(id="SMTP_HOST", is_optional=True)
SMTP_PORT = EnvVarSpec(id="SMTP_PORT", default="465", parse=int, value_type=(int, ...))
SMTP_USER = EnvVarSpec(id="SMTP_USER", is_optional=True)
SMTP_PASS = EnvVarSpec(id="SMTP_PASS", is_optional=True, is_secret=True)
EMAIL_FROM = EnvVarSpec(id="EMAIL_FROM", default="no-reply@localhost")
EMAIL_FROM_NAME = EnvVarSpec(id="EMAIL_FROM_NAME", default="Auctions")
ADMIN_EMAIL = EnvVarSpec(id="ADMIN_EMAIL", is_optional=True)
SITE_URL = EnvVarSpec(id="SITE_URL", default="http://localhost:3000")

## Auctions ##

AUCTION_CRON_SECRET = EnvVarSpec(id="AUCTION_CRON_SECRET", is_optional=True, is_secret=True)
ADMIN_API_KEY = EnvVarSpec(id="ADMIN_API_KEY", is_optional=True, is_secret=True)

AUCTION_SCHEDULER_INTERVAL_MINUTES = EnvVarSpec(
    id="AUCTION_SCHEDULER_INTERVAL_MINUTES",
    default="5",
    parse=int,
    value_type=(int, ...),
)

#### Validation ####
VALIDATED_ENV_VARS = [
    LOG_LEVEL,
    ENVIRONMENT,
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    HTTP_PORT,
    COUCHBASE_HOST,
    COUCHBASE_PROTOCOL,
    STRIPE_SECRET_KEY,
    PAYMENT_TIMEOUT_SECONDS,
    SMTP_HOST,
    SMTP_PORT,
    AUCTION_CRON_SECRET,
    ADMIN_API_KEY,
    AUCTION_SCHEDULER_INTERVAL_MINUTES,
]

# Credentials are only required once a cluster is configured
if env.parse(COUCHBASE_HOST):
    VALIDATED_ENV_VARS.extend([
        EnvVarSpec(id="COUCHBASE_USERNAME"),
        EnvVarSpec(id="COUCHBASE_PASSWORD", is_secret=True),
    ])

def validate() -> bool:
    return env.validate(VALIDATED_ENV_VARS)

#### Getters ####

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT).lower()

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_couchbase_conf() -> Optional[CouchbaseConf]:
    """``None`` when no cluster is configured (in-memory store)."""
    host = env.parse(COUCHBASE_HOST)
    if not host:
        return None
    return CouchbaseConf(
        host=host,
        username=env.parse(COUCHBASE_USERNAME) or "",
        password=env.parse(COUCHBASE_PASSWORD) or "",
        bucket=env.parse(COUCHBASE_BUCKET),
        protocol=env.parse(COUCHBASE_PROTOCOL),
        scope=env.parse(COUCHBASE_SCOPE),
    )

def get_payment_conf() -> PaymentConf:
    return PaymentConf(
        secret_key=env.parse(STRIPE_SECRET_KEY),
        currency=env.parse(PAYMENT_CURRENCY),
        timeout_seconds=env.parse(PAYMENT_TIMEOUT_SECONDS),
    )

def get_smtp_conf() -> Optional[SmtpConf]:
    """``None`` when no SMTP server is configured (log-only emails)."""
    host = env.parse(SMTP_HOST)
    if not host:
        return None
    return SmtpConf(
        host=host,
        port=env.parse(SMTP_PORT),
        username=env.parse(SMTP_USER),
        password=env.parse(SMTP_PASS),
        from_address=env.parse(EMAIL_FROM),
        from_name=env.parse(EMAIL_FROM_NAME),
    )

def get_notification_conf() -> NotificationConf:
    return NotificationConf(
        site_url=env.parse(SITE_URL),
        admin_email=env.parse(ADMIN_EMAIL),
        team_name=f"The {env.parse(EMAIL_FROM_NAME)} Team",
    )

def get_auction_conf() -> AuctionConf:
    return AuctionConf(
        cron_secret=env.parse(AUCTION_CRON_SECRET),
        admin_api_key=env.parse(ADMIN_API_KEY),
        scheduler_interval_minutes=env.parse(AUCTION_SCHEDULER_INTERVAL_MINUTES),
    )
