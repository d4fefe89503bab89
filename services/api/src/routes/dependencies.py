import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query, Request, status

from engine import AuctionEngine
from models.operations.bids import Bidder
from models.operations.errors import CronSecretInvalidError, CronSecretNotConfiguredError
from utils import log

from .errors import http_error

logger = log.get_logger(__name__)


def get_engine(request: Request) -> AuctionEngine:
    return request.app.state.engine


async def current_bidder(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Bidder:
    """Identity set by the upstream gateway after it authenticated the user."""
    if not x_user_id or not x_user_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return Bidder(id=x_user_id, email=x_user_email.strip().lower())


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_cron_secret(
    engine: AuctionEngine = Depends(get_engine),
    authorization: Optional[str] = Header(default=None),
    x_cron_secret: Optional[str] = Header(default=None),
    secret: Optional[str] = Query(default=None),
) -> None:
    """Accepts the secret as a bearer token, an ``X-Cron-Secret`` header or a ``?secret=`` parameter."""
    expected = engine.auction_conf.cron_secret
    if not expected:
        raise http_error(CronSecretNotConfiguredError())

    presented = [s for s in (_bearer(authorization), x_cron_secret, secret) if s]
    if not any(secrets.compare_digest(s.encode(), expected.encode()) for s in presented):
        logger.warning("Auction scheduler trigger rejected: invalid secret")
        raise http_error(CronSecretInvalidError())


async def require_admin_api_key(
    engine: AuctionEngine = Depends(get_engine),
    x_admin_api_key: Optional[str] = Header(default=None),
) -> None:
    expected = engine.auction_conf.admin_api_key
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Admin API is not configured")
    if not x_admin_api_key or not secrets.compare_digest(x_admin_api_key.encode(), expected.encode()):
        logger.warning("Admin request rejected: invalid API key")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
