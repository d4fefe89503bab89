"""Builds the auction services once per process and hands them to the routes and the scheduler."""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import conf
from clients.clock import Clock, SystemClock
from clients.couchbase import DocumentStore, InMemoryDocumentStore
from clients.email import LogNotifier, Notifier, SmtpNotifier
from clients.stripe import MockPaymentProcessor, PaymentProcessor, StripePaymentProcessor
from models.operations.bids import BidAdmissionService
from models.operations.lifecycle import LifecycleScheduler
from models.operations.notifications import AuctionNotifications
from models.operations.sales import BuyNowService, ManualSaleService
from models.operations.winner_capture import WinnerCapture
from utils import log

logger = log.get_logger(__name__)


@dataclass
class AuctionEngine:
    store: DocumentStore
    payments: PaymentProcessor
    notifications: AuctionNotifications
    clock: Clock
    bids: BidAdmissionService
    lifecycle: LifecycleScheduler
    winner_capture: WinnerCapture
    sales: ManualSaleService
    purchases: BuyNowService
    auction_conf: conf.AuctionConf
    _on_close: List[Callable[[], Awaitable[None]]] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        store: DocumentStore,
        payments: PaymentProcessor,
        notifier: Notifier,
        clock: Clock,
        auction_conf: conf.AuctionConf,
        notification_conf: Optional[conf.NotificationConf] = None,
        currency: str = "gbp",
    ) -> "AuctionEngine":
        notification_conf = notification_conf or conf.NotificationConf(site_url="", team_name="The Auctions Team")
        notifications = AuctionNotifications(
            notifier,
            site_url=notification_conf.site_url,
            admin_email=notification_conf.admin_email,
            team_name=notification_conf.team_name,
        )
        winner_capture = WinnerCapture(store, payments, notifications, clock, currency=currency)
        return cls(
            store=store,
            payments=payments,
            notifications=notifications,
            clock=clock,
            bids=BidAdmissionService(store, payments, notifications, clock),
            lifecycle=LifecycleScheduler(store, notifications, clock, winner_capture=winner_capture),
            winner_capture=winner_capture,
            sales=ManualSaleService(store, notifications, clock),
            purchases=BuyNowService(store, payments, notifications, clock, currency=currency),
            auction_conf=auction_conf,
        )

    async def close(self) -> None:
        for closer in self._on_close:
            await closer()
        self._on_close.clear()


async def _build_store() -> tuple[DocumentStore, Optional[Callable[[], Awaitable[None]]]]:
    couchbase_conf = conf.get_couchbase_conf()
    if couchbase_conf is None:
        logger.warning("COUCHBASE_HOST not set: using the in-memory document store (data is lost on restart)")
        return InMemoryDocumentStore(), None

    # Only import the SDK when a cluster is configured
    from clients.couchbase.cluster import CouchbaseDocumentStore

    store = CouchbaseDocumentStore(couchbase_conf)
    logger.info("Connecting to Couchbase...")
    await store.connect()
    await store.check_connection()
    logger.info("Couchbase connection verified.")
    return store, store.close


def _build_payments(payment_conf: conf.PaymentConf) -> PaymentProcessor:
    if not payment_conf.secret_key:
        logger.warning("STRIPE_SECRET_KEY not set: mock payment mode, every card check and charge succeeds")
        return MockPaymentProcessor()
    return StripePaymentProcessor(payment_conf.secret_key, timeout_seconds=payment_conf.timeout_seconds)


def _build_notifier() -> Notifier:
    smtp_conf = conf.get_smtp_conf()
    if smtp_conf is None:
        logger.warning("SMTP_HOST not set: emails are logged, not sent")
        return LogNotifier()
    return SmtpNotifier(smtp_conf)


async def build_engine() -> AuctionEngine:
    store, close_store = await _build_store()
    payment_conf = conf.get_payment_conf()
    engine = AuctionEngine.create(
        store=store,
        payments=_build_payments(payment_conf),
        notifier=_build_notifier(),
        clock=SystemClock(),
        auction_conf=conf.get_auction_conf(),
        notification_conf=conf.get_notification_conf(),
        currency=payment_conf.currency,
    )
    if close_store is not None:
        engine._on_close.append(close_store)
    if not engine.auction_conf.cron_secret:
        logger.warning("AUCTION_CRON_SECRET not set: the HTTP scheduler trigger is disabled")
    return engine
