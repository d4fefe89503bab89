"""Shared test doubles and builders."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from clients.couchbase import CasMismatchError, InMemoryDocumentStore
from clients.email import LogNotifier
from clients.stripe import (
    Charge,
    MockPaymentProcessor,
    PaymentDeclinedError,
    PaymentMethodLookup,
    PaymentTimeoutError,
)
from models.entities.couchbase.listings import Listing, ListingData, ListingStatus
from models.operations.notifications import AuctionNotifications

# Wednesday of an ordinary (non-DST) week: the window is Mon 11 Mar 01:00 to Sun 17 Mar 23:00 UTC.
NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)
ADMIN_EMAIL = "ops@example.com"


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


class FakePaymentProcessor(MockPaymentProcessor):
    """Mock processor with switches for the unhappy paths."""

    def __init__(self):
        super().__init__()
        self.without_card: Set[str] = set()
        self.decline = False
        self.lookup_timeout = False
        self.charge_status: Optional[str] = None
        self.lookups: List[str] = []

    async def find_payment_method(self, email: str) -> PaymentMethodLookup:
        self.lookups.append(email)
        if self.lookup_timeout:
            raise PaymentTimeoutError("Stripe request timed out", code="timeout")
        lookup = await super().find_payment_method(email)
        if email in self.without_card:
            return PaymentMethodLookup(customer_id=lookup.customer_id)
        return lookup

    async def create_charge(self, amount, currency, customer_id, payment_method_id, idempotency_key,
                            description="", metadata=None) -> Charge:
        if self.decline:
            self.charge_attempts.append(idempotency_key)
            raise PaymentDeclinedError(
                "Your card has insufficient funds.",
                code="card_declined",
                decline_code="insufficient_funds",
                intent_id="pi_declined",
                intent_status="requires_payment_method",
            )
        if self.charge_status is not None:
            self.charge_attempts.append(idempotency_key)
            return Charge(id="pi_pending", status=self.charge_status, amount=amount, currency=currency)
        return await super().create_charge(
            amount, currency, customer_id, payment_method_id, idempotency_key, description, metadata
        )


class FailingNotifier:
    async def send(self, recipient: str, subject: str, body: str) -> None:
        raise ConnectionError("SMTP server unreachable")


class YieldingDocumentStore(InMemoryDocumentStore):
    """Yields to the event loop after every read so concurrent writers interleave."""

    async def get(self, collection, key):
        doc = await super().get(collection, key)
        await asyncio.sleep(0)
        return doc


class ContendedDocumentStore(InMemoryDocumentStore):
    """Every replace loses the CAS race."""

    def __init__(self):
        super().__init__()
        self.replace_attempts = 0

    async def replace(self, collection, key, content, cas):
        self.replace_attempts += 1
        raise CasMismatchError(f"{collection}/{key} was modified concurrently")


def make_notifications(notifier=None) -> AuctionNotifications:
    return AuctionNotifications(
        notifier if notifier is not None else LogNotifier(),
        site_url="https://auctions.example.com",
        admin_email=ADMIN_EMAIL,
        team_name="The Auctions Team",
    )


def listing_data(**fields) -> ListingData:
    values: Dict[str, object] = dict(
        seller_id="seller-1",
        seller_email="seller@example.com",
        title="Victorian writing desk",
        status=ListingStatus.LIVE,
        starting_price=100,
        auction_start=NOW - timedelta(days=2),
        auction_end=NOW + timedelta(days=2),
    )
    values.update(fields)
    return ListingData(**values)


async def create_listing(store, listing_id: Optional[str] = None, now: datetime = NOW, **fields) -> Listing:
    return await Listing.create(store, listing_data(**fields), key=listing_id, user_id="seller-1", now=now)
