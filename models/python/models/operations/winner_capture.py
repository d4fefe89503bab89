"""
Charging the winner of a completed auction.

Safe to run any number of times for the same listing: the charge carries the
idempotency key ``winner-charge-<listing id>``, so the processor returns the
original payment instead of taking a second one, and the Transaction is keyed
by listing id, so only one can ever be written.
"""

import logging
from typing import Optional, Set

from pydantic import BaseModel

from clients.clock import Clock
from clients.couchbase import DocumentStore
from clients.stripe import PaymentDeclinedError, PaymentProcessor, PaymentProcessorError

from models.entities.couchbase.bids import Bid
from models.entities.couchbase.listings import Listing
from models.entities.couchbase.transactions import Transaction, TransactionData
from models.operations.bids import latest_bid
from models.operations.errors import SettlementError
from models.operations.listings import has_bid, listing_require, reserve_met
from models.operations.notifications import AuctionNotifications, listing_label
from models.operations.sales import listing_record_sale
from models.operations.settlement import settle, to_minor_units, whole_units
from models.operations.transactions import transaction_create_once, transaction_get_for_listing

logger = logging.getLogger(__name__)

SKIP_NO_BIDS = "no bids"
SKIP_RESERVE_NOT_MET = "reserve not met"
SKIP_NO_BID_HISTORY = "no bids found in history"
SKIP_MISSING_BUYER = "winning bid missing buyer identity or amount"
SKIP_HISTORY_MISMATCH = "bid history disagrees with listing"
SKIP_NO_PAYMENT_METHOD = "winner has no payment method on file"
SKIP_UNSETTLEABLE = "winning bid cannot be settled"
SKIP_IN_PROGRESS = "capture already in progress"

SALE_KIND_BY_SOURCE = {"auction": "winner_charged", "buy_now": "sold_buy_now", "manual": "sold_manually"}


class CaptureResult(BaseModel):
    listing_id: str
    charged: bool = False
    skipped: bool = False
    reason: Optional[str] = None
    transaction: Optional[Transaction] = None
    charge_id: Optional[str] = None
    charge_status: Optional[str] = None
    error: Optional[str] = None


def charge_idempotency_key(listing_id: str) -> str:
    return f"winner-charge-{listing_id}"


def _history_mismatch(listing: Listing, bid: Bid) -> Optional[str]:
    d = listing.data
    if bid.data.sequence != d.bids:
        return f"latest bid is #{bid.data.sequence} but listing counts {d.bids}"
    if bid.data.amount != d.current_bid:
        return f"latest bid is {bid.data.amount:g} but listing shows {d.current_bid:g}"
    if d.highest_bidder_id is not None and bid.data.bidder_id != d.highest_bidder_id:
        return f"latest bidder is {bid.data.bidder_id} but listing shows {d.highest_bidder_id}"
    return None


class WinnerCapture:
    def __init__(
        self,
        store: DocumentStore,
        payments: PaymentProcessor,
        notifications: AuctionNotifications,
        clock: Clock,
        currency: str = "gbp",
    ):
        self._store = store
        self._payments = payments
        self._notifications = notifications
        self._clock = clock
        self._currency = currency
        self._in_flight: Set[str] = set()

    async def capture_winner(self, listing: Listing) -> CaptureResult:
        listing_id = listing.id
        if listing_id in self._in_flight:
            # Overlapping runs in this process; the first one charges
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_IN_PROGRESS)

        self._in_flight.add(listing_id)
        try:
            return await self._capture(listing_id)
        finally:
            self._in_flight.discard(listing_id)

    async def _capture(self, listing_id: str) -> CaptureResult:
        now = self._clock.now()
        listing = await listing_require(self._store, listing_id)

        existing = await transaction_get_for_listing(self._store, listing_id)
        if existing is not None:
            # The sale is already anchored (an earlier run, or another sale path); finish recording it
            await listing_record_sale(self._store, listing_id, existing, SALE_KIND_BY_SOURCE[existing.data.source], now)
            return CaptureResult(
                listing_id=listing_id,
                charged=existing.data.source == "auction" and existing.data.payment_status == "paid",
                transaction=existing,
                charge_id=existing.data.charge_id,
                reason="already settled",
            )

        if not has_bid(listing.data):
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_NO_BIDS)
        if not reserve_met(listing.data):
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_RESERVE_NOT_MET)

        bid = await latest_bid(self._store, listing_id, max_sequence=listing.data.bids)
        if bid is None:
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_NO_BID_HISTORY)
        if not bid.data.bidder_id or not bid.data.bidder_email or bid.data.amount <= 0:
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_MISSING_BUYER)
        mismatch = _history_mismatch(listing, bid)
        if mismatch:
            logger.warning(f"Listing {listing_id}: {SKIP_HISTORY_MISMATCH}: {mismatch}")
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_HISTORY_MISMATCH, error=mismatch)

        final_bid = bid.data.amount
        try:
            settlement = settle(whole_units(final_bid), listing.data.listing_fee, listing.data.commission_rate)
        except SettlementError as e:
            logger.warning(f"Listing {listing_id}: {SKIP_UNSETTLEABLE}: {e.message}")
            return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_UNSETTLEABLE, error=e.message)

        try:
            lookup = await self._payments.find_payment_method(bid.data.bidder_email)
            if not lookup.has_payment_method:
                return CaptureResult(listing_id=listing_id, skipped=True, reason=SKIP_NO_PAYMENT_METHOD)

            amount = to_minor_units(final_bid) + to_minor_units(listing.data.surcharge)
            charge = await self._payments.create_charge(
                amount=amount,
                currency=self._currency,
                customer_id=lookup.customer_id,
                payment_method_id=lookup.payment_method_id,
                idempotency_key=charge_idempotency_key(listing_id),
                description=f"Auction winner - {listing_label(listing)}",
                metadata={
                    "type": "auction_winner",
                    "listing_id": listing_id,
                    "winner_id": bid.data.bidder_id,
                    "winner_email": bid.data.bidder_email,
                    "final_bid": f"{final_bid:g}",
                },
            )
        except PaymentDeclinedError as e:
            logger.warning(f"Listing {listing_id}: winner charge declined ({e.code}): {e.message}")
            return CaptureResult(
                listing_id=listing_id,
                error=e.message,
                charge_id=e.intent_id,
                charge_status=e.intent_status,
            )
        except PaymentProcessorError as e:
            logger.warning(f"Listing {listing_id}: winner charge failed: {e.message}")
            return CaptureResult(listing_id=listing_id, error=e.message)

        if not charge.succeeded:
            return CaptureResult(
                listing_id=listing_id,
                reason=f"payment not succeeded (status: {charge.status})",
                charge_id=charge.id,
                charge_status=charge.status,
            )

        txn, created = await transaction_create_once(self._store, TransactionData(
            listing_id=listing_id,
            listing_title=listing.data.title,
            source="auction",
            seller_id=listing.data.seller_id,
            seller_email=listing.data.seller_email,
            buyer_id=bid.data.bidder_id,
            buyer_email=bid.data.bidder_email,
            sale_price=settlement.sale_price,
            commission_rate=settlement.commission_rate,
            commission_amount=settlement.commission_amount,
            listing_fee_applied=settlement.listing_fee_applied,
            seller_payout=settlement.seller_payout,
            amount_charged=charge.amount,
            currency=charge.currency,
            charge_id=charge.id,
            payment_status="paid",
        ), now)

        updated = await listing_record_sale(self._store, listing_id, txn, "winner_charged", now)
        logger.info(f"Listing {listing_id}: winner {bid.data.bidder_id} charged {charge.amount} {charge.currency} ({charge.id})")

        if created:
            await self._notifications.sale_completed(updated or listing, txn)

        return CaptureResult(
            listing_id=listing_id,
            charged=True,
            transaction=txn,
            charge_id=charge.id,
            charge_status=charge.status,
        )
