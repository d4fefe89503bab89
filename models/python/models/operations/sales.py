"""
Recording a sale on a listing.

Three paths end in a sale: the scheduler charging an auction winner, a buyer
paying the buy-now price, and an operator marking a listing sold by hand.  All
anchor on the listing's single Transaction (see ``transaction_create_once``)
and then copy the settlement figures onto the listing.
"""

import logging
from datetime import datetime
from typing import Literal, Optional

from clients.clock import Clock
from clients.couchbase import DocumentStore
from clients.stripe import Charge, PaymentProcessor, PaymentProcessorError
from clients.stripe import PaymentTimeoutError as ProcessorTimeoutError

from models.entities.couchbase.listings import Listing, ListingData, ListingStatus
from models.entities.couchbase.transactions import Transaction, TransactionData
from models.operations.bids import Bidder
from models.operations.errors import (
    BuyNowUnavailableError,
    ListingAlreadySoldError,
    ListingNotLiveError,
    PaymentTimeoutError,
    PaymentVerificationError,
)
from models.operations.listings import TransitionSkipped, listing_cas_update, listing_require
from models.operations.notifications import AuctionNotifications
from models.operations.settlement import settle, to_minor_units, whole_units
from models.operations.transactions import transaction_create_once, transaction_get_for_listing

logger = logging.getLogger(__name__)

SaleKind = Literal["winner_charged", "sold_manually", "sold_buy_now"]


def apply_sale(data: ListingData, txn: TransactionData, kind: SaleKind, now: datetime) -> None:
    data.buyer_id = txn.buyer_id
    data.buyer_email = txn.buyer_email
    data.sold_price = txn.sale_price
    data.sale_fee = txn.commission_amount
    data.seller_net_amount = txn.seller_payout
    data.sale_status = kind
    data.payout_status = "pending"
    data.payment_intent_id = txn.charge_id
    data.sold_at = now
    if kind != "winner_charged":
        data.status = ListingStatus.SOLD


async def listing_record_sale(
    store: DocumentStore,
    listing_id: str,
    transaction: Transaction,
    kind: SaleKind,
    now: datetime,
) -> Optional[Listing]:
    """Copy the transaction's figures onto the listing once; ``None`` if already recorded."""

    def _mutate(d: ListingData) -> None:
        if d.sale_status is not None:
            raise TransitionSkipped(f"sale already recorded ({d.sale_status})")
        apply_sale(d, transaction.data, kind, now)

    try:
        return await listing_cas_update(store, listing_id, _mutate, now)
    except TransitionSkipped:
        return None


class ManualSaleService:
    """Operator path: settle a listing at an agreed price, payment collected outside the platform."""

    def __init__(self, store: DocumentStore, notifications: AuctionNotifications, clock: Clock):
        self._store = store
        self._notifications = notifications
        self._clock = clock

    async def mark_sold(
        self,
        listing_id: str,
        final_price: int,
        buyer_email: str,
        buyer_id: Optional[str] = None,
    ) -> Transaction:
        now = self._clock.now()
        listing = await listing_require(self._store, listing_id)
        if listing.data.status == ListingStatus.SOLD or listing.data.sale_status is not None:
            raise ListingAlreadySoldError(listing_id)
        if await transaction_get_for_listing(self._store, listing_id) is not None:
            raise ListingAlreadySoldError(listing_id)

        settlement = settle(final_price, listing.data.listing_fee, listing.data.commission_rate)
        txn, created = await transaction_create_once(self._store, TransactionData(
            listing_id=listing_id,
            listing_title=listing.data.title,
            source="manual",
            seller_id=listing.data.seller_id,
            seller_email=listing.data.seller_email,
            buyer_id=buyer_id,
            buyer_email=buyer_email,
            sale_price=settlement.sale_price,
            commission_rate=settlement.commission_rate,
            commission_amount=settlement.commission_amount,
            listing_fee_applied=settlement.listing_fee_applied,
            seller_payout=settlement.seller_payout,
            payment_status="pending",
        ), now)
        if not created:
            raise ListingAlreadySoldError(listing_id)

        updated = await listing_record_sale(self._store, listing_id, txn, "sold_manually", now)
        logger.info(f"Listing {listing_id} marked sold at {final_price} to {buyer_email}")

        await self._notifications.sale_completed(updated or listing, txn)
        return txn


class BuyNowService:
    """
    Buyer path: the buyer pays the buy-now price in the browser and presents
    the payment here.  The payment is checked against the listing before the
    sale is recorded; amounts the client sends are never trusted.
    """

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
        self._currency = currency.lower()

    async def buy_now(self, listing_id: str, buyer: Bidder, payment_id: str) -> Transaction:
        now = self._clock.now()
        listing = await listing_require(self._store, listing_id)

        existing = await transaction_get_for_listing(self._store, listing_id)
        if existing is not None:
            if existing.data.source == "buy_now" and existing.data.charge_id == payment_id:
                # Confirmation retried; make sure the listing caught up
                await listing_record_sale(self._store, listing_id, existing, "sold_buy_now", now)
                return existing
            raise ListingAlreadySoldError(listing_id)

        d = listing.data
        if d.status in (ListingStatus.SOLD, ListingStatus.COMPLETED) or d.sale_status is not None:
            raise ListingAlreadySoldError(listing_id)
        if d.status in (ListingStatus.PENDING_APPROVAL, ListingStatus.REJECTED):
            raise ListingNotLiveError(listing_id, d.status.value)
        if not d.buy_now_price:
            raise BuyNowUnavailableError(listing_id)

        settlement = settle(whole_units(d.buy_now_price), d.listing_fee, d.commission_rate)
        charge = await self._verified_payment(listing_id, buyer, payment_id, to_minor_units(d.buy_now_price))

        txn, created = await transaction_create_once(self._store, TransactionData(
            listing_id=listing_id,
            listing_title=d.title,
            source="buy_now",
            seller_id=d.seller_id,
            seller_email=d.seller_email,
            buyer_id=buyer.id,
            buyer_email=buyer.email,
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
        if not created:
            if txn.data.charge_id == charge.id:
                return txn
            logger.error(f"Listing {listing_id}: buy-now payment {charge.id} taken but the listing sold first; refund it")
            raise ListingAlreadySoldError(listing_id)

        updated = await listing_record_sale(self._store, listing_id, txn, "sold_buy_now", now)
        logger.info(f"Listing {listing_id} bought now by {buyer.id} for {settlement.sale_price} ({charge.id})")

        await self._notifications.sale_completed(updated or listing, txn)
        return txn

    async def _verified_payment(self, listing_id: str, buyer: Bidder, payment_id: str, expected_amount: int) -> Charge:
        try:
            charge = await self._payments.get_charge(payment_id)
        except ProcessorTimeoutError as e:
            raise PaymentTimeoutError(detail=e.message) from e
        except PaymentProcessorError as e:
            if e.code == "resource_missing":
                raise PaymentVerificationError(payment_id, "payment not found") from e
            logger.warning(f"Could not fetch payment {payment_id}: {e.message}")
            raise PaymentTimeoutError("Payment processor is unavailable", detail=e.message) from e

        if charge.currency.lower() != self._currency:
            raise PaymentVerificationError(payment_id, f"currency is {charge.currency}, expected {self._currency}")
        if not charge.succeeded:
            raise PaymentVerificationError(payment_id, f"payment not completed (status: {charge.status})")
        if charge.amount != expected_amount:
            raise PaymentVerificationError(payment_id, f"amount {charge.amount} does not match the buy-now price")

        paid_for = charge.metadata.get("listing_id")
        if paid_for and paid_for != listing_id:
            raise PaymentVerificationError(payment_id, "payment is for a different listing")
        paid_by = charge.metadata.get("buyer_email")
        if paid_by and paid_by.lower() != buyer.email.lower():
            raise PaymentVerificationError(payment_id, "payment was made by a different buyer")
        return charge
