"""
Bid admission and bid history.

A bid is accepted in two writes: a CAS update of the listing's denormalized
high-bid fields, which serializes competing bidders and assigns the bid its
per-listing ``sequence``, followed by an insert of the immutable Bid record
keyed by that sequence.  Preconditions are checked once up front so invalid
bids fail fast, and again inside the CAS mutator against whatever version of
the listing is current and the clock at write time, so a lower concurrent bid
can never overwrite a higher one and a bid that arrives after the close is
refused.

If the Bid record cannot be written the listing update is withdrawn, so the
listing never counts a bid that has no history.  A record that landed for a
withdrawn bid has a sequence above the listing's ``bids`` count; history reads
ignore it and the next accepted bid overwrites it.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from numbers import Real
from typing import List, Optional

from clients.clock import Clock
from clients.couchbase import CasMismatchError, DocumentExistsError, DocumentStore, OrderBy, StoreTimeoutError, eq, lte
from clients.stripe import PaymentMethodLookup, PaymentProcessor, PaymentProcessorError
from clients.stripe import PaymentTimeoutError as ProcessorTimeoutError

from models.entities.couchbase.bids import Bid, BidData, bid_key
from models.entities.couchbase.listings import Listing, ListingData, ListingStatus
from models.operations.errors import (
    AuctionEndedError,
    AuctionError,
    BidTooLowError,
    InvalidBidAmountError,
    ListingNotLiveError,
    PaymentMethodRequiredError,
    PaymentTimeoutError,
    StoreUnavailableError,
)
from models.operations.listings import TransitionSkipped, listing_cas_update, listing_require
from models.operations.notifications import AuctionNotifications

logger = logging.getLogger(__name__)

# (exclusive upper bound of the current base, minimum raise)
BID_INCREMENTS = (
    (100, 5),
    (500, 10),
    (1_000, 25),
    (5_000, 50),
    (10_000, 100),
    (25_000, 250),
    (50_000, 500),
)
TOP_INCREMENT = 1_000

SOFT_CLOSE_WINDOW = timedelta(minutes=5)
SOFT_CLOSE_EXTENSION = timedelta(minutes=5)

BID_RECORD_RETRIES = 3


def bid_increment(base: float) -> int:
    for upper, increment in BID_INCREMENTS:
        if base < upper:
            return increment
    return TOP_INCREMENT


def bid_base(data: ListingData) -> float:
    return data.current_bid if data.current_bid is not None else data.starting_price


def minimum_bid(data: ListingData) -> float:
    base = bid_base(data)
    return base + bid_increment(base)


def soft_close_end(auction_end: datetime, now: datetime) -> datetime:
    """End time after a bid at ``now``: pushed to now + 5 min inside the closing band, else unchanged."""
    if auction_end - now <= SOFT_CLOSE_WINDOW:
        return now + SOFT_CLOSE_EXTENSION
    return auction_end


@dataclass(frozen=True)
class Bidder:
    id: str
    email: str


@dataclass
class BidOutcome:
    listing: Listing
    bid: Bid
    extended: bool = False


def _check_open(listing_id: str, data: ListingData, now: datetime) -> None:
    if data.status != ListingStatus.LIVE:
        raise ListingNotLiveError(listing_id, data.status.value)
    if data.auction_start is not None and data.auction_start > now:
        raise ListingNotLiveError(listing_id, data.status.value)
    if data.auction_end is None or data.auction_end <= now:
        raise AuctionEndedError(listing_id)


def _check_amount(amount: object) -> float:
    if isinstance(amount, bool) or not isinstance(amount, Real):
        raise InvalidBidAmountError(amount)
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidBidAmountError(amount)
    return float(amount)


def _check_minimum(data: ListingData, amount: float) -> None:
    required = minimum_bid(data)
    if amount < required:
        raise BidTooLowError(amount, required)


def _check_whole_units(amount: float) -> None:
    # Settlement and the Transaction work in whole currency units
    if not amount.is_integer():
        raise InvalidBidAmountError(amount, "a whole number of currency units")


# Listing fields a bid overwrites; restored when the bid is withdrawn
BID_FIELDS = ("current_bid", "bids", "highest_bidder_id", "highest_bidder_email", "last_bid_time", "auction_end")


def _same_bid(a: BidData, b: BidData) -> bool:
    return (
        a.sequence == b.sequence
        and a.bidder_id == b.bidder_id
        and a.amount == b.amount
        and a.placed_at == b.placed_at
    )


class BidAdmissionService:
    def __init__(
        self,
        store: DocumentStore,
        payments: PaymentProcessor,
        notifications: AuctionNotifications,
        clock: Clock,
        max_retries: int = 5,
    ):
        self._store = store
        self._payments = payments
        self._notifications = notifications
        self._clock = clock
        self._max_retries = max_retries

    async def check_payment_method(self, email: str) -> PaymentMethodLookup:
        try:
            return await self._payments.find_payment_method(email)
        except ProcessorTimeoutError as e:
            raise PaymentTimeoutError(detail=e.message) from e
        except PaymentProcessorError as e:
            logger.warning(f"Payment method lookup failed for {email}: {e.message}")
            raise PaymentTimeoutError("Payment processor is unavailable", detail=e.message) from e

    async def place_bid(self, listing_id: str, bidder: Bidder, amount: float) -> BidOutcome:
        # Fail fast against the current version before calling the processor
        listing = await listing_require(self._store, listing_id)
        _check_open(listing_id, listing.data, self._clock.now())

        lookup = await self.check_payment_method(bidder.email)
        if not lookup.has_payment_method:
            raise PaymentMethodRequiredError(bidder.email)

        amount = _check_amount(amount)
        _check_minimum(listing.data, amount)
        _check_whole_units(amount)

        accepted = {}

        def _mutate(d: ListingData) -> None:
            # The processor lookup can take seconds; judge the bid when it is written
            now = self._clock.now()
            _check_open(listing_id, d, now)
            _check_minimum(d, amount)

            accepted.clear()
            accepted["now"] = now
            accepted["prior"] = {name: getattr(d, name) for name in BID_FIELDS}

            d.current_bid = amount
            d.bids += 1
            d.highest_bidder_id = bidder.id
            d.highest_bidder_email = bidder.email
            d.last_bid_time = now
            d.auction_end = soft_close_end(d.auction_end, now)

        updated = await listing_cas_update(self._store, listing_id, _mutate, self._clock.now(), self._max_retries)
        now = accepted["now"]
        extended = updated.data.auction_end != accepted["prior"]["auction_end"]

        data = BidData(
            listing_id=listing_id,
            bidder_id=bidder.id,
            bidder_email=bidder.email,
            amount=amount,
            placed_at=now,
            sequence=updated.data.bids,
        )
        try:
            bid = await self._record_bid(data, now)
        except StoreUnavailableError:
            await self._withdraw(listing_id, bidder, data.sequence, accepted["prior"])
            raise

        logger.info(
            f"Bid #{bid.data.sequence} of {amount:g} on listing {listing_id} by {bidder.id}"
            + (f", auction extended to {updated.data.auction_end.isoformat()}" if extended else "")
        )

        await self._notifications.bid_placed(updated, bid)
        return BidOutcome(listing=updated, bid=bid, extended=extended)

    async def _record_bid(self, data: BidData, now: datetime) -> Bid:
        key = bid_key(data.listing_id, data.sequence)
        backoff_ms = 10
        for attempt in range(BID_RECORD_RETRIES):
            try:
                return await self._write_bid(key, data, now)
            except (StoreTimeoutError, CasMismatchError):
                if attempt < BID_RECORD_RETRIES - 1:
                    await asyncio.sleep(backoff_ms / 1000)
                    backoff_ms *= 2

        logger.error(f"Bid #{data.sequence} on listing {data.listing_id}: history record could not be written")
        raise StoreUnavailableError(f"Could not record bid on listing {data.listing_id}; please try again")

    async def _write_bid(self, key: str, data: BidData, now: datetime) -> Bid:
        try:
            return await Bid.create(self._store, data.model_copy(), key=key, user_id=data.bidder_id, now=now)
        except DocumentExistsError:
            existing = await Bid.get(self._store, key)
            if existing is None:
                raise StoreTimeoutError(f"Bid {key} reported as existing but could not be read")
            if _same_bid(existing.data, data):
                # An earlier attempt landed before timing out
                return existing

        # Left behind by a withdrawn bid
        logger.warning(f"Replacing bid record {key} left by a withdrawn bid")
        replacement = data.model_copy(update={"created_at": now, "created_by_user_id": data.bidder_id})
        existing.data = replacement
        return await Bid.update(self._store, existing, now=now)

    async def _withdraw(self, listing_id: str, bidder: Bidder, sequence: int, prior: dict) -> None:
        """Undo the listing update of a bid whose record could not be written."""

        def _mutate(d: ListingData) -> None:
            if d.bids != sequence or d.highest_bidder_id != bidder.id:
                # A later bid has landed with its own record
                raise TransitionSkipped("bid superseded")
            for name, value in prior.items():
                setattr(d, name, value)

        try:
            await listing_cas_update(self._store, listing_id, _mutate, self._clock.now(), self._max_retries)
            logger.warning(f"Bid #{sequence} on listing {listing_id} withdrawn: its record could not be written")
        except TransitionSkipped:
            logger.warning(f"Bid #{sequence} on listing {listing_id} has no record but was already outbid")
        except AuctionError as e:
            logger.error(f"Bid #{sequence} on listing {listing_id} has no record and could not be withdrawn: {e}")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def bid_history(
    store: DocumentStore,
    listing_id: str,
    limit: Optional[int] = 100,
    max_sequence: Optional[int] = None,
) -> List[Bid]:
    """Bids for a listing, newest first.

    Pass the listing's ``bids`` count as ``max_sequence`` to leave out records
    of withdrawn bids.
    """
    conditions = [eq("listing_id", listing_id)]
    if max_sequence is not None:
        conditions.append(lte("sequence", max_sequence))
    return await Bid.find(store, conditions, [OrderBy("sequence", "DESC")], limit=limit)


async def latest_bid(store: DocumentStore, listing_id: str, max_sequence: Optional[int] = None) -> Optional[Bid]:
    bids = await bid_history(store, listing_id, limit=1, max_sequence=max_sequence)
    return bids[0] if bids else None
