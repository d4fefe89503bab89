"""
Listing reads, CAS-guarded writes and lifecycle transitions.

Every state change goes through ``listing_cas_update``: read with CAS, let a
mutator validate and change the data, write back conditionally, and on a CAS
conflict re-read and run the mutator again against the fresh document.  The
mutator re-checks its own preconditions on each attempt, so a transition that
raced with another writer is re-decided rather than blindly applied.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Literal, Optional

from clients.couchbase import CasMismatchError, DocumentStore, OrderBy, StoreTimeoutError, eq, is_null, lte

from models.entities.couchbase.listings import Listing, ListingData, ListingStatus
from models.operations.auction_window import AuctionWindow
from models.operations.errors import ConcurrentUpdateError, ListingNotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

PAGE_SIZE = 200
HARD_LIMIT = 5000

CloseOutcome = Literal["completed", "relisted", "not_sold"]


class TransitionSkipped(Exception):
    """Raised by a mutator when the listing no longer qualifies for the transition."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


async def listing_get(store: DocumentStore, listing_id: str) -> Optional[Listing]:
    try:
        return await Listing.get(store, listing_id)
    except StoreTimeoutError as e:
        raise StoreUnavailableError(f"Timed out reading listing {listing_id}") from e


async def listing_require(store: DocumentStore, listing_id: str) -> Listing:
    listing = await listing_get(store, listing_id)
    if listing is None:
        raise ListingNotFoundError(listing_id)
    return listing


async def listing_cas_update(
    store: DocumentStore,
    listing_id: str,
    mutator: Callable[[ListingData], None],
    now: datetime,
    max_retries: int = 5,
) -> Listing:
    """Read-modify-write a listing with CAS-guarded retry.

    *mutator* receives ``ListingData`` and mutates it in place; to abort it
    raises (an ``AuctionError`` or ``TransitionSkipped``), and the exception
    propagates unchanged.  On ``CasMismatchError`` the helper re-reads and
    retries with exponential backoff (10 ms, 20 ms, 40 ms, ...), raising
    ``ConcurrentUpdateError`` once *max_retries* retries are used up.
    """
    backoff_ms = 10
    for attempt in range(max_retries + 1):
        listing = await listing_require(store, listing_id)
        mutator(listing.data)

        try:
            return await Listing.update(store, listing, now=now)
        except CasMismatchError:
            if attempt == max_retries:
                break
            await asyncio.sleep(backoff_ms / 1000)
            backoff_ms *= 2
        except StoreTimeoutError as e:
            raise StoreUnavailableError(f"Timed out writing listing {listing_id}") from e

    logger.warning(f"Listing {listing_id}: CAS retries exhausted after {max_retries + 1} attempts")
    raise ConcurrentUpdateError(listing_id, max_retries + 1)


async def _transition(
    store: DocumentStore,
    listing_id: str,
    mutator: Callable[[ListingData], None],
    now: datetime,
) -> Optional[Listing]:
    try:
        return await listing_cas_update(store, listing_id, mutator, now)
    except TransitionSkipped as e:
        logger.debug(f"Listing {listing_id}: transition skipped ({e.reason})")
        return None


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------

def promote(data: ListingData) -> None:
    """queued -> live. The only way a listing becomes biddable."""
    if data.status != ListingStatus.QUEUED:
        raise TransitionSkipped(f"status is {data.status.value}")
    data.status = ListingStatus.LIVE


async def listing_promote(store: DocumentStore, listing_id: str, now: datetime) -> Optional[Listing]:
    """Promote a queued listing whose window has started. Returns ``None`` if it no longer qualifies."""

    def _mutate(d: ListingData) -> None:
        if d.auction_start is None:
            raise TransitionSkipped("no auction_start")
        if d.auction_start > now:
            raise TransitionSkipped("window has not started")
        promote(d)

    return await _transition(store, listing_id, _mutate, now)


def has_bid(data: ListingData) -> bool:
    return data.current_bid is not None and data.current_bid > 0


def reserve_met(data: ListingData) -> bool:
    if not has_bid(data):
        return False
    if data.reserve_price <= 0:
        return True
    return data.current_bid >= data.reserve_price


def close_decision(data: ListingData) -> CloseOutcome:
    if has_bid(data) and reserve_met(data):
        return "completed"
    if data.relist_until_sold:
        return "relisted"
    return "not_sold"


def reset_for_relist(data: ListingData, window: AuctionWindow) -> None:
    """Requeue into the next weekly window with bid state cleared."""
    data.status = ListingStatus.QUEUED
    data.auction_start = window.next_start
    data.auction_end = window.next_end
    data.current_bid = None
    data.bids = 0
    data.highest_bidder_id = None
    data.highest_bidder_email = None
    data.last_bid_time = None
    data.relist_count += 1


async def listing_close(
    store: DocumentStore,
    listing_id: str,
    now: datetime,
    window: AuctionWindow,
) -> Optional[tuple[Listing, CloseOutcome]]:
    """
    Close a live listing whose end time has passed.

    Re-decided on every CAS attempt: a bid that extended ``auction_end`` in the
    meantime keeps the listing open, and a listing another run already closed
    is left alone.
    """
    outcome: List[CloseOutcome] = []

    def _mutate(d: ListingData) -> None:
        outcome.clear()
        if d.status != ListingStatus.LIVE:
            raise TransitionSkipped(f"status is {d.status.value}")
        if d.auction_end is None or d.auction_end > now:
            raise TransitionSkipped("auction has not ended")

        decision = close_decision(d)
        if decision == "completed":
            d.status = ListingStatus.COMPLETED
        elif decision == "relisted":
            reset_for_relist(d, window)
        else:
            d.status = ListingStatus.NOT_SOLD
        outcome.append(decision)

    listing = await _transition(store, listing_id, _mutate, now)
    if listing is None:
        return None
    return listing, outcome[0]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def listings_due_for_promotion(store: DocumentStore, now: datetime) -> List[Listing]:
    return await Listing.find_all(
        store,
        [eq("status", ListingStatus.QUEUED), lte("auction_start", now)],
        [OrderBy("auction_start")],
        page_size=PAGE_SIZE,
        hard_limit=HARD_LIMIT,
    )


async def listings_due_for_close(store: DocumentStore, now: datetime) -> List[Listing]:
    return await Listing.find_all(
        store,
        [eq("status", ListingStatus.LIVE), lte("auction_end", now)],
        [OrderBy("auction_end")],
        page_size=PAGE_SIZE,
        hard_limit=HARD_LIMIT,
    )


async def listings_awaiting_settlement(store: DocumentStore) -> List[Listing]:
    """Completed listings whose winner has not been charged yet."""
    return await Listing.find_all(
        store,
        [eq("status", ListingStatus.COMPLETED), is_null("sale_status")],
        [OrderBy("auction_end")],
        page_size=PAGE_SIZE,
        hard_limit=HARD_LIMIT,
    )
