"""
Periodic auction lifecycle run.

Each run makes three passes over persisted state:

A. promote queued listings whose window has started,
B. close live listings whose end time has passed,
C. charge the winners of completed listings.

Nothing is carried between runs, and every transition is conditional on the
status it expects, so overlapping or repeated runs are harmless.  A failure on
one listing is recorded in the summary and the pass moves on.
"""

import logging
from typing import Awaitable, List, Optional

from pydantic import BaseModel

from clients.clock import Clock
from clients.couchbase import DocumentStore

from models.entities.couchbase.listings import Listing
from models.operations.auction_window import get_auction_window
from models.operations.listings import (
    listing_close,
    listing_promote,
    listings_awaiting_settlement,
    listings_due_for_close,
    listings_due_for_promotion,
)
from models.operations.notifications import AuctionNotifications
from models.operations.winner_capture import CaptureResult, WinnerCapture

logger = logging.getLogger(__name__)


class ListingFailure(BaseModel):
    listing_id: Optional[str] = None
    stage: str
    error: str


class SchedulerRunSummary(BaseModel):
    promoted: int = 0
    completed: int = 0
    not_sold: int = 0
    relisted: int = 0
    relist_notifications_sent: int = 0
    failures: List[ListingFailure] = []
    winner_charges: List[CaptureResult] = []
    note: Optional[str] = None


class LifecycleScheduler:
    def __init__(
        self,
        store: DocumentStore,
        notifications: AuctionNotifications,
        clock: Clock,
        winner_capture: Optional[WinnerCapture] = None,
    ):
        self._store = store
        self._notifications = notifications
        self._clock = clock
        self._winner_capture = winner_capture

    async def run(self) -> SchedulerRunSummary:
        summary = SchedulerRunSummary()
        await self._promote(summary)
        await self._close(summary)
        await self._settle(summary)
        logger.info(
            f"Auction scheduler run: promoted={summary.promoted} completed={summary.completed} "
            f"not_sold={summary.not_sold} relisted={summary.relisted} "
            f"charged={sum(1 for c in summary.winner_charges if c.charged)} failures={len(summary.failures)}"
        )
        return summary

    def _fail(self, summary: SchedulerRunSummary, stage: str, listing_id: Optional[str], e: Exception) -> None:
        logger.error(f"Auction scheduler {stage} failed for listing {listing_id}: {e}", exc_info=True)
        summary.failures.append(ListingFailure(listing_id=listing_id, stage=stage, error=str(e)))

    async def _collect(self, summary: SchedulerRunSummary, stage: str, query: Awaitable[List[Listing]]) -> List[Listing]:
        try:
            return await query
        except Exception as e:
            self._fail(summary, stage, None, e)
            return []

    async def _promote(self, summary: SchedulerRunSummary) -> None:
        now = self._clock.now()
        for listing in await self._collect(summary, "promote", listings_due_for_promotion(self._store, now)):
            try:
                if await listing_promote(self._store, listing.id, now) is not None:
                    summary.promoted += 1
                    logger.info(f"Listing {listing.id} is now live")
            except Exception as e:
                self._fail(summary, "promote", listing.id, e)

    async def _close(self, summary: SchedulerRunSummary) -> None:
        now = self._clock.now()
        window = get_auction_window(now)
        for listing in await self._collect(summary, "close", listings_due_for_close(self._store, now)):
            try:
                closed = await listing_close(self._store, listing.id, now, window)
            except Exception as e:
                self._fail(summary, "close", listing.id, e)
                continue
            if closed is None:
                continue

            updated, outcome = closed
            logger.info(f"Listing {listing.id} closed: {outcome}")
            if outcome == "completed":
                summary.completed += 1
            elif outcome == "not_sold":
                summary.not_sold += 1
            else:
                summary.relisted += 1
                summary.relist_notifications_sent += await self._notifications.relisted(updated)

    async def _settle(self, summary: SchedulerRunSummary) -> None:
        if self._winner_capture is None:
            summary.note = "payment processor not configured; winner charging skipped"
            return

        # Includes listings completed by earlier runs whose charge has not gone through yet
        for listing in await self._collect(summary, "settle", listings_awaiting_settlement(self._store)):
            try:
                result = await self._winner_capture.capture_winner(listing)
            except Exception as e:
                self._fail(summary, "settle", listing.id, e)
                continue
            summary.winner_charges.append(result)
