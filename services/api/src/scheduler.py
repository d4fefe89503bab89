"""APScheduler setup for the periodic auction lifecycle run."""

from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from utils import log

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def auction_lifecycle_job(run: Callable[[], Awaitable[object]]):
    """Promote, close and settle auctions. Errors are logged; the next tick retries."""
    try:
        await run()
    except Exception as e:
        logger.error(f"Auction lifecycle job failed: {e}", exc_info=True)


def init_scheduler(run: Callable[[], Awaitable[object]], interval_minutes: int) -> Optional[AsyncIOScheduler]:
    """Start the APScheduler with the auction lifecycle job. ``interval_minutes <= 0`` disables it."""
    global _scheduler
    if interval_minutes <= 0:
        logger.info("In-process auction scheduler disabled (AUCTION_SCHEDULER_INTERVAL_MINUTES=0)")
        return None

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        auction_lifecycle_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[run],
        id="auction_lifecycle",
        name="Auction Lifecycle",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(f"APScheduler started with auction lifecycle job every {interval_minutes} min")
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
