"""
API endpoints for the weekly auction cycle.

GET         /auction-window           - current and next weekly window
GET | POST  /auction-scheduler/run    - run the lifecycle passes (cron secret)
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from engine import AuctionEngine
from models.operations.auction_window import get_auction_window
from models.operations.errors import AuctionError
from models.operations.lifecycle import SchedulerRunSummary
from utils import log

from .dependencies import get_engine, require_cron_secret
from .errors import http_error

logger = log.get_logger(__name__)

router = APIRouter(tags=["auctions"])


class AuctionWindowResponse(BaseModel):
    now: datetime
    current_start: datetime
    current_end: datetime
    next_start: datetime
    next_end: datetime
    is_live: bool
    is_coming: bool


@router.get("/auction-window", response_model=AuctionWindowResponse)
async def route_auction_window(engine: AuctionEngine = Depends(get_engine)):
    window = get_auction_window(engine.clock.now())
    return AuctionWindowResponse(
        now=window.now,
        current_start=window.current_start,
        current_end=window.current_end,
        next_start=window.next_start,
        next_end=window.next_end,
        is_live=window.is_live,
        is_coming=window.is_coming,
    )


@router.api_route(
    "/auction-scheduler/run",
    methods=["GET", "POST"],
    response_model=SchedulerRunSummary,
    dependencies=[Depends(require_cron_secret)],
)
async def route_auction_scheduler_run(engine: AuctionEngine = Depends(get_engine)):
    """Triggered by an external cron. Safe to call while another run is in progress."""
    logger.info("Auction scheduler run triggered over HTTP")
    try:
        return await engine.lifecycle.run()
    except AuctionError as e:
        raise http_error(e)
