"""
API endpoints for bidding.

POST   /listings/{id}/bids   - place a bid (gateway-authenticated bidder)
GET    /listings/{id}/bids   - bid history, newest first
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from engine import AuctionEngine
from models.entities.couchbase.bids import Bid
from models.entities.couchbase.listings import Listing
from models.operations.bids import Bidder, bid_history, minimum_bid
from models.operations.errors import AuctionError
from models.operations.listings import listing_require, reserve_met
from utils import log

from .dependencies import current_bidder, get_engine
from .errors import http_error

logger = log.get_logger(__name__)

router = APIRouter(prefix="/listings", tags=["bids"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class PlaceBidRequest(BaseModel):
    amount: float


class BidResponse(BaseModel):
    id: str
    listing_id: str
    bidder_id: str
    amount: float
    placed_at: datetime
    sequence: int


class ListingBidStateResponse(BaseModel):
    id: str
    title: str
    status: str
    starting_price: float
    current_bid: Optional[float] = None
    bids: int
    minimum_bid: float
    highest_bidder_id: Optional[str] = None
    last_bid_time: Optional[datetime] = None
    auction_start: Optional[datetime] = None
    auction_end: Optional[datetime] = None
    reserve_met: bool


class PlaceBidResponse(BaseModel):
    listing: ListingBidStateResponse
    bid: BidResponse
    auction_extended: bool


class BidHistoryResponse(BaseModel):
    listing_id: str
    bids: List[BidResponse]


def _bid_to_response(bid: Bid) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        listing_id=d.listing_id,
        bidder_id=d.bidder_id,
        amount=d.amount,
        placed_at=d.placed_at,
        sequence=d.sequence,
    )


def _listing_to_response(listing: Listing) -> ListingBidStateResponse:
    d = listing.data
    return ListingBidStateResponse(
        id=listing.id,
        title=d.title,
        status=d.status.value,
        starting_price=d.starting_price,
        current_bid=d.current_bid,
        bids=d.bids,
        minimum_bid=minimum_bid(d),
        highest_bidder_id=d.highest_bidder_id,
        last_bid_time=d.last_bid_time,
        auction_start=d.auction_start,
        auction_end=d.auction_end,
        reserve_met=reserve_met(d),
    )


# ---------------------------------------------------------------------------
# POST /listings/{id}/bids - place a bid
# ---------------------------------------------------------------------------

@router.post("/{listing_id}/bids", response_model=PlaceBidResponse, status_code=201)
async def route_bid_place(
    listing_id: str,
    body: PlaceBidRequest,
    bidder: Bidder = Depends(current_bidder),
    engine: AuctionEngine = Depends(get_engine),
):
    try:
        outcome = await engine.bids.place_bid(listing_id, bidder, body.amount)
    except AuctionError as e:
        raise http_error(e)

    return PlaceBidResponse(
        listing=_listing_to_response(outcome.listing),
        bid=_bid_to_response(outcome.bid),
        auction_extended=outcome.extended,
    )


# ---------------------------------------------------------------------------
# GET /listings/{id}/bids - bid history
# ---------------------------------------------------------------------------

@router.get("/{listing_id}/bids", response_model=BidHistoryResponse)
async def route_bid_history(
    listing_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    engine: AuctionEngine = Depends(get_engine),
):
    try:
        await listing_require(engine.store, listing_id)
        bids = await bid_history(engine.store, listing_id, limit=limit)
    except AuctionError as e:
        raise http_error(e)
    return BidHistoryResponse(listing_id=listing_id, bids=[_bid_to_response(b) for b in bids])
