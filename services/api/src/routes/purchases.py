"""
API endpoints for buying outright.

POST   /listings/{id}/buy-now   - confirm a paid buy-now purchase (gateway-authenticated buyer)
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from engine import AuctionEngine
from models.operations.bids import Bidder
from models.operations.errors import AuctionError
from utils import log

from .dependencies import current_bidder, get_engine
from .errors import http_error

logger = log.get_logger(__name__)

router = APIRouter(prefix="/listings", tags=["purchases"])


class BuyNowRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)


class BuyNowResponse(BaseModel):
    transaction_id: str
    listing_id: str
    sale_price: int
    amount_charged: Optional[int] = None
    currency: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_status: str


@router.post("/{listing_id}/buy-now", response_model=BuyNowResponse)
async def route_buy_now(
    listing_id: str,
    body: BuyNowRequest,
    buyer: Bidder = Depends(current_bidder),
    engine: AuctionEngine = Depends(get_engine),
):
    try:
        txn = await engine.purchases.buy_now(listing_id, buyer, body.payment_intent_id.strip())
    except AuctionError as e:
        raise http_error(e)

    d = txn.data
    return BuyNowResponse(
        transaction_id=txn.id,
        listing_id=d.listing_id,
        sale_price=d.sale_price,
        amount_charged=d.amount_charged,
        currency=d.currency,
        payment_intent_id=d.charge_id,
        payment_status=d.payment_status,
    )
