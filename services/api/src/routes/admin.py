"""Operator endpoints, gated by the X-Admin-API-Key header."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from engine import AuctionEngine
from models.operations.errors import AuctionError
from utils import log

from .dependencies import get_engine, require_admin_api_key
from .errors import http_error

logger = log.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_api_key)])


class MarkSoldRequest(BaseModel):
    final_price: int = Field(gt=0)
    buyer_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    buyer_id: Optional[str] = None


class MarkSoldResponse(BaseModel):
    transaction_id: str
    listing_id: str
    sale_price: int
    commission_rate: float
    commission_amount: int
    listing_fee_applied: int
    seller_payout: int
    payment_status: str


@router.post("/listings/{listing_id}/mark-sold", response_model=MarkSoldResponse)
async def route_admin_mark_sold(
    listing_id: str,
    body: MarkSoldRequest,
    engine: AuctionEngine = Depends(get_engine),
):
    """Record a sale agreed outside the auction; payment is collected separately."""
    try:
        txn = await engine.sales.mark_sold(listing_id, body.final_price, body.buyer_email.strip().lower(), body.buyer_id)
    except AuctionError as e:
        raise http_error(e)

    d = txn.data
    return MarkSoldResponse(
        transaction_id=txn.id,
        listing_id=d.listing_id,
        sale_price=d.sale_price,
        commission_rate=d.commission_rate,
        commission_amount=d.commission_amount,
        listing_fee_applied=d.listing_fee_applied,
        seller_payout=d.seller_payout,
        payment_status=d.payment_status,
    )
