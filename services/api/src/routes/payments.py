"""
Payment method endpoints used by the bid form.

GET    /payments/method          - does the current user have a card on file?
POST   /payments/setup-intent    - start saving a card for off-session charges
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from clients.stripe import PaymentProcessorError
from engine import AuctionEngine
from models.operations.bids import Bidder
from models.operations.errors import AuctionError
from utils import log

from .dependencies import current_bidder, get_engine
from .errors import http_error

logger = log.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


class PaymentMethodResponse(BaseModel):
    has_payment_method: bool
    customer_id: Optional[str] = None


class SetupIntentResponse(BaseModel):
    setup_intent_id: str
    client_secret: str
    customer_id: str


@router.get("/method", response_model=PaymentMethodResponse)
async def route_payment_method(
    bidder: Bidder = Depends(current_bidder),
    engine: AuctionEngine = Depends(get_engine),
):
    try:
        lookup = await engine.bids.check_payment_method(bidder.email)
    except AuctionError as e:
        raise http_error(e)
    return PaymentMethodResponse(
        has_payment_method=lookup.has_payment_method,
        customer_id=lookup.customer_id if lookup.has_payment_method else None,
    )


@router.post("/setup-intent", response_model=SetupIntentResponse, status_code=201)
async def route_payment_setup_intent(
    bidder: Bidder = Depends(current_bidder),
    engine: AuctionEngine = Depends(get_engine),
):
    try:
        customer_id = await engine.payments.find_or_create_customer(bidder.email, user_id=bidder.id)
        intent = await engine.payments.create_setup_intent(customer_id)
    except PaymentProcessorError as e:
        logger.warning(f"Setup intent failed for {bidder.id}: {e.message}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payment processor unavailable")
    return SetupIntentResponse(setup_intent_id=intent.id, client_secret=intent.client_secret, customer_id=customer_id)
