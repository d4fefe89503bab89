from enum import Enum
from typing import ClassVar, Literal, Optional

from pydantic import Field

from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData, UtcDateTime


class ListingStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    QUEUED = "queued"
    LIVE = "live"
    COMPLETED = "completed"
    NOT_SOLD = "not_sold"
    SOLD = "sold"
    REJECTED = "rejected"


class ListingData(BaseCouchbaseEntityData):
    # Ownership
    seller_id: str
    seller_email: Optional[str] = None
    title: str

    status: ListingStatus = ListingStatus.PENDING_APPROVAL

    # Pricing, in whole currency units (surcharge is added to the winner's charge)
    starting_price: float = Field(ge=0)
    reserve_price: float = Field(default=0, ge=0)
    buy_now_price: Optional[float] = Field(default=None, ge=0)
    surcharge: float = Field(default=0, ge=0)
    commission_rate: Optional[float] = Field(default=None, ge=0)
    listing_fee: int = Field(default=0, ge=0)

    # Denormalized high-bid (updated atomically via CAS on each bid)
    current_bid: Optional[float] = None
    bids: int = 0
    highest_bidder_id: Optional[str] = None
    highest_bidder_email: Optional[str] = None
    last_bid_time: Optional[UtcDateTime] = None

    # Schedule; auction_end moves forward on soft close
    auction_start: Optional[UtcDateTime] = None
    auction_end: Optional[UtcDateTime] = None
    relist_until_sold: bool = False
    relist_count: int = 0

    # Settlement
    buyer_id: Optional[str] = None
    buyer_email: Optional[str] = None
    sold_price: Optional[int] = None
    sale_fee: Optional[int] = None
    seller_net_amount: Optional[int] = None
    sale_status: Optional[Literal["winner_charged", "sold_manually", "sold_buy_now"]] = None
    payout_status: Optional[Literal["pending", "paid"]] = None
    payment_intent_id: Optional[str] = None
    sold_at: Optional[UtcDateTime] = None


class Listing(BaseModelCouchbase[ListingData]):
    _collection_name: ClassVar[str] = "listings"
