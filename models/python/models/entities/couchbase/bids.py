from typing import ClassVar

from pydantic import Field

from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData, UtcDateTime


class BidData(BaseCouchbaseEntityData):
    listing_id: str
    bidder_id: str
    bidder_email: str
    amount: float = Field(gt=0)
    placed_at: UtcDateTime
    # Per-listing position assigned by the listing write that accepted the bid
    sequence: int = Field(ge=1)


class Bid(BaseModelCouchbase[BidData]):
    _collection_name: ClassVar[str] = "bids"


def bid_key(listing_id: str, sequence: int) -> str:
    return f"{listing_id}::bid::{sequence:06d}"
