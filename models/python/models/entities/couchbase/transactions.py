from typing import ClassVar, Literal, Optional

from clients.couchbase import BaseModelCouchbase, BaseCouchbaseEntityData


class TransactionData(BaseCouchbaseEntityData):
    listing_id: str
    listing_title: str
    source: Literal["auction", "manual", "buy_now"] = "auction"

    seller_id: str
    seller_email: Optional[str] = None
    buyer_id: Optional[str] = None
    buyer_email: str

    # Settlement figures, whole currency units
    sale_price: int
    commission_rate: float
    commission_amount: int
    listing_fee_applied: int
    seller_payout: int

    # Processor charge, minor units
    amount_charged: Optional[int] = None
    currency: Optional[str] = None
    charge_id: Optional[str] = None

    payment_status: Literal["pending", "paid"] = "pending"
    transaction_status: Literal["dispatch_pending", "receipt_pending", "complete"] = "dispatch_pending"


class Transaction(BaseModelCouchbase[TransactionData]):
    _collection_name: ClassVar[str] = "transactions"


def transaction_key(listing_id: str) -> str:
    """One transaction per listing; a second insert under this key is rejected."""
    return f"txn::{listing_id}"
