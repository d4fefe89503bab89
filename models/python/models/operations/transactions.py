import logging
from datetime import datetime
from typing import Optional

from clients.couchbase import DocumentExistsError, DocumentStore, StoreTimeoutError

from models.entities.couchbase.transactions import Transaction, TransactionData, transaction_key
from models.operations.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


async def transaction_get_for_listing(store: DocumentStore, listing_id: str) -> Optional[Transaction]:
    try:
        return await Transaction.get(store, transaction_key(listing_id))
    except StoreTimeoutError as e:
        raise StoreUnavailableError(f"Timed out reading transaction for listing {listing_id}") from e


async def transaction_create_once(
    store: DocumentStore,
    data: TransactionData,
    now: datetime,
) -> tuple[Transaction, bool]:
    """
    Create the listing's single transaction.

    Returns ``(transaction, created)``; when another writer got there first the
    stored transaction is returned unchanged with ``created=False``.
    """
    key = transaction_key(data.listing_id)
    try:
        txn = await Transaction.create(store, data, key=key, user_id=data.buyer_id, now=now)
        logger.info(f"Transaction {key} created: sale_price={data.sale_price}, payment_status={data.payment_status}")
        return txn, True
    except DocumentExistsError:
        existing = await transaction_get_for_listing(store, data.listing_id)
        if existing is None:
            raise StoreUnavailableError(f"Transaction {key} exists but could not be read")
        logger.info(f"Transaction {key} already exists; keeping the stored one")
        return existing, False
    except StoreTimeoutError as e:
        raise StoreUnavailableError(f"Timed out creating transaction {key}") from e
