"""Maps auction errors onto HTTP responses."""

from typing import Any, Dict, Tuple, Type

from fastapi import HTTPException, status

from models.operations import errors
from utils import log

logger = log.get_logger(__name__)

# Most specific first; the first matching class wins.
ERROR_STATUS: Tuple[Tuple[Type[errors.AuctionError], int, str], ...] = (
    (errors.ListingNotFoundError, status.HTTP_404_NOT_FOUND, "listing_not_found"),
    (errors.ListingNotLiveError, status.HTTP_400_BAD_REQUEST, "listing_not_live"),
    (errors.AuctionEndedError, status.HTTP_400_BAD_REQUEST, "auction_ended"),
    (errors.InvalidBidAmountError, status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_bid_amount"),
    (errors.BidTooLowError, status.HTTP_400_BAD_REQUEST, "bid_too_low"),
    (errors.SettlementError, status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_settlement"),
    (errors.ListingAlreadySoldError, status.HTTP_409_CONFLICT, "listing_already_sold"),
    (errors.BuyNowUnavailableError, status.HTTP_400_BAD_REQUEST, "buy_now_unavailable"),
    (errors.PaymentVerificationError, status.HTTP_400_BAD_REQUEST, "payment_mismatch"),
    (errors.PaymentMethodRequiredError, status.HTTP_402_PAYMENT_REQUIRED, "payment_method_required"),
    (errors.CronSecretNotConfiguredError, status.HTTP_503_SERVICE_UNAVAILABLE, "cron_secret_not_configured"),
    (errors.CronSecretInvalidError, status.HTTP_403_FORBIDDEN, "forbidden"),
    (errors.ConcurrentUpdateError, status.HTTP_409_CONFLICT, "concurrent_update"),
    (errors.StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable"),
    (errors.PaymentTimeoutError, status.HTTP_503_SERVICE_UNAVAILABLE, "payment_timeout"),
    (errors.ValidationError, status.HTTP_400_BAD_REQUEST, "invalid_request"),
    (errors.GatingError, status.HTTP_403_FORBIDDEN, "forbidden"),
    (errors.TransientError, status.HTTP_503_SERVICE_UNAVAILABLE, "unavailable"),
)


def http_error(e: errors.AuctionError) -> HTTPException:
    status_code, code = status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"
    for cls, mapped_status, mapped_code in ERROR_STATUS:
        if isinstance(e, cls):
            status_code, code = mapped_status, mapped_code
            break

    detail: Dict[str, Any] = {"error": code, "message": e.message}
    if isinstance(e, errors.BidTooLowError):
        detail["minimum_bid"] = e.minimum_bid
    if isinstance(e, errors.TransientError):
        logger.warning(f"Transient failure ({code}): {e.message}")

    headers = {"Retry-After": "1"} if isinstance(e, errors.TransientError) else None
    return HTTPException(status_code=status_code, detail=detail, headers=headers)
