"""
Unit tests for the mapping of auction errors onto HTTP responses.
"""

import pytest

from models.operations import errors
from routes.errors import http_error


class TestErrorStatus:
    """Each error kind has a distinct status and code."""

    @pytest.mark.parametrize(
        "error, status_code, code",
        [
            (errors.ListingNotFoundError("l-1"), 404, "listing_not_found"),
            (errors.ListingNotLiveError("l-1", "queued"), 400, "listing_not_live"),
            (errors.AuctionEndedError("l-1"), 400, "auction_ended"),
            (errors.InvalidBidAmountError(-1), 422, "invalid_bid_amount"),
            (errors.BidTooLowError(105, 110), 400, "bid_too_low"),
            (errors.SettlementError("bad"), 422, "invalid_settlement"),
            (errors.ListingAlreadySoldError("l-1"), 409, "listing_already_sold"),
            (errors.BuyNowUnavailableError("l-1"), 400, "buy_now_unavailable"),
            (errors.PaymentVerificationError("pi_1", "amount differs"), 400, "payment_mismatch"),
            (errors.PaymentMethodRequiredError("a@example.com"), 402, "payment_method_required"),
            (errors.CronSecretNotConfiguredError(), 503, "cron_secret_not_configured"),
            (errors.CronSecretInvalidError(), 403, "forbidden"),
            (errors.ConcurrentUpdateError("l-1", 6), 409, "concurrent_update"),
            (errors.StoreUnavailableError("down"), 503, "store_unavailable"),
            (errors.PaymentTimeoutError(), 503, "payment_timeout"),
        ],
    )
    def test_mapping(self, error, status_code, code):
        exc = http_error(error)

        assert exc.status_code == status_code
        assert exc.detail["error"] == code
        assert exc.detail["message"] == error.message

    def test_family_fallbacks(self):
        assert http_error(errors.ValidationError("x")).status_code == 400
        assert http_error(errors.GatingError("x")).status_code == 403
        assert http_error(errors.TransientError("x")).status_code == 503

    def test_unknown_error_is_internal(self):
        exc = http_error(errors.AuctionError("x"))

        assert exc.status_code == 500
        assert exc.detail["error"] == "internal_error"


class TestErrorDetail:
    """Corrective details and retry hints."""

    def test_bid_too_low_carries_minimum(self):
        exc = http_error(errors.BidTooLowError(105, 110))

        assert exc.detail["minimum_bid"] == 110
        assert "110" in exc.detail["message"]

    def test_transient_errors_suggest_retry(self):
        exc = http_error(errors.ConcurrentUpdateError("l-1", 6))

        assert exc.headers == {"Retry-After": "1"}

    def test_validation_errors_have_no_retry_hint(self):
        assert http_error(errors.AuctionEndedError("l-1")).headers is None
