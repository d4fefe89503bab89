"""
Typed failures raised by auction operations.

Three families, so callers can decide how to react without string matching:

- ``ValidationError``: the request can never succeed as sent (bad amount,
  listing not live, ...).  Reported to the caller, not logged as a fault.
- ``GatingError``: the caller must do something first (add a card, present the
  right secret).
- ``TransientError``: the same request may succeed if retried.
"""

from typing import Optional


class AuctionError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(AuctionError):
    pass


class ListingNotFoundError(ValidationError):
    def __init__(self, listing_id: str):
        super().__init__(f"Listing {listing_id} not found")
        self.listing_id = listing_id


class ListingNotLiveError(ValidationError):
    def __init__(self, listing_id: str, status: str):
        super().__init__(f"Listing {listing_id} is not live (status: {status})")
        self.listing_id = listing_id
        self.status = status


class AuctionEndedError(ValidationError):
    def __init__(self, listing_id: str):
        super().__init__(f"Auction for listing {listing_id} has ended")
        self.listing_id = listing_id


class InvalidBidAmountError(ValidationError):
    def __init__(self, amount: object, requirement: str = "a positive number"):
        super().__init__(f"Bid amount must be {requirement}, got {amount!r}")
        self.amount = amount


class BidTooLowError(ValidationError):
    def __init__(self, amount: float, minimum_bid: float):
        super().__init__(f"Bid of {amount:g} is too low; the minimum bid is {minimum_bid:g}")
        self.amount = amount
        self.minimum_bid = minimum_bid


class SettlementError(ValidationError):
    pass


class ListingAlreadySoldError(ValidationError):
    def __init__(self, listing_id: str):
        super().__init__(f"Listing {listing_id} has already been sold")
        self.listing_id = listing_id


class BuyNowUnavailableError(ValidationError):
    def __init__(self, listing_id: str):
        super().__init__(f"Listing {listing_id} does not have a buy-now price")
        self.listing_id = listing_id


class PaymentVerificationError(ValidationError):
    """A payment presented as settling a purchase does not match it."""

    def __init__(self, payment_id: str, reason: str):
        super().__init__(f"Payment {payment_id} cannot be used for this purchase: {reason}")
        self.payment_id = payment_id
        self.reason = reason


# ---------------------------------------------------------------------------
# Gating
# ---------------------------------------------------------------------------

class GatingError(AuctionError):
    pass


class PaymentMethodRequiredError(GatingError):
    def __init__(self, email: str):
        super().__init__("A saved payment method is required before bidding")
        self.email = email


class CronSecretNotConfiguredError(GatingError):
    def __init__(self):
        super().__init__("Auction scheduler secret is not configured")


class CronSecretInvalidError(GatingError):
    def __init__(self):
        super().__init__("Invalid auction scheduler secret")


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------

class TransientError(AuctionError):
    pass


class ConcurrentUpdateError(TransientError):
    def __init__(self, listing_id: str, attempts: int):
        super().__init__(f"Listing {listing_id} is being updated concurrently; please retry")
        self.listing_id = listing_id
        self.attempts = attempts


class StoreUnavailableError(TransientError):
    pass


class PaymentTimeoutError(TransientError):
    def __init__(self, message: str = "Payment processor did not respond in time", detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail
