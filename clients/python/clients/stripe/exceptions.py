from typing import Optional


class PaymentProcessorError(Exception):
    """Base exception for payment processor calls."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class PaymentDeclinedError(PaymentProcessorError):
    """Raised when the processor refuses a charge (card declined, authentication required)."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        decline_code: Optional[str] = None,
        intent_id: Optional[str] = None,
        intent_status: Optional[str] = None,
    ):
        super().__init__(message, code)
        self.decline_code = decline_code
        self.intent_id = intent_id
        self.intent_status = intent_status


class PaymentTimeoutError(PaymentProcessorError):
    """Raised when the processor does not answer within the caller-side timeout."""
    pass
