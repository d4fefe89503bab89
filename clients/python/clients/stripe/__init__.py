from .exceptions import PaymentDeclinedError, PaymentProcessorError, PaymentTimeoutError
from .processor import CHARGE_SUCCEEDED, Charge, PaymentMethodLookup, PaymentProcessor, SetupIntent
from .client import StripePaymentProcessor
from .mock import MockPaymentProcessor
