import hashlib
import logging
from typing import Dict, List, Optional

from .exceptions import PaymentProcessorError
from .processor import CHARGE_SUCCEEDED, Charge, PaymentMethodLookup, SetupIntent

logger = logging.getLogger(__name__)


def _mock_id(prefix: str, seed: str) -> str:
    return f"{prefix}_mock_{hashlib.sha256(seed.encode()).hexdigest()[:16]}"


class MockPaymentProcessor:
    """
    Payment processor used when Stripe is not configured.

    Every email resolves to a customer with a card on file and every charge
    succeeds.  Charges are remembered per idempotency key, so a retried charge
    returns the original result instead of charging twice.
    """

    def __init__(self):
        self.charges: Dict[str, Charge] = {}
        self.charge_attempts: List[str] = []

    async def find_payment_method(self, email: str) -> PaymentMethodLookup:
        return PaymentMethodLookup(
            customer_id=_mock_id("cus", email.lower()),
            payment_method_id=_mock_id("pm", email.lower()),
        )

    async def find_or_create_customer(self, email: str, user_id: Optional[str] = None) -> str:
        return _mock_id("cus", email.lower())

    async def create_setup_intent(self, customer_id: str) -> SetupIntent:
        intent_id = _mock_id("seti", customer_id)
        return SetupIntent(id=intent_id, client_secret=f"mock_secret_{intent_id}", customer_id=customer_id)

    async def create_charge(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Charge:
        self.charge_attempts.append(idempotency_key)
        existing = self.charges.get(idempotency_key)
        if existing is not None:
            return existing

        charge = Charge(
            id=_mock_id("pi", idempotency_key),
            status=CHARGE_SUCCEEDED,
            amount=amount,
            currency=currency,
            metadata=metadata or {},
        )
        self.charges[idempotency_key] = charge
        logger.info(f"Mock mode: charged {amount} {currency} to {customer_id} as {charge.id}")
        return charge

    async def get_charge(self, charge_id: str) -> Charge:
        for charge in self.charges.values():
            if charge.id == charge_id:
                return charge
        raise PaymentProcessorError(f"No such payment: {charge_id}", code="resource_missing")
