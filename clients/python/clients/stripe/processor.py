from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

# Statuses a confirmed PaymentIntent may report; only "succeeded" means funds were captured.
CHARGE_SUCCEEDED = "succeeded"


@dataclass
class PaymentMethodLookup:
    customer_id: Optional[str] = None
    payment_method_id: Optional[str] = None

    @property
    def has_payment_method(self) -> bool:
        return self.payment_method_id is not None


@dataclass
class Charge:
    id: str
    status: str
    amount: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == CHARGE_SUCCEEDED


@dataclass
class SetupIntent:
    id: str
    client_secret: str
    customer_id: str


class PaymentProcessor(Protocol):
    async def find_payment_method(self, email: str) -> PaymentMethodLookup:
        """Find a customer registered under ``email`` that has a card on file."""
        ...

    async def find_or_create_customer(self, email: str, user_id: Optional[str] = None) -> str:
        ...

    async def create_setup_intent(self, customer_id: str) -> SetupIntent:
        ...

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
        """Create and confirm an off-session charge; ``amount`` is in minor units."""
        ...

    async def get_charge(self, charge_id: str) -> Charge:
        """Fetch a payment the customer confirmed in the browser, e.g. for a buy-now purchase."""
        ...
