import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional

import stripe

from .exceptions import PaymentDeclinedError, PaymentProcessorError, PaymentTimeoutError
from .processor import Charge, PaymentMethodLookup, SetupIntent

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> Optional[str]:
    """Stripe returns either an id or an expanded object for references."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.id


class StripePaymentProcessor:
    """
    ``PaymentProcessor`` backed by the Stripe API.

    The Stripe SDK is synchronous; every call runs in the default executor and
    is bounded by ``timeout_seconds``.  A charge that times out may still have
    been created, which is why charges always carry an idempotency key.
    """

    def __init__(self, api_key: str, timeout_seconds: float = 20.0):
        if not api_key:
            raise ValueError("Stripe API key is required")
        self._api_key = api_key
        self._timeout = timeout_seconds

    async def _call(self, fn: Callable[..., Any], **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        call = functools.partial(fn, api_key=self._api_key, **kwargs)
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, call), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise PaymentTimeoutError(f"Stripe call timed out after {self._timeout}s") from e
        except stripe.CardError as e:
            body = (e.json_body or {}).get("error", {})
            intent = body.get("payment_intent") or {}
            raise PaymentDeclinedError(
                e.user_message or str(e),
                code=e.code,
                decline_code=body.get("decline_code"),
                intent_id=intent.get("id"),
                intent_status=intent.get("status"),
            ) from e
        except stripe.APIConnectionError as e:
            raise PaymentTimeoutError(f"Could not reach Stripe: {e}") from e
        except stripe.StripeError as e:
            raise PaymentProcessorError(e.user_message or str(e), code=e.code) from e

    async def _default_payment_method(self, customer: Any) -> Optional[str]:
        invoice_settings = getattr(customer, "invoice_settings", None)
        payment_method_id = _object_id(getattr(invoice_settings, "default_payment_method", None))
        if payment_method_id:
            return payment_method_id

        methods = await self._call(stripe.PaymentMethod.list, customer=customer.id, type="card", limit=1)
        if methods.data:
            return methods.data[0].id
        return None

    async def find_payment_method(self, email: str) -> PaymentMethodLookup:
        customers = await self._call(stripe.Customer.list, email=email, limit=10)
        for customer in customers.data:
            payment_method_id = await self._default_payment_method(customer)
            if payment_method_id:
                return PaymentMethodLookup(customer_id=customer.id, payment_method_id=payment_method_id)

        if customers.data:
            return PaymentMethodLookup(customer_id=customers.data[0].id)
        return PaymentMethodLookup()

    async def find_or_create_customer(self, email: str, user_id: Optional[str] = None) -> str:
        customers = await self._call(stripe.Customer.list, email=email, limit=1)
        if customers.data:
            return customers.data[0].id

        metadata = {"user_id": user_id} if user_id else {}
        customer = await self._call(stripe.Customer.create, email=email, metadata=metadata)
        logger.info(f"Created Stripe customer {customer.id} for {email}")
        return customer.id

    async def create_setup_intent(self, customer_id: str) -> SetupIntent:
        intent = await self._call(
            stripe.SetupIntent.create,
            customer=customer_id,
            payment_method_types=["card"],
            usage="off_session",
        )
        return SetupIntent(id=intent.id, client_secret=intent.client_secret, customer_id=customer_id)

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
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            customer=customer_id,
            payment_method=payment_method_id,
            off_session=True,
            confirm=True,
            description=description,
            metadata=metadata or {},
            idempotency_key=idempotency_key,
        )
        return Charge(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            metadata=metadata or {},
        )

    async def get_charge(self, charge_id: str) -> Charge:
        intent = await self._call(stripe.PaymentIntent.retrieve, id=charge_id)
        return Charge(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            metadata=dict(intent.metadata or {}),
        )
