from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Optional

from pydantic import BaseModel

from models.operations.errors import SettlementError

# (upper bound inclusive, commission percent)
COMMISSION_TIERS = (
    (4_999, 10),
    (9_999, 8),
    (24_999, 7),
    (49_999, 6),
)
TOP_TIER_RATE = 5


class Settlement(BaseModel):
    sale_price: int
    commission_rate: float
    commission_amount: int
    listing_fee_applied: int
    seller_payout: int


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def commission_rate_for(sale_price: int) -> int:
    for upper, rate in COMMISSION_TIERS:
        if sale_price <= upper:
            return rate
    return TOP_TIER_RATE


def _check_whole_amount(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SettlementError(f"{name} must be a whole number, got {value!r}")
    if value < 0:
        raise SettlementError(f"{name} must not be negative, got {value}")
    return value


def settle(sale_price: int, flat_fee: int = 0, commission_rate_override: Optional[float] = None) -> Settlement:
    """
    Split a sale price into platform commission and seller payout.

    The commission rate comes from the tier table unless a non-negative
    ``commission_rate_override`` (percent) is given.  The payout never goes
    below zero, even when the flat fee exceeds what is left after commission.
    """
    sale_price = _check_whole_amount("sale_price", sale_price)
    flat_fee = _check_whole_amount("flat_fee", flat_fee)

    if commission_rate_override is not None and (
        isinstance(commission_rate_override, bool) or not isinstance(commission_rate_override, Real)
    ):
        raise SettlementError(f"commission rate must be a number, got {commission_rate_override!r}")

    if commission_rate_override is not None and commission_rate_override >= 0:
        rate = commission_rate_override
    else:
        rate = commission_rate_for(sale_price)

    commission = round_half_up(Decimal(sale_price) * Decimal(str(rate)) / 100)
    payout = max(0, sale_price - commission - flat_fee)

    return Settlement(
        sale_price=sale_price,
        commission_rate=float(rate),
        commission_amount=commission,
        listing_fee_applied=flat_fee,
        seller_payout=payout,
    )


def whole_units(amount: float) -> object:
    """``amount`` as an int when it is whole; anything else is left for ``settle`` to reject."""
    if isinstance(amount, float) and amount.is_integer():
        return int(amount)
    return amount


def to_minor_units(amount: float) -> int:
    return round_half_up(Decimal(str(amount)) * 100)
