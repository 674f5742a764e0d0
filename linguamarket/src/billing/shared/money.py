"""
Money helpers.

All amounts are Decimal quantized to cents with ROUND_HALF_UP. Stripe works
in minor units (cents).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal('0.01')

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Convert a number to a Decimal rounded half-up to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number) -> int:
    """Dollars to cents (e.g. 12.99 -> 1299)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Cents to dollars (e.g. 1299 -> 12.99)."""
    return to_money(Decimal(int(amount)) / 100)
