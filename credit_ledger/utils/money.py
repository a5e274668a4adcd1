"""Fixed-point money helpers. Amounts are integer cents; rates are Decimal percentages."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Number = Union[int, str, Decimal]

CENT = Decimal("1")
HUNDRED = Decimal("100")


def quantize_cents(value: Decimal) -> int:
    """Round a fractional cent amount to whole cents (half up)"""
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP))


def percent_of(amount_cents: int, percent: Number) -> int:
    """amount * percent / 100, rounded to cents"""
    return quantize_cents(Decimal(amount_cents) * Decimal(str(percent)) / HUNDRED)


def dollars_to_cents(dollars: Number) -> int:
    return quantize_cents(Decimal(str(dollars)) * HUNDRED)


def cents_to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / HUNDRED).quantize(Decimal("0.01"))


def format_usd(cents: int) -> str:
    """Human-readable amount for activity descriptions, e.g. $1,045.00"""
    return f"${cents_to_dollars(abs(cents)):,}"
