"""
Monetary precision helpers.

Money is always a Decimal. Amounts are quantized to cents with
ROUND_HALF_UP (so 0.825 becomes 0.83, the way a guest check prints it);
tax rates keep six decimal places.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Union

CENT = Decimal("0.01")
RATE_PRECISION = Decimal("0.000001")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, str, float]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert a value to Decimal without passing through binary floats.

    None becomes zero. Floats are converted via their string form.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a decimal amount: {value!r}")


def quantize_money(value: Optional[Number]) -> Decimal:
    """Round an amount to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value: Optional[Number]) -> Decimal:
    """Round a tax rate to six decimal places."""
    return to_decimal(value).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Optional[Number]]) -> Decimal:
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return total


def modifier_total(modifiers: Optional[Iterable[dict]]) -> Decimal:
    """Sum the price deltas of a line item's modifiers."""
    return money_sum((m or {}).get("price_delta") for m in (modifiers or []))
