"""
Amount Handling Module

Single-currency monetary amounts as Decimal rounded to two places.
NEVER uses float for monetary values: floats are converted through str().
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

AmountLike = Union[Decimal, int, float, str]


def to_amount(value: AmountLike) -> Decimal:
    """Convert to a Decimal amount rounded half-up to cents"""
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_amounts(values) -> Decimal:
    """Sum amounts exactly, starting from 0.00"""
    total = ZERO
    for value in values:
        total += value
    return total
