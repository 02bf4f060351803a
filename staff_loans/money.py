"""
Money Helpers Module

Decimal handling for loan amounts. All amounts are kept to cents with
ROUND_HALF_UP. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

Numeric = Union[Decimal, int, str, float]


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a number or numeric string to Decimal

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {value!r} to Decimal")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Cannot convert {value!r} to Decimal")


def round_money(value: Numeric) -> Decimal:
    """Round to cents"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

