"""
Fixed-point helpers for aid amounts.

All amounts in the spending core are Decimal values with two-decimal
precision. Floats never enter the arithmetic.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")

AmountLike = Union[Decimal, int, float, str]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a user- or wire-supplied value to a two-decimal Decimal.

    Floats are converted through their shortest string repr so that 0.1
    becomes Decimal("0.10") rather than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not an amount: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not an amount: {value!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def from_base_units(value: Union[str, int], decimals: int) -> Decimal:
    """
    Convert a scaled integer amount (e.g. token wei) to decimal units.

    Args:
        value: Integer amount, or its decimal string, in base units
        decimals: Number of decimals the base unit is scaled by

    Returns:
        Two-decimal amount in canonical units
    """
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    try:
        raw = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a base-unit amount: {value!r}") from None
    return to_amount(raw.scaleb(-decimals))


def format_amount(amount: Decimal) -> str:
    """Render an amount with exactly two decimals."""
    return str(amount.quantize(CENT, rounding=ROUND_HALF_UP))
