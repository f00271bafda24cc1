"""Decimal money helpers. Amounts are kept as Decimal in memory and as strings on disk."""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional

from .constants import MONEY_PLACES

ZERO = Decimal("0.00")
_PLACES = Decimal(MONEY_PLACES)


def to_decimal(value, default: Optional[Decimal] = None) -> Decimal:
    """
    Convert a stored amount (str/int/float/Decimal) to Decimal.
    Floats go through str() so 0.1 stays 0.1.
    Raises ValueError when the value cannot be parsed and no default is given,
    and always for NaN or Infinity.
    """
    if value is None or value == "":
        if default is not None:
            return default
        raise ValueError("Missing amount")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            if default is not None:
                return default
            raise ValueError(f"Invalid amount: {value!r}")
    if not d.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return d


def round_half_up(amount: Decimal) -> Decimal:
    return amount.quantize(_PLACES, rounding=ROUND_HALF_UP)


def round_down(amount: Decimal) -> Decimal:
    return amount.quantize(_PLACES, rounding=ROUND_DOWN)


def money_str(amount: Decimal) -> str:
    """Format for storage, e.g. Decimal('12.5') -> '12.50'."""
    return str(round_half_up(amount))
