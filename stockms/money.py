# Overview: Decimal helpers for quantities, prices and values.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


TWO_PLACES = Decimal("0.01")
FOUR_PLACES = Decimal("0.0001")
ZERO = Decimal("0")


def to_decimal(value, field: str = "value") -> Decimal:
    """
    Coerce JSON input (int, float, numeric string) or a DB Numeric to Decimal.

    Floats go through str() so 12.1 stays 12.1 instead of its binary expansion.
    Raises ValueError for bools, NaN/Infinity and anything non-numeric.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"{field} must be a number")
    else:
        raise ValueError(f"{field} must be a number")

    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def round2(value) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def round4(value) -> Decimal:
    return to_decimal(value).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)


def as_float(value) -> float | None:
    """JSON-friendly rendering of Numeric columns."""
    if value is None:
        return None
    return float(value)
