from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

# All monetary values are carried with 8 fractional digits.
MONEY_SCALE = 8
PERCENT_SCALE = 4
# Exclusive upper bound of a NUMERIC(20, 8) column.
MONEY_LIMIT = Decimal(10) ** (20 - MONEY_SCALE)

_QUANTS = {
    MONEY_SCALE: Decimal(1).scaleb(-MONEY_SCALE),
    PERCENT_SCALE: Decimal(1).scaleb(-PERCENT_SCALE),
}


def quantum(scale: int = MONEY_SCALE) -> Decimal:
    q = _QUANTS.get(scale)
    if q is None:
        q = Decimal(1).scaleb(-scale)
    return q


def to_decimal(v: Any) -> Decimal:
    """Parse a number or numeric string into a finite Decimal.

    Floats go through `str()` so 0.1 becomes Decimal("0.1") rather than its
    binary expansion. Raises ValueError for NaN/Infinity/garbage.
    """
    if isinstance(v, Decimal):
        d = v
    elif isinstance(v, bool):
        raise ValueError(f"not a number: {v!r}")
    elif isinstance(v, (int, float, str)):
        try:
            d = Decimal(str(v).strip())
        except InvalidOperation:
            raise ValueError(f"not a number: {v!r}") from None
    else:
        raise ValueError(f"not a number: {v!r}")
    if not d.is_finite():
        raise ValueError(f"not a finite number: {v!r}")
    return d


def to_money(v: Any, scale: int = MONEY_SCALE, rounding: str = ROUND_HALF_EVEN) -> Decimal:
    return to_decimal(v).quantize(quantum(scale), rounding=rounding)


def money_str(v: Decimal | None, scale: int = MONEY_SCALE) -> str | None:
    """Fixed-point text form used on the wire (no exponent)."""
    if v is None:
        return None
    return format(to_money(v, scale), "f")
