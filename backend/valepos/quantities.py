# Overview: Decimal quantity and integer money helpers shared by models and services.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

QUANTITY_STEP = Decimal("0.01")
ZERO = Decimal("0.00")


def to_quantity(value) -> Decimal:
    """
    Normalize a quantity (meters, rolls, units) to a 2-decimal Decimal.

    Floats go through str() so 0.1 stays 0.10 instead of 0.1000000000000000055.
    Raises ValueError on anything that is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("quantity must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        d = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("quantity must be a number") from exc
    if not d.is_finite():
        raise ValueError("quantity must be finite")
    return d.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def round_money(value) -> int:
    """Round to whole currency units, half-up (CLP has no minor unit)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quantity_str(value) -> str | None:
    if value is None:
        return None
    return str(to_quantity(value))
