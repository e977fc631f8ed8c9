# Overview: Input coercion helpers shared by routes and services.

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from .errors import ValidationError
from valepos.quantities import ZERO, to_quantity

# Maximum amount: 999,999,999 CLP
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT = 999_999_999


def coerce_int(value: Any, name: str) -> int:
    """
    Strict integer coercion.

    Rejects booleans, floats, decimals and scientific notation so "12.5" or
    "1e3" never silently become 12 or 1000.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer", {"field": name})
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)", {"field": name})
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)", {"field": name})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", {"field": name})
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal", {"field": name})
    raise ValidationError(f"{name} must be an integer", {"field": name})


def require_int(payload: dict, name: str) -> int:
    if payload.get(name) is None:
        raise ValidationError(f"{name} is required", {"field": name})
    return coerce_int(payload[name], name)


def optional_int(payload: dict, name: str) -> int | None:
    value = payload.get(name)
    if value is None or value == "":
        return None
    return coerce_int(value, name)


def require_amount(value: Any, name: str, *, allow_zero: bool = False) -> int:
    """Integer currency amount within range."""
    amount = coerce_int(value, name)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}", {"field": name, "value": amount})
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT}", {"field": name, "value": amount})
    return amount


def require_quantity(value: Any, name: str = "quantity") -> Decimal:
    if value is None:
        raise ValidationError(f"{name} is required", {"field": name})
    try:
        q = to_quantity(value)
    except ValueError:
        raise ValidationError(f"{name} must be a number", {"field": name})
    if q <= ZERO:
        raise ValidationError(f"{name} must be > 0", {"field": name, "value": str(q)})
    return q


def require_choice(value: Any, name: str, choices: Iterable[str]) -> str:
    choices = tuple(choices)
    if value not in choices:
        raise ValidationError(
            f"{name} must be one of: {', '.join(choices)}",
            {"field": name, "value": value, "allowed": list(choices)},
        )
    return value


def require_text(payload: dict, name: str, *, max_length: int = 255) -> str:
    value = payload.get(name)
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required", {"field": name})
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}", {"field": name})
    return value


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
