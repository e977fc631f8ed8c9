# Overview: Service-layer operations for system settings; cached, typed access to stock and sale policies.

"""
Configuration provider.

WHY a component and not module globals: the cache has a lifetime (TTL) and
must be replaceable in tests (fake clock, preloaded values). create_app()
builds one provider per app and stores it in app.extensions; services receive
it as an argument or fetch it with get_configuration().

CACHE:
- entries expire ttl_seconds after they were loaded
- set(key, ...) invalidates only that key
- invalidate() with no key drops everything
"""

from __future__ import annotations

import dataclasses
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import SystemSetting
from valepos.time_utils import utcnow

EXTENSION_KEY = "valepos.config"

VALUE_TYPES = ("string", "number", "boolean", "json")

# key -> (value, value_type, category, description)
DEFAULT_SETTINGS = {
    "stock.allow_oversell": ("false", "boolean", "stock", "Allow selling beyond available stock"),
    "stock.auto_assign_warehouse": ("true", "boolean", "stock", "Pick warehouses automatically when a line has none"),
    "stock.warehouse_priority": ("most_stock", "string", "stock", "most_stock | warehouse_order"),
    "sale.create_reservation": ("true", "boolean", "sale", "Reserve stock when a vale is created"),
    "sale.reservation_timeout_minutes": ("60", "number", "sale", "Minutes a vale keeps its reservation"),
    "sale.validate_stock": ("true", "boolean", "sale", "Check availability before creating a vale"),
}

_MISSING = object()


@dataclass(frozen=True)
class StockPolicy:
    allow_oversell: bool
    warehouse_priority: str
    auto_assign_warehouse: bool


@dataclass(frozen=True)
class SalePolicy:
    create_reservation: bool
    reservation_timeout_minutes: int
    validate_stock: bool


def parse_value(raw: str | None, value_type: str) -> Any:
    """Convert stored text into its typed value."""
    if raw is None:
        return None
    if value_type == "boolean":
        return raw.strip().lower() == "true"
    if value_type == "number":
        try:
            number = float(raw)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    if value_type == "json":
        try:
            return json.loads(raw)
        except ValueError:
            return {}
    return raw


def serialize_value(value: Any, value_type: str) -> str:
    if value_type == "boolean":
        if isinstance(value, str):
            return "true" if value.strip().lower() == "true" else "false"
        return "true" if value else "false"
    if value_type == "json":
        if isinstance(value, str):
            return value
        return json.dumps(value)
    return str(value)


def infer_value_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (dict, list)):
        return "json"
    return "string"


class ConfigurationProvider:
    """TTL-cached, typed reader/writer of SystemSetting rows."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def _cached(self, key: str):
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return _MISSING
            value, loaded_at = entry
            if self._clock() - loaded_at >= self.ttl_seconds:
                del self._cache[key]
                return _MISSING
            return value

    def _store(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = (value, self._clock())

    def get(self, key: str, default: Any = None) -> Any:
        """
        Typed value for key.

        Falls back to the built-in default table, then to default. Inactive
        settings behave as missing.
        """
        value = self._cached(key)
        if value is not _MISSING:
            return default if value is None else value

        row = db.session.query(SystemSetting).filter_by(key=key, is_active=True).first()
        if row is not None:
            value = parse_value(row.value, row.value_type)
        elif key in DEFAULT_SETTINGS:
            raw, value_type, _category, _description = DEFAULT_SETTINGS[key]
            value = parse_value(raw, value_type)
        else:
            value = None

        self._store(key, value)
        return default if value is None else value

    def set(
        self,
        key: str,
        value: Any,
        *,
        description: str | None = None,
        value_type: str | None = None,
        category: str | None = None,
    ) -> SystemSetting:
        """Upsert key and invalidate its cache entry. Caller commits."""
        if not key or not isinstance(key, str):
            raise ValidationError("key is required")

        row = db.session.query(SystemSetting).filter_by(key=key).first()
        if value_type is None:
            if row is not None:
                value_type = row.value_type
            elif key in DEFAULT_SETTINGS:
                value_type = DEFAULT_SETTINGS[key][1]
            else:
                value_type = infer_value_type(value)
        if value_type not in VALUE_TYPES:
            raise ValidationError("Invalid value_type", {"value_type": value_type, "allowed": list(VALUE_TYPES)})

        raw = serialize_value(value, value_type)
        if value_type == "number" and parse_value(raw, "number") is None:
            raise ValidationError("Value must be numeric", {"key": key, "value": raw})

        if row is None:
            default = DEFAULT_SETTINGS.get(key)
            row = SystemSetting(
                key=key,
                value_type=value_type,
                category=category or (default[2] if default else key.split(".", 1)[0]),
                description=description or (default[3] if default else None),
                is_active=True,
            )
            db.session.add(row)
        else:
            if description is not None:
                row.description = description
            if category is not None:
                row.category = category
            row.value_type = value_type

        row.value = raw
        row.updated_at = utcnow()
        db.session.flush()

        self.invalidate(key)
        return row

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._cache.clear()
            else:
                self._cache.pop(key, None)

    def by_category(self, category: str) -> dict[str, Any]:
        """All active settings of a category, defaults included, uncached."""
        values = {
            key: parse_value(raw, value_type)
            for key, (raw, value_type, cat, _description) in DEFAULT_SETTINGS.items()
            if cat == category
        }
        rows = (
            db.session.query(SystemSetting)
            .filter_by(category=category, is_active=True)
            .order_by(SystemSetting.key.asc())
            .all()
        )
        for row in rows:
            values[row.key] = parse_value(row.value, row.value_type)
        return values

    def list_settings(self) -> list[dict]:
        """Persisted settings merged with built-in defaults not yet stored."""
        rows = db.session.query(SystemSetting).order_by(SystemSetting.key.asc()).all()
        result = {row.key: {**row.to_dict(), "parsed_value": parse_value(row.value, row.value_type)} for row in rows}
        for key, (raw, value_type, category, description) in DEFAULT_SETTINGS.items():
            if key in result:
                continue
            result[key] = {
                "id": None,
                "key": key,
                "value": raw,
                "value_type": value_type,
                "description": description,
                "category": category,
                "is_active": True,
                "updated_at": None,
                "parsed_value": parse_value(raw, value_type),
            }
        return [result[k] for k in sorted(result)]

    def stock_policy(self) -> StockPolicy:
        return StockPolicy(
            allow_oversell=bool(self.get("stock.allow_oversell", False)),
            warehouse_priority=str(self.get("stock.warehouse_priority", "most_stock")),
            auto_assign_warehouse=bool(self.get("stock.auto_assign_warehouse", True)),
        )

    def effective_stock_policy(self) -> StockPolicy:
        """Stock policy as applied to vales: sale.validate_stock off means oversell."""
        policy = self.stock_policy()
        if not policy.allow_oversell and not self.sale_policy().validate_stock:
            policy = dataclasses.replace(policy, allow_oversell=True)
        return policy

    def sale_policy(self) -> SalePolicy:
        timeout = self.get("sale.reservation_timeout_minutes", 60)
        try:
            timeout = int(timeout)
        except (TypeError, ValueError):
            timeout = 60
        return SalePolicy(
            create_reservation=bool(self.get("sale.create_reservation", True)),
            reservation_timeout_minutes=timeout,
            validate_stock=bool(self.get("sale.validate_stock", True)),
        )


def get_configuration() -> ConfigurationProvider:
    """Provider registered on the current app by create_app()."""
    return current_app.extensions[EXTENSION_KEY]
