# Overview: Service-layer operations for customers; tax id normalization and invoice data requirements.

from __future__ import annotations

import re

from ..extensions import db
from ..errors import MissingCustomerData, ValidationError
from ..models import Customer
from valepos.time_utils import utcnow

# Only invoices carry IVA and need the buyer identified
DOCUMENT_TYPES_REQUIRING_CUSTOMER = frozenset({"invoice"})

_TAX_ID_RE = re.compile(r"^\d{1,9}-[\dK]$")

CUSTOMER_FIELDS = ("tax_id", "legal_name", "name", "phone", "email", "address")


def normalize_tax_id(raw: str | None) -> str | None:
    """
    "12.345.678-9" / "123456789" / " 12345678-k " -> "12345678-9" style.

    Returns None for blank input, raises ValidationError for malformed ids.
    """
    if raw is None:
        return None
    value = re.sub(r"[.\s]", "", str(raw)).upper()
    if not value:
        return None
    if "-" not in value and len(value) > 1:
        value = f"{value[:-1]}-{value[-1]}"
    if not _TAX_ID_RE.match(value):
        raise ValidationError("Invalid tax id", {"tax_id": raw})
    return value


def _clean(data: dict | None) -> dict:
    if not data:
        return {}
    cleaned = {}
    for key in CUSTOMER_FIELDS:
        value = data.get(key)
        if isinstance(value, str):
            value = value.strip() or None
        if value is not None:
            cleaned[key] = value
    if "tax_id" in cleaned:
        cleaned["tax_id"] = normalize_tax_id(cleaned["tax_id"])
    return cleaned


def _find_by_tax_id(tax_id: str | None) -> Customer | None:
    if not tax_id:
        return None
    return db.session.query(Customer).filter_by(tax_id=tax_id).first()


def requires_customer(document_type: str) -> bool:
    return document_type in DOCUMENT_TYPES_REQUIRING_CUSTOMER


def check_customer_requirements(document_type: str, overrides: dict | None, customer_id: int | None) -> None:
    """
    Raise MissingCustomerData when document_type needs a complete customer
    and neither overrides nor the vale's customer provide one. Read only.
    """
    if not requires_customer(document_type):
        return

    data = _clean(overrides)
    if data.get("tax_id"):
        if data.get("legal_name"):
            return
        existing = _find_by_tax_id(data["tax_id"])
        if existing is not None and existing.legal_name:
            return
        raise MissingCustomerData(
            "Invoice requires the customer's legal name",
            {"document_type": document_type, "tax_id": data["tax_id"]},
        )

    if customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=customer_id).first()
        if customer is not None and customer.data_complete:
            return

    raise MissingCustomerData(
        "Invoice requires customer tax id and legal name",
        {"document_type": document_type, "missing": ["tax_id", "legal_name"]},
    )


def resolve_customer(overrides: dict | None, customer_id: int | None = None) -> Customer | None:
    """
    Find or create the customer described by overrides (matched on tax id),
    filling blank fields from overrides. Falls back to customer_id.
    Runs inside the caller's transaction.
    """
    data = _clean(overrides)
    tax_id = data.get("tax_id")

    if tax_id:
        customer = _find_by_tax_id(tax_id)
        now = utcnow()
        if customer is None:
            customer = Customer(created_at=now, **data)
            db.session.add(customer)
        else:
            for key, value in data.items():
                if key != "tax_id":
                    setattr(customer, key, value)
        customer.data_complete = bool(customer.tax_id and customer.legal_name)
        customer.updated_at = now
        db.session.flush()
        return customer

    if customer_id is not None:
        return db.session.query(Customer).filter_by(id=customer_id).first()

    return None
