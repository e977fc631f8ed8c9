# Overview: Domain error taxonomy shared by the vale pipeline services and routes.

"""
Every expected, user-actionable outcome of the core is a ValeError subclass.

Each error carries:
- code: stable machine-readable identifier (used as the JSON "error" field)
- http_status: status code the routing layer responds with
- details: structured context (variant, warehouse, quantities, state...)

Anything that is NOT a ValeError is an unexpected failure: routes log it with
full context and answer with a generic 500 body.
"""

from __future__ import annotations


class ValeError(Exception):
    """Base class for expected domain failures."""

    code = "VALE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ValeError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ValeError):
    """Referenced warehouse, variant, shift or sale does not exist."""

    code = "NOT_FOUND"
    http_status = 404


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class InsufficientStock(ValeError):
    """Stock could not be reserved or committed."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409


class InvalidDiscount(ValeError):
    code = "INVALID_DISCOUNT"
    http_status = 400


class MissingCustomerData(ValeError):
    code = "MISSING_CUSTOMER_DATA"
    http_status = 400


class InvalidPayment(ValeError):
    code = "INVALID_PAYMENT"
    http_status = 400


class StaleLockConflict(ValeError):
    """Another actor holds (or already finished) the vale."""

    code = "STALE_LOCK_CONFLICT"
    http_status = 409


class InvalidStateTransition(ValeError):
    code = "INVALID_STATE_TRANSITION"
    http_status = 409


class SequenceGenerationFailed(ValeError):
    code = "SEQUENCE_GENERATION_FAILED"
    http_status = 503


class ShiftError(ValeError):
    code = "SHIFT_ERROR"
    http_status = 409


class ImmutableRecordError(RuntimeError):
    """Raised by ORM listeners when an append-only row is updated or deleted."""

    def __init__(self, entity: str, entity_id, operation: str):
        super().__init__(f"{entity} {entity_id} is immutable ({operation} blocked)")
        self.entity = entity
        self.entity_id = entity_id
        self.operation = operation
