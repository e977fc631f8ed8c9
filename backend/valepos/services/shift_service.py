# Overview: Service-layer operations for cashier shifts; opening, closing and the theoretical cash total.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, ShiftError, ValidationError
from ..models import CashierShift, Payment, Sale
from .concurrency import lock_for_update, vale_transaction
from valepos.time_utils import utcnow

SHIFT_OPEN = "open"
SHIFT_CLOSED = "closed"


def get_open_shift(cashier_id: int) -> CashierShift | None:
    """The cashier's currently open shift, if any."""
    return (
        db.session.query(CashierShift)
        .filter_by(cashier_id=cashier_id, status=SHIFT_OPEN)
        .order_by(CashierShift.id.desc())
        .first()
    )


def open_shift(cashier_id: int, register_code: str, opening_cash: int) -> dict:
    """
    Open a new shift for a cashier.

    WHY: Each shift is a period of accountability for one cashier.
    Only one shift can be open per cashier at a time.

    Args:
        cashier_id: Cashier opening the shift
        register_code: Till identifier ("CAJA-01")
        opening_cash: Starting cash in drawer

    Raises:
        ShiftError: If the cashier already has an open shift
    """
    if not register_code or not str(register_code).strip():
        raise ValidationError("register_code is required", {"field": "register_code"})
    if opening_cash < 0:
        raise ValidationError("opening_cash must be >= 0", {"field": "opening_cash"})

    with vale_transaction():
        existing = get_open_shift(cashier_id)
        if existing:
            raise ShiftError(
                f"Cashier already has an open shift ({existing.id})",
                {"shift_id": existing.id, "cashier_id": cashier_id},
            )
        shift = CashierShift(
            register_code=str(register_code).strip(),
            cashier_id=cashier_id,
            status=SHIFT_OPEN,
            opening_cash=opening_cash,
            opened_at=utcnow(),
        )
        db.session.add(shift)
        db.session.flush()
        result = shift.to_dict()

    return result


def theoretical_cash_total(shift_id: int) -> int:
    """
    Cash the drawer should hold: opening cash plus cash taken minus change
    given, over the shift's non-cancelled sales.
    """
    shift = db.session.query(CashierShift).filter_by(id=shift_id).first()
    if shift is None:
        raise NotFoundError("Shift not found", {"shift_id": shift_id})

    cash_in = (
        db.session.query(func.coalesce(func.sum(Payment.amount - Payment.change_given), 0))
        .join(Sale, Sale.id == Payment.sale_id)
        .filter(
            Sale.shift_id == shift_id,
            Sale.is_cancelled.is_(False),
            Payment.method == "cash",
        )
        .scalar()
    )
    return int(shift.opening_cash or 0) + int(cash_in or 0)


def close_shift(
    shift_id: int,
    closing_cash: int,
    *,
    current_cashier_id: int | None = None,
    manager_override: bool = False,
) -> dict:
    """
    Close a shift and calculate cash variance against the theoretical total.

    IMMUTABLE: Once closed, a shift cannot be reopened.
    """
    if closing_cash < 0:
        raise ValidationError("closing_cash must be >= 0", {"field": "closing_cash"})

    with vale_transaction():
        shift = lock_for_update(db.session.query(CashierShift).filter_by(id=shift_id)).first()
        if not shift:
            raise NotFoundError("Shift not found", {"shift_id": shift_id})
        if shift.status != SHIFT_OPEN:
            raise ShiftError("Shift already closed", {"shift_id": shift_id})
        if current_cashier_id is not None and shift.cashier_id != current_cashier_id and not manager_override:
            raise ShiftError(
                "Only the shift owner can close this shift without manager approval",
                {"shift_id": shift_id},
            )

        expected = theoretical_cash_total(shift_id)
        shift.status = SHIFT_CLOSED
        shift.closed_at = utcnow()
        shift.closing_cash = closing_cash
        shift.expected_cash = expected
        shift.variance = closing_cash - expected
        db.session.flush()
        result = shift.to_dict()

    return result
