# Overview: Vale lifecycle states and the allowed transitions between them.

from __future__ import annotations

from datetime import datetime

from ..errors import InvalidStateTransition
from ..models import Order
from valepos.time_utils import utcnow

STATE_DRAFT = "draft"
STATE_PENDING = "pending"
STATE_VOUCHER_PENDING = "voucher_pending"
STATE_PROCESSING = "processing_at_register"
STATE_PAID_AWAITING_DATA = "paid_awaiting_data"
STATE_COMPLETED = "completed"
STATE_CANCELLED = "cancelled"

ALL_STATES = (
    STATE_DRAFT,
    STATE_PENDING,
    STATE_VOUCHER_PENDING,
    STATE_PROCESSING,
    STATE_PAID_AWAITING_DATA,
    STATE_COMPLETED,
    STATE_CANCELLED,
)

TERMINAL_STATES = frozenset({STATE_COMPLETED, STATE_CANCELLED})

# States a cashier may pick up at the register
CLAIMABLE_STATES = frozenset({STATE_VOUCHER_PENDING, STATE_PROCESSING})

TRANSITIONS = {
    STATE_DRAFT: {STATE_PENDING, STATE_VOUCHER_PENDING, STATE_CANCELLED},
    STATE_PENDING: {STATE_VOUCHER_PENDING, STATE_CANCELLED},
    STATE_VOUCHER_PENDING: {STATE_PROCESSING, STATE_CANCELLED},
    STATE_PROCESSING: {
        STATE_PROCESSING,
        STATE_COMPLETED,
        STATE_VOUCHER_PENDING,
        STATE_PAID_AWAITING_DATA,
        STATE_CANCELLED,
    },
    STATE_PAID_AWAITING_DATA: {STATE_COMPLETED, STATE_CANCELLED},
    STATE_COMPLETED: set(),
    STATE_CANCELLED: set(),
}


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def can_transition(from_state: str, to_state: str) -> bool:
    return to_state in TRANSITIONS.get(from_state, set())


def transition(order: Order, to_state: str, *, now: datetime | None = None) -> Order:
    """
    Move order to to_state or raise InvalidStateTransition.

    Leaving processing_at_register (other than to itself) clears the lock
    fields. Caller holds the row lock and owns the transaction.
    """
    from_state = order.state
    if not can_transition(from_state, to_state):
        raise InvalidStateTransition(
            f"Cannot move vale from {from_state} to {to_state}",
            {"voucher_number": order.number, "from": from_state, "to": to_state},
        )

    now = now or utcnow()
    order.state = to_state
    order.updated_at = now
    if to_state != STATE_PROCESSING:
        order.locked_by = None
        order.locked_at = None
    return order


def claim(order: Order, cashier_id: int, *, now: datetime | None = None) -> Order:
    """Mark order as being processed by cashier_id (also refreshes a held lock)."""
    now = now or utcnow()
    transition(order, STATE_PROCESSING, now=now)
    order.locked_by = cashier_id
    order.locked_at = now
    return order
