# Overview: Service-layer operations for concurrency; transaction scope and row locks for vale mutations.

"""
Concurrency control for vale mutations.

RULES:
- One database transaction per mutation (vale_transaction).
- The Order row is locked before any read of its mutable state (lock_order).
- Stock rows are locked with lock_for_update before their counters are read.
- There is no in-process mutex: two requests for the same vale are
  serialized by the database and the loser sees StaleLockConflict.
- Unexpected database errors propagate; they are never retried here.

NOTE: SQLite ignores SELECT ... FOR UPDATE. On SQLite the transaction is
opened with BEGIN IMMEDIATE, which takes the database write lock up front and
serializes writers the same way a row lock would.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import text

from ..extensions import db
from ..errors import OrderNotFound, StaleLockConflict
from ..models import Order
from valepos.time_utils import utcnow


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def vale_transaction():
    """
    Run the enclosed block as one write transaction.

    Any read-only work the caller did before entering (prechecks) is closed
    first so the write lock is taken on a fresh transaction. Commits on
    success; rolls back and re-raises on any exception.
    """
    if db.session().in_transaction():
        db.session.commit()
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def lock_order(number: str) -> Order:
    """Fetch the vale by number holding its row lock. Raises OrderNotFound."""
    order = (
        lock_for_update(db.session.query(Order).filter_by(number=number))
        .populate_existing()
        .first()
    )
    if order is None:
        raise OrderNotFound("Vale not found", {"voucher_number": number})
    return order


def stale_after() -> timedelta:
    return timedelta(seconds=int(current_app.config.get("VOUCHER_LOCK_STALE_SECONDS", 300)))


def is_lock_stale(order: Order, now: datetime | None = None) -> bool:
    """A processing vale whose last update is older than the stale window."""
    if order.updated_at is None:
        return True
    now = now or utcnow()
    updated_at = order.updated_at
    if updated_at.tzinfo is not None:
        updated_at = updated_at.replace(tzinfo=None) - (updated_at.utcoffset() or timedelta())
    return now - updated_at > stale_after()


def check_lock_staleness(order: Order, actor_id: int, now: datetime | None = None) -> bool:
    """
    Decide whether actor_id may claim (or keep working on) order.

    Returns True when the claim takes over a stale lock held by somebody
    else, False for a plain claim. Raises StaleLockConflict when another
    cashier holds a fresh lock or the vale is no longer claimable.

    Evaluated before taking the row lock (fast fail) and again after it.
    """
    if order.state == "voucher_pending":
        return False

    if order.state != "processing_at_register":
        raise StaleLockConflict(
            "Vale is no longer available for processing",
            {"voucher_number": order.number, "state": order.state},
        )

    if order.locked_by is None or order.locked_by == actor_id:
        return False

    if is_lock_stale(order, now):
        return True

    raise StaleLockConflict(
        "Vale is being processed by another cashier",
        {
            "voucher_number": order.number,
            "locked_by": order.locked_by,
            "stale_after_seconds": int(stale_after().total_seconds()),
        },
    )
