# Overview: Service-layer operations for document numbers; atomic day-scoped counters for vales and sales.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import SequenceGenerationFailed
from ..models import DocumentSequence
from valepos.time_utils import period_key, utcnow

ORDER_SEQUENCE = "order"
SALE_SEQUENCE = "sale"

ORDER_PREFIX = "VP"
SALE_PREFIX = "VT"


def next_value(sequence_key: str, *, now: datetime | None = None) -> tuple[str, int]:
    """
    Atomically allocate the next value of sequence_key for today's period.

    Returns (period, value). The counter restarts at 1 when the period
    changes. Runs inside the caller's transaction; the UPDATE takes the row
    lock so concurrent callers serialize on it.

    Raises SequenceGenerationFailed if the counter cannot be advanced.
    """
    period = period_key(now or utcnow())

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.sequence_key == sequence_key)
        .values(
            next_value=case(
                (DocumentSequence.period == period, DocumentSequence.next_value + 1),
                else_=2,
            ),
            period=period,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    try:
        result = db.session.execute(stmt)
        if result.rowcount:
            current = (
                db.session.query(DocumentSequence.next_value)
                .filter_by(sequence_key=sequence_key)
                .scalar()
            )
            return period, current - 1

        # First use of this key: create the row. A concurrent creator wins the
        # unique constraint; retry the UPDATE under a savepoint in that case.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(sequence_key=sequence_key, period=period, next_value=2))
            return period, 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise SequenceGenerationFailed(
                    "Could not allocate document number",
                    {"sequence_key": sequence_key},
                )
            current = (
                db.session.query(DocumentSequence.next_value)
                .filter_by(sequence_key=sequence_key)
                .scalar()
            )
            return period, current - 1
    except SQLAlchemyError as exc:
        raise SequenceGenerationFailed(
            "Could not allocate document number",
            {"sequence_key": sequence_key, "cause": exc.__class__.__name__},
        ) from exc


def format_number(prefix: str, period: str, value: int) -> str:
    return f"{prefix}{period}-{value:04d}"


def next_order_number(*, now: datetime | None = None) -> tuple[str, int]:
    """Vale number and its daily sequence, e.g. ("VP20250602-0001", 1)."""
    period, value = next_value(ORDER_SEQUENCE, now=now)
    return format_number(ORDER_PREFIX, period, value), value


def next_sale_number(*, now: datetime | None = None) -> str:
    """Sale number, e.g. VT20250602-0001."""
    period, value = next_value(SALE_SEQUENCE, now=now)
    return format_number(SALE_PREFIX, period, value)
