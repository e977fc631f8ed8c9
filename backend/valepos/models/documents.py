from __future__ import annotations

from ..extensions import db
from valepos.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic day-scoped counters for vale and sale numbers.

    WHY: number generation must not race. The row is advanced with a single
    UPDATE ... SET next_value = next_value + 1 (reset when period changes),
    so the database serializes concurrent callers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_key", name="uq_document_sequences_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # "order" | "sale"
    sequence_key = db.Column(db.String(32), nullable=False)
    # YYYYMMDD the counter belongs to
    period = db.Column(db.String(8), nullable=False)
    next_value = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_key": self.sequence_key,
            "period": self.period,
            "next_value": self.next_value,
            "updated_at": to_utc_z(self.updated_at),
        }
