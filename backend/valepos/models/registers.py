from __future__ import annotations

from ..extensions import db
from valepos.time_utils import to_utc_z


class CashierShift(db.Model):
    """
    Cashier's till session (turno).

    At most one open shift per cashier. Sales finalized while a shift is open
    are attached to it; theoretical cash is derived from those sales, never
    stored until the shift is closed.
    """
    __tablename__ = "cashier_shifts"
    __table_args__ = (
        db.Index("ix_cashier_shifts_cashier_status", "cashier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_code = db.Column(db.String(32), nullable=False)
    cashier_id = db.Column(db.Integer, nullable=False)

    # open | closed
    status = db.Column(db.String(16), nullable=False, default="open")

    # Integer currency units
    opening_cash = db.Column(db.Integer, nullable=False, default=0)
    closing_cash = db.Column(db.Integer, nullable=True)
    expected_cash = db.Column(db.Integer, nullable=True)
    variance = db.Column(db.Integer, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_code": self.register_code,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "opening_cash": self.opening_cash,
            "closing_cash": self.closing_cash,
            "expected_cash": self.expected_cash,
            "variance": self.variance,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
        }
