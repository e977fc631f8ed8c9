from __future__ import annotations

from ..extensions import db
from valepos.time_utils import to_utc_z


class Sale(db.Model):
    """
    Committed sale produced by finalizing exactly one vale.

    WHY the unique order_id: a vale can be finalized at most once, even when
    two cashiers race. The loser's INSERT fails on this constraint if it ever
    gets past the order lock.

    Immutable once written, except for is_cancelled (+ its audit fields).
    Customer fields are a snapshot taken at finalize time.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_sales_order"),
        db.UniqueConstraint("sale_number", name="uq_sales_number"),
        db.Index("ix_sales_shift", "shift_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # "VT20250602-0001"
    sale_number = db.Column(db.String(32), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=True)
    cashier_id = db.Column(db.Integer, nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    document_type = db.Column(db.String(16), nullable=False)

    # Integer currency units
    subtotal = db.Column(db.Integer, nullable=False)
    discount = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False)
    payments_total = db.Column(db.Integer, nullable=False)
    change = db.Column(db.Integer, nullable=False, default=0)

    # Customer snapshot
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    customer_tax_id = db.Column(db.String(16), nullable=True)
    customer_legal_name = db.Column(db.String(255), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "order_id": self.order_id,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "warehouse_id": self.warehouse_id,
            "document_type": self.document_type,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "total": self.total,
            "payments_total": self.payments_total,
            "change": self.change,
            "customer_id": self.customer_id,
            "customer_tax_id": self.customer_tax_id,
            "customer_legal_name": self.customer_legal_name,
            "customer_name": self.customer_name,
            "is_cancelled": self.is_cancelled,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Tender applied to a sale.

    METHODS:
    - cash: may exceed what is owed; the excess is change_given
    - debit_card / credit_card / transfer: exact amounts only

    Split payments are several rows for the same sale.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    change_given = db.Column(db.Integer, nullable=False, default=0)

    # Card voucher / transfer id
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount": self.amount,
            "change_given": self.change_given,
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }
