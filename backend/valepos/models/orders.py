from __future__ import annotations

from ..extensions import db
from valepos.quantities import quantity_str
from valepos.time_utils import to_utc_z


class Order(db.Model):
    """
    Vale: the salesperson's order waiting to be paid at the register.

    LIFECYCLE (see services.state_machine):
    draft -> pending -> voucher_pending -> processing_at_register -> completed
    any non-terminal state -> cancelled

    LOCK FIELDS:
    locked_by / locked_at record which cashier claimed the vale. The lock is
    considered stale when updated_at is older than VOUCHER_LOCK_STALE_SECONDS,
    so every mutation sets updated_at explicitly.

    Orders are never deleted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_orders_number"),
        db.Index("ix_orders_state_created", "state", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # "VP20250602-0001"
    number = db.Column(db.String(32), nullable=False)
    daily_sequence = db.Column(db.Integer, nullable=False)

    seller_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    # Integer currency units
    subtotal = db.Column(db.Integer, nullable=False, default=0)
    discount = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False, default=0)

    # ticket | receipt | invoice
    document_type = db.Column(db.String(16), nullable=False, default="ticket")
    state = db.Column(db.String(32), nullable=False, default="draft")

    reservation_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    locked_by = db.Column(db.Integer, nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.number!r} state={self.state!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "daily_sequence": self.daily_sequence,
            "seller_id": self.seller_id,
            "customer_id": self.customer_id,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "total": self.total,
            "document_type": self.document_type,
            "state": self.state,
            "reservation_expires_at": to_utc_z(self.reservation_expires_at),
            "locked_by": self.locked_by,
            "locked_at": to_utc_z(self.locked_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderLine(db.Model):
    """
    One variant on a vale.

    price_kind:
    - standard: list price of the modality
    - invoice: invoice price of the modality
    - custom: negotiated price; approver_id is mandatory

    subtotal == round_half_up(quantity * unit_price), computed by the service.
    """
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    price_modality_id = db.Column(db.Integer, db.ForeignKey("price_modalities.id"), nullable=True)

    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    price_kind = db.Column(db.String(16), nullable=False, default="standard")
    approver_id = db.Column(db.Integer, nullable=True)
    subtotal = db.Column(db.Integer, nullable=False)

    # Requested warehouse (optional when auto assignment is on)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "price_modality_id": self.price_modality_id,
            "quantity": quantity_str(self.quantity),
            "unit_price": self.unit_price,
            "price_kind": self.price_kind,
            "approver_id": self.approver_id,
            "subtotal": self.subtotal,
            "warehouse_id": self.warehouse_id,
        }
