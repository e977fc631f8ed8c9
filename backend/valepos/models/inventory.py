from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import ImmutableRecordError
from valepos.quantities import quantity_str
from valepos.time_utils import to_utc_z


class Warehouse(db.Model):
    """
    Physical (or virtual) stock location.

    Point-of-sale warehouses (the shop floor, "SALA") are the only candidates
    for automatic allocation. Back rooms (BOD01, BOD02) hold stock but are only
    reached by transfers or an explicit line warehouse.

    The single virtual warehouse absorbs oversold quantity when no real
    candidate exists; its available counter is the only one allowed to go
    negative.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_warehouses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)

    is_point_of_sale = db.Column(db.Boolean, nullable=False, default=False)
    is_virtual = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_point_of_sale": self.is_point_of_sale,
            "is_virtual": self.is_virtual,
            "is_active": self.is_active,
        }


class WarehouseStock(db.Model):
    """
    Per-(variant, warehouse) stock counters.

    available: free to sell
    reserved: held by active vale reservations
    on hand = available + reserved

    Mutated ONLY through services.inventory_service. The unique constraint is
    what makes "create row if missing" safe under concurrent adjustments.
    """
    __tablename__ = "warehouse_stock"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "warehouse_id", name="uq_warehouse_stock_variant_warehouse"),
        db.Index("ix_warehouse_stock_warehouse", "warehouse_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    available = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    reserved = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    min_threshold = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_threshold = db.Column(db.Numeric(12, 2), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "warehouse_id": self.warehouse_id,
            "available": quantity_str(self.available),
            "reserved": quantity_str(self.reserved),
            "on_hand": quantity_str((self.available or 0) + (self.reserved or 0)),
            "min_threshold": quantity_str(self.min_threshold),
            "max_threshold": quantity_str(self.max_threshold),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit record of every ledger mutation.

    KINDS:
    - entry: stock came in (quantity positive)
    - exit: stock left for good, e.g. a committed sale (quantity positive)
    - adjustment: signed change of the available counter (reserve, release,
      manual adjustments)
    - transfer: signed change on each side of a warehouse transfer

    quantity_before / quantity_after are the counter the movement describes,
    so a reader can replay any row without joining other tables.

    IMMUTABLE: update and delete are blocked by ORM listeners below.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_occurred", "variant_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    destination_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    kind = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    quantity_before = db.Column(db.Numeric(12, 2), nullable=False)
    quantity_after = db.Column(db.Numeric(12, 2), nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    # Vale or sale number, e.g. "VP20250602-0001"
    reference = db.Column(db.String(64), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "warehouse_id": self.warehouse_id,
            "destination_warehouse_id": self.destination_warehouse_id,
            "kind": self.kind,
            "quantity": quantity_str(self.quantity),
            "quantity_before": quantity_str(self.quantity_before),
            "quantity_after": quantity_str(self.quantity_after),
            "reason": self.reason,
            "reference": self.reference,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockReservation(db.Model):
    """
    One warehouse split of a line's allocation.

    STATUS:
    - active: quantity sits in WarehouseStock.reserved
    - released: returned to available (cancel, expiry)
    - committed: consumed by a sale
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.Index("ix_stock_reservations_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=True, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    oversold = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_line_id": self.order_line_id,
            "variant_id": self.variant_id,
            "warehouse_id": self.warehouse_id,
            "quantity": quantity_str(self.quantity),
            "oversold": self.oversold,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "resolved_at": to_utc_z(self.resolved_at),
        }


def _block_movement_update(mapper, connection, target):
    raise ImmutableRecordError("StockMovement", target.id, "UPDATE")


def _block_movement_delete(mapper, connection, target):
    raise ImmutableRecordError("StockMovement", target.id, "DELETE")


event.listen(StockMovement, "before_update", _block_movement_update)
event.listen(StockMovement, "before_delete", _block_movement_delete)
