# Overview: Service-layer operations for inventory; the warehouse stock ledger and its movement log.

"""
Inventory ledger.

Every change of a WarehouseStock counter goes through this module and writes
exactly one StockMovement per counter change. Functions here flush but never
commit: they run inside the caller's transaction (see concurrency.vale_transaction)
so a failure anywhere rolls the whole mutation back.

COUNTERS:
- reserve: available -> reserved (on hand unchanged)
- release: reserved -> available (on hand unchanged)
- commit: reserved leaves the building (on hand decreases)
- adjust / transfer: available changes directly
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..models import (
    ProductVariant,
    Warehouse,
    WarehouseStock,
    StockMovement,
    StockReservation,
    Order,
    OrderLine,
)
from .allocation_service import StockCandidate, plan_allocation
from .concurrency import lock_for_update
from .config_service import StockPolicy
from valepos.quantities import ZERO, to_quantity, quantity_str
from valepos.time_utils import utcnow

MOVEMENT_ENTRY = "entry"
MOVEMENT_EXIT = "exit"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TRANSFER = "transfer"

RESERVATION_ACTIVE = "active"
RESERVATION_RELEASED = "released"
RESERVATION_COMMITTED = "committed"


@dataclass
class Allocation:
    """Reservations backing one requested quantity of a variant."""
    variant_id: int
    quantity: Decimal
    reservations: list[StockReservation] = field(default_factory=list)

    @property
    def oversold(self) -> bool:
        return any(r.oversold for r in self.reservations)

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "quantity": quantity_str(self.quantity),
            "oversold": self.oversold,
            "splits": [
                {
                    "warehouse_id": r.warehouse_id,
                    "quantity": quantity_str(r.quantity),
                    "oversold": r.oversold,
                    "status": r.status,
                }
                for r in self.reservations
            ],
        }


def _require_variant(variant_id: int) -> ProductVariant:
    variant = db.session.query(ProductVariant).filter_by(id=variant_id).first()
    if not variant:
        raise NotFoundError("Variant not found", {"variant_id": variant_id})
    return variant


def _require_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.query(Warehouse).filter_by(id=warehouse_id).first()
    if not warehouse:
        raise NotFoundError("Warehouse not found", {"warehouse_id": warehouse_id})
    return warehouse


def _positive_quantity(quantity, name: str = "quantity") -> Decimal:
    try:
        q = to_quantity(quantity)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number", {name: str(quantity)}) from exc
    if q <= ZERO:
        raise ValidationError(f"{name} must be positive", {name: str(q)})
    return q


def _lock_stock(variant_id: int, warehouse_id: int) -> WarehouseStock | None:
    return (
        lock_for_update(
            db.session.query(WarehouseStock).filter_by(variant_id=variant_id, warehouse_id=warehouse_id)
        )
        .populate_existing()
        .first()
    )


def _get_or_create_stock(variant_id: int, warehouse_id: int) -> WarehouseStock:
    stock = _lock_stock(variant_id, warehouse_id)
    if stock is None:
        stock = WarehouseStock(
            variant_id=variant_id,
            warehouse_id=warehouse_id,
            available=ZERO,
            reserved=ZERO,
            min_threshold=ZERO,
            updated_at=utcnow(),
        )
        db.session.add(stock)
        db.session.flush()
    return stock


def _record_movement(
    *,
    stock: WarehouseStock,
    kind: str,
    quantity: Decimal,
    before: Decimal,
    after: Decimal,
    reason: str | None,
    reference: str | None,
    actor_id: int | None,
    destination_warehouse_id: int | None = None,
    now=None,
) -> StockMovement:
    movement = StockMovement(
        variant_id=stock.variant_id,
        warehouse_id=stock.warehouse_id,
        destination_warehouse_id=destination_warehouse_id,
        kind=kind,
        quantity=quantity,
        quantity_before=before,
        quantity_after=after,
        reason=reason,
        reference=reference,
        actor_id=actor_id,
        occurred_at=now or utcnow(),
    )
    db.session.add(movement)
    return movement


def _candidate_rows(
    variant_id: int,
    preferred_warehouse_id: int | None,
    auto_assign: bool,
) -> list[WarehouseStock]:
    query = (
        db.session.query(WarehouseStock)
        .join(Warehouse, Warehouse.id == WarehouseStock.warehouse_id)
        .filter(
            WarehouseStock.variant_id == variant_id,
            Warehouse.is_active.is_(True),
            Warehouse.is_virtual.is_(False),
        )
    )
    if not auto_assign:
        query = query.filter(WarehouseStock.warehouse_id == preferred_warehouse_id)
    elif preferred_warehouse_id is not None:
        query = query.filter(
            or_(
                Warehouse.is_point_of_sale.is_(True),
                WarehouseStock.warehouse_id == preferred_warehouse_id,
            )
        )
    else:
        query = query.filter(Warehouse.is_point_of_sale.is_(True))

    return lock_for_update(query.order_by(WarehouseStock.warehouse_id.asc())).populate_existing().all()


def _fallback_warehouse_id() -> int | None:
    return (
        db.session.query(Warehouse.id)
        .filter(Warehouse.is_virtual.is_(True), Warehouse.is_active.is_(True))
        .order_by(Warehouse.id.asc())
        .scalar()
    )


def check_availability(
    variant_id: int,
    quantity,
    *,
    policy: StockPolicy,
    preferred_warehouse_id: int | None = None,
) -> bool:
    """
    Dry run of reserve(): raises InsufficientStock exactly when reserve would.

    Returns whether the plan would be oversold. Nothing is written.
    """
    q = _positive_quantity(quantity)
    _require_variant(variant_id)
    if not policy.auto_assign_warehouse and preferred_warehouse_id is None:
        raise ValidationError(
            "warehouse_id is required when automatic warehouse assignment is disabled",
            {"variant_id": variant_id},
        )
    rows = _candidate_rows(variant_id, preferred_warehouse_id, policy.auto_assign_warehouse)
    plan = plan_allocation(
        q,
        [StockCandidate(warehouse_id=r.warehouse_id, available=to_quantity(r.available)) for r in rows],
        variant_id=variant_id,
        preferred_warehouse_id=preferred_warehouse_id,
        strategy=policy.warehouse_priority,
        allow_oversell=policy.allow_oversell,
        fallback_warehouse_id=_fallback_warehouse_id(),
    )
    return plan.oversold


def reserve(
    variant_id: int,
    quantity,
    *,
    policy: StockPolicy,
    preferred_warehouse_id: int | None = None,
    order: Order | None = None,
    order_line: OrderLine | None = None,
    actor_id: int | None = None,
) -> Allocation:
    """
    Move quantity from available to reserved across warehouses.

    Candidate rows are locked, planned by allocation_service.plan_allocation,
    then one StockReservation and one adjustment movement is written per
    warehouse split. Raises InsufficientStock unless the policy allows
    overselling.
    """
    q = _positive_quantity(quantity)
    _require_variant(variant_id)
    if not policy.auto_assign_warehouse and preferred_warehouse_id is None:
        raise ValidationError(
            "warehouse_id is required when automatic warehouse assignment is disabled",
            {"variant_id": variant_id},
        )
    if preferred_warehouse_id is not None:
        _require_warehouse(preferred_warehouse_id)

    rows = _candidate_rows(variant_id, preferred_warehouse_id, policy.auto_assign_warehouse)
    by_warehouse = {r.warehouse_id: r for r in rows}

    plan = plan_allocation(
        q,
        [StockCandidate(warehouse_id=r.warehouse_id, available=to_quantity(r.available)) for r in rows],
        variant_id=variant_id,
        preferred_warehouse_id=preferred_warehouse_id,
        strategy=policy.warehouse_priority,
        allow_oversell=policy.allow_oversell,
        fallback_warehouse_id=_fallback_warehouse_id(),
    )

    now = utcnow()
    reference = order.number if order is not None else None
    allocation = Allocation(variant_id=variant_id, quantity=q)

    for split in plan.splits:
        stock = by_warehouse.get(split.warehouse_id) or _get_or_create_stock(variant_id, split.warehouse_id)
        before = to_quantity(stock.available)
        stock.available = before - split.quantity
        stock.reserved = to_quantity(stock.reserved) + split.quantity
        stock.updated_at = now
        by_warehouse[split.warehouse_id] = stock

        reservation = StockReservation(
            order_id=order.id if order is not None else None,
            order_line_id=order_line.id if order_line is not None else None,
            variant_id=variant_id,
            warehouse_id=split.warehouse_id,
            quantity=split.quantity,
            oversold=split.oversold,
            status=RESERVATION_ACTIVE,
            created_at=now,
        )
        db.session.add(reservation)
        allocation.reservations.append(reservation)

        _record_movement(
            stock=stock,
            kind=MOVEMENT_ADJUSTMENT,
            quantity=-split.quantity,
            before=before,
            after=to_quantity(stock.available),
            reason=f"Reservation for vale {reference}" if reference else "Reservation",
            reference=reference,
            actor_id=actor_id,
            now=now,
        )

    if plan.oversold:
        current_app.logger.warning(
            "Oversold reservation variant=%s requested=%s reference=%s",
            variant_id, q, reference,
        )

    db.session.flush()
    return allocation


def release(allocation: Allocation, *, actor_id: int | None = None, reason: str = "Reservation released",
            reference: str | None = None) -> int:
    """
    Return reserved quantity to available. Idempotent.

    Reservations that are not active (already released or committed) are
    skipped. Returns how many reservations were released.
    """
    now = utcnow()
    released = 0
    for reservation in allocation.reservations:
        if reservation.status != RESERVATION_ACTIVE:
            continue

        stock = _get_or_create_stock(reservation.variant_id, reservation.warehouse_id)
        q = to_quantity(reservation.quantity)
        before = to_quantity(stock.available)
        stock.available = before + q
        stock.reserved = to_quantity(stock.reserved) - q
        stock.updated_at = now

        reservation.status = RESERVATION_RELEASED
        reservation.resolved_at = now

        _record_movement(
            stock=stock,
            kind=MOVEMENT_ADJUSTMENT,
            quantity=q,
            before=before,
            after=to_quantity(stock.available),
            reason=reason,
            reference=reference,
            actor_id=actor_id,
            now=now,
        )
        released += 1

    db.session.flush()
    return released


def commit(allocation: Allocation, *, actor_id: int | None = None, reference: str | None = None) -> None:
    """
    Permanently consume reserved quantity (sale). Appends an exit movement.

    Raises InsufficientStock when a reservation was released in the meantime
    or its warehouse no longer holds the reserved quantity. Already committed
    reservations are skipped.
    """
    now = utcnow()
    for reservation in allocation.reservations:
        if reservation.status == RESERVATION_COMMITTED:
            continue
        if reservation.status != RESERVATION_ACTIVE:
            raise InsufficientStock(
                "Reservation is no longer active",
                {
                    "reservation_id": reservation.id,
                    "variant_id": reservation.variant_id,
                    "warehouse_id": reservation.warehouse_id,
                    "status": reservation.status,
                },
            )

        q = to_quantity(reservation.quantity)
        stock = _lock_stock(reservation.variant_id, reservation.warehouse_id)
        reserved = to_quantity(stock.reserved) if stock is not None else ZERO
        if stock is None or reserved < q:
            raise InsufficientStock(
                "Reserved stock no longer covers the sale",
                {
                    "variant_id": reservation.variant_id,
                    "warehouse_id": reservation.warehouse_id,
                    "requested": str(q),
                    "reserved": str(reserved),
                },
            )

        before = to_quantity(stock.available) + reserved
        stock.reserved = reserved - q
        stock.updated_at = now

        reservation.status = RESERVATION_COMMITTED
        reservation.resolved_at = now

        _record_movement(
            stock=stock,
            kind=MOVEMENT_EXIT,
            quantity=q,
            before=before,
            after=before - q,
            reason=f"Sale {reference}" if reference else "Sale",
            reference=reference,
            actor_id=actor_id,
            now=now,
        )

    db.session.flush()


def allocations_for_order(order_id: int, *, status: str | None = RESERVATION_ACTIVE) -> dict[int | None, Allocation]:
    """Reservations of an order grouped per order line id."""
    query = db.session.query(StockReservation).filter_by(order_id=order_id)
    if status is not None:
        query = query.filter_by(status=status)
    allocations: dict[int | None, Allocation] = {}
    for reservation in query.order_by(StockReservation.id.asc()).all():
        allocation = allocations.get(reservation.order_line_id)
        if allocation is None:
            allocation = Allocation(variant_id=reservation.variant_id, quantity=ZERO)
            allocations[reservation.order_line_id] = allocation
        allocation.reservations.append(reservation)
        allocation.quantity += to_quantity(reservation.quantity)
    return allocations


def release_order(order: Order, *, actor_id: int | None = None, reason: str) -> int:
    """Release every active reservation held by order."""
    released = 0
    for allocation in allocations_for_order(order.id).values():
        released += release(allocation, actor_id=actor_id, reason=reason, reference=order.number)
    return released


def adjust_stock(
    variant_id: int,
    warehouse_id: int,
    new_quantity,
    *,
    reason: str,
    actor_id: int | None = None,
) -> dict:
    """
    Set available to new_quantity (physical count, correction).

    Creates the stock row when missing. Writes an adjustment movement with the
    signed delta, even when the delta is zero, so counts leave a trace.
    """
    try:
        target = to_quantity(new_quantity)
    except ValueError as exc:
        raise ValidationError("new_quantity must be a number", {"new_quantity": str(new_quantity)}) from exc
    if target < ZERO:
        raise ValidationError("new_quantity cannot be negative", {"new_quantity": str(target)})
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    _require_variant(variant_id)
    warehouse = _require_warehouse(warehouse_id)
    if warehouse.is_virtual:
        raise ValidationError("Virtual warehouses cannot be adjusted", {"warehouse_id": warehouse_id})

    now = utcnow()
    stock = _get_or_create_stock(variant_id, warehouse_id)
    previous = to_quantity(stock.available)
    stock.available = target
    stock.updated_at = now

    movement = _record_movement(
        stock=stock,
        kind=MOVEMENT_ADJUSTMENT,
        quantity=target - previous,
        before=previous,
        after=target,
        reason=str(reason).strip(),
        reference=None,
        actor_id=actor_id,
        now=now,
    )
    db.session.flush()

    return {
        "variant_id": variant_id,
        "warehouse_id": warehouse_id,
        "previous": str(previous),
        "new": str(target),
        "movement_id": movement.id,
    }


def receive_stock(
    variant_id: int,
    warehouse_id: int,
    quantity,
    *,
    reason: str = "Stock received",
    actor_id: int | None = None,
    reference: str | None = None,
) -> StockMovement:
    """Add quantity to available (purchase, initial load). Writes an entry movement."""
    q = _positive_quantity(quantity)
    _require_variant(variant_id)
    warehouse = _require_warehouse(warehouse_id)
    if not warehouse.is_active:
        raise NotFoundError("Warehouse not found or inactive", {"warehouse_id": warehouse_id})
    if warehouse.is_virtual:
        raise ValidationError("Virtual warehouses cannot receive stock", {"warehouse_id": warehouse_id})

    now = utcnow()
    stock = _get_or_create_stock(variant_id, warehouse_id)
    before = to_quantity(stock.available)
    stock.available = before + q
    stock.updated_at = now

    movement = _record_movement(
        stock=stock,
        kind=MOVEMENT_ENTRY,
        quantity=q,
        before=before,
        after=before + q,
        reason=reason,
        reference=reference,
        actor_id=actor_id,
        now=now,
    )
    db.session.flush()
    return movement


def transfer_stock(
    variant_id: int,
    from_warehouse_id: int,
    to_warehouse_id: int,
    quantity,
    *,
    reason: str | None = None,
    actor_id: int | None = None,
) -> dict:
    """
    Move available quantity between two warehouses.

    Writes two transfer movements: negative on the source, positive on the
    destination, both pointing at the destination warehouse.
    """
    q = _positive_quantity(quantity)
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Source and destination warehouses must differ")
    _require_variant(variant_id)
    source_wh = _require_warehouse(from_warehouse_id)
    dest_wh = _require_warehouse(to_warehouse_id)
    if source_wh.is_virtual or dest_wh.is_virtual:
        raise ValidationError("Virtual warehouses cannot take part in transfers")

    source = _lock_stock(variant_id, from_warehouse_id)
    source_available = to_quantity(source.available) if source is not None else ZERO
    if source is None or source_available < q:
        raise InsufficientStock(
            "Insufficient stock in source warehouse",
            {
                "variant_id": variant_id,
                "warehouse_id": from_warehouse_id,
                "requested": str(q),
                "available": str(source_available),
            },
        )
    destination = _get_or_create_stock(variant_id, to_warehouse_id)

    now = utcnow()
    reason = reason or f"Transfer {source_wh.code} -> {dest_wh.code}"

    source.available = source_available - q
    source.updated_at = now
    out_movement = _record_movement(
        stock=source,
        kind=MOVEMENT_TRANSFER,
        quantity=-q,
        before=source_available,
        after=source_available - q,
        reason=reason,
        reference=None,
        actor_id=actor_id,
        destination_warehouse_id=to_warehouse_id,
        now=now,
    )

    dest_before = to_quantity(destination.available)
    destination.available = dest_before + q
    destination.updated_at = now
    in_movement = _record_movement(
        stock=destination,
        kind=MOVEMENT_TRANSFER,
        quantity=q,
        before=dest_before,
        after=dest_before + q,
        reason=reason,
        reference=None,
        actor_id=actor_id,
        destination_warehouse_id=to_warehouse_id,
        now=now,
    )
    db.session.flush()

    return {
        "variant_id": variant_id,
        "from_warehouse_id": from_warehouse_id,
        "to_warehouse_id": to_warehouse_id,
        "quantity": str(q),
        "movement_ids": [out_movement.id, in_movement.id],
    }


def get_availability(variant_id: int) -> dict:
    """Per-warehouse counters for a variant plus totals (no lock)."""
    _require_variant(variant_id)
    rows = (
        db.session.query(WarehouseStock, Warehouse)
        .join(Warehouse, Warehouse.id == WarehouseStock.warehouse_id)
        .filter(WarehouseStock.variant_id == variant_id)
        .order_by(Warehouse.id.asc())
        .all()
    )

    total_available = ZERO
    total_reserved = ZERO
    warehouses = []
    for stock, warehouse in rows:
        available = to_quantity(stock.available)
        reserved = to_quantity(stock.reserved)
        total_available += available
        total_reserved += reserved
        warehouses.append({
            **stock.to_dict(),
            "warehouse_code": warehouse.code,
            "warehouse_name": warehouse.name,
            "is_point_of_sale": warehouse.is_point_of_sale,
            "is_virtual": warehouse.is_virtual,
            "below_minimum": available < to_quantity(stock.min_threshold),
        })

    return {
        "variant_id": variant_id,
        "total_available": str(total_available),
        "total_reserved": str(total_reserved),
        "total_on_hand": str(total_available + total_reserved),
        "warehouses": warehouses,
    }


def list_below_minimum(*, warehouse_id: int | None = None) -> list[dict]:
    """
    Stock rows of active warehouses whose available quantity is under their
    minimum. Rows without a minimum (0) never show up.
    """
    query = (
        db.session.query(WarehouseStock, Warehouse, ProductVariant)
        .join(Warehouse, Warehouse.id == WarehouseStock.warehouse_id)
        .join(ProductVariant, ProductVariant.id == WarehouseStock.variant_id)
        .filter(
            Warehouse.is_active.is_(True),
            WarehouseStock.min_threshold > 0,
            WarehouseStock.available < WarehouseStock.min_threshold,
        )
    )
    if warehouse_id is not None:
        query = query.filter(WarehouseStock.warehouse_id == warehouse_id)

    rows = []
    for stock, warehouse, variant in query.order_by(Warehouse.id.asc(), ProductVariant.sku.asc()).all():
        available = to_quantity(stock.available)
        minimum = to_quantity(stock.min_threshold)
        rows.append({
            **stock.to_dict(),
            "sku": variant.sku,
            "variant_name": variant.name,
            "warehouse_code": warehouse.code,
            "deficit": quantity_str(minimum - available),
            # Negative available (oversold) counts as 0%
            "stock_percent": max(0, int((available * 100 / minimum).to_integral_value())),
        })
    return rows


def list_movements(variant_id: int, *, warehouse_id: int | None = None, limit: int = 200) -> list[dict]:
    query = db.session.query(StockMovement).filter(StockMovement.variant_id == variant_id)
    if warehouse_id is not None:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    movements = query.order_by(StockMovement.id.desc()).limit(limit).all()
    return [m.to_dict() for m in movements]
