# Overview: Service-layer operations for vales (orders); creation, reservation, cancellation, expiry and listings.

"""
Vale (order) lifecycle operations.

Every mutation runs in concurrency.vale_transaction() and locks the Order row
before reading its mutable state. Signals are sent after the commit.

Read paths return materialized aggregates (get_voucher_aggregate) built with
explicit queries; nothing here relies on lazy relationship loading.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from flask import current_app

from ..extensions import db
from ..errors import InvalidStateTransition, OrderNotFound, StaleLockConflict, ValeError, ValidationError
from ..models import Customer, Order, OrderLine, PriceModality, ProductVariant, Sale, StockReservation, Warehouse
from .. import signals
from . import inventory_service, sequence_service
from .concurrency import is_lock_stale, lock_order, vale_transaction
from .config_service import ConfigurationProvider, StockPolicy, get_configuration
from .customer_service import resolve_customer
from .state_machine import (
    ALL_STATES,
    STATE_CANCELLED,
    STATE_DRAFT,
    STATE_PENDING,
    STATE_PROCESSING,
    STATE_VOUCHER_PENDING,
    is_terminal,
    transition,
)
from valepos.quantities import round_money
from valepos.time_utils import to_utc_z, utcnow
from valepos.validation import coerce_int, require_amount, require_choice, require_quantity

DOCUMENT_TICKET = "ticket"
DOCUMENT_RECEIPT = "receipt"
DOCUMENT_INVOICE = "invoice"
DOCUMENT_TYPES = (DOCUMENT_TICKET, DOCUMENT_RECEIPT, DOCUMENT_INVOICE)

PRICE_STANDARD = "standard"
PRICE_INVOICE = "invoice"
PRICE_CUSTOM = "custom"
PRICE_KINDS = (PRICE_STANDARD, PRICE_INVOICE, PRICE_CUSTOM)


@dataclass
class VoucherAggregate:
    """Vale with everything hanging off it, loaded eagerly."""
    order: Order
    lines: list[OrderLine] = field(default_factory=list)
    reservations: list[StockReservation] = field(default_factory=list)
    customer: Customer | None = None
    sale: Sale | None = None


@dataclass(frozen=True)
class LineRequest:
    variant_id: int
    quantity: object
    unit_price: int
    price_kind: str = PRICE_STANDARD
    approver_id: int | None = None
    price_modality_id: int | None = None
    warehouse_id: int | None = None


def parse_line(raw: dict, index: int) -> LineRequest:
    """Validate one incoming line dict."""
    if not isinstance(raw, dict):
        raise ValidationError("Each line must be an object", {"line": index})
    try:
        if raw.get("variant_id") is None:
            raise ValidationError("variant_id is required", {"field": "variant_id"})
        variant_id = coerce_int(raw["variant_id"], "variant_id")
        quantity = require_quantity(raw.get("quantity"))
        if raw.get("unit_price") is None:
            raise ValidationError("unit_price is required", {"field": "unit_price"})
        unit_price = require_amount(raw["unit_price"], "unit_price")
        price_kind = require_choice(raw.get("price_kind") or PRICE_STANDARD, "price_kind", PRICE_KINDS)
        approver_id = coerce_int(raw["approver_id"], "approver_id") if raw.get("approver_id") is not None else None
        if price_kind == PRICE_CUSTOM and approver_id is None:
            raise ValidationError("Custom prices require approver_id", {"field": "approver_id"})
        modality_id = (
            coerce_int(raw["price_modality_id"], "price_modality_id")
            if raw.get("price_modality_id") is not None else None
        )
        warehouse_id = coerce_int(raw["warehouse_id"], "warehouse_id") if raw.get("warehouse_id") is not None else None
    except ValidationError as exc:
        exc.details = {**exc.details, "line": index}
        raise
    return LineRequest(
        variant_id=variant_id,
        quantity=quantity,
        unit_price=unit_price,
        price_kind=price_kind,
        approver_id=approver_id,
        price_modality_id=modality_id,
        warehouse_id=warehouse_id,
    )


def _check_line_references(line: LineRequest, index: int) -> None:
    variant = db.session.query(ProductVariant).filter_by(id=line.variant_id).first()
    if variant is None or not variant.is_active:
        raise ValidationError("Unknown or inactive variant", {"line": index, "variant_id": line.variant_id})
    if line.price_modality_id is not None:
        modality = db.session.query(PriceModality).filter_by(id=line.price_modality_id).first()
        if modality is None or modality.variant_id != line.variant_id:
            raise ValidationError(
                "Price modality does not belong to variant",
                {"line": index, "price_modality_id": line.price_modality_id},
            )
    if line.warehouse_id is not None:
        warehouse = db.session.query(Warehouse).filter_by(id=line.warehouse_id).first()
        if warehouse is None or not warehouse.is_active or warehouse.is_virtual:
            raise ValidationError("Unknown or inactive warehouse", {"line": index, "warehouse_id": line.warehouse_id})


def _reserve_lines(order: Order, lines: list[OrderLine], policy: StockPolicy, actor_id: int | None) -> list:
    allocations = []
    for line in lines:
        allocation = inventory_service.reserve(
            line.variant_id,
            line.quantity,
            policy=policy,
            preferred_warehouse_id=line.warehouse_id,
            order=order,
            order_line=line,
            actor_id=actor_id,
        )
        if line.warehouse_id is None and allocation.reservations:
            line.warehouse_id = allocation.reservations[0].warehouse_id
        allocations.append(allocation)
    return allocations


def create_voucher(
    seller_id: int,
    document_type: str,
    lines: list,
    customer: dict | None = None,
    *,
    customer_id: int | None = None,
    notes: str | None = None,
    config: ConfigurationProvider | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Create a vale, allocate its number and (by default) reserve its stock.

    With sale.create_reservation on, the vale is born voucher_pending holding
    reservations that expire after sale.reservation_timeout_minutes. With it
    off, availability is only checked and the vale waits in pending until
    submit_voucher().
    """
    document_type = require_choice(document_type or DOCUMENT_TICKET, "document_type", DOCUMENT_TYPES)
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one line is required", {"field": "lines"})
    requests = [parse_line(raw, i) for i, raw in enumerate(lines)]

    config = config or get_configuration()
    sale_policy = config.sale_policy()
    stock_policy = config.effective_stock_policy()

    for i, req in enumerate(requests):
        _check_line_references(req, i)

    with vale_transaction():
        now = now or utcnow()
        number, daily_sequence = sequence_service.next_order_number(now=now)

        cust = resolve_customer(customer, customer_id)
        order = Order(
            number=number,
            daily_sequence=daily_sequence,
            seller_id=seller_id,
            customer_id=cust.id if cust is not None else None,
            document_type=document_type,
            state=STATE_DRAFT,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        order_lines = []
        subtotal = 0
        for req in requests:
            line_subtotal = round_money(req.quantity * req.unit_price)
            line = OrderLine(
                order_id=order.id,
                variant_id=req.variant_id,
                price_modality_id=req.price_modality_id,
                quantity=req.quantity,
                unit_price=req.unit_price,
                price_kind=req.price_kind,
                approver_id=req.approver_id,
                subtotal=line_subtotal,
                warehouse_id=req.warehouse_id,
            )
            db.session.add(line)
            order_lines.append(line)
            subtotal += line_subtotal
        db.session.flush()

        order.subtotal = subtotal
        order.discount = 0
        order.total = subtotal

        allocations = []
        if sale_policy.create_reservation:
            allocations = _reserve_lines(order, order_lines, stock_policy, seller_id)
            order.reservation_expires_at = now + timedelta(minutes=sale_policy.reservation_timeout_minutes)
            transition(order, STATE_VOUCHER_PENDING, now=now)
        else:
            if sale_policy.validate_stock:
                for line in order_lines:
                    inventory_service.check_availability(
                        line.variant_id,
                        line.quantity,
                        policy=stock_policy,
                        preferred_warehouse_id=line.warehouse_id,
                    )
            transition(order, STATE_PENDING, now=now)

        result = {
            "voucher_number": order.number,
            "daily_sequence": order.daily_sequence,
            "state": order.state,
            "document_type": order.document_type,
            "subtotal": order.subtotal,
            "total": order.total,
            "reservation": [a.to_dict() for a in allocations] if allocations else None,
            "expires_at": to_utc_z(order.reservation_expires_at),
        }

    current_app.logger.info(
        "Vale created number=%s seller=%s total=%s state=%s",
        result["voucher_number"], seller_id, result["total"], result["state"],
    )
    signals.emit(signals.voucher_created, current_app._get_current_object(), voucher=result)
    return result


def submit_voucher(
    number: str,
    actor_id: int,
    *,
    config: ConfigurationProvider | None = None,
    now: datetime | None = None,
) -> dict:
    """Move a pending (or draft) vale to voucher_pending, reserving its stock."""
    config = config or get_configuration()
    sale_policy = config.sale_policy()
    stock_policy = config.effective_stock_policy()

    with vale_transaction():
        now = now or utcnow()
        order = lock_order(number)
        if order.state not in (STATE_DRAFT, STATE_PENDING):
            raise InvalidStateTransition(
                f"Cannot submit vale in state {order.state}",
                {"voucher_number": number, "from": order.state, "to": STATE_VOUCHER_PENDING},
            )
        lines = db.session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.id.asc()).all()
        allocations = _reserve_lines(order, lines, stock_policy, actor_id)
        order.reservation_expires_at = now + timedelta(minutes=sale_policy.reservation_timeout_minutes)
        transition(order, STATE_VOUCHER_PENDING, now=now)
        result = {
            "voucher_number": order.number,
            "state": order.state,
            "reservation": [a.to_dict() for a in allocations],
            "expires_at": to_utc_z(order.reservation_expires_at),
        }

    current_app.logger.info("Vale submitted number=%s actor=%s", number, actor_id)
    return result


def get_voucher_aggregate(number: str) -> VoucherAggregate:
    order = db.session.query(Order).filter_by(number=number).first()
    if order is None:
        raise OrderNotFound("Vale not found", {"voucher_number": number})

    lines = db.session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.id.asc()).all()
    reservations = (
        db.session.query(StockReservation)
        .filter_by(order_id=order.id)
        .order_by(StockReservation.id.asc())
        .all()
    )
    customer = None
    if order.customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=order.customer_id).first()
    sale = db.session.query(Sale).filter_by(order_id=order.id).first()

    return VoucherAggregate(order=order, lines=lines, reservations=reservations, customer=customer, sale=sale)


def load_voucher_detail(number: str, *, now: datetime | None = None) -> dict:
    """
    Read-only snapshot of a vale for the register screen. Takes no lock.

    reservation_expired tells the cashier the reservation outlived its
    timeout even if the reaper has not swept it yet.
    """
    now = now or utcnow()
    agg = get_voucher_aggregate(number)
    order = agg.order

    reservation_expired = bool(
        order.state == STATE_VOUCHER_PENDING
        and order.reservation_expires_at is not None
        and order.reservation_expires_at < now
    )
    lock_stale = order.state == STATE_PROCESSING and is_lock_stale(order, now)

    by_line: dict[int, list[dict]] = {}
    for r in agg.reservations:
        by_line.setdefault(r.order_line_id, []).append(r.to_dict())

    return {
        **order.to_dict(),
        "lines": [{**line.to_dict(), "reservations": by_line.get(line.id, [])} for line in agg.lines],
        "customer": agg.customer.to_dict() if agg.customer else None,
        "sale": agg.sale.to_dict() if agg.sale else None,
        "reservation_expired": reservation_expired,
        "lock_stale": lock_stale,
    }


def cancel_voucher(number: str, reason: str | None, actor_id: int, *, now: datetime | None = None) -> dict:
    """
    Cancel any non-terminal vale, releasing its reservations in the same
    transaction.
    """
    precheck = db.session.query(Order).filter_by(number=number).first()
    if precheck is None:
        raise OrderNotFound("Vale not found", {"voucher_number": number})
    if is_terminal(precheck.state):
        raise InvalidStateTransition(
            f"Cannot cancel vale in state {precheck.state}",
            {"voucher_number": number, "from": precheck.state, "to": STATE_CANCELLED},
        )

    with vale_transaction():
        now = now or utcnow()
        order = lock_order(number)
        if is_terminal(order.state):
            raise StaleLockConflict(
                "Vale changed state while cancelling",
                {"voucher_number": number, "state": order.state},
            )
        released = inventory_service.release_order(
            order,
            actor_id=actor_id,
            reason=f"Vale {number} cancelled" + (f": {reason}" if reason else ""),
        )
        transition(order, STATE_CANCELLED, now=now)
        if reason:
            order.notes = f"{order.notes}\n{reason}" if order.notes else reason
        result = {"voucher_number": number, "state": order.state, "released_reservations": released}

    current_app.logger.info("Vale cancelled number=%s actor=%s released=%s", number, actor_id, released)
    signals.emit(signals.voucher_cancelled, current_app._get_current_object(), voucher=result, reason=reason)
    return result


def release_expired_reservations(*, now: datetime | None = None, actor_id: int | None = None) -> list[str]:
    """
    Cancel voucher_pending vales whose reservation expired, releasing stock.

    Each vale is handled in its own transaction so one failure does not block
    the rest of the sweep. Returns the numbers that were cancelled.
    """
    now = now or utcnow()
    numbers = [
        n for (n,) in db.session.query(Order.number)
        .filter(
            Order.state == STATE_VOUCHER_PENDING,
            Order.reservation_expires_at.isnot(None),
            Order.reservation_expires_at < now,
        )
        .order_by(Order.id.asc())
        .all()
    ]

    cancelled = []
    for number in numbers:
        try:
            with vale_transaction():
                order = lock_order(number)
                if order.state != STATE_VOUCHER_PENDING or order.reservation_expires_at >= now:
                    continue
                released = inventory_service.release_order(
                    order, actor_id=actor_id, reason=f"Reservation for vale {number} expired"
                )
                transition(order, STATE_CANCELLED, now=now)
                order.notes = f"{order.notes}\nReservation expired" if order.notes else "Reservation expired"
        except ValeError as exc:
            current_app.logger.warning("Could not expire vale number=%s: %s", number, exc.message)
            continue

        cancelled.append(number)
        current_app.logger.info("Expired vale cancelled number=%s released=%s", number, released)
        signals.emit(
            signals.voucher_cancelled,
            current_app._get_current_object(),
            voucher={"voucher_number": number, "state": STATE_CANCELLED, "released_reservations": released},
            reason="expired",
        )

    return cancelled


def list_vouchers(*, state: str | None = None, day: date | None = None, limit: int = 200) -> list[dict]:
    """Cashier queue: vales of a day (UTC) and/or in a state, oldest first."""
    query = db.session.query(Order)
    if state is not None:
        require_choice(state, "state", ALL_STATES)
        query = query.filter(Order.state == state)
    if day is not None:
        start = datetime.combine(day, time.min)
        query = query.filter(Order.created_at >= start, Order.created_at < start + timedelta(days=1))

    orders = query.order_by(Order.created_at.asc(), Order.id.asc()).limit(limit).all()
    return [o.to_dict() for o in orders]
