# Overview: Service-layer operations for sales; turns a claimed vale into a committed sale with payments.

"""
Sale finalization.

FLOW of finalize_voucher():
1. Prechecks without any lock: vale exists and is claimable, totals,
   payments and customer data are valid. Failures here change nothing.
2. Claim transaction: lock the vale, re-check the claim, move it to
   processing_at_register under this cashier. Committed on its own so a
   second cashier sees the claim immediately.
3. Finalize transaction: lock the vale again, verify the claim is still ours,
   commit reservations in the ledger, allocate the sale number, write Sale and
   Payment rows, move the vale to completed.
4. After commit: send sale_completed (invoice issuer, notifications).

If step 3 fails on InsufficientStock the vale stays claimed for a manual
retry. Any other failure gives the claim back (voucher_pending).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import (
    InsufficientStock,
    InvalidDiscount,
    InvalidPayment,
    InvalidStateTransition,
    NotFoundError,
    OrderNotFound,
    StaleLockConflict,
    ValidationError,
)
from ..models import Order, OrderLine, Payment, Sale
from .. import signals
from . import inventory_service, sequence_service, shift_service
from .concurrency import check_lock_staleness, lock_for_update, lock_order, vale_transaction
from .config_service import ConfigurationProvider, get_configuration
from .customer_service import check_customer_requirements, resolve_customer
from .order_service import DOCUMENT_INVOICE, DOCUMENT_TYPES
from .state_machine import (
    CLAIMABLE_STATES,
    STATE_COMPLETED,
    STATE_PROCESSING,
    STATE_VOUCHER_PENDING,
    claim,
    is_terminal,
    transition,
)
from valepos.quantities import round_money
from valepos.time_utils import utcnow
from valepos.validation import coerce_int, require_choice

METHOD_CASH = "cash"
METHOD_DEBIT = "debit_card"
METHOD_CREDIT = "credit_card"
METHOD_TRANSFER = "transfer"
PAYMENT_METHODS = (METHOD_CASH, METHOD_DEBIT, METHOD_CREDIT, METHOD_TRANSFER)

# Document types that carry IVA
TAXED_DOCUMENT_TYPES = frozenset({DOCUMENT_INVOICE})


@dataclass(frozen=True)
class Totals:
    subtotal: int
    discount: int
    total: int
    tax: int


@dataclass
class PaymentRequest:
    method: str
    amount: int
    reference: str | None = None
    change_given: int = 0


def tax_rate() -> Decimal:
    return Decimal(str(current_app.config.get("TAX_RATE", "0.19")))


def compute_totals(subtotal: int, discount, document_type: str, *, rate: Decimal | None = None) -> Totals:
    """
    total = subtotal - discount; tax = round(total * rate) for taxed documents.

    Raises InvalidDiscount when discount is negative or not below subtotal.
    """
    try:
        discount = coerce_int(discount if discount is not None else 0, "discount")
    except ValidationError as exc:
        raise InvalidDiscount("Discount must be an integer amount", exc.details) from exc
    if discount < 0:
        raise InvalidDiscount("Discount cannot be negative", {"discount": discount})
    if discount >= subtotal:
        raise InvalidDiscount(
            "Discount must be lower than the total",
            {"discount": discount, "total": subtotal},
        )

    total = subtotal - discount
    tax = 0
    if document_type in TAXED_DOCUMENT_TYPES:
        tax = round_money(Decimal(total) * (rate if rate is not None else tax_rate()))
    return Totals(subtotal=subtotal, discount=discount, total=total, tax=tax)


def normalize_payments(
    total: int,
    *,
    payment_method: str | None = None,
    amount_paid=None,
    payments: list | None = None,
) -> tuple[list[PaymentRequest], int]:
    """
    Validate tenders against total and assign change to cash tenders.

    Returns (payments, change) with change = max(0, paid - total). A short
    payment is accepted and gives no change. Non-cash tenders may not exceed
    what is owed; any excess must come from cash.
    """
    if payments is None:
        if payment_method is None:
            raise InvalidPayment("payment_method is required", {"allowed": list(PAYMENT_METHODS)})
        payments = [{"method": payment_method, "amount": amount_paid if amount_paid is not None else total}]
    if not isinstance(payments, list) or not payments:
        raise InvalidPayment("At least one payment is required")

    parsed: list[PaymentRequest] = []
    for i, raw in enumerate(payments):
        if not isinstance(raw, dict):
            raise InvalidPayment("Each payment must be an object", {"payment": i})
        method = raw.get("method")
        if method not in PAYMENT_METHODS:
            raise InvalidPayment(
                "Unknown payment method",
                {"payment": i, "method": method, "allowed": list(PAYMENT_METHODS)},
            )
        try:
            amount = coerce_int(raw.get("amount"), "amount")
        except ValidationError as exc:
            raise InvalidPayment("Payment amount must be an integer", {"payment": i}) from exc
        if amount <= 0:
            raise InvalidPayment("Payment amount must be positive", {"payment": i, "amount": amount})
        reference = raw.get("reference")
        parsed.append(PaymentRequest(method=method, amount=amount, reference=str(reference) if reference else None))

    paid = sum(p.amount for p in parsed)
    non_cash = sum(p.amount for p in parsed if p.method != METHOD_CASH)
    if non_cash > total:
        raise InvalidPayment(
            "Only cash payments may exceed the total",
            {"total": total, "non_cash": non_cash},
        )

    change = max(0, paid - total)
    remaining = change
    for p in parsed:
        if remaining <= 0:
            break
        if p.method == METHOD_CASH:
            p.change_given = min(p.amount, remaining)
            remaining -= p.change_given

    return parsed, change


def _lines_subtotal(order_id: int) -> int:
    lines = db.session.query(OrderLine).filter_by(order_id=order_id).all()
    return sum(line.subtotal for line in lines)


def _release_claim(number: str, cashier_id: int) -> None:
    """Give a failed finalize's claim back (processing -> voucher_pending)."""
    try:
        with vale_transaction():
            order = lock_order(number)
            if order.state == STATE_PROCESSING and order.locked_by == cashier_id:
                transition(order, STATE_VOUCHER_PENDING)
    except Exception:
        current_app.logger.exception("Failed to release claim on vale number=%s cashier=%s", number, cashier_id)


def finalize_voucher(
    number: str,
    *,
    cashier_id: int,
    document_type: str | None = None,
    payment_method: str | None = None,
    amount_paid=None,
    discount=0,
    customer_overrides: dict | None = None,
    payments: list | None = None,
    config: ConfigurationProvider | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Complete a vale as a sale. Returns {sale_number, total, tax, change, ...}.

    Raises OrderNotFound, StaleLockConflict, InvalidDiscount, InvalidPayment,
    MissingCustomerData, InsufficientStock, SequenceGenerationFailed.
    """
    # 1. Prechecks (no lock, no writes)
    order = db.session.query(Order).filter_by(number=number).first()
    if order is None:
        raise OrderNotFound("Vale not found", {"voucher_number": number})
    if is_terminal(order.state):
        raise StaleLockConflict(
            "Vale is no longer available for processing",
            {"voucher_number": number, "state": order.state},
        )
    if order.state not in CLAIMABLE_STATES:
        raise InvalidStateTransition(
            f"Vale in state {order.state} cannot be finalized",
            {"voucher_number": number, "from": order.state, "to": STATE_COMPLETED},
        )
    check_lock_staleness(order, cashier_id, now)

    document_type = require_choice(document_type or order.document_type, "document_type", DOCUMENT_TYPES)
    totals = compute_totals(_lines_subtotal(order.id), discount, document_type)
    tenders, change = normalize_payments(
        totals.total,
        payment_method=payment_method,
        amount_paid=amount_paid,
        payments=payments,
    )
    check_customer_requirements(document_type, customer_overrides, order.customer_id)

    config = config or get_configuration()
    stock_policy = config.effective_stock_policy()

    # 2. Claim
    with vale_transaction():
        order = lock_order(number)
        reclaimed = check_lock_staleness(order, cashier_id, now)
        if reclaimed:
            current_app.logger.warning(
                "Reclaiming stale lock on vale number=%s from cashier=%s by cashier=%s",
                number, order.locked_by, cashier_id,
            )
        claim(order, cashier_id, now=now)

    # 3. Finalize
    try:
        with vale_transaction():
            now = now or utcnow()
            order = lock_order(number)
            if order.state != STATE_PROCESSING or order.locked_by != cashier_id:
                raise StaleLockConflict(
                    "Vale was taken over by another cashier",
                    {"voucher_number": number, "state": order.state, "locked_by": order.locked_by},
                )

            customer = resolve_customer(customer_overrides, order.customer_id)

            lines = db.session.query(OrderLine).filter_by(order_id=order.id).order_by(OrderLine.id.asc()).all()
            allocations = inventory_service.allocations_for_order(order.id)
            committed_warehouse = None
            for line in lines:
                allocation = allocations.get(line.id)
                if allocation is None:
                    allocation = inventory_service.reserve(
                        line.variant_id,
                        line.quantity,
                        policy=stock_policy,
                        preferred_warehouse_id=line.warehouse_id,
                        order=order,
                        order_line=line,
                        actor_id=cashier_id,
                    )
                inventory_service.commit(allocation, actor_id=cashier_id, reference=number)
                if committed_warehouse is None and allocation.reservations:
                    committed_warehouse = allocation.reservations[0].warehouse_id

            sale_number = sequence_service.next_sale_number(now=now)
            shift = shift_service.get_open_shift(cashier_id)

            sale = Sale(
                sale_number=sale_number,
                order_id=order.id,
                shift_id=shift.id if shift is not None else None,
                cashier_id=cashier_id,
                warehouse_id=committed_warehouse,
                document_type=document_type,
                subtotal=totals.subtotal,
                discount=totals.discount,
                tax=totals.tax,
                total=totals.total,
                payments_total=sum(t.amount for t in tenders),
                change=change,
                customer_id=customer.id if customer is not None else None,
                customer_tax_id=customer.tax_id if customer is not None else None,
                customer_legal_name=customer.legal_name if customer is not None else None,
                customer_name=(
                    (customer_overrides or {}).get("name")
                    or (customer.name if customer is not None else None)
                ),
                is_cancelled=False,
                created_at=now,
            )
            db.session.add(sale)
            db.session.flush()

            for t in tenders:
                db.session.add(Payment(
                    sale_id=sale.id,
                    method=t.method,
                    amount=t.amount,
                    change_given=t.change_given,
                    reference=t.reference,
                    created_at=now,
                ))

            order.document_type = document_type
            order.discount = totals.discount
            order.total = totals.total
            if customer is not None:
                order.customer_id = customer.id
            transition(order, STATE_COMPLETED, now=now)
            db.session.flush()

            result = {
                "sale_number": sale_number,
                "voucher_number": number,
                "document_type": document_type,
                "subtotal": totals.subtotal,
                "discount": totals.discount,
                "total": totals.total,
                "tax": totals.tax,
                "payments_total": sale.payments_total,
                "change": change,
                "shift_id": sale.shift_id,
            }
    except InsufficientStock:
        current_app.logger.warning(
            "Finalize of vale number=%s failed on stock commit; vale stays claimed by cashier=%s",
            number, cashier_id,
        )
        raise
    except Exception:
        _release_claim(number, cashier_id)
        raise

    current_app.logger.info(
        "Sale finalized sale=%s vale=%s cashier=%s total=%s",
        result["sale_number"], number, cashier_id, result["total"],
    )
    signals.emit(signals.sale_completed, current_app._get_current_object(), sale=result)
    return result


def get_sale(sale_number: str) -> dict:
    sale = db.session.query(Sale).filter_by(sale_number=sale_number).first()
    if sale is None:
        raise NotFoundError("Sale not found", {"sale_number": sale_number})
    payments = db.session.query(Payment).filter_by(sale_id=sale.id).order_by(Payment.id.asc()).all()
    return {**sale.to_dict(), "payments": [p.to_dict() for p in payments]}


def cancel_sale(sale_number: str, reason: str, actor_id: int) -> dict:
    """
    Flag a sale as cancelled. The only mutation a Sale allows.

    Stock is not returned here (returns are a separate process).
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required", {"field": "reason"})

    with vale_transaction():
        sale = lock_for_update(db.session.query(Sale).filter_by(sale_number=sale_number)).first()
        if sale is None:
            raise NotFoundError("Sale not found", {"sale_number": sale_number})
        if sale.is_cancelled:
            raise InvalidStateTransition("Sale is already cancelled", {"sale_number": sale_number})
        sale.is_cancelled = True
        sale.cancelled_at = utcnow()
        sale.cancelled_by = actor_id
        sale.cancel_reason = str(reason).strip()[:255]
        db.session.flush()
        result = sale.to_dict()

    current_app.logger.info("Sale cancelled sale=%s actor=%s", sale_number, actor_id)
    return result
