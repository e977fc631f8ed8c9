"""
Vale creation, submission, cancellation and expiry tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from valepos.errors import InsufficientStock, InvalidStateTransition, OrderNotFound, ValidationError
from valepos.extensions import db
from valepos.models import Order, OrderLine, StockReservation
from valepos.services import order_service, sales_service
from valepos.time_utils import period_key, utcnow


SELLER_ID = 10


def _order(number):
    db.session.expire_all()
    return db.session.query(Order).filter_by(number=number).one()


class TestCreateVoucher:

    def test_numbers_are_daily_and_sequential(self, stocked, make_voucher):
        first = make_voucher(stocked["variant"], quantity="1")
        second = make_voucher(stocked["variant"], quantity="1")

        today = period_key(utcnow())
        assert first["voucher_number"] == f"VP{today}-0001"
        assert second["voucher_number"] == f"VP{today}-0002"
        assert (first["daily_sequence"], second["daily_sequence"]) == (1, 2)

    def test_line_subtotals_round_half_up(self, stocked, make_voucher):
        voucher = make_voucher(stocked["variant"], quantity="1.25", unit_price=1990)
        # 1.25 * 1990 = 2487.5
        assert voucher["subtotal"] == 2488
        line = db.session.query(OrderLine).one()
        assert line.subtotal == 2488
        assert line.warehouse_id == stocked["SALA"]

    def test_expiry_follows_setting(self, stocked, make_voucher, set_setting):
        set_setting("sale.reservation_timeout_minutes", 15)
        before = utcnow()
        number = make_voucher(stocked["variant"])["voucher_number"]
        expires = _order(number).reservation_expires_at
        assert timedelta(minutes=14) < expires - before <= timedelta(minutes=15, seconds=5)

    def test_insufficient_stock_creates_nothing(self, stocked, make_voucher, stock_of):
        with pytest.raises(InsufficientStock) as exc:
            make_voucher(stocked["variant"], quantity="5.5")

        assert exc.value.details["requested"] == "5.50"
        assert db.session.query(Order).count() == 0
        assert stock_of(stocked["variant"], stocked["SALA"]) == (Decimal("5"), Decimal("0"))
        # The failed attempt did not burn a number
        assert make_voucher(stocked["variant"])["daily_sequence"] == 1

    def test_oversell_setting(self, stocked, make_voucher, set_setting, stock_of):
        set_setting("stock.allow_oversell", True)
        voucher = make_voucher(stocked["variant"], quantity="7")
        assert voucher["reservation"][0]["oversold"] is True
        assert stock_of(stocked["variant"], stocked["SALA"]) == (Decimal("-2"), Decimal("7"))

    def test_validate_stock_off_allows_oversell(self, stocked, make_voucher, set_setting):
        set_setting("sale.validate_stock", False)
        voucher = make_voucher(stocked["variant"], quantity="9")
        assert voucher["state"] == "voucher_pending"
        assert voucher["reservation"][0]["oversold"] is True

    @pytest.mark.parametrize(
        "line,field",
        [
            ({"quantity": "1", "unit_price": 100}, "variant_id"),
            ({"variant_id": 1, "quantity": "0", "unit_price": 100}, "quantity"),
            ({"variant_id": 1, "quantity": "1"}, "unit_price"),
            ({"variant_id": 1, "quantity": "1", "unit_price": 100, "price_kind": "custom"}, "approver_id"),
        ],
    )
    def test_line_validation(self, db_session, line, field):
        with pytest.raises(ValidationError) as exc:
            order_service.create_voucher(SELLER_ID, "ticket", [line])
        assert exc.value.details["field"] == field
        assert exc.value.details["line"] == 0

    def test_requires_lines(self, db_session):
        with pytest.raises(ValidationError):
            order_service.create_voucher(SELLER_ID, "ticket", [])

    def test_unknown_variant(self, warehouses):
        with pytest.raises(ValidationError):
            order_service.create_voucher(SELLER_ID, "ticket", [{"variant_id": 999, "quantity": "1", "unit_price": 1}])


class TestPendingFlow:

    def test_pending_then_submit(self, stocked, make_voucher, set_setting, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        set_setting("sale.create_reservation", False)

        voucher = make_voucher(v)
        assert voucher["state"] == "pending"
        assert voucher["reservation"] is None
        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))

        submitted = order_service.submit_voucher(voucher["voucher_number"], SELLER_ID)
        assert submitted["state"] == "voucher_pending"
        assert stock_of(v, sala) == (Decimal("0"), Decimal("5"))

        with pytest.raises(InvalidStateTransition):
            order_service.submit_voucher(voucher["voucher_number"], SELLER_ID)

    def test_pending_creation_still_checks_stock(self, stocked, make_voucher, set_setting):
        set_setting("sale.create_reservation", False)
        with pytest.raises(InsufficientStock):
            make_voucher(stocked["variant"], quantity="6")
        assert db.session.query(Order).count() == 0


class TestCancelVoucher:

    def test_cancel_restores_stock(self, stocked, make_voucher, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        number = make_voucher(v)["voucher_number"]

        result = order_service.cancel_voucher(number, "Customer left", SELLER_ID)

        assert result["released_reservations"] == 1
        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))
        order = _order(number)
        assert order.state == "cancelled"
        assert "Customer left" in order.notes
        assert {r.status for r in db.session.query(StockReservation).all()} == {"released"}

    def test_cancel_claimed_vale(self, stocked, make_voucher):
        number = make_voucher(stocked["variant"])["voucher_number"]
        order = _order(number)
        order.state = "processing_at_register"
        order.locked_by = 20
        db.session.commit()

        order_service.cancel_voucher(number, None, 30)

        order = _order(number)
        assert order.state == "cancelled"
        assert order.locked_by is None

    def test_cannot_cancel_completed(self, stocked, make_voucher):
        number = make_voucher(stocked["variant"])["voucher_number"]
        sales_service.finalize_voucher(number, cashier_id=20, payment_method="cash", amount_paid=10000)

        with pytest.raises(InvalidStateTransition):
            order_service.cancel_voucher(number, "too late", SELLER_ID)

    def test_unknown_vale(self, db_session):
        with pytest.raises(OrderNotFound):
            order_service.cancel_voucher("VP20000101-0001", None, SELLER_ID)


class TestExpiry:

    def test_release_expired(self, stocked, make_voucher, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        expired = make_voucher(v, quantity="2")["voucher_number"]
        fresh = make_voucher(v, quantity="1")["voucher_number"]

        order = _order(fresh)
        order.reservation_expires_at = utcnow() + timedelta(hours=2)
        db.session.commit()

        cancelled = order_service.release_expired_reservations(now=utcnow() + timedelta(minutes=61))

        assert cancelled == [expired]
        assert _order(expired).state == "cancelled"
        assert _order(fresh).state == "voucher_pending"
        assert stock_of(v, sala) == (Decimal("4"), Decimal("1"))

    def test_detail_flags_expired_reservation(self, stocked, make_voucher):
        number = make_voucher(stocked["variant"])["voucher_number"]

        now_detail = order_service.load_voucher_detail(number)
        later_detail = order_service.load_voucher_detail(number, now=utcnow() + timedelta(hours=3))

        assert now_detail["reservation_expired"] is False
        assert later_detail["reservation_expired"] is True
        assert later_detail["lines"][0]["reservations"][0]["status"] == "active"

    def test_finalize_still_possible_before_sweep(self, stocked, make_voucher):
        number = make_voucher(stocked["variant"])["voucher_number"]
        order = _order(number)
        order.reservation_expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        result = sales_service.finalize_voucher(number, cashier_id=20, payment_method="cash", amount_paid=10000)
        assert result["voucher_number"] == number


class TestListVouchers:

    def test_filter_by_state_and_day(self, stocked, make_voucher):
        a = make_voucher(stocked["variant"], quantity="1")["voucher_number"]
        b = make_voucher(stocked["variant"], quantity="1")["voucher_number"]
        order_service.cancel_voucher(b, None, SELLER_ID)

        pending = order_service.list_vouchers(state="voucher_pending", day=utcnow().date())
        assert [v["number"] for v in pending] == [a]
        assert len(order_service.list_vouchers()) == 2
        assert order_service.list_vouchers(day=(utcnow() - timedelta(days=2)).date()) == []

    def test_rejects_unknown_state(self, db_session):
        with pytest.raises(ValidationError):
            order_service.list_vouchers(state="lost")
