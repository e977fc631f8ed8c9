"""
Cashier shift tests.

Verifies:
- One open shift per cashier
- Theoretical cash = opening + cash taken - change, cancelled sales excluded
- Close computes variance and cannot be repeated
"""

import pytest

from valepos.errors import NotFoundError, ShiftError, ValidationError
from valepos.services import sales_service, shift_service


CASHIER_ID = 20
OTHER_CASHIER_ID = 21


def _sell(make_voucher, variant_id, **payment):
    number = make_voucher(variant_id, quantity="1")["voucher_number"]
    return sales_service.finalize_voucher(number, cashier_id=CASHIER_ID, **payment)


def test_open_shift(db_session):
    shift = shift_service.open_shift(CASHIER_ID, " CAJA-01 ", 20000)
    assert shift["status"] == "open"
    assert shift["register_code"] == "CAJA-01"
    assert shift_service.get_open_shift(CASHIER_ID).id == shift["id"]


def test_one_open_shift_per_cashier(db_session):
    shift_service.open_shift(CASHIER_ID, "CAJA-01", 0)
    with pytest.raises(ShiftError):
        shift_service.open_shift(CASHIER_ID, "CAJA-02", 0)
    # Another cashier is unaffected
    assert shift_service.open_shift(OTHER_CASHIER_ID, "CAJA-02", 0)["status"] == "open"


def test_open_shift_validation(db_session):
    with pytest.raises(ValidationError):
        shift_service.open_shift(CASHIER_ID, "", 0)
    with pytest.raises(ValidationError):
        shift_service.open_shift(CASHIER_ID, "CAJA-01", -1)


def test_theoretical_cash(stocked, make_voucher):
    shift = shift_service.open_shift(CASHIER_ID, "CAJA-01", 20000)
    v = stocked["variant"]

    _sell(make_voucher, v, payment_method="cash", amount_paid=5000)        # 2000 owed, 3000 change
    _sell(make_voucher, v, payment_method="debit_card", amount_paid=2000)
    cancelled = _sell(make_voucher, v, payment_method="cash", amount_paid=2000)
    sales_service.cancel_sale(cancelled["sale_number"], "Wrong item", 30)

    assert shift_service.theoretical_cash_total(shift["id"]) == 22000


def test_close_shift_variance(stocked, make_voucher):
    shift = shift_service.open_shift(CASHIER_ID, "CAJA-01", 10000)
    _sell(make_voucher, stocked["variant"], payment_method="cash", amount_paid=2000)

    closed = shift_service.close_shift(shift["id"], 11500, current_cashier_id=CASHIER_ID)

    assert closed["status"] == "closed"
    assert closed["expected_cash"] == 12000
    assert closed["variance"] == -500
    assert shift_service.get_open_shift(CASHIER_ID) is None

    with pytest.raises(ShiftError):
        shift_service.close_shift(shift["id"], 11500, current_cashier_id=CASHIER_ID)


def test_only_owner_or_manager_closes(db_session):
    shift = shift_service.open_shift(CASHIER_ID, "CAJA-01", 0)
    with pytest.raises(ShiftError):
        shift_service.close_shift(shift["id"], 0, current_cashier_id=OTHER_CASHIER_ID)
    closed = shift_service.close_shift(shift["id"], 0, current_cashier_id=30, manager_override=True)
    assert closed["variance"] == 0


def test_unknown_shift(db_session):
    with pytest.raises(NotFoundError):
        shift_service.theoretical_cash_total(999)
    with pytest.raises(NotFoundError):
        shift_service.close_shift(999, 0)
