"""
Inventory ledger tests.

Verifies:
- reserve / release / commit move quantity between counters
- Every counter change writes a StockMovement
- Release is idempotent, commit refuses released reservations
- Movements are append-only
"""

from decimal import Decimal

import pytest
from sqlalchemy import text

from valepos.errors import ImmutableRecordError, InsufficientStock, NotFoundError, ValidationError
from valepos.extensions import db
from valepos.models import StockMovement, StockReservation, Warehouse, WarehouseStock
from valepos.services import inventory_service
from valepos.services.concurrency import vale_transaction
from valepos.services.config_service import StockPolicy


STRICT = StockPolicy(allow_oversell=False, warehouse_priority="most_stock", auto_assign_warehouse=True)
OVERSELL = StockPolicy(allow_oversell=True, warehouse_priority="most_stock", auto_assign_warehouse=True)


def _movements(variant_id, kind=None):
    query = db.session.query(StockMovement).filter_by(variant_id=variant_id)
    if kind:
        query = query.filter_by(kind=kind)
    return query.order_by(StockMovement.id.asc()).all()


class TestReserve:

    def test_reserve_moves_available_to_reserved(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]

        with vale_transaction():
            allocation = inventory_service.reserve(v, "5", policy=STRICT)

        assert stock_of(v, sala) == (Decimal("0"), Decimal("5"))
        assert [(r.warehouse_id, r.quantity, r.status) for r in allocation.reservations] == [
            (sala, Decimal("5.00"), "active"),
        ]
        movement = _movements(v, "adjustment")[-1]
        assert movement.quantity == Decimal("-5")
        assert movement.quantity_before == Decimal("5")
        assert movement.quantity_after == Decimal("0")

    def test_reserve_insufficient_changes_nothing(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]

        with pytest.raises(InsufficientStock):
            with vale_transaction():
                inventory_service.reserve(v, "6", policy=STRICT)

        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))
        assert db.session.query(StockReservation).count() == 0

    def test_back_room_only_reached_when_preferred(self, stocked, put_stock, stock_of):
        v, sala, bod = stocked["variant"], stocked["SALA"], stocked["BOD01"]
        put_stock(v, bod, "4")

        with pytest.raises(InsufficientStock):
            with vale_transaction():
                inventory_service.reserve(v, "7", policy=STRICT)

        with vale_transaction():
            allocation = inventory_service.reserve(v, "7", policy=STRICT, preferred_warehouse_id=bod)

        assert [(r.warehouse_id, r.quantity) for r in allocation.reservations] == [
            (bod, Decimal("4.00")),
            (sala, Decimal("3.00")),
        ]
        assert stock_of(v, bod) == (Decimal("0"), Decimal("4"))
        assert stock_of(v, sala) == (Decimal("2"), Decimal("3"))

    def test_manual_warehouse_mode_requires_warehouse(self, stocked):
        manual = StockPolicy(allow_oversell=False, warehouse_priority="most_stock", auto_assign_warehouse=False)
        with pytest.raises(ValidationError):
            with vale_transaction():
                inventory_service.reserve(stocked["variant"], "1", policy=manual)

    def test_oversell_drives_first_candidate_negative(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]

        with vale_transaction():
            allocation = inventory_service.reserve(v, "8", policy=OVERSELL)

        assert allocation.oversold
        assert stock_of(v, sala) == (Decimal("-3"), Decimal("8"))

    def test_oversell_without_stock_rows_uses_virtual(self, warehouses, variant, stock_of):
        with vale_transaction():
            allocation = inventory_service.reserve(variant, "2", policy=OVERSELL)

        assert [(r.warehouse_id, r.oversold) for r in allocation.reservations] == [(warehouses["VIRTUAL"], True)]
        assert stock_of(variant, warehouses["VIRTUAL"]) == (Decimal("-2"), Decimal("2"))

    def test_check_availability_writes_nothing(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        assert inventory_service.check_availability(v, "5", policy=STRICT) is False
        with pytest.raises(InsufficientStock):
            inventory_service.check_availability(v, "5.01", policy=STRICT)
        db.session.rollback()
        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))


class TestReleaseAndCommit:

    def test_release_is_idempotent(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        with vale_transaction():
            allocation = inventory_service.reserve(v, "5", policy=STRICT)

        with vale_transaction():
            assert inventory_service.release(allocation) == 1
        with vale_transaction():
            assert inventory_service.release(allocation) == 0

        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))
        assert len(_movements(v, "adjustment")) == 2

    def test_commit_consumes_reserved(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        with vale_transaction():
            allocation = inventory_service.reserve(v, "5", policy=STRICT)
        with vale_transaction():
            inventory_service.commit(allocation, reference="VT20261017-0001")

        assert stock_of(v, sala) == (Decimal("0"), Decimal("0"))
        exits = _movements(v, "exit")
        assert len(exits) == 1
        assert exits[0].quantity == Decimal("5")
        assert exits[0].quantity_before == Decimal("5")
        assert exits[0].quantity_after == Decimal("0")
        assert exits[0].reference == "VT20261017-0001"
        assert all(r.status == "committed" for r in allocation.reservations)

    def test_commit_after_release_fails(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        with vale_transaction():
            allocation = inventory_service.reserve(v, "5", policy=STRICT)
        with vale_transaction():
            inventory_service.release(allocation)

        with pytest.raises(InsufficientStock):
            with vale_transaction():
                inventory_service.commit(allocation)

        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))
        assert _movements(v, "exit") == []

    def test_commit_with_missing_reserved_quantity_fails(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        with vale_transaction():
            allocation = inventory_service.reserve(v, "5", policy=STRICT)

        # Counter drifted below the reservation (manual SQL, crash...)
        db.session.execute(
            text("UPDATE warehouse_stock SET reserved = 1 WHERE variant_id = :v AND warehouse_id = :w"),
            {"v": v, "w": sala},
        )
        db.session.commit()

        with pytest.raises(InsufficientStock) as exc:
            with vale_transaction():
                inventory_service.commit(allocation)
        assert exc.value.details["requested"] == "5.00"


class TestAdjustAndTransfer:

    def test_adjust_records_signed_delta(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        with vale_transaction():
            result = inventory_service.adjust_stock(v, sala, "3.5", reason="Physical count", actor_id=30)

        assert result["previous"] == "5.00"
        assert result["new"] == "3.50"
        movement = db.session.get(StockMovement, result["movement_id"])
        assert movement.kind == "adjustment"
        assert movement.quantity == Decimal("-1.5")
        assert movement.actor_id == 30
        assert stock_of(v, sala) == (Decimal("3.5"), Decimal("0"))

    def test_adjust_rejects_virtual_and_negative(self, stocked):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(stocked["variant"], stocked["VIRTUAL"], "1", reason="x")
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(stocked["variant"], stocked["SALA"], "-1", reason="x")

    def test_transfer_writes_both_sides(self, stocked, stock_of):
        v, sala, bod = stocked["variant"], stocked["SALA"], stocked["BOD01"]
        with vale_transaction():
            result = inventory_service.transfer_stock(v, sala, bod, "2")

        assert stock_of(v, sala) == (Decimal("3"), Decimal("0"))
        assert stock_of(v, bod) == (Decimal("2"), Decimal("0"))
        transfers = _movements(v, "transfer")
        assert [m.id for m in transfers] == result["movement_ids"]
        assert [m.quantity for m in transfers] == [Decimal("-2"), Decimal("2")]
        assert all(m.destination_warehouse_id == bod for m in transfers)

    def test_transfer_insufficient_source(self, stocked, stock_of):
        v, sala, bod = stocked["variant"], stocked["SALA"], stocked["BOD01"]
        with pytest.raises(InsufficientStock):
            with vale_transaction():
                inventory_service.transfer_stock(v, sala, bod, "6")
        assert stock_of(v, sala) == (Decimal("5"), Decimal("0"))

    def test_availability_totals(self, stocked, put_stock):
        v = stocked["variant"]
        put_stock(v, stocked["BOD01"], "10")
        with vale_transaction():
            inventory_service.reserve(v, "2", policy=STRICT)

        availability = inventory_service.get_availability(v)
        assert availability["total_available"] == "13.00"
        assert availability["total_reserved"] == "2.00"
        assert availability["total_on_hand"] == "15.00"
        assert [w["warehouse_code"] for w in availability["warehouses"]] == ["SALA", "BOD01"]


class TestReceiveAndLowStock:

    def _set_minimum(self, variant_id, warehouse_id, minimum):
        row = db.session.query(WarehouseStock).filter_by(variant_id=variant_id, warehouse_id=warehouse_id).one()
        row.min_threshold = Decimal(minimum)
        db.session.commit()

    def test_receive_writes_entry(self, stocked, stock_of):
        v, sala = stocked["variant"], stocked["SALA"]
        with vale_transaction():
            movement = inventory_service.receive_stock(v, sala, "2.5", reason="Supplier delivery", reference="GD-881")

        assert stock_of(v, sala) == (Decimal("7.5"), Decimal("0"))
        entry = db.session.get(StockMovement, movement.id)
        assert entry.kind == "entry"
        assert (entry.quantity_before, entry.quantity_after) == (Decimal("5"), Decimal("7.5"))
        assert entry.reference == "GD-881"

    def test_receive_rejects_virtual_and_inactive(self, stocked):
        v = stocked["variant"]
        with pytest.raises(ValidationError):
            inventory_service.receive_stock(v, stocked["VIRTUAL"], "1")

        db.session.get(Warehouse, stocked["BOD01"]).is_active = False
        db.session.commit()
        with pytest.raises(NotFoundError):
            inventory_service.receive_stock(v, stocked["BOD01"], "1")
        with pytest.raises(ValidationError):
            inventory_service.receive_stock(v, stocked["SALA"], "0")

    def test_below_minimum(self, stocked, put_stock):
        v = stocked["variant"]
        put_stock(v, stocked["BOD01"], "4")
        self._set_minimum(v, stocked["SALA"], "10")

        rows = inventory_service.list_below_minimum()

        # BOD01 has no minimum configured
        assert [r["warehouse_code"] for r in rows] == ["SALA"]
        assert rows[0]["deficit"] == "5.00"
        assert rows[0]["stock_percent"] == 50
        assert rows[0]["sku"] == "LIN-BLA-M"
        assert inventory_service.list_below_minimum(warehouse_id=stocked["BOD01"]) == []

    def test_at_minimum_is_not_listed(self, stocked):
        self._set_minimum(stocked["variant"], stocked["SALA"], "5")
        assert inventory_service.list_below_minimum() == []


class TestMovementImmutability:

    def test_update_blocked(self, stocked):
        movement = _movements(stocked["variant"])[0]
        movement.reason = "rewritten"
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()

    def test_delete_blocked(self, stocked):
        movement = _movements(stocked["variant"])[0]
        db.session.delete(movement)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()
