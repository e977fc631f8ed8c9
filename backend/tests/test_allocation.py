"""
Warehouse allocation policy tests (pure, no database).
"""

from decimal import Decimal

import pytest

from valepos.errors import InsufficientStock
from valepos.services.allocation_service import (
    STRATEGY_MOST_STOCK,
    STRATEGY_WAREHOUSE_ORDER,
    StockCandidate,
    plan_allocation,
)


def _splits(plan):
    return [(s.warehouse_id, s.quantity, s.oversold) for s in plan.splits]


CANDIDATES = [
    StockCandidate(warehouse_id=1, available=Decimal("3")),
    StockCandidate(warehouse_id=2, available=Decimal("10")),
]


class TestOrdering:

    def test_most_stock_first(self):
        plan = plan_allocation("5", CANDIDATES, strategy=STRATEGY_MOST_STOCK)
        assert _splits(plan) == [(2, Decimal("5.00"), False)]

    def test_warehouse_order_splits_by_id(self):
        plan = plan_allocation("5", CANDIDATES, strategy=STRATEGY_WAREHOUSE_ORDER)
        assert _splits(plan) == [(1, Decimal("3.00"), False), (2, Decimal("2.00"), False)]

    def test_preferred_warehouse_goes_first(self):
        plan = plan_allocation("5", CANDIDATES, preferred_warehouse_id=1)
        assert _splits(plan) == [(1, Decimal("3.00"), False), (2, Decimal("2.00"), False)]

    def test_ties_break_on_warehouse_id(self):
        candidates = [
            StockCandidate(warehouse_id=7, available=Decimal("4")),
            StockCandidate(warehouse_id=3, available=Decimal("4")),
        ]
        plan = plan_allocation("2", candidates)
        assert _splits(plan) == [(3, Decimal("2.00"), False)]

    def test_same_snapshot_same_plan(self):
        first = plan_allocation("12.5", CANDIDATES)
        second = plan_allocation("12.5", list(reversed(CANDIDATES)))
        assert _splits(first) == _splits(second)

    def test_empty_candidates_are_skipped(self):
        candidates = [
            StockCandidate(warehouse_id=1, available=Decimal("0")),
            StockCandidate(warehouse_id=2, available=Decimal("-2")),
            StockCandidate(warehouse_id=3, available=Decimal("1.5")),
        ]
        plan = plan_allocation("1.5", candidates, strategy=STRATEGY_WAREHOUSE_ORDER)
        assert _splits(plan) == [(3, Decimal("1.50"), False)]


class TestShortage:

    def test_insufficient_without_oversell(self):
        with pytest.raises(InsufficientStock) as exc:
            plan_allocation("20", CANDIDATES, variant_id=9)
        details = exc.value.details
        assert details["variant_id"] == 9
        assert details["requested"] == "20.00"
        assert details["available"] == "13.00"
        assert {w["warehouse_id"] for w in details["warehouses"]} == {1, 2}

    def test_oversell_goes_to_first_candidate(self):
        plan = plan_allocation("15", CANDIDATES, allow_oversell=True)
        assert _splits(plan) == [
            (2, Decimal("10.00"), False),
            (1, Decimal("3.00"), False),
            (2, Decimal("2.00"), True),
        ]
        assert plan.oversold
        assert plan.allocated == Decimal("15.00")

    def test_oversell_without_candidates_uses_fallback(self):
        plan = plan_allocation("4", [], allow_oversell=True, fallback_warehouse_id=99)
        assert _splits(plan) == [(99, Decimal("4.00"), True)]

    def test_oversell_without_any_target(self):
        with pytest.raises(InsufficientStock):
            plan_allocation("4", [], allow_oversell=True)

    def test_exact_fit_is_not_oversold(self):
        plan = plan_allocation("13", CANDIDATES)
        assert not plan.oversold
        assert plan.allocated == Decimal("13.00")


def test_rejects_non_positive_quantity():
    with pytest.raises(ValueError):
        plan_allocation("0", CANDIDATES)
