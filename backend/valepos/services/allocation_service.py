# Overview: Pure warehouse allocation policy; decides which warehouses a quantity is reserved from.

"""
Warehouse allocation policy.

plan_allocation() is a pure function: it sees a snapshot of candidate stock
rows and returns how a requested quantity is split between them. It never
touches the database. The ledger locks the rows, builds the snapshot, calls
this, and applies the plan.

ORDERING of candidates:
1. the preferred warehouse, if one was given
2. descending available (strategy "most_stock" only)
3. ascending warehouse id (always, as the tie breaker)

The same snapshot therefore always produces the same plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..errors import InsufficientStock
from valepos.quantities import ZERO, to_quantity

STRATEGY_MOST_STOCK = "most_stock"
STRATEGY_WAREHOUSE_ORDER = "warehouse_order"
STRATEGIES = (STRATEGY_MOST_STOCK, STRATEGY_WAREHOUSE_ORDER)


@dataclass(frozen=True)
class StockCandidate:
    warehouse_id: int
    available: Decimal


@dataclass(frozen=True)
class AllocationSplit:
    warehouse_id: int
    quantity: Decimal
    oversold: bool = False


@dataclass
class AllocationPlan:
    variant_id: int | None
    requested: Decimal
    splits: list[AllocationSplit] = field(default_factory=list)

    @property
    def oversold(self) -> bool:
        return any(s.oversold for s in self.splits)

    @property
    def allocated(self) -> Decimal:
        return sum((s.quantity for s in self.splits), ZERO)


def order_candidates(
    candidates: list[StockCandidate],
    *,
    preferred_warehouse_id: int | None = None,
    strategy: str = STRATEGY_MOST_STOCK,
) -> list[StockCandidate]:
    def _key(c: StockCandidate):
        preferred = 0 if preferred_warehouse_id is not None and c.warehouse_id == preferred_warehouse_id else 1
        by_stock = -c.available if strategy == STRATEGY_MOST_STOCK else ZERO
        return (preferred, by_stock, c.warehouse_id)

    return sorted(candidates, key=_key)


def plan_allocation(
    requested,
    candidates: list[StockCandidate],
    *,
    variant_id: int | None = None,
    preferred_warehouse_id: int | None = None,
    strategy: str = STRATEGY_MOST_STOCK,
    allow_oversell: bool = False,
    fallback_warehouse_id: int | None = None,
) -> AllocationPlan:
    """
    Split requested across candidates greedily in policy order.

    When candidates run out:
    - allow_oversell: the remainder goes to the first candidate (or to
      fallback_warehouse_id when there is none) flagged oversold
    - otherwise: InsufficientStock with per-warehouse availability
    """
    requested = to_quantity(requested)
    if requested <= ZERO:
        raise ValueError("requested quantity must be positive")
    if strategy not in STRATEGIES:
        strategy = STRATEGY_MOST_STOCK

    ordered = order_candidates(
        candidates,
        preferred_warehouse_id=preferred_warehouse_id,
        strategy=strategy,
    )

    plan = AllocationPlan(variant_id=variant_id, requested=requested)
    remaining = requested
    for candidate in ordered:
        if remaining <= ZERO:
            break
        available = to_quantity(candidate.available)
        if available <= ZERO:
            continue
        take = min(available, remaining)
        plan.splits.append(AllocationSplit(warehouse_id=candidate.warehouse_id, quantity=take))
        remaining -= take

    if remaining <= ZERO:
        return plan

    if not allow_oversell:
        raise InsufficientStock(
            "Insufficient stock",
            {
                "variant_id": variant_id,
                "requested": str(requested),
                "available": str(plan.allocated),
                "warehouses": [
                    {"warehouse_id": c.warehouse_id, "available": str(to_quantity(c.available))}
                    for c in ordered
                ],
            },
        )

    if ordered:
        target = ordered[0].warehouse_id
    elif fallback_warehouse_id is not None:
        target = fallback_warehouse_id
    else:
        raise InsufficientStock(
            "No warehouse can absorb oversold quantity",
            {"variant_id": variant_id, "requested": str(requested)},
        )

    plan.splits.append(AllocationSplit(warehouse_id=target, quantity=remaining, oversold=True))
    return plan
