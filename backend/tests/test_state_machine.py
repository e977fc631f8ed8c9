"""
Vale lifecycle tests.

Verifies:
- Allowed and forbidden transitions
- Terminal states accept nothing
- Lock fields follow the processing state
"""

from datetime import datetime

import pytest

from valepos.errors import InvalidStateTransition
from valepos.models import Order
from valepos.services import state_machine as sm


T0 = datetime(2026, 10, 17, 12, 0, 0)
T1 = datetime(2026, 10, 17, 12, 5, 0)


def _order(state):
    return Order(number="VP20261017-0001", daily_sequence=1, seller_id=1, state=state, created_at=T0, updated_at=T0)


class TestTransitions:

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (sm.STATE_DRAFT, sm.STATE_PENDING),
            (sm.STATE_DRAFT, sm.STATE_VOUCHER_PENDING),
            (sm.STATE_PENDING, sm.STATE_VOUCHER_PENDING),
            (sm.STATE_VOUCHER_PENDING, sm.STATE_PROCESSING),
            (sm.STATE_PROCESSING, sm.STATE_COMPLETED),
            (sm.STATE_PROCESSING, sm.STATE_VOUCHER_PENDING),
            (sm.STATE_PROCESSING, sm.STATE_PAID_AWAITING_DATA),
            (sm.STATE_PAID_AWAITING_DATA, sm.STATE_COMPLETED),
            (sm.STATE_VOUCHER_PENDING, sm.STATE_CANCELLED),
        ],
    )
    def test_allowed(self, from_state, to_state):
        order = _order(from_state)
        sm.transition(order, to_state, now=T1)
        assert order.state == to_state
        assert order.updated_at == T1

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (sm.STATE_DRAFT, sm.STATE_COMPLETED),
            (sm.STATE_PENDING, sm.STATE_PROCESSING),
            (sm.STATE_VOUCHER_PENDING, sm.STATE_COMPLETED),
            (sm.STATE_COMPLETED, sm.STATE_CANCELLED),
            (sm.STATE_CANCELLED, sm.STATE_VOUCHER_PENDING),
        ],
    )
    def test_forbidden(self, from_state, to_state):
        order = _order(from_state)
        with pytest.raises(InvalidStateTransition) as exc:
            sm.transition(order, to_state, now=T1)
        assert exc.value.details == {"voucher_number": order.number, "from": from_state, "to": to_state}
        assert order.state == from_state
        assert order.updated_at == T0

    def test_terminal_states_have_no_exits(self):
        for state in sm.TERMINAL_STATES:
            assert sm.is_terminal(state)
            assert not any(sm.can_transition(state, target) for target in sm.ALL_STATES)

    def test_every_non_terminal_state_can_be_cancelled(self):
        for state in sm.ALL_STATES:
            if not sm.is_terminal(state):
                assert sm.can_transition(state, sm.STATE_CANCELLED), state


class TestClaim:

    def test_claim_sets_lock(self):
        order = _order(sm.STATE_VOUCHER_PENDING)
        sm.claim(order, 20, now=T1)
        assert order.state == sm.STATE_PROCESSING
        assert order.locked_by == 20
        assert order.locked_at == T1

    def test_reclaim_refreshes_lock(self):
        order = _order(sm.STATE_VOUCHER_PENDING)
        sm.claim(order, 20, now=T0)
        sm.claim(order, 21, now=T1)
        assert order.locked_by == 21
        assert order.updated_at == T1

    def test_leaving_processing_clears_lock(self):
        order = _order(sm.STATE_VOUCHER_PENDING)
        sm.claim(order, 20, now=T0)
        sm.transition(order, sm.STATE_VOUCHER_PENDING, now=T1)
        assert order.locked_by is None
        assert order.locked_at is None

    def test_cannot_claim_completed(self):
        order = _order(sm.STATE_COMPLETED)
        with pytest.raises(InvalidStateTransition):
            sm.claim(order, 20, now=T1)
        assert order.locked_by is None
