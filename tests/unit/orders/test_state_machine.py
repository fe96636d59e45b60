"""Unit tests for the order status and payment state machines.

Covers:
- All valid/invalid order status transitions.
- The prepaid guard: card/bKash orders reach processing only once paid.
- The payment transition table and the state groups the engine uses.
- Every payment state appears in the transition and status tables.
"""

from __future__ import annotations

import pytest

from modules.orders.constants import (
    PAYMENT_STATUS_FOR_STATE,
    PAYMENT_TRANSITIONS,
    RELEASED_STATES,
    STARTABLE_STATES,
    STOCK_HELD_STATES,
    TERMINAL_STATES,
    UNSETTLED_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
    PaymentMethod,
    PaymentState,
    is_payment_transition_allowed,
)
from modules.orders.models import Order

pytestmark = pytest.mark.unit


def _order(status=OrderStatus.PENDING, method=PaymentMethod.CASH_ON_DELIVERY, state=None):
    state = state or PaymentState.NO_PAYMENT
    return Order(
        order_status=status,
        payment_method=method,
        payment_state=state,
        payment_status=PAYMENT_STATUS_FOR_STATE[state],
    )


class TestOrderStatusTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (current, target)
            for current, targets in VALID_TRANSITIONS.items()
            for target in targets
        ],
    )
    def test_valid_transitions_allowed_for_cash_on_delivery(self, current, target):
        assert _order(status=current).can_transition_to(target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.SHIPPED),
            (OrderStatus.PENDING, OrderStatus.DELIVERED),
            (OrderStatus.PROCESSING, OrderStatus.PENDING),
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
            (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
            (OrderStatus.CANCELLED, OrderStatus.PENDING),
        ],
    )
    def test_invalid_transitions_rejected(self, current, target):
        assert not _order(status=current).can_transition_to(target)

    def test_terminal_states(self):
        assert TERMINAL_STATES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
        assert _order(status=OrderStatus.DELIVERED).is_terminal
        assert not _order(status=OrderStatus.SHIPPED).is_terminal


class TestPrepaidGuard:
    @pytest.mark.parametrize(
        "state",
        [
            PaymentState.NO_PAYMENT,
            PaymentState.INTENT_CREATED,
            PaymentState.EXECUTING,
            PaymentState.FAILED,
            PaymentState.CANCELLED,
        ],
    )
    def test_unpaid_bkash_order_cannot_be_processed(self, state):
        order = _order(method=PaymentMethod.BKASH, state=state)
        assert not order.can_transition_to(OrderStatus.PROCESSING)

    def test_paid_bkash_order_can_be_processed(self):
        order = _order(method=PaymentMethod.BKASH, state=PaymentState.PAID)
        assert order.can_transition_to(OrderStatus.PROCESSING)

    def test_unpaid_bkash_order_can_still_be_cancelled(self):
        order = _order(method=PaymentMethod.BKASH, state=PaymentState.INTENT_CREATED)
        assert order.can_transition_to(OrderStatus.CANCELLED)

    def test_cash_on_delivery_is_not_prepaid(self):
        assert not _order().is_prepaid
        assert _order(method=PaymentMethod.CARD).is_prepaid


class TestPaymentStateTables:
    @pytest.mark.parametrize("state", PaymentState.values)
    def test_every_state_has_status_and_transitions(self, state):
        assert state in PAYMENT_STATUS_FOR_STATE
        assert state in PAYMENT_TRANSITIONS

    def test_refunded_is_final(self):
        assert PAYMENT_TRANSITIONS[PaymentState.REFUNDED] == set()

    def test_paid_never_goes_back(self):
        assert PAYMENT_TRANSITIONS[PaymentState.PAID] == {PaymentState.REFUNDED}

    def test_stock_is_released_only_in_failed_and_cancelled(self):
        released = set(PaymentState.values) - STOCK_HELD_STATES
        assert released == {PaymentState.FAILED, PaymentState.CANCELLED}

    def test_state_groups_follow_the_tables(self):
        assert RELEASED_STATES == (PaymentState.FAILED, PaymentState.CANCELLED)
        assert set(RELEASED_STATES).isdisjoint(STOCK_HELD_STATES)
        for state in STARTABLE_STATES:
            assert is_payment_transition_allowed(state, PaymentState.INTENT_CREATED)
        for state in UNSETTLED_STATES:
            assert is_payment_transition_allowed(state, PaymentState.PAID)

    @pytest.mark.parametrize(
        "current,new_state",
        [
            (PaymentState.INTENT_CREATED, PaymentState.NO_PAYMENT),
            (PaymentState.EXECUTING, PaymentState.CANCELLED),
            (PaymentState.FAILED, PaymentState.INTENT_CREATED),
        ],
    )
    def test_engine_moves_are_allowed(self, current, new_state):
        assert is_payment_transition_allowed(current, new_state)

    @pytest.mark.parametrize(
        "current,new_state",
        [
            (PaymentState.PAID, PaymentState.FAILED),
            (PaymentState.FAILED, PaymentState.PAID),
            (PaymentState.NO_PAYMENT, PaymentState.EXECUTING),
            (PaymentState.REFUNDED, PaymentState.PAID),
        ],
    )
    def test_backwards_moves_are_rejected(self, current, new_state):
        assert not is_payment_transition_allowed(current, new_state)
