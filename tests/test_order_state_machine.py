import uuid

import pytest

from milkcart.core.exceptions import BusinessRuleError, ValidationError
from milkcart.models.order import Order, OrderStatus
from milkcart.services import order_state_machine
from tests.factories import ist

PENDING = OrderStatus.PENDING.value
CONFIRMED = OrderStatus.CONFIRMED.value
DELIVERED = OrderStatus.DELIVERED.value
CANCELLED = OrderStatus.CANCELLED.value


def make_order(status: str, shift: str = "morning", assigned: bool = True) -> Order:
    return Order(
        order_number="ORD-1-001",
        status=status,
        delivery_shift=shift,
        delivery_boy_id=uuid.uuid4() if assigned else None,
    )


@pytest.mark.parametrize(
    "current,new",
    [
        (PENDING, CONFIRMED),
        (PENDING, CANCELLED),
        (CONFIRMED, DELIVERED),
        (CONFIRMED, CANCELLED),
    ],
)
def test_allowed_transitions(current, new):
    assert order_state_machine.can_transition(current, new)
    order_state_machine.validate_transition(current, new)


@pytest.mark.parametrize(
    "current,new",
    [
        (PENDING, DELIVERED),
        (CONFIRMED, PENDING),
        (DELIVERED, PENDING),
        (DELIVERED, CANCELLED),
        (CANCELLED, CONFIRMED),
    ],
)
def test_forbidden_transitions(current, new):
    assert not order_state_machine.can_transition(current, new)
    with pytest.raises(BusinessRuleError):
        order_state_machine.validate_transition(current, new)


def test_terminal_states():
    assert order_state_machine.TERMINAL_STATUSES == {DELIVERED, CANCELLED}
    assert order_state_machine.get_allowed_transitions(DELIVERED) == []

    with pytest.raises(BusinessRuleError, match="terminal state"):
        order_state_machine.validate_transition(CANCELLED, PENDING)


def test_same_status_is_a_noop():
    order_state_machine.validate_transition(CONFIRMED, CONFIRMED)
    order_state_machine.validate_transition(DELIVERED, DELIVERED)


def test_unknown_status_is_a_validation_error():
    with pytest.raises(ValidationError):
        order_state_machine.validate_transition(PENDING, "shipped")


def test_transition_action_labels():
    assert order_state_machine.get_transition_action(PENDING, CONFIRMED) == "Confirm"
    assert order_state_machine.get_transition_action(CONFIRMED, CANCELLED) == "Cancel"


class TestCustomerCancellation:
    def test_open_order_before_cutoff(self):
        allowed, _ = order_state_machine.can_be_cancelled_by_user(make_order(PENDING), ist(2026, 3, 10, 19, 59))
        assert allowed

    def test_morning_order_after_cutoff(self):
        allowed, message = order_state_machine.can_be_cancelled_by_user(
            make_order(CONFIRMED), ist(2026, 3, 10, 20, 0)
        )
        assert not allowed
        assert "20:00" in message

    def test_evening_order_after_cutoff(self):
        allowed, message = order_state_machine.can_be_cancelled_by_user(
            make_order(PENDING, shift="evening"), ist(2026, 3, 10, 14, 30)
        )
        assert not allowed
        assert "14:00" in message

    def test_delivered_order(self):
        allowed, _ = order_state_machine.can_be_cancelled_by_user(make_order(DELIVERED), ist(2026, 3, 10, 9, 0))
        assert not allowed


class TestMarkDelivered:
    def test_confirmed_assigned_inside_window(self):
        allowed, _ = order_state_machine.can_be_marked_as_delivered(make_order(CONFIRMED), ist(2026, 3, 11, 5, 0))
        assert allowed

    def test_window_end_is_exclusive(self):
        allowed, message = order_state_machine.can_be_marked_as_delivered(
            make_order(CONFIRMED), ist(2026, 3, 11, 11, 0)
        )
        assert not allowed
        assert "05:00" in message and "11:00" in message

    def test_before_window(self):
        allowed, _ = order_state_machine.can_be_marked_as_delivered(make_order(CONFIRMED), ist(2026, 3, 11, 4, 59))
        assert not allowed

    def test_pending_order(self):
        allowed, message = order_state_machine.can_be_marked_as_delivered(make_order(PENDING), ist(2026, 3, 11, 7, 0))
        assert not allowed
        assert "confirmed" in message

    def test_unassigned_order(self):
        allowed, _ = order_state_machine.can_be_marked_as_delivered(
            make_order(CONFIRMED, assigned=False), ist(2026, 3, 11, 7, 0)
        )
        assert not allowed
