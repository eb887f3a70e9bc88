"""
Order State Machine

Single source of truth for order status transitions.

    pending ──► confirmed ──► delivered
       │            │
       └──► cancelled ◄──┘

delivered and cancelled are terminal. Stock moves only on
pending -> confirmed (decrement) and confirmed -> cancelled (restore).
"""

from datetime import datetime
from typing import Dict, List, Tuple

from milkcart.core.exceptions import BusinessRuleError, ValidationError
from milkcart.models.order import Order, OrderStatus
from milkcart.services import delivery_scheduling


# =============================================================================
# TRANSITION RULES
# =============================================================================

ORDER_STATUS_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.PENDING.value: [
        OrderStatus.CONFIRMED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.CONFIRMED.value: [
        OrderStatus.DELIVERED.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.DELIVERED.value: [],   # Terminal
    OrderStatus.CANCELLED.value: [],   # Terminal
}

TERMINAL_STATUSES = frozenset(
    status for status, allowed in ORDER_STATUS_TRANSITIONS.items() if not allowed
)

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value): "Confirm",
    (OrderStatus.PENDING.value, OrderStatus.CANCELLED.value): "Cancel",
    (OrderStatus.CONFIRMED.value, OrderStatus.DELIVERED.value): "Deliver",
    (OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value): "Cancel",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def is_valid_status(status: str) -> bool:
    return status in ORDER_STATUS_TRANSITIONS


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in ORDER_STATUS_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return list(ORDER_STATUS_TRANSITIONS.get(current_status, []))


def get_transition_action(current_status: str, new_status: str) -> str:
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises BusinessRuleError if invalid.

    Same-status requests are allowed and treated as no-ops by callers.
    """
    if not is_valid_status(new_status):
        raise ValidationError(
            f"Invalid order status '{new_status}'",
            details={"allowed": list(ORDER_STATUS_TRANSITIONS)},
        )

    if current_status == new_status:
        return

    if not can_transition(current_status, new_status):
        allowed = get_allowed_transitions(current_status)
        if not allowed:
            raise BusinessRuleError(
                f"Order in '{current_status}' status cannot be modified. This is a terminal state."
            )
        raise BusinessRuleError(
            f"Cannot change order from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {', '.join(allowed)}"
        )


# =============================================================================
# TIME-GATED CHECKS
# =============================================================================

def can_be_cancelled_by_user(order: Order, now: datetime) -> Tuple[bool, str]:
    """Customers may cancel open orders until the shift's cutoff hour."""
    if order.status not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
        return False, f"Order cannot be cancelled in '{order.status}' status"

    if not delivery_scheduling.can_cancel_now(order.delivery_shift, now):
        cutoff = delivery_scheduling.get_cancellation_cutoff_hour(order.delivery_shift)
        return False, (
            f"{order.delivery_shift.capitalize()} orders cannot be cancelled after "
            f"{cutoff:02d}:00"
        )

    return True, ""


def can_be_marked_as_delivered(order: Order, now: datetime) -> Tuple[bool, str]:
    """Only confirmed, assigned orders inside the shift's delivery window."""
    if order.status != OrderStatus.CONFIRMED.value:
        return False, "Only confirmed orders can be marked as delivered"

    if order.delivery_boy_id is None:
        return False, "Order is not assigned to a delivery person"

    if not delivery_scheduling.is_within_delivery_window(order.delivery_shift, now):
        start, end = delivery_scheduling.get_delivery_window(order.delivery_shift)
        return False, (
            f"{order.delivery_shift.capitalize()} deliveries can only be marked between "
            f"{start.strftime('%H:%M')} and {end.strftime('%H:%M')}"
        )

    return True, ""
