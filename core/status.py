"""Order and payment status enumerations with the order transition table."""
from enum import Enum
from typing import Dict, FrozenSet

from core.exceptions import ValidationError


class OrderStatus(str, Enum):
    """Lifecycle of a customer order."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Lifecycle of a payment attempt."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

REVENUE_STATUSES = (OrderStatus.CONFIRMED.value, OrderStatus.DELIVERED.value)


def parse_order_status(value: object) -> OrderStatus:
    """
    Parse a raw status value.

    Raises:
        ValidationError: If the value is not one of the order statuses
    """
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(status.value for status in OrderStatus)
        raise ValidationError(f"Invalid status: {value!r}. Must be one of: {allowed}")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Check whether an order may move from current to target."""
    return target in ORDER_TRANSITIONS[current]


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """
    Ensure a transition is allowed.

    Raises:
        ValidationError: If the transition table has no such edge
    """
    if not can_transition(current, target):
        raise ValidationError(
            f"Cannot change order status from {current.value} to {target.value}"
        )
