"""Order status and item state enums with the order transition table.

Valid order transitions:
- PENDING -> VALUATED, REMOVED
- VALUATED -> PAID, REMOVED
- PAID -> REMOVED
- REMOVED -> PENDING (restore)
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Lifecycle status of an order request."""

    PENDING = "PENDING"
    VALUATED = "VALUATED"
    PAID = "PAID"
    REMOVED = "REMOVED"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert a case-insensitive string to OrderStatus.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().upper())
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )

    @property
    def accepts_comments(self) -> bool:
        return self is not OrderStatus.REMOVED

    @property
    def accepts_offers(self) -> bool:
        return self in {OrderStatus.PENDING, OrderStatus.VALUATED}


class ItemState(str, Enum):
    """Fulfilment state of a single requested part."""

    REQUESTED = "REQUESTED"
    VALUATED = "VALUATED"
    PURCHASED = "PURCHASED"
    DECLINED = "DECLINED"


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.VALUATED,
        OrderStatus.REMOVED,
    },
    OrderStatus.VALUATED: {
        OrderStatus.PAID,
        OrderStatus.REMOVED,
    },
    OrderStatus.PAID: {
        OrderStatus.REMOVED,
    },
    OrderStatus.REMOVED: {
        OrderStatus.PENDING,
    },
}


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus,
) -> bool:
    """Return True if moving from ``current`` to ``new`` is allowed."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def get_allowed_transitions(current: OrderStatus) -> Set[OrderStatus]:
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()


def is_terminal_status(status: OrderStatus) -> bool:
    """True when no transition leaves ``status``. REMOVED can be restored."""
    return not ORDER_STATUS_TRANSITIONS.get(status)
