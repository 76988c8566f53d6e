"""Order status, purchase and gateway enums for order lifecycle management.

This module defines the closed status domain of an order, the purchase and
payment kinds a checkout may request, the normalised gateway payment statuses
reported back by the payment processor, and the single mapping table used to
project a gateway status onto an order status.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> COMPLETED, RENTED, REJECTED
    - COMPLETED -> (terminal state)
    - RENTED -> (terminal state)
    - REJECTED -> (terminal state)
    """

    PENDING = "pending"
    COMPLETED = "completed"
    RENTED = "rented"
    REJECTED = "rejected"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state.

        Returns:
            True if status is COMPLETED, RENTED or REJECTED
        """
        return self in TERMINAL_ORDER_STATUSES

    def is_settled(self) -> bool:
        """Check if the order was paid for (bought or currently rented)."""
        return self in {OrderStatus.COMPLETED, OrderStatus.RENTED}

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class PurchaseType(str, Enum):
    """What the buyer is acquiring: ownership or a time-boxed rental."""

    SALE = "sale"
    RENT = "rent"

    @classmethod
    def from_string(cls, value: str) -> "PurchaseType":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(
                f"Invalid purchase type: {value}. Valid values are: sale, rent"
            )


class PaymentMethod(str, Enum):
    """Payment instrument used at checkout."""

    CARD = "card"
    PIX = "pix"


class GatewayPaymentStatus(str, Enum):
    """Payment status as reported by the gateway client.

    Processor-specific statuses are normalised onto this vocabulary by the
    gateway adapter before they reach the reconciler.
    """

    APPROVED = "approved"
    PENDING = "pending"
    IN_PROCESS = "in_process"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "GatewayPaymentStatus":
        """Convert string to GatewayPaymentStatus enum.

        Raises:
            ValueError: If value is not a known gateway status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid gateway payment status: {value}. "
                f"Valid values are: {valid_values}"
            )


class ReconcileOutcome(str, Enum):
    """Result of applying one gateway notification to an order."""

    APPLIED = "applied"
    NOOP = "noop"
    CONFLICT = "conflict"
    DISCARDED = "discarded"


TERMINAL_ORDER_STATUSES: Set[OrderStatus] = {
    OrderStatus.COMPLETED,
    OrderStatus.RENTED,
    OrderStatus.REJECTED,
}

# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.COMPLETED,
        OrderStatus.RENTED,
        OrderStatus.REJECTED,
    },
    OrderStatus.COMPLETED: set(),  # Terminal
    OrderStatus.RENTED: set(),  # Terminal
    OrderStatus.REJECTED: set(),  # Terminal
}

# Approved payments settle differently per purchase type; every other gateway
# status maps to the same order status regardless of kind.
APPROVED_STATUS_BY_PURCHASE_TYPE: Dict[PurchaseType, OrderStatus] = {
    PurchaseType.SALE: OrderStatus.COMPLETED,
    PurchaseType.RENT: OrderStatus.RENTED,
}

GATEWAY_STATUS_TO_ORDER_STATUS: Dict[GatewayPaymentStatus, OrderStatus] = {
    GatewayPaymentStatus.PENDING: OrderStatus.PENDING,
    GatewayPaymentStatus.IN_PROCESS: OrderStatus.PENDING,
    GatewayPaymentStatus.REJECTED: OrderStatus.REJECTED,
    GatewayPaymentStatus.CANCELLED: OrderStatus.REJECTED,
}


def map_gateway_status(
    gateway_status: GatewayPaymentStatus,
    purchase_type: PurchaseType,
) -> OrderStatus:
    """Project a gateway payment status onto the order status domain.

    Args:
        gateway_status: Normalised status reported by the gateway
        purchase_type: Kind of the order the payment belongs to

    Returns:
        Order status the payment implies
    """
    if gateway_status == GatewayPaymentStatus.APPROVED:
        return APPROVED_STATUS_BY_PURCHASE_TYPE[purchase_type]
    return GATEWAY_STATUS_TO_ORDER_STATUS[gateway_status]


def validate_order_status_transition(
    current: OrderStatus,
    new: OrderStatus
) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())
