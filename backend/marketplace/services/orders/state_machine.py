"""Order state machine deciding how a gateway status moves an order.

The state machine is pure: it inspects the order's current status, purchase
type and rental expiry together with the gateway's reported status and
returns a TransitionDecision. Persisting the decision is the reconciler's
job. Transitions are forward only; a terminal order that is told about a
different outcome raises TransitionConflictError instead of being rewritten.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Set

from marketplace.services.orders.enums import (
    ORDER_STATUS_TRANSITIONS,
    GatewayPaymentStatus,
    OrderStatus,
    PurchaseType,
    map_gateway_status,
    validate_order_status_transition,
)

DEFAULT_RENTAL_PERIOD_DAYS = 30


class StateTransitionError(Exception):
    """Raised when an order status transition cannot be applied."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class TransitionConflictError(StateTransitionError):
    """Raised when a terminal order receives a different terminal outcome."""

    pass


@dataclass(frozen=True)
class TransitionDecision:
    """What to write for one gateway status.

    Attributes:
        current_status: Status the decision was computed against
        target_status: Status the order should end up in
        rent_expiry_date: Expiry to store along with the status
        requires_write: False when the order already reflects the status
        repairs_expiry: True when a rented order is only missing its expiry
    """

    current_status: OrderStatus
    target_status: OrderStatus
    rent_expiry_date: Optional[datetime] = None
    requires_write: bool = True
    repairs_expiry: bool = False


class OrderStateMachine:
    """Forward-only order state machine.

    Example:
        machine = OrderStateMachine(rental_period_days=30)
        decision = machine.decide(order, GatewayPaymentStatus.APPROVED)
    """

    def __init__(self, rental_period_days: int = DEFAULT_RENTAL_PERIOD_DAYS):
        if rental_period_days <= 0:
            raise ValueError("rental_period_days must be positive")
        self.rental_period = timedelta(days=rental_period_days)

    def rental_expiry_from(self, now: datetime) -> datetime:
        return now + self.rental_period

    def decide(
        self,
        order: Any,
        gateway_status: GatewayPaymentStatus,
        now: Optional[datetime] = None,
    ) -> TransitionDecision:
        """Compute the transition a gateway status implies for an order.

        Args:
            order: Object exposing status, purchase_type and rent_expiry_date
            gateway_status: Normalised gateway payment status
            now: Reference time for rental expiry, defaults to current UTC

        Returns:
            TransitionDecision, with requires_write False for a no-op

        Raises:
            TransitionConflictError: If a terminal order would change status
        """
        now = now or datetime.now(timezone.utc)
        current = OrderStatus(order.status)
        purchase_type = PurchaseType(order.purchase_type)
        target = map_gateway_status(gateway_status, purchase_type)

        if target == current:
            if target == OrderStatus.RENTED and order.rent_expiry_date is None:
                return TransitionDecision(
                    current_status=current,
                    target_status=target,
                    rent_expiry_date=self.rental_expiry_from(now),
                    repairs_expiry=True,
                )
            return TransitionDecision(
                current_status=current,
                target_status=target,
                rent_expiry_date=order.rent_expiry_date,
                requires_write=False,
            )

        if not validate_order_status_transition(current, target):
            raise TransitionConflictError(
                f"Cannot move order from {current.value} to {target.value}",
                current_state=current,
                target_state=target,
                order_id=getattr(order, "id", None),
                gateway_status=gateway_status.value,
            )

        expiry = self.rental_expiry_from(now) if target == OrderStatus.RENTED else None
        return TransitionDecision(
            current_status=current,
            target_status=target,
            rent_expiry_date=expiry,
        )

    def get_allowed_transitions(self, order: Any) -> Set[OrderStatus]:
        return ORDER_STATUS_TRANSITIONS.get(OrderStatus(order.status), set()).copy()
