"""
Test suite for the order status enums and OrderStateMachine.

Covers the gateway-to-order status mapping, forward-only transitions,
rental expiry computation and conflict detection for settled orders.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional

import pytest

from marketplace.services.orders.enums import (
    GatewayPaymentStatus,
    OrderStatus,
    PurchaseType,
    map_gateway_status,
    validate_order_status_transition,
)
from marketplace.services.orders.state_machine import (
    OrderStateMachine,
    StateTransitionError,
    TransitionConflictError,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_order(
    status: OrderStatus = OrderStatus.PENDING,
    purchase_type: PurchaseType = PurchaseType.SALE,
    rent_expiry_date: Optional[datetime] = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        id=7,
        status=status,
        purchase_type=purchase_type,
        rent_expiry_date=rent_expiry_date,
    )


@pytest.fixture
def machine() -> OrderStateMachine:
    return OrderStateMachine(rental_period_days=30)


# ============================================================================
# Status mapping
# ============================================================================


class TestGatewayStatusMapping:
    """Projection of gateway statuses onto order statuses."""

    @pytest.mark.parametrize(
        "purchase_type,expected",
        [
            (PurchaseType.SALE, OrderStatus.COMPLETED),
            (PurchaseType.RENT, OrderStatus.RENTED),
        ],
    )
    def test_approved_depends_on_purchase_type(self, purchase_type, expected):
        assert map_gateway_status(GatewayPaymentStatus.APPROVED, purchase_type) == expected

    @pytest.mark.parametrize(
        "gateway_status,expected",
        [
            (GatewayPaymentStatus.PENDING, OrderStatus.PENDING),
            (GatewayPaymentStatus.IN_PROCESS, OrderStatus.PENDING),
            (GatewayPaymentStatus.REJECTED, OrderStatus.REJECTED),
            (GatewayPaymentStatus.CANCELLED, OrderStatus.REJECTED),
        ],
    )
    @pytest.mark.parametrize("purchase_type", list(PurchaseType))
    def test_other_statuses_ignore_purchase_type(self, gateway_status, expected, purchase_type):
        assert map_gateway_status(gateway_status, purchase_type) == expected

    def test_from_string_is_case_insensitive(self):
        assert GatewayPaymentStatus.from_string("APPROVED") == GatewayPaymentStatus.APPROVED
        assert OrderStatus.from_string("Rented") == OrderStatus.RENTED
        assert PurchaseType.from_string("RENT") == PurchaseType.RENT

    def test_from_string_rejects_unknown_values(self):
        with pytest.raises(ValueError, match="Invalid purchase type"):
            PurchaseType.from_string("lease")
        with pytest.raises(ValueError, match="Invalid gateway payment status"):
            GatewayPaymentStatus.from_string("refunded")


class TestTransitionRules:
    """Forward-only transition table."""

    @pytest.mark.parametrize(
        "target", [OrderStatus.COMPLETED, OrderStatus.RENTED, OrderStatus.REJECTED]
    )
    def test_pending_moves_to_any_terminal_status(self, target):
        assert validate_order_status_transition(OrderStatus.PENDING, target)

    @pytest.mark.parametrize(
        "current", [OrderStatus.COMPLETED, OrderStatus.RENTED, OrderStatus.REJECTED]
    )
    @pytest.mark.parametrize("target", list(OrderStatus))
    def test_terminal_statuses_never_move(self, current, target):
        assert not validate_order_status_transition(current, target)

    def test_terminal_and_settled_flags(self):
        assert not OrderStatus.PENDING.is_terminal()
        assert OrderStatus.REJECTED.is_terminal()
        assert OrderStatus.COMPLETED.is_settled()
        assert OrderStatus.RENTED.is_settled()
        assert not OrderStatus.REJECTED.is_settled()


# ============================================================================
# Decisions
# ============================================================================


class TestOrderStateMachineDecide:
    """Decisions computed for a gateway status."""

    def test_approved_sale_completes_without_expiry(self, machine):
        decision = machine.decide(make_order(), GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.current_status == OrderStatus.PENDING
        assert decision.target_status == OrderStatus.COMPLETED
        assert decision.rent_expiry_date is None
        assert decision.requires_write is True

    def test_approved_rent_sets_expiry_thirty_days_out(self, machine):
        order = make_order(purchase_type=PurchaseType.RENT)

        decision = machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.target_status == OrderStatus.RENTED
        assert decision.rent_expiry_date == NOW + timedelta(days=30)

    def test_rental_period_is_configurable(self):
        machine = OrderStateMachine(rental_period_days=7)
        order = make_order(purchase_type=PurchaseType.RENT)

        decision = machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.rent_expiry_date == NOW + timedelta(days=7)

    def test_rejected_payment_rejects_pending_order(self, machine):
        decision = machine.decide(make_order(), GatewayPaymentStatus.REJECTED, now=NOW)

        assert decision.target_status == OrderStatus.REJECTED
        assert decision.rent_expiry_date is None

    @pytest.mark.parametrize(
        "gateway_status", [GatewayPaymentStatus.PENDING, GatewayPaymentStatus.IN_PROCESS]
    )
    def test_pending_statuses_are_noop_for_pending_order(self, machine, gateway_status):
        decision = machine.decide(make_order(), gateway_status, now=NOW)

        assert decision.requires_write is False
        assert decision.target_status == OrderStatus.PENDING

    def test_repeated_approval_of_completed_order_is_noop(self, machine):
        order = make_order(status=OrderStatus.COMPLETED)

        decision = machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.requires_write is False

    def test_repeated_approval_keeps_existing_rental_expiry(self, machine):
        expiry = NOW + timedelta(days=12)
        order = make_order(
            status=OrderStatus.RENTED,
            purchase_type=PurchaseType.RENT,
            rent_expiry_date=expiry,
        )

        decision = machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.requires_write is False
        assert decision.rent_expiry_date == expiry

    def test_rented_order_missing_expiry_is_repaired(self, machine):
        order = make_order(status=OrderStatus.RENTED, purchase_type=PurchaseType.RENT)

        decision = machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.requires_write is True
        assert decision.repairs_expiry is True
        assert decision.rent_expiry_date == NOW + timedelta(days=30)

    def test_pending_after_approval_is_a_conflict(self, machine):
        order = make_order(status=OrderStatus.COMPLETED)

        with pytest.raises(TransitionConflictError) as exc_info:
            machine.decide(order, GatewayPaymentStatus.PENDING, now=NOW)

        assert exc_info.value.current_state == OrderStatus.COMPLETED
        assert exc_info.value.target_state == OrderStatus.PENDING
        assert exc_info.value.context["order_id"] == 7

    def test_approval_after_rejection_is_a_conflict(self, machine):
        order = make_order(status=OrderStatus.REJECTED)

        with pytest.raises(StateTransitionError):
            machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

    def test_decide_accepts_plain_string_columns(self, machine):
        order = make_order()
        order.status = "pending"
        order.purchase_type = "rent"

        decision = machine.decide(order, GatewayPaymentStatus.APPROVED, now=NOW)

        assert decision.target_status == OrderStatus.RENTED


class TestOrderStateMachineConfiguration:
    def test_rejects_non_positive_rental_period(self):
        with pytest.raises(ValueError):
            OrderStateMachine(rental_period_days=0)

    def test_allowed_transitions_from_pending(self, machine):
        allowed = machine.get_allowed_transitions(make_order())

        assert allowed == {OrderStatus.COMPLETED, OrderStatus.RENTED, OrderStatus.REJECTED}

    def test_allowed_transitions_returns_a_copy(self, machine):
        allowed = machine.get_allowed_transitions(make_order())
        allowed.clear()

        assert machine.get_allowed_transitions(make_order())
