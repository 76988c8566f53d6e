"""
Test suite for OrderReconciler.

The order store is an in-memory double that honours the conditional-update
contract of OrderRepository (the write only lands while the row still has
the expected status) and counts writes, so tests can assert exactly how many
times an order was touched.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from marketplace.services.orders.enums import (
    GatewayPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PurchaseType,
    ReconcileOutcome,
)
from marketplace.services.orders.reconciler import (
    OrderReconciler,
    OrderValidationError,
    ProductNotFoundError,
    ReconciliationError,
)
from marketplace.services.orders.repository import OrderUpdateError
from marketplace.services.payments.stripe_client import (
    GatewayCheckout,
    GatewayPayment,
    PayerDetails,
    PaymentDetails,
    PaymentGatewayError,
    StripeGatewayClient,
)

NOW = datetime(2026, 5, 10, 9, 30, tzinfo=timezone.utc)


# ============================================================================
# Test Doubles
# ============================================================================


@dataclass
class InMemoryOrderRepository:
    """OrderRepository double with conditional-update semantics."""

    orders: dict[int, SimpleNamespace] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)
    writes: int = 0
    reference_assignments: int = 0
    next_id: int = 1

    async def create_pending_order(
        self, user_id, site_id, purchase_type, transaction_amount, payment_method
    ):
        order = SimpleNamespace(
            id=self.next_id,
            user_id=user_id,
            site_id=site_id,
            purchase_type=purchase_type,
            transaction_amount=transaction_amount,
            payment_method=payment_method,
            status=OrderStatus.PENDING,
            gateway_reference=None,
            rent_expiry_date=None,
        )
        self.orders[order.id] = order
        self.next_id += 1
        self.writes += 1
        return copy.copy(order)

    async def assign_gateway_reference(self, order_id, gateway_reference):
        self.reference_assignments += 1
        order = self.orders[order_id]
        if order.gateway_reference is not None:
            return False
        order.gateway_reference = gateway_reference
        self.writes += 1
        return True

    async def get_order(self, order_id):
        order = self.orders.get(order_id)
        return copy.copy(order) if order else None

    async def transition_status(
        self,
        order_id,
        expected_status,
        new_status,
        rent_expiry_date=None,
        gateway_payment_id=None,
        gateway_status=None,
        only_if_expiry_missing=False,
    ):
        order = self.orders[order_id]
        if order.status != expected_status:
            return False
        if only_if_expiry_missing and order.rent_expiry_date is not None:
            return False
        order.status = new_status
        order.rent_expiry_date = rent_expiry_date
        self.history.append(
            {
                "order_id": order_id,
                "from_status": expected_status,
                "to_status": new_status,
                "gateway_payment_id": gateway_payment_id,
            }
        )
        self.writes += 1
        return True

    def add(self, **overrides) -> SimpleNamespace:
        values = dict(
            id=self.next_id,
            user_id=1,
            site_id=1,
            purchase_type=PurchaseType.SALE,
            transaction_amount=Decimal("150.00"),
            payment_method=PaymentMethod.PIX,
            status=OrderStatus.PENDING,
            gateway_reference=f"pi_{self.next_id}",
            rent_expiry_date=None,
        )
        values.update(overrides)
        order = SimpleNamespace(**values)
        self.orders[order.id] = order
        self.next_id = max(self.next_id, order.id) + 1
        return order


def payment(
    status: GatewayPaymentStatus,
    correlation_key: Optional[str] = "1",
    amount: Optional[Decimal] = Decimal("150.00"),
    payment_id: str = "pi_1",
) -> GatewayPayment:
    return GatewayPayment(
        id=payment_id,
        status=status,
        correlation_key=correlation_key,
        amount=amount,
        raw_status=status.value,
    )


@pytest.fixture
def order_repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def catalog_site() -> SimpleNamespace:
    return SimpleNamespace(
        id=3,
        name="Bakery Landing Page",
        price_sale=Decimal("150.00"),
        price_rent=Decimal("80.00"),
        is_available=True,
    )


@pytest.fixture
def site_repository(catalog_site) -> MagicMock:
    repository = MagicMock()
    repository.get_site = AsyncMock(return_value=catalog_site)
    return repository


@pytest.fixture
def gateway() -> MagicMock:
    gateway = MagicMock(spec=StripeGatewayClient)
    gateway.create_checkout = AsyncMock(
        return_value=GatewayCheckout(
            gateway_reference="pi_new",
            status=GatewayPaymentStatus.PENDING,
            redirect_url="https://pay.example.com/pix/pi_new",
        )
    )
    gateway.fetch_payment = AsyncMock()
    return gateway


@pytest.fixture
def reconciler(order_repository, site_repository, gateway, settings) -> OrderReconciler:
    return OrderReconciler(
        order_repository=order_repository,
        site_repository=site_repository,
        gateway=gateway,
        settings=settings,
        clock=lambda: NOW,
    )


@pytest.fixture
def buyer_principal() -> SimpleNamespace:
    return SimpleNamespace(id=42)


@pytest.fixture
def payer() -> PayerDetails:
    return PayerDetails(
        email="maria@example.com",
        full_name="Maria Silva",
        document_number="12345678909",
    )


PIX = PaymentDetails(method=PaymentMethod.PIX)


# ============================================================================
# Checkout
# ============================================================================


class TestCreateOrder:
    """Checkout: validation, pending insert, gateway call, reference assignment."""

    async def test_sale_checkout_creates_pending_order_with_reference(
        self, reconciler, order_repository, gateway, buyer_principal, payer, settings
    ):
        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="sale",
            client_stated_amount=Decimal("150.00"),
            payer=payer,
            payment=PIX,
        )

        order = order_repository.orders[result.order_id]
        assert order.status == OrderStatus.PENDING
        assert order.purchase_type == PurchaseType.SALE
        assert order.transaction_amount == Decimal("150.00")
        assert order.gateway_reference == "pi_new"
        assert order.user_id == 42
        assert result.gateway_reference == "pi_new"
        assert result.redirect_url == "https://pay.example.com/pix/pi_new"

        kwargs = gateway.create_checkout.await_args.kwargs
        assert kwargs["correlation_key"] == str(result.order_id)
        assert kwargs["amount"] == Decimal("150.00")
        assert kwargs["description"] == "Purchase of site: Bakery Landing Page"
        assert kwargs["notify_url"] == settings.webhook_url

    async def test_rent_checkout_describes_rental_period(
        self, reconciler, gateway, buyer_principal, payer
    ):
        await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type=PurchaseType.RENT,
            client_stated_amount="80.00",
            payer=payer,
            payment=PIX,
        )

        description = gateway.create_checkout.await_args.kwargs["description"]
        assert description == "Rental of site: Bakery Landing Page (30 days)"

    @pytest.mark.parametrize(
        "purchase_type,amount,message",
        [
            ("lease", "150.00", "Invalid purchase type"),
            ("sale", "0", "must be positive"),
            ("sale", "-10", "must be positive"),
            ("sale", "abc", "must be a number"),
            ("sale", "150.001", "two decimal places"),
            ("sale", "0.50", "at least"),
            ("sale", "149.99", "does not match"),
        ],
    )
    async def test_invalid_input_is_rejected_before_any_write(
        self,
        reconciler,
        order_repository,
        gateway,
        buyer_principal,
        payer,
        purchase_type,
        amount,
        message,
    ):
        with pytest.raises(OrderValidationError, match=message):
            await reconciler.create_order(
                user=buyer_principal,
                site_id=3,
                purchase_type=purchase_type,
                client_stated_amount=amount,
                payer=payer,
                payment=PIX,
            )

        assert order_repository.writes == 0
        gateway.create_checkout.assert_not_awaited()

    async def test_card_payment_without_token_is_rejected(
        self, reconciler, order_repository, buyer_principal, payer
    ):
        with pytest.raises(OrderValidationError, match="card token"):
            await reconciler.create_order(
                user=buyer_principal,
                site_id=3,
                purchase_type="sale",
                client_stated_amount="150.00",
                payer=payer,
                payment=PaymentDetails(method=PaymentMethod.CARD),
            )

        assert order_repository.writes == 0

    async def test_unknown_site_raises_not_found(
        self, reconciler, site_repository, order_repository, buyer_principal, payer
    ):
        site_repository.get_site.return_value = None

        with pytest.raises(ProductNotFoundError):
            await reconciler.create_order(
                user=buyer_principal,
                site_id=99,
                purchase_type="sale",
                client_stated_amount="150.00",
                payer=payer,
                payment=PIX,
            )

        assert order_repository.writes == 0

    async def test_unavailable_site_raises_not_found(
        self, reconciler, catalog_site, order_repository, buyer_principal, payer
    ):
        catalog_site.is_available = False

        with pytest.raises(ProductNotFoundError):
            await reconciler.create_order(
                user=buyer_principal,
                site_id=3,
                purchase_type="sale",
                client_stated_amount="150.00",
                payer=payer,
                payment=PIX,
            )

        assert order_repository.writes == 0

    async def test_site_not_offered_for_rent_is_rejected(
        self, reconciler, catalog_site, order_repository, buyer_principal, payer
    ):
        catalog_site.price_rent = Decimal("0.00")

        with pytest.raises(OrderValidationError, match="not available for rent"):
            await reconciler.create_order(
                user=buyer_principal,
                site_id=3,
                purchase_type="rent",
                client_stated_amount="80.00",
                payer=payer,
                payment=PIX,
            )

        assert order_repository.writes == 0

    async def test_gateway_failure_leaves_pending_order_without_reference(
        self, reconciler, order_repository, gateway, buyer_principal, payer
    ):
        gateway.create_checkout.side_effect = PaymentGatewayError(
            "Your card was declined.", code="card_declined", declined=True
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            await reconciler.create_order(
                user=buyer_principal,
                site_id=3,
                purchase_type="sale",
                client_stated_amount="150.00",
                payer=payer,
                payment=PaymentDetails(method=PaymentMethod.CARD, card_token="tok_visa"),
            )

        assert exc_info.value.message == "Your card was declined."
        assert len(order_repository.orders) == 1
        order = next(iter(order_repository.orders.values()))
        assert order.status == OrderStatus.PENDING
        assert order.gateway_reference is None
        assert order_repository.reference_assignments == 0

    async def test_amount_beyond_column_precision_is_rejected(
        self, reconciler, order_repository, buyer_principal, payer, settings, monkeypatch
    ):
        monkeypatch.setattr(settings, "enforce_catalog_price", False)

        with pytest.raises(OrderValidationError, match="less than"):
            await reconciler.create_order(
                user=buyer_principal,
                site_id=3,
                purchase_type="sale",
                client_stated_amount="100000000.00",
                payer=payer,
                payment=PIX,
            )

        assert order_repository.writes == 0


class TestCheckoutImmediateStatus:
    """The status the gateway answers at checkout is applied like a webhook."""

    CARD = PaymentDetails(method=PaymentMethod.CARD, card_token="pm_card_visa")

    async def test_approved_card_sale_completes_order(
        self, reconciler, order_repository, gateway, buyer_principal, payer
    ):
        gateway.create_checkout.return_value = GatewayCheckout(
            gateway_reference="pi_new", status=GatewayPaymentStatus.APPROVED
        )

        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="sale",
            client_stated_amount="150.00",
            payer=payer,
            payment=self.CARD,
        )

        assert result.order_status == OrderStatus.COMPLETED
        stored = order_repository.orders[result.order_id]
        assert stored.status == OrderStatus.COMPLETED
        assert stored.rent_expiry_date is None
        assert order_repository.history == [
            {
                "order_id": result.order_id,
                "from_status": OrderStatus.PENDING,
                "to_status": OrderStatus.COMPLETED,
                "gateway_payment_id": "pi_new",
            }
        ]

    async def test_approved_card_rent_sets_expiry(
        self, reconciler, order_repository, gateway, buyer_principal, payer
    ):
        gateway.create_checkout.return_value = GatewayCheckout(
            gateway_reference="pi_new", status=GatewayPaymentStatus.APPROVED
        )

        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="rent",
            client_stated_amount="80.00",
            payer=payer,
            payment=self.CARD,
        )

        stored = order_repository.orders[result.order_id]
        assert result.order_status == OrderStatus.RENTED
        assert stored.status == OrderStatus.RENTED
        assert stored.rent_expiry_date == NOW + timedelta(days=30)

    async def test_rejected_card_marks_order_rejected(
        self, reconciler, order_repository, gateway, buyer_principal, payer
    ):
        gateway.create_checkout.return_value = GatewayCheckout(
            gateway_reference="pi_new", status=GatewayPaymentStatus.REJECTED
        )

        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="sale",
            client_stated_amount="150.00",
            payer=payer,
            payment=self.CARD,
        )

        assert result.order_status == OrderStatus.REJECTED
        assert order_repository.orders[result.order_id].status == OrderStatus.REJECTED

    async def test_pending_pix_makes_no_transition(
        self, reconciler, order_repository, buyer_principal, payer
    ):
        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="sale",
            client_stated_amount="150.00",
            payer=payer,
            payment=PIX,
        )

        assert result.order_status == OrderStatus.PENDING
        assert order_repository.orders[result.order_id].status == OrderStatus.PENDING
        assert order_repository.history == []

    async def test_later_webhook_for_settled_checkout_is_noop(
        self, reconciler, order_repository, gateway, buyer_principal, payer
    ):
        gateway.create_checkout.return_value = GatewayCheckout(
            gateway_reference="pi_new", status=GatewayPaymentStatus.APPROVED
        )
        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="sale",
            client_stated_amount="150.00",
            payer=payer,
            payment=self.CARD,
        )
        writes = order_repository.writes
        gateway.fetch_payment.return_value = payment(
            GatewayPaymentStatus.APPROVED,
            correlation_key=str(result.order_id),
            payment_id="pi_new",
        )

        outcome = await reconciler.apply_payment_update("pi_new")

        assert outcome == ReconcileOutcome.NOOP
        assert order_repository.writes == writes
        assert len(order_repository.history) == 1

    async def test_store_failure_leaves_order_for_webhook(
        self, reconciler, order_repository, gateway, buyer_principal, payer
    ):
        gateway.create_checkout.return_value = GatewayCheckout(
            gateway_reference="pi_new", status=GatewayPaymentStatus.APPROVED
        )
        order_repository.transition_status = AsyncMock(
            side_effect=OrderUpdateError("Failed to update order status")
        )

        result = await reconciler.create_order(
            user=buyer_principal,
            site_id=3,
            purchase_type="sale",
            client_stated_amount="150.00",
            payer=payer,
            payment=self.CARD,
        )

        assert result.gateway_reference == "pi_new"
        assert result.order_status == OrderStatus.PENDING
        stored = order_repository.orders[result.order_id]
        assert stored.status == OrderStatus.PENDING
        assert stored.gateway_reference == "pi_new"


# ============================================================================
# Payment updates
# ============================================================================


class TestApplyPaymentUpdate:
    """Webhook-driven reconciliation of gateway state onto orders."""

    async def test_approved_sale_completes_order(self, reconciler, order_repository, gateway):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.APPLIED
        stored = order_repository.orders[1]
        assert stored.status == OrderStatus.COMPLETED
        assert stored.rent_expiry_date is None
        assert order_repository.writes == 1
        gateway.fetch_payment.assert_awaited_once_with("pi_1")

    async def test_update_before_reference_is_recorded(self, reconciler, order_repository, gateway):
        order_repository.add(id=1, gateway_reference=None)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.APPLIED
        stored = order_repository.orders[1]
        assert stored.status == OrderStatus.COMPLETED
        assert stored.gateway_reference is None
        assert order_repository.history[0]["gateway_payment_id"] == "pi_1"

    async def test_approved_rent_sets_expiry_from_clock(self, reconciler, order_repository, gateway):
        order_repository.add(
            id=1, purchase_type=PurchaseType.RENT, transaction_amount=Decimal("80.00")
        )
        gateway.fetch_payment.return_value = payment(
            GatewayPaymentStatus.APPROVED, amount=Decimal("80.00")
        )

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.APPLIED
        stored = order_repository.orders[1]
        assert stored.status == OrderStatus.RENTED
        assert stored.rent_expiry_date == NOW + timedelta(days=30)

    async def test_rejected_payment_rejects_order(self, reconciler, order_repository, gateway):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.REJECTED)

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.APPLIED
        assert order_repository.orders[1].status == OrderStatus.REJECTED

    async def test_pending_payment_leaves_pending_order_untouched(
        self, reconciler, order_repository, gateway
    ):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.IN_PROCESS)

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.NOOP
        assert order_repository.writes == 0

    async def test_duplicate_approval_writes_once(self, reconciler, order_repository, gateway):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)

        first = await reconciler.apply_payment_update("pi_1")
        second = await reconciler.apply_payment_update("pi_1")

        assert first == ReconcileOutcome.APPLIED
        assert second == ReconcileOutcome.NOOP
        assert order_repository.writes == 1
        assert len(order_repository.history) == 1

    async def test_pending_after_approval_is_conflict_without_write(
        self, reconciler, order_repository, gateway
    ):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)
        await reconciler.apply_payment_update("pi_1")

        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.PENDING)
        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.CONFLICT
        assert order_repository.orders[1].status == OrderStatus.COMPLETED
        assert order_repository.writes == 1

    async def test_approval_after_rejection_is_conflict(
        self, reconciler, order_repository, gateway
    ):
        order_repository.add(id=1, status=OrderStatus.REJECTED)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.CONFLICT
        assert order_repository.orders[1].status == OrderStatus.REJECTED
        assert order_repository.writes == 0

    async def test_rented_order_missing_expiry_is_repaired(
        self, reconciler, order_repository, gateway
    ):
        order_repository.add(
            id=1,
            purchase_type=PurchaseType.RENT,
            status=OrderStatus.RENTED,
            transaction_amount=Decimal("80.00"),
        )
        gateway.fetch_payment.return_value = payment(
            GatewayPaymentStatus.APPROVED, amount=Decimal("80.00")
        )

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.APPLIED
        assert order_repository.orders[1].rent_expiry_date == NOW + timedelta(days=30)

    @pytest.mark.parametrize("correlation_key", [None, "", "not-a-number", "0", "-4"])
    async def test_unattributable_payment_is_discarded(
        self, reconciler, order_repository, gateway, correlation_key
    ):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(
            GatewayPaymentStatus.APPROVED, correlation_key=correlation_key
        )

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.DISCARDED
        assert order_repository.writes == 0

    async def test_payment_for_unknown_order_is_discarded(
        self, reconciler, order_repository, gateway
    ):
        gateway.fetch_payment.return_value = payment(
            GatewayPaymentStatus.APPROVED, correlation_key="404"
        )

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.DISCARDED
        assert order_repository.writes == 0

    async def test_amount_mismatch_is_still_applied(self, reconciler, order_repository, gateway):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(
            GatewayPaymentStatus.APPROVED, amount=Decimal("1.00")
        )

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.APPLIED
        assert order_repository.orders[1].transaction_amount == Decimal("150.00")

    async def test_gateway_fetch_failure_propagates(self, reconciler, order_repository, gateway):
        order_repository.add(id=1)
        gateway.fetch_payment.side_effect = PaymentGatewayError(
            "No such payment_intent", code="resource_missing", retryable=True
        )

        with pytest.raises(PaymentGatewayError):
            await reconciler.apply_payment_update("pi_1")

        assert order_repository.orders[1].status == OrderStatus.PENDING


class TestConcurrentUpdates:
    """Lost conditional updates are resolved by re-reading the order."""

    async def test_lost_race_rereads_and_reports_noop(self, reconciler, order_repository, gateway):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)
        original_transition = order_repository.transition_status

        async def concurrent_winner(**kwargs):
            # Another worker applies the same approval between our read and write
            await original_transition(**kwargs)
            return False

        order_repository.transition_status = concurrent_winner

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.NOOP
        assert order_repository.orders[1].status == OrderStatus.COMPLETED
        assert len(order_repository.history) == 1

    async def test_lost_race_against_different_outcome_is_conflict(
        self, reconciler, order_repository, gateway
    ):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)

        async def rejected_concurrently(**kwargs):
            order_repository.orders[1].status = OrderStatus.REJECTED
            return False

        order_repository.transition_status = rejected_concurrently

        outcome = await reconciler.apply_payment_update("pi_1")

        assert outcome == ReconcileOutcome.CONFLICT
        assert order_repository.orders[1].status == OrderStatus.REJECTED

    async def test_repeatedly_losing_raises_reconciliation_error(
        self, reconciler, order_repository, gateway
    ):
        order_repository.add(id=1)
        gateway.fetch_payment.return_value = payment(GatewayPaymentStatus.APPROVED)
        order_repository.transition_status = AsyncMock(return_value=False)

        with pytest.raises(ReconciliationError):
            await reconciler.apply_payment_update("pi_1")

        assert order_repository.transition_status.await_count == 2
