"""
Order/payment reconciliation.

OrderReconciler owns the two paths that change an order:

* create_order validates a checkout, commits a pending order, asks the
  payment gateway for a checkout and records the returned gateway reference
  in a second commit. A status the gateway settles immediately goes through
  the same conditional update as a webhook. A gateway failure leaves the
  pending order in place.
* apply_payment_update fetches the authoritative payment state, locates the
  order through the correlation key echoed back by the gateway and applies
  the forward-only transition with a conditional update. Duplicate and
  concurrent deliveries collapse into a single write.

Collaborators are passed in explicitly; nothing here reaches for
process-wide state.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

from marketplace.core.config import Settings
from marketplace.core.logging import get_logger, set_order_id
from marketplace.services.orders.enums import (
    GatewayPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PurchaseType,
    ReconcileOutcome,
)
from marketplace.services.orders.repository import OrderRepository, OrderRepositoryError
from marketplace.services.orders.state_machine import (
    OrderStateMachine,
    TransitionConflictError,
)
from marketplace.services.payments.stripe_client import (
    GatewayPayment,
    PayerDetails,
    PaymentDetails,
    PaymentGatewayError,
    StripeGatewayClient,
)
from marketplace.services.sites.repository import SiteRepository

logger = get_logger(__name__)

CENTS = Decimal("0.01")

# orders.transaction_amount is NUMERIC(10, 2)
MAX_TRANSACTION_AMOUNT = Decimal("100000000")

# A lost race is followed by one re-read; the re-read order is either terminal
# or already carries the winner's write.
MAX_APPLY_ATTEMPTS = 2


class OrderReconcilerError(Exception):
    """Base exception for order reconciliation errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderValidationError(OrderReconcilerError):
    """Raised when checkout input is invalid. Nothing has been written."""

    pass


class ProductNotFoundError(OrderReconcilerError):
    """Raised when the requested site does not exist or is not available."""

    pass


class ReconciliationError(OrderReconcilerError):
    """Raised when a gateway update could not be applied and should be redelivered."""

    pass


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of a successful checkout."""

    order_id: int
    gateway_reference: str
    gateway_status: GatewayPaymentStatus
    order_status: OrderStatus = OrderStatus.PENDING
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderReconciler:
    """
    Creates orders and applies gateway payment updates to them.

    Example:
        reconciler = OrderReconciler(
            order_repository=OrderRepository(session),
            site_repository=SiteRepository(session),
            gateway=StripeGatewayClient(),
            settings=get_settings(),
        )
        outcome = await reconciler.apply_payment_update("pi_123")
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        site_repository: SiteRepository,
        gateway: StripeGatewayClient,
        settings: Settings,
        state_machine: Optional[OrderStateMachine] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.order_repository = order_repository
        self.site_repository = site_repository
        self.gateway = gateway
        self.settings = settings
        self.state_machine = state_machine or OrderStateMachine(
            rental_period_days=settings.rental_period_days
        )
        self.clock = clock

    def _validate_amount(self, client_stated_amount: Union[Decimal, float, str]) -> Decimal:
        try:
            amount = Decimal(str(client_stated_amount))
        except (InvalidOperation, ValueError) as e:
            raise OrderValidationError(
                "Transaction amount must be a number",
                amount=str(client_stated_amount),
            ) from e

        if not amount.is_finite() or amount <= 0:
            raise OrderValidationError(
                "Transaction amount must be positive",
                amount=str(client_stated_amount),
            )
        if amount >= MAX_TRANSACTION_AMOUNT:
            raise OrderValidationError(
                f"Transaction amount must be less than {MAX_TRANSACTION_AMOUNT}",
                amount=str(client_stated_amount),
            )
        if amount != amount.quantize(CENTS):
            raise OrderValidationError(
                "Transaction amount cannot have more than two decimal places",
                amount=str(amount),
            )
        if amount < self.settings.min_transaction_amount:
            raise OrderValidationError(
                f"Transaction amount must be at least {self.settings.min_transaction_amount}",
                amount=str(amount),
                minimum=str(self.settings.min_transaction_amount),
            )
        return amount.quantize(CENTS)

    def _describe(self, site: Any, purchase_type: PurchaseType) -> str:
        if purchase_type == PurchaseType.RENT:
            return (
                f"Rental of site: {site.name} "
                f"({self.settings.rental_period_days} days)"
            )
        return f"Purchase of site: {site.name}"

    async def create_order(
        self,
        user: Any,
        site_id: int,
        purchase_type: Union[PurchaseType, str],
        client_stated_amount: Union[Decimal, float, str],
        payer: PayerDetails,
        payment: PaymentDetails,
    ) -> CheckoutResult:
        """
        Validate a checkout, persist a pending order and open a gateway checkout.

        Args:
            user: Authenticated principal exposing ``id``
            site_id: Site to buy or rent
            purchase_type: sale or rent
            client_stated_amount: Amount shown to the buyer
            payer: Payer identity sent to the gateway
            payment: Card token or Pix selection

        Returns:
            CheckoutResult with the order id, gateway reference and the
            order status after applying the gateway's immediate answer

        Raises:
            OrderValidationError: If the input is invalid (nothing is written)
            ProductNotFoundError: If the site is missing or unavailable
            PaymentGatewayError: If the gateway refused or failed; the order
                stays pending with no gateway reference
        """
        try:
            kind = PurchaseType.from_string(str(getattr(purchase_type, "value", purchase_type)))
        except ValueError as e:
            raise OrderValidationError(str(e), purchase_type=str(purchase_type)) from e

        amount = self._validate_amount(client_stated_amount)

        if payment.method == PaymentMethod.CARD and not payment.card_token:
            raise OrderValidationError("Card payments require a card token")

        site = await self.site_repository.get_site(site_id)
        if site is None or not site.is_available:
            logger.info("Checkout for unknown or unavailable site", site_id=site_id)
            raise ProductNotFoundError("Site not found or unavailable", site_id=site_id)

        catalog_price = site.price_sale if kind == PurchaseType.SALE else site.price_rent
        if catalog_price is None or catalog_price <= 0:
            raise OrderValidationError(
                f"Site is not available for {kind.value}",
                site_id=site_id,
                purchase_type=kind.value,
            )

        if self.settings.enforce_catalog_price and amount != Decimal(catalog_price):
            logger.warning(
                "Checkout amount differs from catalog price",
                site_id=site_id,
                purchase_type=kind.value,
                amount=str(amount),
                catalog_price=str(catalog_price),
            )
            raise OrderValidationError(
                "Transaction amount does not match the site price",
                site_id=site_id,
                amount=str(amount),
                catalog_price=str(catalog_price),
            )

        order = await self.order_repository.create_pending_order(
            user_id=user.id,
            site_id=site.id,
            purchase_type=kind,
            transaction_amount=amount,
            payment_method=payment.method,
        )
        set_order_id(order.id)

        try:
            checkout = await self.gateway.create_checkout(
                order_id=order.id,
                payer=payer,
                amount=amount,
                description=self._describe(site, kind),
                notify_url=self.settings.webhook_url,
                payment=payment,
                correlation_key=str(order.id),
            )
        except PaymentGatewayError as e:
            logger.warning(
                "Gateway checkout failed, order left pending",
                order_id=order.id,
                code=e.code,
                declined=e.declined,
                error=e.message,
            )
            raise

        await self.order_repository.assign_gateway_reference(order.id, checkout.gateway_reference)

        logger.info(
            "Checkout created",
            order_id=order.id,
            gateway_reference=checkout.gateway_reference,
            gateway_status=checkout.status.value,
        )

        order_status = await self._apply_checkout_status(
            order.id,
            GatewayPayment(
                id=checkout.gateway_reference,
                status=checkout.status,
                correlation_key=str(order.id),
                amount=amount,
                raw_status=checkout.status.value,
            ),
        )

        return CheckoutResult(
            order_id=order.id,
            gateway_reference=checkout.gateway_reference,
            gateway_status=checkout.status,
            order_status=order_status,
            redirect_url=checkout.redirect_url,
            client_secret=checkout.client_secret,
        )

    async def _apply_checkout_status(self, order_id: int, payment: GatewayPayment) -> OrderStatus:
        """
        Apply the status the gateway answered at checkout.

        Card payments are usually settled by the time the PaymentIntent is
        created. A store failure here is not fatal: the payment exists and
        its webhook applies the same status later.
        """
        if payment.status == GatewayPaymentStatus.PENDING:
            return OrderStatus.PENDING

        try:
            order = await self.order_repository.get_order(order_id)
            if order is None:
                return OrderStatus.PENDING
            await self._apply(order, payment)
            order = await self.order_repository.get_order(order_id)
        except (OrderRepositoryError, ReconciliationError) as e:
            logger.warning(
                "Could not apply checkout status, waiting for webhook",
                order_id=order_id,
                gateway_payment_id=payment.id,
                gateway_status=payment.status.value,
                error=str(e),
            )
            return OrderStatus.PENDING

        return OrderStatus(order.status) if order is not None else OrderStatus.PENDING

    @staticmethod
    def _parse_correlation_key(correlation_key: Optional[str]) -> Optional[int]:
        if correlation_key is None:
            return None
        try:
            order_id = int(str(correlation_key).strip())
        except ValueError:
            return None
        return order_id if order_id > 0 else None

    async def apply_payment_update(self, gateway_payment_id: str) -> ReconcileOutcome:
        """
        Apply the gateway's current payment status to its order.

        Args:
            gateway_payment_id: Payment id taken from the notification

        Returns:
            ReconcileOutcome describing what happened

        Raises:
            PaymentGatewayError: If the payment could not be fetched
            OrderRepositoryError: If the order store failed
            ReconciliationError: If the transition kept losing to concurrent writers
        """
        payment = await self.gateway.fetch_payment(gateway_payment_id)

        order_id = self._parse_correlation_key(payment.correlation_key)
        if order_id is None:
            logger.warning(
                "Discarding unattributable payment update",
                gateway_payment_id=gateway_payment_id,
                correlation_key=payment.correlation_key,
                gateway_status=payment.status.value,
            )
            return ReconcileOutcome.DISCARDED

        set_order_id(order_id)

        order = await self.order_repository.get_order(order_id)
        if order is None:
            logger.warning(
                "Discarding payment update for unknown order",
                gateway_payment_id=gateway_payment_id,
                order_id=order_id,
                gateway_status=payment.status.value,
            )
            return ReconcileOutcome.DISCARDED

        if payment.amount is not None and payment.amount != order.transaction_amount:
            logger.warning(
                "Gateway amount differs from order amount",
                order_id=order_id,
                order_amount=str(order.transaction_amount),
                gateway_amount=str(payment.amount),
            )

        return await self._apply(order, payment)

    async def _apply(self, order: Any, payment: GatewayPayment) -> ReconcileOutcome:
        for attempt in range(MAX_APPLY_ATTEMPTS):
            try:
                decision = self.state_machine.decide(order, payment.status, now=self.clock())
            except TransitionConflictError as e:
                logger.warning(
                    "Conflicting payment status for settled order, keeping current status",
                    order_id=order.id,
                    gateway_payment_id=payment.id,
                    current_status=e.current_state.value,
                    reported_status=e.target_state.value,
                    gateway_status=payment.status.value,
                )
                return ReconcileOutcome.CONFLICT

            if not decision.requires_write:
                logger.info(
                    "Order already reflects payment status",
                    order_id=order.id,
                    gateway_payment_id=payment.id,
                    status=decision.target_status.value,
                )
                return ReconcileOutcome.NOOP

            applied = await self.order_repository.transition_status(
                order_id=order.id,
                expected_status=decision.current_status,
                new_status=decision.target_status,
                rent_expiry_date=decision.rent_expiry_date,
                gateway_payment_id=payment.id,
                gateway_status=payment.status.value,
                only_if_expiry_missing=decision.repairs_expiry,
            )
            if applied:
                logger.info(
                    "Payment update applied",
                    order_id=order.id,
                    gateway_payment_id=payment.id,
                    from_status=decision.current_status.value,
                    to_status=decision.target_status.value,
                )
                return ReconcileOutcome.APPLIED

            logger.info(
                "Order changed concurrently, re-reading",
                order_id=order.id,
                gateway_payment_id=payment.id,
                attempt=attempt + 1,
            )
            order = await self.order_repository.get_order(order.id)
            if order is None:
                return ReconcileOutcome.DISCARDED

        raise ReconciliationError(
            "Order kept changing while applying payment update",
            order_id=order.id,
            gateway_payment_id=payment.id,
        )
