"""
Stripe payment gateway client.

This module adapts Stripe PaymentIntents to the two operations the order
reconciler needs: creating a checkout for an order and fetching the
authoritative state of a payment. Stripe statuses are normalised onto the
approved / pending / in_process / rejected / cancelled vocabulary, and every
Stripe failure is translated into PaymentGatewayError carrying the remote
message verbatim. The client never retries: redelivery is driven by the
webhook sender and by the checkout caller.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

import stripe

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger, log_performance
from marketplace.services.orders.enums import GatewayPaymentStatus, PaymentMethod

logger = get_logger(__name__)

CENTS = Decimal("0.01")

CORRELATION_METADATA_KEY = "order_id"

STRIPE_STATUS_MAP: dict[str, GatewayPaymentStatus] = {
    "succeeded": GatewayPaymentStatus.APPROVED,
    "processing": GatewayPaymentStatus.IN_PROCESS,
    "requires_confirmation": GatewayPaymentStatus.PENDING,
    "requires_action": GatewayPaymentStatus.PENDING,
    "requires_capture": GatewayPaymentStatus.PENDING,
    "requires_payment_method": GatewayPaymentStatus.PENDING,
    "canceled": GatewayPaymentStatus.CANCELLED,
}


class PaymentGatewayError(Exception):
    """Raised when the payment gateway rejects a request or is unreachable.

    Attributes:
        code: Gateway error code, when one was returned
        declined: True when the gateway refused the payer's input
        retryable: True when the same request may succeed later
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        declined: bool = False,
        retryable: bool = False,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.declined = declined
        self.retryable = retryable
        self.context = context


@dataclass(frozen=True)
class PayerAddress:
    zip_code: Optional[str] = None
    street_name: Optional[str] = None
    street_number: Optional[str] = None


@dataclass(frozen=True)
class PayerDetails:
    """Who pays, as sent to the gateway."""

    email: str
    full_name: str
    document_number: Optional[str] = None
    address: Optional[PayerAddress] = None

    @property
    def first_name(self) -> str:
        return self.full_name.split(" ", 1)[0]

    @property
    def last_name(self) -> str:
        parts = self.full_name.split(" ", 1)
        return parts[1] if len(parts) > 1 else ""


@dataclass(frozen=True)
class PaymentDetails:
    """How the payer pays: a tokenised card or a Pix transfer."""

    method: PaymentMethod
    card_token: Optional[str] = None


@dataclass(frozen=True)
class GatewayCheckout:
    """Result of creating a checkout at the gateway."""

    gateway_reference: str
    status: GatewayPaymentStatus
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class GatewayPayment:
    """Authoritative payment state fetched from the gateway."""

    id: str
    status: GatewayPaymentStatus
    correlation_key: Optional[str]
    amount: Optional[Decimal] = None
    raw_status: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents."""
    return int((amount.quantize(CENTS, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def from_minor_units(amount: Optional[int]) -> Optional[Decimal]:
    if amount is None:
        return None
    return (Decimal(amount) / 100).quantize(CENTS)


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    return getattr(obj, name, None)


def _metadata_dict(intent: Any) -> dict[str, str]:
    metadata = _field(intent, "metadata")
    if not metadata:
        return {}
    try:
        return {str(key): str(metadata[key]) for key in metadata.keys()}
    except (AttributeError, KeyError, TypeError):
        return {}


def normalise_status(intent: Any) -> GatewayPaymentStatus:
    """
    Map a PaymentIntent onto the gateway status vocabulary.

    A payment that needs a new payment method after a failed attempt is a
    rejection; before any attempt it is still pending.
    """
    raw_status = _field(intent, "status")
    if raw_status == "requires_payment_method" and _field(intent, "last_payment_error"):
        return GatewayPaymentStatus.REJECTED

    status = STRIPE_STATUS_MAP.get(raw_status)
    if status is None:
        logger.warning(
            "Unknown Stripe payment status, treating as pending",
            stripe_status=raw_status,
            payment_intent_id=_field(intent, "id"),
        )
        return GatewayPaymentStatus.PENDING
    return status


def _redirect_url(intent: Any) -> Optional[str]:
    next_action = _field(intent, "next_action")
    if not next_action:
        return None

    pix_instructions = _field(next_action, "pix_display_qr_code")
    if pix_instructions:
        return _field(pix_instructions, "hosted_instructions_url")

    redirect = _field(next_action, "redirect_to_url")
    if redirect:
        return _field(redirect, "url")

    return None


class StripeGatewayClient:
    """
    Payment gateway client backed by Stripe PaymentIntents.

    Stripe's SDK is synchronous; calls run in a worker thread so the event
    loop is never blocked.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        """
        Initialize Stripe client with configuration.

        Args:
            api_key: Stripe secret API key (defaults to settings)
            currency: Lower-case ISO currency code (defaults to settings)
        """
        settings = get_settings()
        self.api_key = api_key or settings.stripe_secret_key
        self.currency = (currency or settings.payment_currency).lower()

        stripe.api_key = self.api_key
        stripe.max_network_retries = 0

        logger.info("Stripe client initialized", currency=self.currency)

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a Stripe SDK call and translate its failures.

        Raises:
            PaymentGatewayError: For every Stripe failure
        """
        try:
            with log_performance(logger, f"stripe.{operation}"):
                return await asyncio.to_thread(func, *args, **kwargs)

        except stripe.CardError as e:
            logger.warning(
                f"Stripe card error: {operation}",
                error=str(e),
                code=e.code,
                decline_code=getattr(e, "decline_code", None),
            )
            raise PaymentGatewayError(
                e.user_message or str(e),
                code=e.code,
                declined=True,
                decline_code=getattr(e, "decline_code", None),
            ) from e

        except stripe.InvalidRequestError as e:
            missing = e.code == "resource_missing"
            log = logger.warning if missing else logger.error
            log(
                f"Stripe invalid request: {operation}",
                error=str(e),
                code=e.code,
                param=e.param,
            )
            raise PaymentGatewayError(
                e.user_message or str(e),
                code=e.code,
                declined=not missing,
                retryable=missing,
                param=e.param,
            ) from e

        except stripe.AuthenticationError as e:
            logger.error(f"Stripe authentication error: {operation}", error=str(e), code=e.code)
            raise PaymentGatewayError(
                e.user_message or str(e),
                code=e.code or "authentication_error",
            ) from e

        except (stripe.RateLimitError, stripe.APIConnectionError) as e:
            logger.warning(
                f"Stripe transient error: {operation}",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentGatewayError(
                e.user_message or str(e),
                code=e.code or type(e).__name__,
                retryable=True,
            ) from e

        except stripe.APIError as e:
            logger.error(f"Stripe API error: {operation}", error=str(e), code=e.code)
            raise PaymentGatewayError(
                e.user_message or str(e),
                code=e.code or "api_error",
                retryable=True,
            ) from e

        except stripe.StripeError as e:
            logger.error(
                f"Unexpected Stripe error: {operation}",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentGatewayError(
                e.user_message or str(e),
                code=getattr(e, "code", None),
            ) from e

    def _payment_params(self, payer: PayerDetails, payment: PaymentDetails) -> dict[str, Any]:
        billing_details: dict[str, Any] = {
            "name": payer.full_name,
            "email": payer.email,
        }
        if payer.address and payer.address.zip_code:
            line1 = " ".join(
                part for part in (payer.address.street_name, payer.address.street_number) if part
            )
            billing_details["address"] = {
                "postal_code": payer.address.zip_code,
                "line1": line1 or None,
                "country": "BR",
            }

        if payment.method == PaymentMethod.PIX:
            return {
                "payment_method_types": ["pix"],
                "payment_method_data": {"type": "pix", "billing_details": billing_details},
                "confirm": True,
            }

        if not payment.card_token:
            raise PaymentGatewayError(
                "Card payments require a card token",
                code="missing_card_token",
                declined=True,
            )

        params: dict[str, Any] = {"payment_method_types": ["card"], "confirm": True}
        if payment.card_token.startswith("pm_"):
            params["payment_method"] = payment.card_token
        else:
            params["payment_method_data"] = {
                "type": "card",
                "card": {"token": payment.card_token},
                "billing_details": billing_details,
            }
        return params

    async def create_checkout(
        self,
        order_id: int,
        payer: PayerDetails,
        amount: Decimal,
        description: str,
        notify_url: Optional[str],
        payment: PaymentDetails,
        correlation_key: str,
    ) -> GatewayCheckout:
        """
        Create and confirm a PaymentIntent for an order.

        The correlation key is stored in the intent metadata and comes back
        unchanged on every fetch. The idempotency key is derived from the
        order id so a resubmitted checkout never charges twice.

        Args:
            order_id: Local order id
            payer: Payer identity and billing address
            amount: Amount to charge
            description: Statement description
            notify_url: Webhook URL recorded with the payment
            payment: Card token or Pix selection
            correlation_key: Value echoed back to locate the order

        Returns:
            GatewayCheckout with the PaymentIntent id as gateway reference

        Raises:
            PaymentGatewayError: If Stripe rejects the request or is unreachable
        """
        metadata = {
            CORRELATION_METADATA_KEY: correlation_key,
            "payer_document": payer.document_number or "",
        }
        if notify_url:
            metadata["notify_url"] = notify_url

        params: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "description": description,
            "receipt_email": payer.email,
            "metadata": metadata,
            "idempotency_key": f"order-{order_id}-checkout",
        }
        params.update(self._payment_params(payer, payment))

        logger.info(
            "Creating payment intent",
            order_id=order_id,
            amount=str(amount),
            currency=self.currency,
            payment_method=payment.method.value,
        )

        intent = await self._call("create_payment_intent", stripe.PaymentIntent.create, **params)
        status = normalise_status(intent)

        logger.info(
            "Payment intent created",
            order_id=order_id,
            payment_intent_id=intent.id,
            stripe_status=_field(intent, "status"),
            status=status.value,
        )

        return GatewayCheckout(
            gateway_reference=intent.id,
            status=status,
            redirect_url=_redirect_url(intent),
            client_secret=_field(intent, "client_secret"),
        )

    async def fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        """
        Retrieve the current state of a payment.

        Raises:
            PaymentGatewayError: If the payment is unknown (retryable) or Stripe fails
        """
        logger.debug("Retrieving payment intent", payment_intent_id=gateway_payment_id)

        intent = await self._call(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            gateway_payment_id,
        )
        metadata = _metadata_dict(intent)

        return GatewayPayment(
            id=intent.id,
            status=normalise_status(intent),
            correlation_key=metadata.get(CORRELATION_METADATA_KEY) or None,
            amount=from_minor_units(_field(intent, "amount")),
            raw_status=_field(intent, "status"),
            metadata=metadata,
        )
