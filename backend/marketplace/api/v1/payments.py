"""
Checkout and payment webhook API endpoints.

The checkout endpoint opens a purchase or rental through the order
reconciler. The webhook endpoint receives the gateway's asynchronous
notifications; it only extracts a payment id and lets the reconciler fetch
the authoritative state, so the notification body itself is never trusted.
Any processing failure answers 500 so the gateway delivers again.
"""

import json
from typing import Annotated, Any, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from marketplace.api.deps import CurrentUser, get_order_reconciler
from marketplace.core.logging import get_logger
from marketplace.schemas.payments import CheckoutRequest, CheckoutResponse, WebhookAck
from marketplace.services.orders.reconciler import (
    OrderReconciler,
    OrderValidationError,
    ProductNotFoundError,
    ReconciliationError,
)
from marketplace.services.orders.repository import OrderRepositoryError
from marketplace.services.payments.stripe_client import PaymentGatewayError

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def is_payment_notification(notification_type: str) -> bool:
    """Mercado Pago style ``payment`` topics and Stripe ``payment_intent.*`` events."""
    notification_type = notification_type.strip().lower()
    return (
        notification_type == "payment"
        or notification_type.startswith("payment.")
        or notification_type.startswith("payment_intent.")
    )


def extract_payment_id(query: Mapping[str, str], body: Any) -> tuple[Optional[str], bool]:
    """
    Find the payment id in a webhook notification.

    Query parameters ``data.id`` and ``id`` are checked first, then the body's
    ``data.object.id``, ``data.id`` and a bare ``id`` (never the id of an
    event envelope).

    Returns:
        (payment_id, ignored): ignored is True for notifications about
        something other than a payment
    """
    body = body if isinstance(body, dict) else {}

    notification_type = (
        body.get("type") or body.get("topic") or query.get("type") or query.get("topic")
    )
    if notification_type and not is_payment_notification(str(notification_type)):
        return None, True

    for key in ("data.id", "id"):
        value = query.get(key)
        if value:
            return str(value), False

    data = body.get("data")
    if isinstance(data, dict):
        payment_object = data.get("object")
        if isinstance(payment_object, dict) and payment_object.get("id"):
            return str(payment_object["id"]), False
        if data.get("id"):
            return str(data["id"]), False

    if body.get("id") and body.get("object") != "event":
        return str(body["id"]), False

    return None, False


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON", size=len(raw))
        return {}


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a purchase or rental",
)
async def checkout(
    checkout_request: CheckoutRequest,
    current_user: CurrentUser,
    reconciler: Annotated[OrderReconciler, Depends(get_order_reconciler)],
) -> CheckoutResponse:
    """
    Create a pending order and the gateway payment for it.

    Raises:
        HTTPException: 400 for invalid input or a declined payment, 404 for
            an unknown or unavailable site, 502 when the gateway fails
    """
    logger.info(
        "Checkout requested",
        user_id=current_user.id,
        site_id=checkout_request.site_id,
        purchase_type=checkout_request.purchase_type,
        payment_method=checkout_request.payment.method.value,
    )

    try:
        result = await reconciler.create_order(
            user=current_user,
            site_id=checkout_request.site_id,
            purchase_type=checkout_request.purchase_type,
            client_stated_amount=checkout_request.transaction_amount,
            payer=checkout_request.payer.to_domain(),
            payment=checkout_request.payment.to_domain(),
        )

    except OrderValidationError as e:
        logger.warning("Checkout validation failed", error=e.message, context=e.context)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": e.message, "code": "VALIDATION_ERROR"},
        )

    except ProductNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": e.message, "code": "SITE_NOT_FOUND"},
        )

    except PaymentGatewayError as e:
        if e.declined:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": e.message, "code": e.code or "PAYMENT_DECLINED"},
            )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": e.message, "code": e.code or "GATEWAY_ERROR"},
        )

    except OrderRepositoryError as e:
        logger.error("Checkout failed - order store error", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to create order", "code": "ORDER_STORE_ERROR"},
        )

    return CheckoutResponse(
        order_id=result.order_id,
        gateway_reference=result.gateway_reference,
        redirect_url=result.redirect_url,
        client_secret=result.client_secret,
        status=result.gateway_status.value,
        order_status=result.order_status.value,
    )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Payment gateway notification",
)
async def payment_webhook(
    request: Request,
    reconciler: Annotated[OrderReconciler, Depends(get_order_reconciler)],
) -> Any:
    """
    Reconcile the order behind a payment notification.

    Returns 200 when there is nothing to do or the update was handled
    (including discarded and conflicting updates) and 500 when processing
    failed and the gateway should deliver again.
    """
    body = await _read_json_body(request)
    payment_id, ignored = extract_payment_id(request.query_params, body)

    if ignored:
        logger.info("Ignoring non-payment notification")
        return WebhookAck(received=True, outcome="ignored")

    if payment_id is None:
        logger.info("Webhook without payment id, nothing to do")
        return WebhookAck(received=True, outcome="no_payment_id")

    try:
        outcome = await reconciler.apply_payment_update(payment_id)

    except PaymentGatewayError as e:
        logger.warning(
            "Webhook processing failed - gateway error",
            gateway_payment_id=payment_id,
            code=e.code,
            retryable=e.retryable,
            error=e.message,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"received": False, "message": "Payment lookup failed"},
        )

    except (OrderRepositoryError, ReconciliationError) as e:
        logger.error(
            "Webhook processing failed - order store error",
            gateway_payment_id=payment_id,
            error=str(e),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"received": False, "message": "Order update failed"},
        )

    return WebhookAck(received=True, outcome=outcome.value)
