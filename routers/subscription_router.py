"""
Subscription Router - API endpoints for Mercado Pago recurring billing
Webhook is defined FIRST to avoid middleware conflicts
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.responses import success_response, error_response
from config.settings import settings, ORDER_PENDING, ORDER_APPROVED, ORDER_CANCELLED
from database import get_db
from models.subscription import (
    ActivePlanResponse,
    CheckoutRequest,
    CheckoutResponse,
    OrderListResponse,
    PlanSummary,
    SubscriptionOrderOut,
    WebhookNotification,
)
from services.exceptions import SubscriptionError
from services.mercadopago_gateway import MercadoPagoGateway, get_gateway, verify_webhook_signature
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

ORDER_STATUS_PATTERN = f"^({ORDER_PENDING}|{ORDER_APPROVED}|{ORDER_CANCELLED})$"

# Create subscription router
subscription_router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def get_subscription_service(
    db: AsyncSession = Depends(get_db),
    gateway: MercadoPagoGateway = Depends(get_gateway),
) -> SubscriptionService:
    return SubscriptionService(db, gateway)


def _subscription_error(e: SubscriptionError) -> JSONResponse:
    return error_response(e.error_code, status=e.status_code, message=e.message, data=e.context)


def _ack(ok: bool, **extra) -> JSONResponse:
    # Mercado Pago retries anything that is not a 2xx
    return JSONResponse(status_code=200, content={"ok": ok, "received": True, **extra})


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@subscription_router.post("/webhook")
async def mercadopago_webhook(
    request: Request,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Handle Mercado Pago subscription notifications.

    The body is {"type": "subscription_preapproval", "data": {"id": ...}}.
    Older notifications put topic and id in the query string instead
    (?topic=preapproval&id=... or ?type=...&data.id=...).

    When MERCADOPAGO_WEBHOOK_SECRET is set the x-signature header must be
    valid, otherwise the notification is dropped.

    Always returns 200 OK so Mercado Pago does not retry.
    """
    try:
        raw = await request.body()
        try:
            body = json.loads(raw) if raw else {}
        except ValueError:
            logger.warning("Mercado Pago webhook body is not valid JSON. Falling back to query parameters.")
            body = {}
        if not isinstance(body, dict):
            body = {}

        params = request.query_params
        body.setdefault("type", params.get("type") or params.get("topic"))
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        data.setdefault("id", params.get("data.id") or params.get("id"))
        body["data"] = data

        notification = WebhookNotification.model_validate(body)

        webhook_secret = settings.mercadopago_webhook_secret
        if webhook_secret:
            valid = verify_webhook_signature(
                webhook_secret,
                request.headers.get("x-signature"),
                request.headers.get("x-request-id"),
                notification.data.id,
            )
            if not valid:
                logger.error("Mercado Pago webhook signature verification failed")
                return _ack(False, error="Invalid webhook signature")

        processed = await service.process_webhook(notification.model_dump())
        return _ack(processed, type=notification.type or notification.topic)

    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return _ack(False, error="Webhook processing failed")


@subscription_router.post("/checkout")
async def create_checkout(
    request: CheckoutRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Start a recurring subscription for a user and plan.

    Returns:
        Envelope with {"checkout_url", "preapproval_id", "order_id"}
    """
    try:
        result = await service.create_checkout_for_plan(request.user_id, request.plan_id)
    except SubscriptionError as e:
        return _subscription_error(e)
    return success_response(CheckoutResponse(**result).model_dump())


@subscription_router.get("/orders/{order_id}/status")
async def check_order_status(
    order_id: str,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Poll an order. Pending orders are re-checked against Mercado Pago.
    """
    try:
        order = await service.check_order_status(order_id)
    except SubscriptionError as e:
        return _subscription_error(e)
    return success_response(SubscriptionOrderOut.model_validate(order).model_dump())


@subscription_router.get("/orders")
async def list_orders(
    user_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None, pattern=ORDER_STATUS_PATTERN),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """List subscription orders, optionally for one user and/or status."""
    result = await service.list_orders(user_id=user_id, status=status, page=page, limit=limit)
    payload = OrderListResponse(
        orders=[SubscriptionOrderOut.model_validate(order) for order in result["orders"]],
        total=result["total"],
        total_pages=result["total_pages"],
        current_page=result["current_page"],
    )
    return success_response(payload.model_dump())


@subscription_router.get("/users/{user_id}/active-plan")
async def get_active_plan(
    user_id: int,
    service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        active = await service.get_user_active_plan(user_id)
    except SubscriptionError as e:
        return _subscription_error(e)

    if active is None:
        return success_response({"active_plan": None})
    active_plan = ActivePlanResponse(
        plan=PlanSummary.model_validate(active["plan"]),
        expires_at=active["expires_at"],
        remaining_days=active["remaining_days"],
    )
    return success_response({"active_plan": active_plan.model_dump()})
