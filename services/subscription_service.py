"""
Subscription Service - recurring billing through Mercado Pago preapprovals.

Checkout creates a pending order and a preapproval whose external_reference
is the order id. Webhooks and status polling both re-fetch the preapproval
and funnel it through _apply_preapproval, which moves the order and the
user's entitlement together.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings, ORDER_APPROVED, ORDER_CANCELLED
from crud.plan import PlanRepository
from crud.subscription_order import SubscriptionOrderRepository
from crud.user import UserRepository
from database_models import SubscriptionOrder
from services import entitlement_service
from services.exceptions import NotFoundError, ServiceUnavailableError, PaymentGatewayError
from services.mercadopago_gateway import MercadoPagoGateway, format_mercadopago_date

logger = logging.getLogger(__name__)

# Webhook topics carrying preapproval ids. Older integrations send
# "preapproval", the current webhook panel sends "subscription_preapproval".
PREAPPROVAL_TOPICS = {"preapproval", "subscription_preapproval"}

TERMINAL_STATUSES = {ORDER_APPROVED, ORDER_CANCELLED}


def resolve_order_status(current_status: str, provider_status: Optional[str]) -> str:
    """
    Map a preapproval status onto the local order status.

    authorized -> approved, cancelled/paused -> cancelled, anything else
    leaves the order where it is. Terminal orders never move.
    """
    if current_status in TERMINAL_STATUSES:
        return current_status
    if provider_status == "authorized":
        return ORDER_APPROVED
    if provider_status in ("cancelled", "paused"):
        return ORDER_CANCELLED
    return current_status


def _one_year_later(value: datetime) -> datetime:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return value.replace(year=value.year + 1, day=28)


class SubscriptionService:
    """
    Service class for the subscription lifecycle.

    The gateway is injected so routes and tests decide which client is used.
    """

    def __init__(self, db: AsyncSession, gateway: MercadoPagoGateway):
        """
        Initialize the subscription service.

        Args:
            db: AsyncSession instance for database operations
            gateway: Mercado Pago client used for preapproval calls
        """
        self.db = db
        self.gateway = gateway
        self.user_repo = UserRepository(db)
        self.plan_repo = PlanRepository(db)
        self.order_repo = SubscriptionOrderRepository(db)

    async def create_checkout_for_plan(self, user_id: int, plan_id: int) -> dict:
        """
        Create a pending order and a Mercado Pago preapproval for it.

        Args:
            user_id: ID of the subscribing user
            plan_id: ID of the plan being purchased

        Returns:
            {"checkout_url": str, "preapproval_id": str, "order_id": str}

        Raises:
            ServiceUnavailableError: Mercado Pago is not configured
            NotFoundError: user or plan does not exist
            PaymentGatewayError: Mercado Pago rejected the preapproval
        """
        if not self.gateway.is_configured:
            logger.error("Checkout requested but the Mercado Pago access token is not configured.")
            raise ServiceUnavailableError()

        user = await self.user_repo.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found.", user_id=user_id)
        plan = await self.plan_repo.get_plan_by_id(plan_id)
        if not plan:
            raise NotFoundError("Plan not found.", plan_id=plan_id)

        order = await self.order_repo.create_order(user.id, plan.id, plan.price)

        start_date = datetime.now(timezone.utc)
        payload = {
            "reason": f"Monthly subscription - {plan.name} plan",
            "external_reference": order.id,
            "payer_email": user.email,
            "auto_recurring": {
                "frequency": 1,
                "frequency_type": "months",
                "transaction_amount": float(plan.price),
                "currency_id": settings.mercadopago_currency,
                "start_date": format_mercadopago_date(start_date),
                # Upper bound for Mercado Pago's charge retries
                "end_date": format_mercadopago_date(_one_year_later(start_date)),
            },
            "back_url": f"{settings.frontend_url}/dashboard?subscription_status=success",
            "notification_url": f"{settings.backend_url}/api/subscriptions/webhook",
            "status": "pending",
        }
        logger.info(f"Creating Mercado Pago preapproval for order {order.id} (user={user.id}, plan={plan.id})")

        try:
            preapproval = await self.gateway.create_subscription(payload)
        except PaymentGatewayError as e:
            logger.error(f"Failed to create preapproval for order {order.id}: {e.message}")
            raise

        if not preapproval.get("id"):
            logger.error(f"Preapproval response for order {order.id} has no id: {preapproval}")
            raise PaymentGatewayError("Unexpected response from the payment service.")

        preapproval_id = str(preapproval["id"])
        await self.order_repo.update_order(order, {"mercadopago_preference_id": preapproval_id})

        checkout_url = preapproval.get("init_point")
        if settings.mercadopago_use_sandbox and preapproval.get("sandbox_init_point"):
            checkout_url = preapproval["sandbox_init_point"]

        return {
            "checkout_url": checkout_url,
            "preapproval_id": preapproval_id,
            "order_id": order.id,
        }

    async def process_webhook(self, notification: dict) -> bool:
        """
        Reconcile a Mercado Pago webhook notification.

        Never raises: the provider gets its acknowledgment whatever happens here,
        and status polling picks up anything dropped.

        Args:
            notification: Notification body, {"type": ..., "data": {"id": ...}}

        Returns:
            True if an order was reconciled, False otherwise
        """
        try:
            topic = notification.get("type") or notification.get("topic")
            if topic not in PREAPPROVAL_TOPICS:
                logger.info(f"Ignoring Mercado Pago notification with topic {topic!r}")
                return False

            data = notification.get("data") or {}
            preapproval_id = data.get("id")
            if not preapproval_id:
                logger.info("Preapproval notification without data.id. Ignoring.")
                return False
            preapproval_id = str(preapproval_id)

            preapproval = await self.gateway.get_subscription(preapproval_id)

            order_id = preapproval.get("external_reference")
            if not order_id:
                logger.info(f"Preapproval {preapproval_id} has no external_reference. Ignoring.")
                return False

            order = await self._apply_preapproval(str(order_id), preapproval_id, preapproval)
            return order is not None
        except Exception as e:
            logger.error(f"Error processing subscription webhook: {e}", exc_info=True)
            await self.db.rollback()
            return False

    async def check_order_status(self, order_id: str) -> SubscriptionOrder:
        """
        Return an order, refreshing it from Mercado Pago while it is not approved.

        Args:
            order_id: Local order ID

        Returns:
            The order, updated if the preapproval moved

        Raises:
            NotFoundError: order does not exist
        """
        order = await self.order_repo.get_order_by_id(order_id)
        if not order:
            raise NotFoundError("Subscription order not found.", order_id=order_id)

        if order.status == ORDER_APPROVED:
            return order

        if not order.mercadopago_preference_id:
            return order

        try:
            preapproval = await self.gateway.get_subscription(order.mercadopago_preference_id)
        except PaymentGatewayError as e:
            logger.error(f"Could not fetch preapproval {order.mercadopago_preference_id} for order {order.id}: {e.message}")
            return order

        updated = await self._apply_preapproval(order.id, order.mercadopago_preference_id, preapproval)
        return updated or order

    async def _apply_preapproval(self, order_id: str, provider_id: str, preapproval: dict) -> Optional[SubscriptionOrder]:
        """
        Move an order (and its user's entitlement) to match a fetched preapproval.

        The order row is re-read under lock so the status-change check runs
        against committed data. The snapshot is refreshed every time; the
        entitlement only changes when the status does.
        """
        order = await self.order_repo.get_order_by_id(order_id, for_update=True)
        if not order:
            logger.info(f"Subscription order {order_id} not found. Ignoring preapproval {provider_id}.")
            return None

        previous_status = order.status
        new_status = resolve_order_status(previous_status, preapproval.get("status"))

        await self.order_repo.update_order(order, {
            "status": new_status,
            "mercadopago_payment_id": provider_id,
            "mercadopago_payment_details": preapproval,
        })

        if new_status == previous_status:
            logger.info(
                f"Subscription order {order.id} stays {previous_status} "
                f"(preapproval status {preapproval.get('status')!r})"
            )
            return order

        logger.info(f"Subscription order {order.id}: {previous_status} -> {new_status}")

        user = await self.user_repo.get_user_by_id(order.user_id, for_update=True)
        if not user:
            logger.warning(f"User {order.user_id} for order {order.id} no longer exists. Entitlement untouched.")
            return order

        now = datetime.utcnow()
        if new_status == ORDER_APPROVED:
            updates = entitlement_service.grant_or_extend(user, order.plan, now)
            await self.user_repo.update_user(user, updates)
            logger.info(f"Plan {order.plan.name!r} granted to user {user.email} until {updates['plan_expires_at'].isoformat()}")
        elif new_status == ORDER_CANCELLED:
            await self.user_repo.update_user(user, entitlement_service.revoke(now))
            logger.info(f"Subscription for user {user.email} cancelled. Plan removed.")

        return order

    async def list_orders(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        """
        List orders for one user, or for everyone when user_id is None.

        Returns:
            {"orders": [...], "total": int, "total_pages": int, "current_page": int}
        """
        offset = (page - 1) * limit
        orders, total = await self.order_repo.list_orders(
            user_id=user_id, status=status, offset=offset, limit=limit
        )
        return {
            "orders": orders,
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
            "current_page": page,
        }

    async def get_user_active_plan(self, user_id: int) -> Optional[dict]:
        """
        Return the user's plan if it is still in force.

        An expired plan is cleared from the user record on the way out.

        Returns:
            {"plan": Plan, "expires_at": datetime, "remaining_days": int} or None

        Raises:
            NotFoundError: user does not exist
        """
        user = await self.user_repo.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found.", user_id=user_id)

        now = datetime.utcnow()
        if entitlement_service.has_active_plan(user, now):
            plan = await self.plan_repo.get_plan_by_id(user.plan_id)
            if plan is not None:
                return {
                    "plan": plan,
                    "expires_at": user.plan_expires_at,
                    "remaining_days": entitlement_service.remaining_days(user.plan_expires_at, now),
                }

        if user.plan_id is not None:
            await self.user_repo.update_user(user, {"plan_id": None, "plan_expires_at": None})
            logger.info(f"Cleared expired plan from user {user.id}")

        return None
