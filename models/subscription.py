"""
Subscription request and response models
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    user_id: int
    plan_id: int


class CheckoutResponse(BaseModel):
    checkout_url: Optional[str] = None
    preapproval_id: str
    order_id: str


class WebhookData(BaseModel):
    # Ids arrive as strings or numbers depending on the notification version
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: Optional[str] = None


class WebhookNotification(BaseModel):
    """Mercado Pago notification body. Extra provider fields are kept."""
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    topic: Optional[str] = None
    data: WebhookData = Field(default_factory=WebhookData)


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    email: str


class PlanSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: Decimal
    duration_in_days: int


class SubscriptionOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: int
    plan_id: int
    total_amount: Decimal
    status: str
    mercadopago_preference_id: Optional[str] = None
    mercadopago_payment_id: Optional[str] = None
    mercadopago_payment_details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    user: Optional[UserSummary] = None
    plan: Optional[PlanSummary] = None


class OrderListResponse(BaseModel):
    orders: List[SubscriptionOrderOut]
    total: int
    total_pages: int
    current_page: int


class ActivePlanResponse(BaseModel):
    plan: PlanSummary
    expires_at: datetime
    remaining_days: int
