import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship

from database import Base
from config.settings import ORDER_PENDING


def _new_order_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Platform user with plan entitlement and per-feature usage counters.
    A plan is only in force while plan_expires_at lies in the future.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, nullable=False, index=True)

    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    plan_expires_at = Column(DateTime, nullable=True)

    transcriptions_used_count = Column(Integer, default=0, nullable=False)
    transcription_minutes_used = Column(Integer, default=0, nullable=False)
    agent_uses_used = Column(Integer, default=0, nullable=False)
    assistant_uses_used = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Plan(Base):
    """Catalog plan. Never modified by the billing flow."""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    duration_in_days = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SubscriptionOrder(Base):
    """
    One billing attempt for a user and plan.
    The order id is sent to Mercado Pago as external_reference and echoed
    back on every preapproval fetch.
    """
    __tablename__ = "subscription_orders"

    id = Column(String(36), primary_key=True, default=_new_order_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default=ORDER_PENDING, nullable=False, index=True)

    mercadopago_preference_id = Column(String, nullable=True, index=True)
    mercadopago_payment_id = Column(String, nullable=True)
    mercadopago_payment_details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User")
    plan = relationship("Plan")
