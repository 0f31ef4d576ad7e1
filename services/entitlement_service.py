"""
Entitlement rules: how long a plan runs after a payment and when it counts
as active. Pure functions; callers persist the returned field updates.
"""
import math
from datetime import datetime, timedelta
from typing import Optional

from database_models import User, Plan

# Usage counters reset whenever a plan is granted or renewed
USAGE_COUNTER_FIELDS = (
    "transcriptions_used_count",
    "transcription_minutes_used",
    "agent_uses_used",
    "assistant_uses_used",
)


def has_active_plan(user: User, now: Optional[datetime] = None) -> bool:
    """
    A plan is active only while plan_expires_at lies strictly in the future.
    A stale plan_id on an expired user does not count.
    """
    now = now or datetime.utcnow()
    if user.plan_id is None or user.plan_expires_at is None:
        return False
    return user.plan_expires_at > now


def compute_new_expiration(user: User, plan: Plan, now: Optional[datetime] = None) -> datetime:
    """
    Renewing the plan the user already holds extends from the current
    expiration. A different plan, or an expired one, starts from now.
    """
    now = now or datetime.utcnow()
    duration = timedelta(days=plan.duration_in_days)
    if user.plan_id == plan.id and user.plan_expires_at is not None and user.plan_expires_at > now:
        return user.plan_expires_at + duration
    return now + duration


def grant_or_extend(user: User, plan: Plan, now: Optional[datetime] = None) -> dict:
    """
    Build the user updates for granting (or renewing) a plan.

    Returns:
        Field updates: plan_id, the new plan_expires_at and zeroed usage counters
    """
    updates = {
        "plan_id": plan.id,
        "plan_expires_at": compute_new_expiration(user, plan, now),
    }
    for field in USAGE_COUNTER_FIELDS:
        updates[field] = 0
    return updates


def revoke(now: Optional[datetime] = None) -> dict:
    """Expire the plan immediately. History on orders is kept."""
    return {
        "plan_id": None,
        "plan_expires_at": now or datetime.utcnow(),
    }


def remaining_days(expires_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole days left until expires_at, rounded up. 0 once expired."""
    now = now or datetime.utcnow()
    seconds = (expires_at - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)
