"""
PlanRepository - read access to the plan catalog
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Plan


class PlanRepository:
    """Repository class for Plan lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_plan_by_id(self, plan_id: int) -> Optional[Plan]:
        result = await self.db.execute(
            select(Plan).where(Plan.id == plan_id)
        )
        return result.scalar_one_or_none()

    async def create_plan(self, plan_data: dict) -> Plan:
        """
        Create a catalog plan. Used by seeding scripts and tests.

        Args:
            plan_data: Must include name, price and duration_in_days

        Returns:
            Created Plan object
        """
        plan = Plan(
            name=plan_data["name"],
            description=plan_data.get("description"),
            price=plan_data["price"],
            duration_in_days=plan_data["duration_in_days"],
            is_active=plan_data.get("is_active", True),
        )
        self.db.add(plan)
        await self.db.flush()
        await self.db.refresh(plan)
        return plan
