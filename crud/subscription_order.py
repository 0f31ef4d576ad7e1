"""
SubscriptionOrderRepository for database operations on SubscriptionOrder model
"""

from typing import Optional, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from database_models import SubscriptionOrder
from config.settings import ORDER_PENDING


class SubscriptionOrderRepository:
    """
    Repository class for SubscriptionOrder database operations.
    Orders are always returned with their user and plan loaded.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    @staticmethod
    def _with_relations(stmt):
        return stmt.options(
            selectinload(SubscriptionOrder.user),
            selectinload(SubscriptionOrder.plan),
        )

    async def get_order_by_id(self, order_id: str, for_update: bool = False) -> Optional[SubscriptionOrder]:
        """
        Retrieve an order by ID with its user and plan.

        Args:
            order_id: Order UUID (also the Mercado Pago external_reference)
            for_update: Lock the row and overwrite any identity-map copy with
                the committed row, so status checks see the latest value

        Returns:
            SubscriptionOrder if found, None otherwise
        """
        stmt = self._with_relations(
            select(SubscriptionOrder).where(SubscriptionOrder.id == str(order_id))
        )
        if for_update:
            stmt = stmt.with_for_update(of=SubscriptionOrder).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_order(self, user_id: int, plan_id: int, total_amount) -> SubscriptionOrder:
        """
        Create a pending order.

        Args:
            user_id: Owner of the order
            plan_id: Plan being purchased
            total_amount: Amount to bill on each recurring charge

        Returns:
            Created SubscriptionOrder object
        """
        order = SubscriptionOrder(
            user_id=user_id,
            plan_id=plan_id,
            total_amount=total_amount,
            status=ORDER_PENDING,
        )
        self.db.add(order)
        await self.db.flush()
        await self.db.refresh(order)
        return order

    async def update_order(self, order: SubscriptionOrder, updates: dict) -> SubscriptionOrder:
        """
        Update order fields and flush them in a single statement.

        Args:
            order: SubscriptionOrder to update
            updates: Dictionary of fields to update

        Returns:
            Updated SubscriptionOrder object
        """
        for key, value in updates.items():
            if hasattr(order, key):
                setattr(order, key, value)

        await self.db.flush()
        return order

    async def list_orders(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[SubscriptionOrder], int]:
        """
        Filtered, paginated listing, newest first.

        Returns:
            Tuple of (orders on the requested page, total matching orders)
        """
        filters = []
        if user_id is not None:
            filters.append(SubscriptionOrder.user_id == user_id)
        if status:
            filters.append(SubscriptionOrder.status == status)

        total = await self.count_orders(user_id=user_id, status=status)

        stmt = (
            self._with_relations(select(SubscriptionOrder))
            .where(*filters)
            .order_by(SubscriptionOrder.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def count_orders(self, user_id: Optional[int] = None, status: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(SubscriptionOrder)
        if user_id is not None:
            stmt = stmt.where(SubscriptionOrder.user_id == user_id)
        if status:
            stmt = stmt.where(SubscriptionOrder.status == status)
        result = await self.db.execute(stmt)
        return result.scalar_one()
