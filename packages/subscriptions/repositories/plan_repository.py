"""
Repository for subscription plans.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.subscriptions.models.database.plan import SubscriptionPlanEntity
from packages.subscriptions.models.domain.plan import SubscriptionPlan
from common.core.otel_axiom_exporter import trace_span


class SubscriptionPlanRepository(
    BaseRepository[SubscriptionPlanEntity, SubscriptionPlan]
):
    """Repository for the plan catalogue."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(SubscriptionPlanEntity, SubscriptionPlan, db_session)

    @trace_span
    async def list_active(self) -> list[SubscriptionPlan]:
        """Active plans in display order."""
        async with self._get_session() as session:
            result = await session.execute(
                select(SubscriptionPlanEntity)
                .where(SubscriptionPlanEntity.is_active.is_(True))
                .order_by(SubscriptionPlanEntity.sort_order, SubscriptionPlanEntity.id)
            )
            return self._entities_to_domain(result.scalars().all())
