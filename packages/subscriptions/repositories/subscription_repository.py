"""
Repository for subscription management.
"""

from typing import Optional
from sqlalchemy import select, func, text, case
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.subscriptions.models.database.subscription import SubscriptionEntity
from packages.subscriptions.models.domain.subscription import Subscription
from packages.subscriptions.models.domain.enums import (
    SubscriptionStatus,
    ACTIVE_STATUSES,
)
from common.core.otel_axiom_exporter import trace_span


class SubscriptionRepository(BaseRepository[SubscriptionEntity, Subscription]):
    """Repository for managing subscriptions. Soft-deleted rows are never returned."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(SubscriptionEntity, Subscription, db_session)

    @trace_span
    async def find_by_external_id(
        self, external_subscription_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        """Get a subscription by its billing platform ID."""
        query = self._exclude_deleted(
            select(SubscriptionEntity).where(
                SubscriptionEntity.external_subscription_id == external_subscription_id
            )
        ).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()

        async with self._get_session() as session:
            result = await session.execute(query)
            db_subscription = result.scalar_one_or_none()
            return self._entity_to_domain(db_subscription) if db_subscription else None

    @trace_span
    async def external_id_exists(self, external_subscription_id: str) -> bool:
        """True when any row, soft-deleted or not, carries this external ID."""
        async with self._get_session() as session:
            result = await session.execute(
                select(func.count(SubscriptionEntity.id)).where(
                    SubscriptionEntity.external_subscription_id
                    == external_subscription_id
                )
            )
            return (result.scalar_one() or 0) > 0

    @trace_span
    async def count_active_by_tenant_user(
        self, tenant_id: int, user_id: int, exclude_id: Optional[int] = None
    ) -> int:
        """Count ACTIVE or TRIAL subscriptions for a user within a tenant."""
        query = self._exclude_deleted(
            select(func.count(SubscriptionEntity.id)).where(
                SubscriptionEntity.tenant_id == tenant_id,
                SubscriptionEntity.user_id == user_id,
                SubscriptionEntity.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
        )
        if exclude_id is not None:
            query = query.where(SubscriptionEntity.id != exclude_id)

        async with self._get_session() as session:
            result = await session.execute(query)
            return result.scalar_one() or 0

    @trace_span
    async def acquire_tenant_user_lock(self, tenant_id: int, user_id: int) -> None:
        """
        Acquire an advisory lock for one (tenant, user) pair.

        Serializes the one-active-subscription check with the write that
        follows it. Transaction-scoped: released on commit or rollback.
        Only PostgreSQL has advisory locks; elsewhere this is a no-op.
        """
        async with self._get_session() as session:
            if session.get_bind().dialect.name != "postgresql":
                return
            await session.execute(
                text("SELECT pg_advisory_xact_lock(hashtextextended(:lock_key, 0))"),
                {"lock_key": f"subscription:{tenant_id}:{user_id}"},
            )

    @trace_span
    async def list_by_tenant(
        self,
        tenant_id: int,
        status: Optional[SubscriptionStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Subscription]:
        """List a tenant's subscriptions, newest first."""
        query = self._exclude_deleted(
            select(SubscriptionEntity).where(SubscriptionEntity.tenant_id == tenant_id)
        )
        if status is not None:
            query = query.where(SubscriptionEntity.status == status.value)
        query = (
            query.order_by(
                SubscriptionEntity.created_at.desc(), SubscriptionEntity.id.desc()
            )
            .offset(skip)
            .limit(limit)
        )

        async with self._get_session() as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def list_by_user(self, tenant_id: int, user_id: int) -> list[Subscription]:
        """List one user's subscriptions within a tenant, newest first."""
        async with self._get_session() as session:
            result = await session.execute(
                self._exclude_deleted(
                    select(SubscriptionEntity).where(
                        SubscriptionEntity.tenant_id == tenant_id,
                        SubscriptionEntity.user_id == user_id,
                    )
                ).order_by(
                    SubscriptionEntity.created_at.desc(), SubscriptionEntity.id.desc()
                )
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def count_by_tenant(self, tenant_id: int) -> tuple[int, int]:
        """(total, active) subscription counts for a tenant."""
        async with self._get_session() as session:
            result = await session.execute(
                self._exclude_deleted(
                    select(
                        func.count(SubscriptionEntity.id),
                        func.sum(
                            case((SubscriptionEntity.is_active.is_(True), 1), else_=0)
                        ),
                    ).where(SubscriptionEntity.tenant_id == tenant_id)
                )
            )
            total, active = result.one()
            return total or 0, active or 0
