"""
Repository for metered usage records.
"""

from typing import Optional
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from common.repositories.base import BaseRepository
from packages.subscriptions.models.database.usage import UsageRecordEntity
from packages.subscriptions.models.domain.usage import UsageRecord
from common.core.otel_axiom_exporter import trace_span

_METERING_KEY = ("subscription_id", "metric_name", "period_start", "period_end")

# Columns overwritten when a metering key is recorded again
_UPSERT_COLUMNS = (
    "metric_type",
    "quantity",
    "unit_price",
    "total_amount",
    "recorded_at",
    "metadata",
    "tags",
    "notes",
)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class UsageRecordRepository(BaseRepository[UsageRecordEntity, UsageRecord]):
    """Repository for usage records keyed by (subscription, metric, period)."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(UsageRecordEntity, UsageRecord, db_session)

    def _key_filter(
        self,
        subscription_id: int,
        metric_name: str,
        period_start: datetime,
        period_end: datetime,
    ):
        return (
            UsageRecordEntity.subscription_id == subscription_id,
            UsageRecordEntity.metric_name == metric_name,
            UsageRecordEntity.period_start == period_start,
            UsageRecordEntity.period_end == period_end,
        )

    @trace_span
    async def find_by_key(
        self,
        subscription_id: int,
        metric_name: str,
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[UsageRecord]:
        """Get the record for one metering key."""
        async with self._get_session() as session:
            result = await session.execute(
                select(UsageRecordEntity)
                .where(
                    *self._key_filter(
                        subscription_id, metric_name, period_start, period_end
                    )
                )
                .execution_options(populate_existing=True)
            )
            db_record = result.scalar_one_or_none()
            return self._entity_to_domain(db_record) if db_record else None

    @trace_span
    async def upsert(
        self,
        subscription_id: int,
        tenant_id: int,
        metric_type: str,
        metric_name: str,
        quantity: float,
        unit_price,
        total_amount,
        period_start: datetime,
        period_end: datetime,
        recorded_at: datetime,
        usage_metadata: Optional[dict] = None,
        tags: Optional[list[str]] = None,
        notes: Optional[str] = None,
    ) -> UsageRecord:
        """
        Insert a usage record, or overwrite the one with the same metering key.

        A single INSERT ... ON CONFLICT DO UPDATE, so two concurrent calls for
        one key cannot both insert. Last write wins.
        """
        values = {
            "subscription_id": subscription_id,
            "tenant_id": tenant_id,
            "metric_type": metric_type,
            "metric_name": metric_name,
            "quantity": quantity,
            "unit_price": unit_price,
            "total_amount": total_amount,
            "period_start": period_start,
            "period_end": period_end,
            "recorded_at": recorded_at,
            "metadata": usage_metadata or {},
            "tags": tags or [],
            "notes": notes,
            "is_billed": False,
        }

        async with self._get_session() as session:
            dialect = session.get_bind().dialect.name
            insert = _INSERTS.get(dialect)
            if insert is None:
                raise NotImplementedError(f"Usage upsert not supported on {dialect}")

            stmt = insert(UsageRecordEntity.__table__).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(_METERING_KEY),
                set_={column: stmt.excluded[column] for column in _UPSERT_COLUMNS},
            )
            await session.execute(stmt)
            await session.flush()

        record = await self.find_by_key(
            subscription_id, metric_name, period_start, period_end
        )
        return record

    @trace_span
    async def get_for_period(
        self, subscription_id: int, period_start: datetime, period_end: datetime
    ) -> list[UsageRecord]:
        """Records whose period lies inside [period_start, period_end]."""
        async with self._get_session() as session:
            result = await session.execute(
                select(UsageRecordEntity)
                .where(
                    UsageRecordEntity.subscription_id == subscription_id,
                    UsageRecordEntity.period_start >= period_start,
                    UsageRecordEntity.period_end <= period_end,
                )
                .order_by(UsageRecordEntity.metric_name)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get_in_range(
        self, subscription_id: int, start: datetime, end: datetime
    ) -> list[UsageRecord]:
        """Records of one subscription whose period starts in [start, end].

        Oldest recorded first.
        """
        async with self._get_session() as session:
            result = await session.execute(
                select(UsageRecordEntity)
                .where(
                    UsageRecordEntity.subscription_id == subscription_id,
                    UsageRecordEntity.period_start >= start,
                    UsageRecordEntity.period_start <= end,
                )
                .order_by(UsageRecordEntity.recorded_at)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get_by_tenant_in_range(
        self, tenant_id: int, start: datetime, end: datetime
    ) -> list[UsageRecord]:
        """Records across a tenant's subscriptions whose period starts in [start, end]."""
        async with self._get_session() as session:
            result = await session.execute(
                select(UsageRecordEntity)
                .where(
                    UsageRecordEntity.tenant_id == tenant_id,
                    UsageRecordEntity.period_start >= start,
                    UsageRecordEntity.period_start <= end,
                )
                .order_by(UsageRecordEntity.recorded_at)
            )
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get_history(
        self,
        subscription_id: int,
        metric_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[UsageRecord]:
        """Usage history for a subscription, newest first."""
        query = select(UsageRecordEntity).where(
            UsageRecordEntity.subscription_id == subscription_id
        )
        if metric_name:
            query = query.where(UsageRecordEntity.metric_name == metric_name)
        if start:
            query = query.where(UsageRecordEntity.recorded_at >= start)
        if end:
            query = query.where(UsageRecordEntity.recorded_at <= end)
        query = query.order_by(
            UsageRecordEntity.recorded_at.desc(), UsageRecordEntity.id.desc()
        ).limit(limit)

        async with self._get_session() as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())
