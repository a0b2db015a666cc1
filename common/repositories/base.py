from contextlib import asynccontextmanager
from datetime import datetime
from typing import Generic, TypeVar, Optional, List, Type, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from pydantic import BaseModel

from common.core.otel_axiom_exporter import trace_span
from common.db.scoped import get_session

EntityType = TypeVar("EntityType")
DomainModelType = TypeVar("DomainModelType")
CreateModelType = TypeVar("CreateModelType", bound=BaseModel)
UpdateModelType = TypeVar("UpdateModelType", bound=BaseModel)


class BaseRepository(Generic[EntityType, DomainModelType]):
    """
    Base repository with support for both explicit and lazy session management.

    1. Explicit session: pass db_session to the constructor; the caller owns
       the session lifecycle.
    2. Lazy session (default): sessions are acquired per operation, or the
       session of the enclosing transaction() block is reused.

    Entities with a ``deleted_at`` column are soft-deletable: lookups skip
    rows where it is set, and soft_delete() stamps it.

    Example:
        repo = SubscriptionRepository()
        sub = await repo.get(123)  # Acquires and releases session
    """

    def __init__(
        self,
        entity_class: Type[EntityType],
        domain_class: Type[DomainModelType],
        db_session: Optional[AsyncSession] = None,
    ):
        self.entity_class = entity_class
        self.domain_class = domain_class
        self._explicit_session = db_session

    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session for an operation.

        Uses the explicit session when one was given, otherwise the lazy
        get_session() which respects transaction() and @readonly context.
        """
        if self._explicit_session is not None:
            yield self._explicit_session
        else:
            async with get_session() as session:
                yield session

    @property
    def _soft_deletable(self) -> bool:
        return hasattr(self.entity_class, "deleted_at")

    def _exclude_deleted(self, query):
        if self._soft_deletable:
            query = query.where(self.entity_class.deleted_at.is_(None))
        return query

    def _add_tenant_filter(self, query, tenant_id: int):
        """Add tenant filtering to any query."""
        return query.where(self.entity_class.tenant_id == tenant_id)

    def _entity_to_domain(self, entity: EntityType) -> DomainModelType:
        """Convert database entity to domain model."""
        return self.domain_class.model_validate(entity)

    def _entities_to_domain(self, entities: List[EntityType]) -> List[DomainModelType]:
        """Convert list of database entities to domain models."""
        return [self._entity_to_domain(entity) for entity in entities]

    @trace_span
    async def get(
        self, id: int, tenant_id: Optional[int] = None
    ) -> Optional[DomainModelType]:
        query = self._exclude_deleted(
            select(self.entity_class)
            .where(self.entity_class.id == id)
            .execution_options(populate_existing=True)
        )

        if tenant_id is not None:
            query = self._add_tenant_filter(query, tenant_id)

        async with self._get_session() as session:
            result = await session.execute(query)
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def get_for_update(self, id: int) -> Optional[DomainModelType]:
        """
        Get a row and lock it until the enclosing transaction ends.

        Only meaningful inside transaction(); SQLite ignores the lock clause.
        """
        query = self._exclude_deleted(
            select(self.entity_class)
            .where(self.entity_class.id == id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with self._get_session() as session:
            result = await session.execute(query)
            entity = result.scalar_one_or_none()
            return self._entity_to_domain(entity) if entity else None

    @trace_span
    async def create(self, create_model: CreateModelType) -> DomainModelType:
        """Create a new entity from a typed create model."""
        data = create_model.model_dump(exclude_none=True)
        db_obj = self.entity_class(**data)
        async with self._get_session() as session:
            session.add(db_obj)
            await session.flush()
            await session.refresh(db_obj)
            return self._entity_to_domain(db_obj)

    @trace_span
    async def update(
        self, id: int, update_model: UpdateModelType
    ) -> Optional[DomainModelType]:
        """Update an entity with a typed update model (only fields that were set)."""
        data = update_model.model_dump(exclude_unset=True)
        if not data:
            return await self.get(id)

        async with self._get_session() as session:
            await session.execute(
                update(self.entity_class)
                .where(self.entity_class.id == id)
                .values(data)
            )
            await session.flush()
        return await self.get(id)

    @trace_span
    async def soft_delete(self, id: int, deleted_at: datetime) -> bool:
        """Soft delete an entity by stamping deleted_at."""
        if not self._soft_deletable:
            return False

        async with self._get_session() as session:
            result = await session.execute(
                update(self.entity_class)
                .where(
                    self.entity_class.id == id,
                    self.entity_class.deleted_at.is_(None),
                )
                .values(deleted_at=deleted_at)
            )
            await session.flush()
            return result.rowcount > 0
