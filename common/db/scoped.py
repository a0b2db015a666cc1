"""
Operation-scoped database sessions.

Sessions are acquired lazily and released right after each operation, so no
connection is held while a service talks to the payment platform.

Usage:
    # Single operation - acquires and releases immediately
    async with get_session() as session:
        result = await session.get(Model, id)

    # Read-modify-write on one row - share one session
    async with transaction():
        sub = await repo.get_for_update(subscription_id)
        await repo.update(sub.id, changes)
    # Commits together, then releases

    # Nested transaction() calls join the outer one
    async with transaction():
        await service_a.mutate()   # opens transaction() internally
        await service_b.mutate()   # same session, single commit

See also:
    - common/db/context.py: Decorators (@readonly, @transactional)
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from common.core.otel_axiom_exporter import get_logger
from common.db.session import AsyncSessionLocal, AsyncSessionLocalReadonly
from common.db.context import (
    get_current_session,
    set_current_session,
    reset_current_session,
    is_readonly_forced,
)

logger = get_logger(__name__)


@asynccontextmanager
async def transaction(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Explicit transaction boundary.

    All DB operations inside share one session/connection.
    Commits on success (unless readonly), rolls back on exception.
    If a transaction of the same kind is already open in this context,
    it is joined and the outer block owns commit/rollback.

    Args:
        readonly: If True, uses readonly session and skips commit.
                  Also respects @readonly decorator if applied to caller.

    Raises:
        Exception: Re-raises any exception after rollback
    """
    effective_readonly = readonly or is_readonly_forced()

    existing = get_current_session(readonly=effective_readonly)
    if existing is not None:
        logger.debug("Joining existing transaction session")
        yield existing
        return

    session_factory = (
        AsyncSessionLocalReadonly if effective_readonly else AsyncSessionLocal
    )

    start = time.perf_counter()
    async with session_factory() as session:
        acquire_time = time.perf_counter() - start
        logger.debug(
            f"Transaction session acquire: {acquire_time * 1000:.2f}ms, readonly={effective_readonly}"
        )

        token = set_current_session(session, readonly=effective_readonly)
        try:
            yield session
            if not effective_readonly:
                commit_start = time.perf_counter()
                await session.commit()
                commit_time = time.perf_counter() - commit_start
                logger.debug(f"Transaction commit: {commit_time * 1000:.2f}ms")
        except Exception as e:
            logger.error(f"Transaction rollback due to: {e}")
            await session.rollback()
            raise
        finally:
            reset_current_session(token, readonly=effective_readonly)


@asynccontextmanager
async def get_session(readonly: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """
    Get a session for a single DB operation.

    This is the primary interface for repositories:
    - Reuses the session if inside a transaction() block
    - Otherwise acquires a new session, auto-commits, and releases immediately

    Args:
        readonly: If True, uses readonly session (for read replicas).
                  Also respects @readonly decorator if applied to caller.
    """
    effective_readonly = readonly or is_readonly_forced()
    existing = get_current_session(readonly=effective_readonly)

    if existing:
        # Inside a transaction - reuse session, don't commit (transaction handles it)
        yield existing
    else:
        session_factory = (
            AsyncSessionLocalReadonly if effective_readonly else AsyncSessionLocal
        )

        start = time.perf_counter()
        async with session_factory() as session:
            acquire_time = time.perf_counter() - start
            logger.debug(
                f"Operation session acquire: {acquire_time * 1000:.2f}ms, readonly={effective_readonly}"
            )

            try:
                yield session
                if not effective_readonly:
                    await session.commit()
            except Exception as e:
                logger.error(f"Operation rollback due to: {e}")
                await session.rollback()
                raise
