"""
Database session context.

ContextVars that let repositories find the session of the enclosing
transaction() block, plus decorators that scope a whole call chain:

    @transactional
    async def cancel(...):
        ...  # every repository call shares one session, one commit

    @readonly
    async def tenant_summary(...):
        ...  # every repository call uses the read session
"""

from contextvars import ContextVar
from functools import wraps
from typing import Optional, Callable, TypeVar, ParamSpec

from sqlalchemy.ext.asyncio import AsyncSession


# Holds the current write session (if inside a write transaction)
_write_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_write_session", default=None
)

# Holds the current read session (if inside a read transaction)
_read_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_read_session", default=None
)

# Forces all operations in this context to use readonly
_force_readonly: ContextVar[bool] = ContextVar("db_force_readonly", default=False)


def is_readonly_forced() -> bool:
    """Check if current context is forced to readonly."""
    return _force_readonly.get()


def get_current_session(readonly: bool = False) -> Optional[AsyncSession]:
    """
    Get the current session from context, if any.

    Returns:
        The current session if inside a transaction, None otherwise.
    """
    effective_readonly = readonly or is_readonly_forced()
    if effective_readonly:
        return _read_session.get()
    return _write_session.get()


def set_current_session(session: AsyncSession, readonly: bool = False) -> object:
    """Set session in context and return the reset token."""
    if readonly:
        return _read_session.set(session)
    return _write_session.set(session)


def reset_current_session(token: object, readonly: bool = False) -> None:
    """Reset session context using token from set_current_session."""
    if readonly:
        _read_session.reset(token)
    else:
        _write_session.reset(token)


P = ParamSpec("P")
T = TypeVar("T")


def readonly(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that forces all DB operations in this call chain to use readonly sessions.
    """

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        token = _force_readonly.set(True)
        try:
            return await func(*args, **kwargs)
        finally:
            _force_readonly.reset(token)

    return wrapper


def transactional(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that wraps function in an explicit transaction.

    All DB operations within the decorated function share one session/connection.
    The transaction commits on success, rolls back on exception.
    """

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        from common.db.scoped import transaction as tx  # noqa: PLC0415

        async with tx():
            return await func(*args, **kwargs)

    return wrapper
