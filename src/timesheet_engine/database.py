"""Database connection, session management and storage error translation."""

from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator, Awaitable, Callable, Iterator, TypeVar
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm.attributes import set_committed_value

from timesheet_engine.config import get_settings
from timesheet_engine.errors import Unavailable
from timesheet_engine.models import Timesheet

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_engine() -> AsyncEngine:
    """Create async database engine."""
    settings = get_settings()
    if not settings.is_postgres:
        return create_async_engine(settings.database_url, echo=False)
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=settings.db_timeout_seconds,
        connect_args={
            "timeout": settings.db_timeout_seconds,
            "command_timeout": settings.db_timeout_seconds,
        },
    )


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine()
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    assert _session_factory is not None
    return _engine, _session_factory


async def dispose_db() -> None:
    """Dispose the global engine (application shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success and rolls back on error."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            with translate_db_errors():
                await session.commit()
        except Exception:
            await session.rollback()
            raise


# Storage failures that callers may retry; never business errors
_UNAVAILABLE_ERRORS: tuple[type[BaseException], ...] = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
    sa_exc.DisconnectionError,
    TimeoutError,
    ConnectionError,
)


@contextmanager
def translate_db_errors() -> Iterator[None]:
    """Convert storage failures and timeouts into Unavailable."""
    try:
        yield
    except _UNAVAILABLE_ERRORS as e:
        logger.error("Storage unavailable: %s", e)
        raise Unavailable("Storage unavailable, retry later") from e
    except sa_exc.DBAPIError as e:
        if e.connection_invalidated:
            logger.error("Storage connection invalidated: %s", e)
            raise Unavailable("Storage connection lost, retry later") from e
        raise


def storage_guarded(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Decorator applying translate_db_errors to an async service method."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        with translate_db_errors():
            return await func(*args, **kwargs)

    return wrapper


async def load_timesheet_for_update(
    session: AsyncSession,
    tenant_id: UUID,
    timesheet_id: UUID,
) -> Timesheet | None:
    """Read a timesheet, taking a row lock where the backend supports it.

    SQLite ignores FOR UPDATE; the version check in claim_timesheet still
    serializes writers there.
    """
    result = await session.execute(
        select(Timesheet)
        .where(Timesheet.timesheet_id == timesheet_id, Timesheet.tenant_id == tenant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def claim_timesheet(
    session: AsyncSession,
    timesheet: Timesheet,
    new_status: str | None = None,
) -> bool:
    """Compare-and-swap on (status, version) of an already loaded timesheet.

    Bumps version and optionally sets a new status. Returns False when
    another writer changed the row since it was read.
    """
    values: dict[str, Any] = {"version": timesheet.version + 1}
    if new_status is not None:
        values["status"] = new_status

    result = await session.execute(
        update(Timesheet)
        .where(
            Timesheet.timesheet_id == timesheet.timesheet_id,
            Timesheet.status == timesheet.status,
            Timesheet.version == timesheet.version,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    set_committed_value(timesheet, "version", values["version"])
    if new_status is not None:
        set_committed_value(timesheet, "status", new_status)
    return True


async def insert_unique(session: AsyncSession, row: Any) -> bool:
    """Insert a row inside a savepoint.

    Returns False when a unique constraint rejected it, typically because a
    concurrent request inserted the same key first. The outer transaction
    stays usable so the caller can load the winning row.
    """
    try:
        async with session.begin_nested():
            session.add(row)
            await session.flush()
    except sa_exc.IntegrityError as e:
        logger.info("Insert of %s lost to a concurrent writer: %s", type(row).__name__, e.orig)
        return False
    return True
