"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.context import Actor, ActorRole, TenantContext
from timesheet_engine.database import init_db, translate_db_errors
from timesheet_engine.errors import ConfigurationError, Forbidden
from timesheet_engine.events import AsyncEventEmitter
from timesheet_engine.services.audit import RequestMeta
from timesheet_engine.services.lock_resolver import LockDecisionCache, PeriodLockResolver
from timesheet_engine.services.lock_store import LockStore


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything left uncommitted is rolled back on close.
    """
    _, factory = init_db()
    async with factory() as session:
        yield session


async def commit(session: AsyncSession) -> None:
    """Commit the request's unit of work, translating storage failures."""
    with translate_db_errors():
        await session.commit()


async def get_tenant_context(
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> TenantContext:
    """Extract tenant context from header."""
    if not x_tenant_id:
        raise ConfigurationError("X-Tenant-ID header is required")
    try:
        return TenantContext(UUID(x_tenant_id))
    except ValueError as e:
        raise ConfigurationError("Invalid X-Tenant-ID format") from e


async def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Extract the acting user from headers set by the authenticating proxy."""
    if not x_user_id:
        raise Forbidden("X-User-ID header is required")
    try:
        user_id = UUID(x_user_id)
    except ValueError as e:
        raise Forbidden("Invalid X-User-ID format") from e
    try:
        role = ActorRole((x_user_role or ActorRole.EMPLOYEE.value).lower())
    except ValueError as e:
        raise Forbidden(f"Unknown role: {x_user_role}") from e
    return Actor(user_id=user_id, role=role)


def get_lock_cache(request: Request) -> LockDecisionCache:
    return request.app.state.lock_cache


def get_emitter(request: Request) -> AsyncEventEmitter:
    return request.app.state.emitter.child()


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Tenant = Annotated[TenantContext, Depends(get_tenant_context)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
LockCache = Annotated[LockDecisionCache, Depends(get_lock_cache)]
Emitter = Annotated[AsyncEventEmitter, Depends(get_emitter)]
Meta = Annotated[RequestMeta, Depends(get_request_meta)]


def get_resolver(db: DbSession, cache: LockCache) -> PeriodLockResolver:
    """Resolver bound to the request's session and the shared decision cache."""
    return PeriodLockResolver(LockStore(db), cache=cache)


Resolver = Annotated[PeriodLockResolver, Depends(get_resolver)]
