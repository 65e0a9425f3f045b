"""Period lock endpoints: resolution and administrator overrides."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from timesheet_engine.api.dependencies import (
    CurrentActor,
    DbSession,
    LockCache,
    Resolver,
    Tenant,
    commit,
)
from timesheet_engine.api.schemas import (
    EffectiveLockResponse,
    ErrorResponse,
    PeriodLockListResponse,
    PeriodLockResponse,
    PeriodLockUpsert,
    ResolveLockRequest,
)
from timesheet_engine.errors import InvalidRequest, NotFound
from timesheet_engine.services.lock_resolver import normalize_month
from timesheet_engine.services.period_lock_admin import LockListing, PeriodLockAdminService

router = APIRouter(tags=["period-locks"])

LevelPath = Annotated[str, Path(description="employee, group, environment or tenant")]
MonthPath = Annotated[str, Path(description="YYYY-MM")]


def _month(value: str) -> date:
    try:
        return normalize_month(value)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e


def _lock_response(listing: LockListing) -> PeriodLockResponse:
    return PeriodLockResponse(
        level=listing.level.value,
        owner_id=listing.owner_id,
        period_month=listing.period_month,
        locked=listing.locked,
        reason=listing.reason,
        updated_by=listing.updated_by,
        updated_at=listing.updated_at,
    )


@router.post(
    "/resolve-lock",
    response_model=EffectiveLockResponse,
    responses={400: {"model": ErrorResponse}},
)
async def resolve_lock(
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    payload: ResolveLockRequest,
) -> EffectiveLockResponse:
    """Effective lock of an employee for a month."""
    decision = await resolver.resolve(tenant, payload.employee_id, _month(payload.period_month))
    return EffectiveLockResponse(**decision.to_dict())


@router.put(
    "/period-locks/{level}/{owner_id}/{month}",
    response_model=PeriodLockResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def set_period_lock(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    cache: LockCache,
    level: LevelPath,
    owner_id: UUID,
    month: MonthPath,
    payload: PeriodLockUpsert,
) -> PeriodLockResponse:
    """Create or change a lock override (administrators only)."""
    service = PeriodLockAdminService(db, cache=cache)
    listing = await service.set_lock(
        tenant, actor, level, owner_id, _month(month), payload.locked, payload.reason
    )
    await commit(db)
    return _lock_response(listing)


@router.delete(
    "/period-locks/{level}/{owner_id}/{month}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def clear_period_lock(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    cache: LockCache,
    level: LevelPath,
    owner_id: UUID,
    month: MonthPath,
) -> Response:
    """Remove a lock override (administrators only)."""
    service = PeriodLockAdminService(db, cache=cache)
    removed = await service.clear_lock(tenant, actor, level, owner_id, _month(month))
    if not removed:
        raise NotFound(f"{level.capitalize()} period lock", owner_id)
    await commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/period-locks", response_model=PeriodLockListResponse)
async def list_period_locks(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    month: Annotated[str | None, Query()] = None,
) -> PeriodLockListResponse:
    """Explicit lock rows of the tenant, optionally for one month."""
    service = PeriodLockAdminService(db)
    listings = await service.list_locks(tenant, _month(month) if month else None)
    return PeriodLockListResponse(
        items=[_lock_response(item) for item in listings],
        total=len(listings),
    )
