"""Closed-period adjustment endpoints for managers and admins."""

from uuid import UUID

from fastapi import APIRouter, status

from timesheet_engine.api.dependencies import (
    CurrentActor,
    DbSession,
    Emitter,
    Meta,
    Resolver,
    Tenant,
    commit,
)
from timesheet_engine.api.schemas import (
    AuditEntryResponse,
    ClosedDeleteRequest,
    ClosedEditRequest,
    ErrorResponse,
)
from timesheet_engine.services.closed_period_service import ClosedPeriodService

router = APIRouter(prefix="/entries", tags=["closed-period"])

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "/{entry_id}/closed-edit",
    response_model=AuditEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def closed_period_edit(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    emitter: Emitter,
    meta: Meta,
    entry_id: UUID,
    payload: ClosedEditRequest,
) -> AuditEntryResponse:
    """Edit an entry of a locked period; returns the audit entry to be acknowledged."""
    service = ClosedPeriodService(db, resolver=resolver, emitter=emitter)
    async with emitter.batch():
        audit_entry = await service.edit_entry(
            tenant,
            actor,
            entry_id,
            payload.changes.changes(),
            payload.justification,
            request_meta=meta,
        )
        await commit(db)
    return AuditEntryResponse.model_validate(audit_entry)


@router.post(
    "/{entry_id}/closed-delete",
    response_model=AuditEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def closed_period_delete(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    emitter: Emitter,
    meta: Meta,
    entry_id: UUID,
    payload: ClosedDeleteRequest,
) -> AuditEntryResponse:
    """Delete an entry of a locked period; returns the audit entry to be acknowledged."""
    service = ClosedPeriodService(db, resolver=resolver, emitter=emitter)
    async with emitter.batch():
        audit_entry = await service.delete_entry(
            tenant, actor, entry_id, payload.justification, request_meta=meta
        )
        await commit(db)
    return AuditEntryResponse.model_validate(audit_entry)
