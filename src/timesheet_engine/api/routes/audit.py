"""Acknowledgment endpoints for closed-period edits."""

from uuid import UUID

from fastapi import APIRouter, status

from timesheet_engine.api.dependencies import (
    CurrentActor,
    DbSession,
    Emitter,
    Meta,
    Tenant,
    commit,
)
from timesheet_engine.api.schemas import (
    AcknowledgeRequest,
    AckStateResponse,
    AuditEntryResponse,
    ErrorResponse,
)
from timesheet_engine.services.closed_period_service import ClosedPeriodService

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/pending", response_model=list[AuditEntryResponse])
async def list_pending_acknowledgments(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
) -> list[AuditEntryResponse]:
    """The caller's closed-period edits still awaiting a response, newest first."""
    edits = await ClosedPeriodService(db).pending_acknowledgments(tenant, actor)
    return [AuditEntryResponse.model_validate(edit) for edit in edits]


@router.get(
    "/{audit_id}/ack-state",
    response_model=AckStateResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def get_ack_state(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    audit_id: UUID,
) -> AckStateResponse:
    """Acknowledgment state of an edit, for the owner, its reviewers and admins."""
    state = await ClosedPeriodService(db).get_ack_state(tenant, actor, audit_id)
    return AckStateResponse(
        edit_audit_id=state.edit_audit_id,
        status=state.status.value,
        note=state.note,
        acknowledgment=(
            AuditEntryResponse.model_validate(state.acknowledgment)
            if state.acknowledgment is not None
            else None
        ),
    )


@router.post(
    "/{audit_id}/acknowledge",
    response_model=AuditEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def acknowledge_adjustment(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    emitter: Emitter,
    meta: Meta,
    audit_id: UUID,
    payload: AcknowledgeRequest,
) -> AuditEntryResponse:
    """Accept or contest a closed-period edit."""
    service = ClosedPeriodService(db, emitter=emitter)
    async with emitter.batch():
        ack = await service.acknowledge(
            tenant,
            actor,
            audit_id,
            accepted=payload.accepted,
            note=payload.note,
            request_meta=meta,
        )
        await commit(db)
    return AuditEntryResponse.model_validate(ack)
