"""Timesheet endpoints: lifecycle, entries and reviews."""

from uuid import UUID

from fastapi import APIRouter, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

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
    AckStatusResponse,
    AnnotateRequest,
    AnnotationIn,
    AnnotationResponse,
    ApprovalResponse,
    AuditEntryResponse,
    ClosedEntryCreate,
    EntryCreate,
    EntryResponse,
    EntryUpdate,
    ErrorResponse,
    ReviewHistoryResponse,
    ReviewRequest,
    TimesheetCreate,
    TimesheetDetailResponse,
    TimesheetResponse,
)
from timesheet_engine.context import TenantContext
from timesheet_engine.errors import InvalidRequest, NotFound
from timesheet_engine.services.closed_period_service import ClosedPeriodService
from timesheet_engine.services.lock_resolver import normalize_month
from timesheet_engine.services.review_service import AnnotationInput, ReviewService
from timesheet_engine.services.timesheet_service import TimesheetService, get_entry_or_404

router = APIRouter(prefix="/timesheets", tags=["timesheets"])

ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _annotation_inputs(items: list[AnnotationIn]) -> list[AnnotationInput]:
    return [
        AnnotationInput(message=a.message, entry_id=a.entry_id, field_path=a.field_path)
        for a in items
    ]


async def _entry_in_timesheet(
    db: AsyncSession, tenant: TenantContext, timesheet_id: UUID, entry_id: UUID
) -> None:
    entry = await get_entry_or_404(db, tenant.tenant_id, entry_id)
    if entry.timesheet_id != timesheet_id:
        raise NotFound("Timesheet entry", entry_id)


# ============================================================================
# Lifecycle
# ============================================================================


@router.post(
    "",
    response_model=TimesheetResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def open_timesheet(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    payload: TimesheetCreate,
) -> TimesheetResponse:
    """Get or create the draft timesheet of an employee for a month."""
    try:
        month = normalize_month(payload.period_month)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e

    service = TimesheetService(db)
    timesheet = await service.open_timesheet(tenant, actor, payload.employee_id, month)
    await commit(db)
    return TimesheetResponse.model_validate(timesheet)


@router.get("/{timesheet_id}", response_model=TimesheetDetailResponse, responses=ERRORS)
async def get_timesheet(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    timesheet_id: UUID,
) -> TimesheetDetailResponse:
    """Timesheet with its entries, for the owner, its reviewers and admins."""
    service = TimesheetService(db)
    timesheet = await service.get_timesheet(tenant, timesheet_id)
    if not (
        await service.capabilities.is_owner(tenant, actor, timesheet.employee_id)
        or await service.capabilities.can_review(tenant, actor, timesheet.employee_id)
    ):
        raise NotFound("Timesheet", timesheet_id)
    return TimesheetDetailResponse.model_validate(timesheet)


@router.post("/{timesheet_id}/submit", response_model=TimesheetResponse, responses=ERRORS)
async def submit_timesheet(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    emitter: Emitter,
    timesheet_id: UUID,
) -> TimesheetResponse:
    service = TimesheetService(db, resolver=resolver, emitter=emitter)
    async with emitter.batch():
        timesheet = await service.submit(tenant, actor, timesheet_id)
        await commit(db)
    return TimesheetResponse.model_validate(timesheet)


@router.post("/{timesheet_id}/reopen", response_model=TimesheetResponse, responses=ERRORS)
async def reopen_timesheet(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    emitter: Emitter,
    timesheet_id: UUID,
) -> TimesheetResponse:
    service = TimesheetService(db, emitter=emitter)
    async with emitter.batch():
        timesheet = await service.reopen(tenant, actor, timesheet_id)
        await commit(db)
    return TimesheetResponse.model_validate(timesheet)


# ============================================================================
# Entries
# ============================================================================


@router.post(
    "/{timesheet_id}/entries",
    response_model=EntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def add_entry(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    timesheet_id: UUID,
    payload: EntryCreate,
) -> EntryResponse:
    service = TimesheetService(db, resolver=resolver)
    entry = await service.add_entry(
        tenant,
        actor,
        timesheet_id,
        data=payload.data,
        tipo=payload.tipo,
        hora_ini=payload.hora_ini,
        hora_fim=payload.hora_fim,
        environment_id=payload.environment_id,
        observacao=payload.observacao,
    )
    await commit(db)
    return EntryResponse.model_validate(entry)


@router.patch(
    "/{timesheet_id}/entries/{entry_id}",
    response_model=EntryResponse,
    responses=ERRORS,
)
async def update_entry(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    timesheet_id: UUID,
    entry_id: UUID,
    payload: EntryUpdate,
) -> EntryResponse:
    await _entry_in_timesheet(db, tenant, timesheet_id, entry_id)
    service = TimesheetService(db, resolver=resolver)
    entry = await service.update_entry(tenant, actor, entry_id, payload.changes())
    await commit(db)
    return EntryResponse.model_validate(entry)


@router.delete(
    "/{timesheet_id}/entries/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERRORS,
)
async def delete_entry(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    timesheet_id: UUID,
    entry_id: UUID,
) -> Response:
    await _entry_in_timesheet(db, tenant, timesheet_id, entry_id)
    service = TimesheetService(db, resolver=resolver)
    await service.delete_entry(tenant, actor, entry_id)
    await commit(db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{timesheet_id}/closed-entries",
    response_model=AuditEntryResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def add_closed_entry(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    resolver: Resolver,
    emitter: Emitter,
    meta: Meta,
    timesheet_id: UUID,
    payload: ClosedEntryCreate,
) -> AuditEntryResponse:
    """Add a missing day to a locked period; returns the audit entry to be acknowledged."""
    service = ClosedPeriodService(db, resolver=resolver, emitter=emitter)
    async with emitter.batch():
        _, audit_entry = await service.add_entry(
            tenant,
            actor,
            timesheet_id,
            payload.justification,
            data=payload.data,
            tipo=payload.tipo,
            hora_ini=payload.hora_ini,
            hora_fim=payload.hora_fim,
            environment_id=payload.environment_id,
            observacao=payload.observacao,
            request_meta=meta,
        )
        await commit(db)
    return AuditEntryResponse.model_validate(audit_entry)


# ============================================================================
# Review
# ============================================================================


@router.post("/{timesheet_id}/review", response_model=ApprovalResponse, responses=ERRORS)
async def review_timesheet(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    emitter: Emitter,
    timesheet_id: UUID,
    payload: ReviewRequest,
) -> ApprovalResponse:
    """Approve or reject a submitted timesheet, with optional annotations."""
    service = ReviewService(db, emitter=emitter)
    async with emitter.batch():
        approval = await service.review(
            tenant,
            actor,
            timesheet_id,
            payload.decision,
            message=payload.message,
            annotations=_annotation_inputs(payload.annotations),
        )
        await commit(db)
    return ApprovalResponse.model_validate(approval)


@router.post(
    "/{timesheet_id}/annotations",
    response_model=list[AnnotationResponse],
    status_code=status.HTTP_201_CREATED,
    responses=ERRORS,
)
async def annotate_timesheet(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    timesheet_id: UUID,
    payload: AnnotateRequest,
) -> list[AnnotationResponse]:
    service = ReviewService(db)
    rows = await service.annotate(
        tenant, actor, timesheet_id, _annotation_inputs(payload.annotations)
    )
    await commit(db)
    return [AnnotationResponse.model_validate(row) for row in rows]


@router.get("/{timesheet_id}/reviews", response_model=ReviewHistoryResponse, responses=ERRORS)
async def get_review_history(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    timesheet_id: UUID,
) -> ReviewHistoryResponse:
    history = await ReviewService(db).get_history(tenant, actor, timesheet_id)
    latest = history.latest_decision
    return ReviewHistoryResponse(
        timesheet_id=history.timesheet_id,
        status=history.status,
        latest_decision=ApprovalResponse.model_validate(latest) if latest else None,
        approvals=[ApprovalResponse.model_validate(a) for a in history.approvals],
        annotations=[AnnotationResponse.model_validate(a) for a in history.annotations],
    )


@router.get("/{timesheet_id}/ack-status", response_model=AckStatusResponse, responses=ERRORS)
async def get_ack_status(
    db: DbSession,
    tenant: Tenant,
    actor: CurrentActor,
    timesheet_id: UUID,
) -> AckStatusResponse:
    """Acknowledgment counts of closed-period edits, for reviewers and admins."""
    summary = await ClosedPeriodService(db).ack_status(tenant, actor, timesheet_id)
    return AckStatusResponse(
        timesheet_id=summary.timesheet_id,
        total_entries=summary.total_entries,
        edits=summary.edits,
        pending=summary.pending,
        acknowledged=summary.acknowledged,
        contested=summary.contested,
    )
