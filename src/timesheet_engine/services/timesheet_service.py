"""Timesheet service - lifecycle and entry operations for the owning employee."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from timesheet_engine.context import Actor, TenantContext, require_tenant
from timesheet_engine.database import (
    claim_timesheet,
    insert_unique,
    load_timesheet_for_update,
    storage_guarded,
)
from timesheet_engine.errors import (
    Conflict,
    InvalidRequest,
    InvalidState,
    NotFound,
    PeriodLocked,
)
from timesheet_engine.events import (
    AsyncEventEmitter,
    EventMetadata,
    TimesheetReopened,
    TimesheetSubmitted,
)
from timesheet_engine.models import ENTRY_TYPES, Employee, Timesheet, TimesheetEntry
from timesheet_engine.services.audit import AuditAction, AuditLog
from timesheet_engine.services.lock_resolver import PeriodLockResolver, normalize_month
from timesheet_engine.services.lock_store import LockStore, month_last_day
from timesheet_engine.services.permissions import Capabilities
from timesheet_engine.services.state_machine import TimesheetStateMachine, TimesheetStatus

logger = logging.getLogger(__name__)

EDITABLE_ENTRY_FIELDS = frozenset(
    {"data", "tipo", "hora_ini", "hora_fim", "environment_id", "observacao"}
)


# =============================================================================
# Helpers shared by the workflow services
# =============================================================================


async def get_timesheet_or_404(
    session: AsyncSession,
    tenant_id: UUID,
    timesheet_id: UUID,
    for_update: bool = False,
) -> Timesheet:
    if for_update:
        timesheet = await load_timesheet_for_update(session, tenant_id, timesheet_id)
    else:
        result = await session.execute(
            select(Timesheet).where(
                Timesheet.timesheet_id == timesheet_id,
                Timesheet.tenant_id == tenant_id,
            )
        )
        timesheet = result.scalar_one_or_none()
    if timesheet is None:
        raise NotFound("Timesheet", timesheet_id)
    return timesheet


async def get_entry_or_404(
    session: AsyncSession,
    tenant_id: UUID,
    entry_id: UUID,
) -> TimesheetEntry:
    result = await session.execute(
        select(TimesheetEntry).where(
            TimesheetEntry.entry_id == entry_id,
            TimesheetEntry.tenant_id == tenant_id,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise NotFound("Timesheet entry", entry_id)
    return entry


async def count_entries(session: AsyncSession, timesheet_id: UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(TimesheetEntry)
        .where(TimesheetEntry.timesheet_id == timesheet_id)
    )
    return result.scalar_one()


async def claim_or_raise(
    session: AsyncSession,
    timesheet: Timesheet,
    action: str,
    new_status: str | None = None,
) -> None:
    """Claim the timesheet for this write or explain why another writer won.

    Raises:
        InvalidState: the status moved on since it was read
        Conflict: same status, but the row was modified concurrently
    """
    expected_status = timesheet.status
    if await claim_timesheet(session, timesheet, new_status):
        return

    await session.refresh(timesheet, ["status", "version"])
    if timesheet.status != expected_status:
        raise InvalidState(timesheet.status, action, "status changed concurrently")
    logger.info(
        "Concurrent modification of timesheet %s during %s", timesheet.timesheet_id, action
    )
    raise Conflict(
        "Timesheet was modified concurrently, reload and retry",
        timesheet_id=timesheet.timesheet_id,
    )


async def ensure_unlocked(
    resolver: PeriodLockResolver,
    ctx: TenantContext,
    timesheet: Timesheet,
    actor: Actor,
    action: str,
) -> None:
    """Raise PeriodLocked when the effective lock for the timesheet's month is locked."""
    decision = await resolver.resolve(ctx, timesheet.employee_id, timesheet.period_month)
    if decision.locked:
        logger.info(
            "Period lock denied %s: user=%s timesheet=%s level=%s",
            action,
            actor.user_id,
            timesheet.timesheet_id,
            decision.level.value,
        )
        raise PeriodLocked(decision.level.value, decision.reason)


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise InvalidRequest(f"Invalid date: {value!r}") from e


def _parse_time(value: Any) -> time | None:
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError as e:
        raise InvalidRequest(f"Invalid time: {value!r}") from e


def _parse_uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as e:
        raise InvalidRequest(f"Invalid id: {value!r}") from e


def apply_entry_changes(
    entry: TimesheetEntry,
    timesheet: Timesheet,
    changes: dict[str, Any],
) -> None:
    """Validate and apply field changes to an entry in place."""
    unknown = set(changes) - EDITABLE_ENTRY_FIELDS
    if unknown:
        raise InvalidRequest(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    if not changes:
        raise InvalidRequest("No changes given")

    for name, value in changes.items():
        if name == "data":
            entry.data = _parse_date(value)
        elif name == "tipo":
            entry.tipo = value
        elif name in ("hora_ini", "hora_fim"):
            setattr(entry, name, _parse_time(value))
        elif name == "environment_id":
            entry.environment_id = _parse_uuid(value)
        else:
            entry.observacao = value

    validate_entry(entry, timesheet)


def build_entry(
    timesheet: Timesheet,
    data: date | str,
    tipo: str,
    hora_ini: time | str | None = None,
    hora_fim: time | str | None = None,
    environment_id: UUID | str | None = None,
    observacao: str | None = None,
) -> TimesheetEntry:
    """New, validated entry of the timesheet; the caller adds it to the session."""
    entry = TimesheetEntry(
        timesheet_id=timesheet.timesheet_id,
        tenant_id=timesheet.tenant_id,
        data=_parse_date(data),
        tipo=tipo,
        hora_ini=_parse_time(hora_ini),
        hora_fim=_parse_time(hora_fim),
        environment_id=_parse_uuid(environment_id),
        observacao=observacao,
    )
    validate_entry(entry, timesheet)
    return entry


def validate_entry(entry: TimesheetEntry, timesheet: Timesheet) -> None:
    if entry.tipo not in ENTRY_TYPES:
        raise InvalidRequest(
            f"Invalid entry type {entry.tipo!r}, expected one of: {', '.join(ENTRY_TYPES)}"
        )
    if entry.data is None or not (timesheet.periodo_ini <= entry.data <= timesheet.periodo_fim):
        raise InvalidRequest(
            f"Entry date {entry.data} is outside the period "
            f"{timesheet.periodo_ini} to {timesheet.periodo_fim}"
        )


class TimesheetService:
    """Service for the employee-facing timesheet lifecycle.

    Operations:
    - open_timesheet: get or create the draft for a calendar month
    - add_entry / update_entry / delete_entry: draft and unlocked only
    - submit: draft → submitted
    - reopen: rejected → draft
    """

    def __init__(
        self,
        session: AsyncSession,
        resolver: PeriodLockResolver | None = None,
        emitter: AsyncEventEmitter | None = None,
    ):
        self.session = session
        self.resolver = resolver or PeriodLockResolver(LockStore(session))
        self.emitter = emitter or AsyncEventEmitter()
        self.capabilities = Capabilities(session)
        self.audit = AuditLog(session)

    @storage_guarded
    async def get_timesheet(
        self,
        ctx: TenantContext,
        timesheet_id: UUID,
        load_entries: bool = True,
    ) -> Timesheet:
        """Load a timesheet within the tenant, optionally with its entries."""
        tenant_id = require_tenant(ctx)
        query = select(Timesheet).where(
            Timesheet.timesheet_id == timesheet_id,
            Timesheet.tenant_id == tenant_id,
        )
        if load_entries:
            query = query.options(selectinload(Timesheet.entries)).execution_options(
                populate_existing=True
            )
        result = await self.session.execute(query)
        timesheet = result.scalar_one_or_none()
        if timesheet is None:
            raise NotFound("Timesheet", timesheet_id)
        return timesheet

    @storage_guarded
    async def open_timesheet(
        self,
        ctx: TenantContext,
        actor: Actor,
        employee_id: UUID,
        period_month: date | datetime | str,
    ) -> Timesheet:
        """Return the employee's timesheet for the month, creating a draft if needed."""
        tenant_id = require_tenant(ctx)
        month = normalize_month(period_month)

        employee = await self.session.get(Employee, employee_id)
        if employee is None or employee.tenant_id != tenant_id:
            raise NotFound("Employee", employee_id)
        await self.capabilities.require_owner_or_admin(ctx, actor, employee_id)

        timesheet = await self._find_timesheet(tenant_id, employee_id, month)
        if timesheet is not None:
            return timesheet

        timesheet = Timesheet(
            tenant_id=tenant_id,
            employee_id=employee_id,
            periodo_ini=month,
            periodo_fim=month_last_day(month),
            status=TimesheetStatus.DRAFT.value,
            version=1,
        )
        if not await insert_unique(self.session, timesheet):
            # A concurrent open created it first
            existing = await self._find_timesheet(tenant_id, employee_id, month)
            if existing is None:
                raise Conflict(
                    "Timesheet could not be created, retry",
                    employee_id=employee_id,
                    period_month=month,
                )
            return existing

        await self.audit.record(
            ctx,
            actor,
            AuditAction.CREATE,
            "timesheet",
            timesheet.timesheet_id,
            timesheet_id=timesheet.timesheet_id,
            new_values={"periodo_ini": month, "status": timesheet.status},
        )
        logger.info("Opened timesheet %s for employee %s (%s)", timesheet.timesheet_id, employee_id, month)
        return timesheet

    async def _find_timesheet(
        self, tenant_id: UUID, employee_id: UUID, month: date
    ) -> Timesheet | None:
        result = await self.session.execute(
            select(Timesheet).where(
                Timesheet.tenant_id == tenant_id,
                Timesheet.employee_id == employee_id,
                Timesheet.periodo_ini == month,
            )
        )
        return result.scalar_one_or_none()

    async def _prepare_entry_mutation(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
    ) -> Timesheet:
        """Run the regular-path guards and claim the timesheet."""
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id, for_update=True)
        await self.capabilities.require_owner_or_admin(ctx, actor, timesheet.employee_id)
        TimesheetStateMachine.validate_entry_mutation(timesheet.status)
        await ensure_unlocked(self.resolver, ctx, timesheet, actor, "entry change")
        return timesheet

    @storage_guarded
    async def add_entry(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
        data: date | str,
        tipo: str,
        hora_ini: time | str | None = None,
        hora_fim: time | str | None = None,
        environment_id: UUID | None = None,
        observacao: str | None = None,
    ) -> TimesheetEntry:
        """Add an entry to a draft timesheet in an unlocked period."""
        timesheet = await self._prepare_entry_mutation(ctx, actor, timesheet_id)
        entry = build_entry(
            timesheet, data, tipo, hora_ini, hora_fim, environment_id, observacao
        )

        await claim_or_raise(self.session, timesheet, "add entry")
        self.session.add(entry)
        await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.CREATE,
            "timesheet_entry",
            entry.entry_id,
            timesheet_id=timesheet.timesheet_id,
            new_values=entry.snapshot(),
        )
        return entry

    @storage_guarded
    async def update_entry(
        self,
        ctx: TenantContext,
        actor: Actor,
        entry_id: UUID,
        changes: dict[str, Any],
    ) -> TimesheetEntry:
        """Change fields of an entry of a draft timesheet in an unlocked period."""
        tenant_id = require_tenant(ctx)
        entry = await get_entry_or_404(self.session, tenant_id, entry_id)
        timesheet = await self._prepare_entry_mutation(ctx, actor, entry.timesheet_id)

        before = entry.snapshot()
        apply_entry_changes(entry, timesheet, changes)
        await claim_or_raise(self.session, timesheet, "update entry")
        await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.UPDATE,
            "timesheet_entry",
            entry.entry_id,
            timesheet_id=timesheet.timesheet_id,
            old_values=before,
            new_values=entry.snapshot(),
        )
        return entry

    @storage_guarded
    async def delete_entry(self, ctx: TenantContext, actor: Actor, entry_id: UUID) -> None:
        """Remove an entry of a draft timesheet in an unlocked period."""
        tenant_id = require_tenant(ctx)
        entry = await get_entry_or_404(self.session, tenant_id, entry_id)
        timesheet = await self._prepare_entry_mutation(ctx, actor, entry.timesheet_id)

        before = entry.snapshot()
        await claim_or_raise(self.session, timesheet, "delete entry")
        await self.session.delete(entry)
        await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.DELETE,
            "timesheet_entry",
            entry_id,
            timesheet_id=timesheet.timesheet_id,
            old_values=before,
        )

    @storage_guarded
    async def submit(self, ctx: TenantContext, actor: Actor, timesheet_id: UUID) -> Timesheet:
        """Submit a draft timesheet for review.

        Guards are evaluated in a fixed order so the caller always gets the
        most fundamental reason: Forbidden, InvalidState, EmptyTimesheet,
        PeriodLocked. A replayed submit therefore fails with InvalidState.
        """
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id, for_update=True)

        await self.capabilities.require_owner_or_admin(ctx, actor, timesheet.employee_id)
        TimesheetStateMachine.validate_timesheet_for_transition(
            timesheet,
            TimesheetStatus.SUBMITTED,
            entry_count=await count_entries(self.session, timesheet.timesheet_id),
        )
        await ensure_unlocked(self.resolver, ctx, timesheet, actor, "submit")

        from_status = timesheet.status
        await claim_or_raise(
            self.session, timesheet, "submit", TimesheetStatus.SUBMITTED.value
        )

        await self.audit.record(
            ctx,
            actor,
            AuditAction.SUBMIT,
            "timesheet",
            timesheet.timesheet_id,
            timesheet_id=timesheet.timesheet_id,
            old_values={"status": from_status},
            new_values={"status": timesheet.status},
        )
        logger.info("Timesheet %s submitted by %s", timesheet.timesheet_id, actor.user_id)

        recipients = await self.capabilities.manager_user_ids_for(ctx, timesheet.employee_id)
        await self.emitter.emit(
            TimesheetSubmitted(
                metadata=EventMetadata.create(tenant_id, actor_id=actor.user_id),
                timesheet_id=timesheet.timesheet_id,
                employee_id=timesheet.employee_id,
                period_month=timesheet.period_month,
                recipient_user_ids=tuple(recipients),
            )
        )
        return timesheet

    @storage_guarded
    async def reopen(self, ctx: TenantContext, actor: Actor, timesheet_id: UUID) -> Timesheet:
        """Move a rejected timesheet back to draft so the owner can correct it."""
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id, for_update=True)

        await self.capabilities.require_owner(ctx, actor, timesheet.employee_id)
        TimesheetStateMachine.validate_transition(timesheet.status, TimesheetStatus.DRAFT)

        from_status = timesheet.status
        await claim_or_raise(self.session, timesheet, "reopen", TimesheetStatus.DRAFT.value)

        await self.audit.record(
            ctx,
            actor,
            AuditAction.REOPEN,
            "timesheet",
            timesheet.timesheet_id,
            timesheet_id=timesheet.timesheet_id,
            old_values={"status": from_status},
            new_values={"status": timesheet.status},
        )
        logger.info("Timesheet %s reopened by %s", timesheet.timesheet_id, actor.user_id)

        await self.emitter.emit(
            TimesheetReopened(
                metadata=EventMetadata.create(tenant_id, actor_id=actor.user_id),
                timesheet_id=timesheet.timesheet_id,
                employee_id=timesheet.employee_id,
            )
        )
        return timesheet
