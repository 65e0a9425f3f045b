"""Closed-period adjustments and their acknowledgment by the employee.

Once a period is locked the owner can no longer change it. Managers and
admins still can, through this service only. Every such change writes one
manager_edit_closed_period audit entry in the same transaction, and the
owning employee later acknowledges or contests it. Acknowledgment state is
never stored as a mutable flag; it is derived from the audit rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.context import Actor, TenantContext, require_tenant
from timesheet_engine.database import storage_guarded
from timesheet_engine.errors import InvalidRequest, InvalidState, NotFound
from timesheet_engine.events import (
    AdjustmentAcknowledged,
    AsyncEventEmitter,
    ClosedPeriodEditRecorded,
    EventMetadata,
)
from timesheet_engine.models import AuditEntry, Timesheet, TimesheetEntry
from timesheet_engine.services.audit import AuditAction, AuditLog, RequestMeta
from timesheet_engine.services.lock_resolver import PeriodLockResolver
from timesheet_engine.services.lock_store import LockStore
from timesheet_engine.services.permissions import Capabilities
from timesheet_engine.services.timesheet_service import (
    apply_entry_changes,
    build_entry,
    claim_or_raise,
    get_entry_or_404,
    get_timesheet_or_404,
)

logger = logging.getLogger(__name__)

MIN_JUSTIFICATION_LENGTH = 10

EDIT_ACTION = AuditAction.MANAGER_EDIT_CLOSED_PERIOD.value
ACK_ACTION = AuditAction.EMPLOYEE_ACKNOWLEDGE_ADJUSTMENT.value


class AckStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    CONTESTED = "contested"


@dataclass(frozen=True)
class AckState:
    """Acknowledgment state of one closed-period edit."""

    edit_audit_id: UUID
    status: AckStatus
    acknowledgment: AuditEntry | None = None

    @property
    def note(self) -> str | None:
        if self.acknowledgment is None or not self.acknowledgment.new_values:
            return None
        return self.acknowledgment.new_values.get("note")


@dataclass(frozen=True)
class AckSummary:
    """Per-timesheet counts of closed-period edits by acknowledgment state.

    acknowledged and contested are disjoint; pending + acknowledged +
    contested == edits.
    """

    timesheet_id: UUID
    total_entries: int
    edits: int
    pending: int
    acknowledged: int
    contested: int


def _state_from(edit: AuditEntry, ack: AuditEntry | None) -> AckState:
    if ack is None:
        return AckState(edit.audit_id, AckStatus.PENDING)
    accepted = bool((ack.new_values or {}).get("accepted", True))
    return AckState(
        edit.audit_id,
        AckStatus.ACKNOWLEDGED if accepted else AckStatus.CONTESTED,
        ack,
    )


class ClosedPeriodService:
    """Service for manager edits to locked periods and their acknowledgment."""

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

    # -------------------------------------------------------------------------
    # Closed-period edits
    # -------------------------------------------------------------------------

    async def _prepare_closed_edit(
        self,
        ctx: TenantContext,
        actor: Actor,
        entry_id: UUID,
        justification: str | None,
    ) -> tuple[TimesheetEntry, Timesheet, str]:
        tenant_id = require_tenant(ctx)
        entry = await get_entry_or_404(self.session, tenant_id, entry_id)
        timesheet, justification = await self._guard_closed_timesheet(
            ctx, actor, entry.timesheet_id, justification
        )
        return entry, timesheet, justification

    async def _guard_closed_timesheet(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
        justification: str | None,
    ) -> tuple[Timesheet, str]:
        """Editor rights, then justification, then the period must be locked."""
        timesheet = await get_timesheet_or_404(
            self.session, require_tenant(ctx), timesheet_id, for_update=True
        )

        await self.capabilities.require_closed_period_editor(ctx, actor, timesheet.employee_id)

        justification = (justification or "").strip()
        if len(justification) < MIN_JUSTIFICATION_LENGTH:
            raise InvalidRequest(
                f"A justification of at least {MIN_JUSTIFICATION_LENGTH} characters is required"
            )

        decision = await self.resolver.resolve(ctx, timesheet.employee_id, timesheet.period_month)
        if not decision.locked:
            raise InvalidState(
                timesheet.status,
                "edit a closed period",
                "period is open, use the regular edit path",
            )
        return timesheet, justification

    async def _announce_edit(
        self,
        ctx: TenantContext,
        actor: Actor,
        audit_entry: AuditEntry,
        timesheet: Timesheet,
        entry_id: UUID,
        operation: str,
        justification: str,
    ) -> None:
        await self.emitter.emit(
            ClosedPeriodEditRecorded(
                metadata=EventMetadata.create(require_tenant(ctx), actor_id=actor.user_id),
                audit_id=audit_entry.audit_id,
                timesheet_id=timesheet.timesheet_id,
                entry_id=entry_id,
                employee_id=timesheet.employee_id,
                operation=operation,
                justification=justification,
            )
        )

    @storage_guarded
    async def add_entry(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
        justification: str,
        data: date | str,
        tipo: str,
        hora_ini: time | str | None = None,
        hora_fim: time | str | None = None,
        environment_id: UUID | None = None,
        observacao: str | None = None,
        request_meta: RequestMeta | None = None,
    ) -> tuple[TimesheetEntry, AuditEntry]:
        """Record a missing day in a locked period.

        Returns the new entry and the audit entry written for it.
        """
        timesheet, justification = await self._guard_closed_timesheet(
            ctx, actor, timesheet_id, justification
        )
        entry = build_entry(
            timesheet, data, tipo, hora_ini, hora_fim, environment_id, observacao
        )

        await claim_or_raise(self.session, timesheet, "add to a closed period")
        self.session.add(entry)
        await self.session.flush()

        audit_entry = await self.audit.record(
            ctx,
            actor,
            AuditAction.MANAGER_EDIT_CLOSED_PERIOD,
            "timesheet_entry",
            entry.entry_id,
            timesheet_id=timesheet.timesheet_id,
            new_values={
                **entry.snapshot(),
                "operation": "create",
                "justification": justification,
            },
            request_meta=request_meta,
        )
        logger.info(
            "Closed-period entry %s added to timesheet %s by %s (audit %s)",
            entry.entry_id,
            timesheet.timesheet_id,
            actor.user_id,
            audit_entry.audit_id,
        )
        await self._announce_edit(
            ctx, actor, audit_entry, timesheet, entry.entry_id, "create", justification
        )
        return entry, audit_entry

    @storage_guarded
    async def edit_entry(
        self,
        ctx: TenantContext,
        actor: Actor,
        entry_id: UUID,
        changes: dict[str, Any],
        justification: str,
        request_meta: RequestMeta | None = None,
    ) -> AuditEntry:
        """Change an entry of a locked period, returning the audit entry written.

        Raises:
            Forbidden: role or delegation does not allow it
            InvalidRequest: justification too short or invalid changes
            InvalidState: the period is not locked
        """
        entry, timesheet, justification = await self._prepare_closed_edit(
            ctx, actor, entry_id, justification
        )

        before = entry.snapshot()
        apply_entry_changes(entry, timesheet, changes)
        await claim_or_raise(self.session, timesheet, "edit a closed period")
        await self.session.flush()

        audit_entry = await self.audit.record(
            ctx,
            actor,
            AuditAction.MANAGER_EDIT_CLOSED_PERIOD,
            "timesheet_entry",
            entry.entry_id,
            timesheet_id=timesheet.timesheet_id,
            old_values=before,
            new_values={
                **entry.snapshot(),
                "operation": "update",
                "changed_fields": sorted(changes),
                "justification": justification,
            },
            request_meta=request_meta,
        )
        logger.info(
            "Closed-period edit of entry %s by %s (audit %s)",
            entry.entry_id,
            actor.user_id,
            audit_entry.audit_id,
        )
        await self._announce_edit(
            ctx, actor, audit_entry, timesheet, entry.entry_id, "update", justification
        )
        return audit_entry

    @storage_guarded
    async def delete_entry(
        self,
        ctx: TenantContext,
        actor: Actor,
        entry_id: UUID,
        justification: str,
        request_meta: RequestMeta | None = None,
    ) -> AuditEntry:
        """Remove an entry of a locked period, returning the audit entry written."""
        entry, timesheet, justification = await self._prepare_closed_edit(
            ctx, actor, entry_id, justification
        )

        before = entry.snapshot()
        await claim_or_raise(self.session, timesheet, "delete in a closed period")
        await self.session.delete(entry)
        await self.session.flush()

        audit_entry = await self.audit.record(
            ctx,
            actor,
            AuditAction.MANAGER_EDIT_CLOSED_PERIOD,
            "timesheet_entry",
            entry_id,
            timesheet_id=timesheet.timesheet_id,
            old_values=before,
            new_values={"operation": "delete", "justification": justification},
            request_meta=request_meta,
        )
        logger.info(
            "Closed-period delete of entry %s by %s (audit %s)",
            entry_id,
            actor.user_id,
            audit_entry.audit_id,
        )
        await self._announce_edit(
            ctx, actor, audit_entry, timesheet, entry_id, "delete", justification
        )
        return audit_entry

    # -------------------------------------------------------------------------
    # Acknowledgment
    # -------------------------------------------------------------------------

    async def _get_edit(self, tenant_id: UUID, audit_id: UUID) -> AuditEntry:
        result = await self.session.execute(
            select(AuditEntry).where(
                AuditEntry.audit_id == audit_id,
                AuditEntry.tenant_id == tenant_id,
            )
        )
        edit = result.scalar_one_or_none()
        if edit is None:
            raise NotFound("Audit entry", audit_id)
        if edit.action != EDIT_ACTION or edit.resource_type != "timesheet_entry":
            raise InvalidRequest(
                "Only closed-period edits of timesheet entries can be acknowledged",
                action=edit.action,
            )
        return edit

    async def _acknowledgments_for(
        self,
        tenant_id: UUID,
        edit_ids: list[UUID],
    ) -> dict[UUID, AuditEntry]:
        """Earliest acknowledgment per edit id."""
        if not edit_ids:
            return {}
        result = await self.session.execute(
            select(AuditEntry)
            .where(
                AuditEntry.tenant_id == tenant_id,
                AuditEntry.action == ACK_ACTION,
                AuditEntry.resource_type == "audit_log",
                AuditEntry.resource_id.in_(edit_ids),
            )
            .order_by(AuditEntry.created_at)
        )
        acks: dict[UUID, AuditEntry] = {}
        for row in result.scalars().all():
            acks.setdefault(row.resource_id, row)
        return acks

    @storage_guarded
    async def get_ack_state(self, ctx: TenantContext, actor: Actor, audit_id: UUID) -> AckState:
        """Response state of one edit, for the owner, its reviewers and admins.

        Anyone else gets NotFound, so the response note does not leak.
        """
        tenant_id = require_tenant(ctx)
        edit = await self._get_edit(tenant_id, audit_id)
        if edit.timesheet_id is None:
            raise NotFound("Audit entry", audit_id)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, edit.timesheet_id)
        if not (
            await self.capabilities.is_owner(ctx, actor, timesheet.employee_id)
            or await self.capabilities.can_review(ctx, actor, timesheet.employee_id)
        ):
            raise NotFound("Audit entry", audit_id)

        acks = await self._acknowledgments_for(tenant_id, [edit.audit_id])
        return _state_from(edit, acks.get(edit.audit_id))

    @storage_guarded
    async def acknowledge(
        self,
        ctx: TenantContext,
        actor: Actor,
        audit_id: UUID,
        accepted: bool = True,
        note: str | None = None,
        request_meta: RequestMeta | None = None,
    ) -> AuditEntry:
        """Record the employee's response to a closed-period edit.

        The owner responds for themselves; an admin may respond on the
        employee's behalf and is recorded as the actor. Each edit takes one
        response only.
        """
        tenant_id = require_tenant(ctx)
        edit = await self._get_edit(tenant_id, audit_id)
        if edit.timesheet_id is None:
            raise InvalidRequest("Audit entry is not linked to a timesheet")

        timesheet = await get_timesheet_or_404(
            self.session, tenant_id, edit.timesheet_id, for_update=True
        )
        await self.capabilities.require_owner_or_admin(ctx, actor, timesheet.employee_id)

        existing = (await self._acknowledgments_for(tenant_id, [edit.audit_id])).get(edit.audit_id)
        if existing is not None:
            state = _state_from(edit, existing)
            raise InvalidState(state.status.value, "acknowledge", "edit was already answered")

        # Serializes concurrent responses to edits of the same timesheet
        await claim_or_raise(self.session, timesheet, "acknowledge")

        on_behalf_of = None
        if not await self.capabilities.is_owner(ctx, actor, timesheet.employee_id):
            on_behalf_of = timesheet.employee_id

        note = note.strip() if note else None
        ack = await self.audit.record(
            ctx,
            actor,
            AuditAction.EMPLOYEE_ACKNOWLEDGE_ADJUSTMENT,
            "audit_log",
            edit.audit_id,
            timesheet_id=timesheet.timesheet_id,
            new_values={"accepted": accepted, "note": note, "on_behalf_of": on_behalf_of},
            request_meta=request_meta,
        )
        logger.info(
            "Closed-period edit %s %s by %s",
            edit.audit_id,
            "acknowledged" if accepted else "contested",
            actor.user_id,
        )

        await self.emitter.emit(
            AdjustmentAcknowledged(
                metadata=EventMetadata.create(tenant_id, actor_id=actor.user_id),
                edit_audit_id=edit.audit_id,
                acknowledgment_audit_id=ack.audit_id,
                employee_id=timesheet.employee_id,
                accepted=accepted,
                note=note,
            )
        )
        return ack

    async def _edits_for_timesheets(
        self,
        tenant_id: UUID,
        timesheet_ids: list[UUID],
    ) -> list[AuditEntry]:
        if not timesheet_ids:
            return []
        result = await self.session.execute(
            select(AuditEntry)
            .where(
                AuditEntry.tenant_id == tenant_id,
                AuditEntry.action == EDIT_ACTION,
                AuditEntry.resource_type == "timesheet_entry",
                AuditEntry.timesheet_id.in_(timesheet_ids),
            )
            .order_by(AuditEntry.created_at.desc())
        )
        return list(result.scalars().all())

    @storage_guarded
    async def ack_status(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
    ) -> AckSummary:
        """Acknowledgment counts for a timesheet, for reviewers and admins."""
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id)
        await self.capabilities.require_review(ctx, actor, timesheet.employee_id)

        total_entries = (
            await self.session.execute(
                select(func.count())
                .select_from(TimesheetEntry)
                .where(TimesheetEntry.timesheet_id == timesheet_id)
            )
        ).scalar_one()

        edits = await self._edits_for_timesheets(tenant_id, [timesheet_id])
        acks = await self._acknowledgments_for(tenant_id, [e.audit_id for e in edits])
        states = [_state_from(edit, acks.get(edit.audit_id)).status for edit in edits]

        return AckSummary(
            timesheet_id=timesheet_id,
            total_entries=total_entries,
            edits=len(edits),
            pending=states.count(AckStatus.PENDING),
            acknowledged=states.count(AckStatus.ACKNOWLEDGED),
            contested=states.count(AckStatus.CONTESTED),
        )

    @storage_guarded
    async def pending_acknowledgments(self, ctx: TenantContext, actor: Actor) -> list[AuditEntry]:
        """Closed-period edits of the caller's own timesheets awaiting a response."""
        tenant_id = require_tenant(ctx)
        employee = await self.capabilities.employee_for(ctx, actor)
        if employee is None:
            return []

        result = await self.session.execute(
            select(Timesheet.timesheet_id).where(
                Timesheet.tenant_id == tenant_id,
                Timesheet.employee_id == employee.employee_id,
            )
        )
        edits = await self._edits_for_timesheets(tenant_id, list(result.scalars().all()))
        acks = await self._acknowledgments_for(tenant_id, [e.audit_id for e in edits])
        return [edit for edit in edits if edit.audit_id not in acks]
