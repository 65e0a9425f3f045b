"""Review service - manager approvals, rejections and annotations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.context import Actor, TenantContext, require_tenant
from timesheet_engine.database import storage_guarded
from timesheet_engine.errors import Forbidden, InvalidRequest, InvalidState
from timesheet_engine.events import (
    AsyncEventEmitter,
    EventMetadata,
    TimesheetApproved,
    TimesheetRejected,
)
from timesheet_engine.models import Annotation, Approval, Timesheet, TimesheetEntry
from timesheet_engine.services.audit import AuditAction, AuditLog
from timesheet_engine.services.permissions import Capabilities
from timesheet_engine.services.state_machine import (
    ReviewDecision,
    TimesheetStateMachine,
    TimesheetStatus,
)
from timesheet_engine.services.timesheet_service import claim_or_raise, get_timesheet_or_404

logger = logging.getLogger(__name__)

MIN_REJECTION_REASON_LENGTH = 3


@dataclass(frozen=True)
class AnnotationInput:
    """Reviewer feedback to attach, optionally pointing at an entry field."""

    message: str
    entry_id: UUID | None = None
    field_path: str | None = None


@dataclass
class ReviewHistory:
    """Approvals and annotations of a timesheet, oldest first."""

    timesheet_id: UUID
    status: str
    approvals: list[Approval] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)

    @property
    def latest_decision(self) -> Approval | None:
        return self.approvals[-1] if self.approvals else None


class ReviewService:
    """Service for the manager side of the timesheet lifecycle.

    A review writes the status change, the Approval row, its Annotations
    and the audit entry in the caller's transaction, so either all of them
    persist or none does.
    """

    def __init__(self, session: AsyncSession, emitter: AsyncEventEmitter | None = None):
        self.session = session
        self.emitter = emitter or AsyncEventEmitter()
        self.capabilities = Capabilities(session)
        self.audit = AuditLog(session)

    async def _validate_annotations(
        self,
        timesheet: Timesheet,
        annotations: Iterable[AnnotationInput],
    ) -> list[AnnotationInput]:
        items = list(annotations)
        if not items:
            return items

        entry_ids = {a.entry_id for a in items if a.entry_id is not None}
        if entry_ids:
            result = await self.session.execute(
                select(TimesheetEntry.entry_id).where(
                    TimesheetEntry.timesheet_id == timesheet.timesheet_id,
                    TimesheetEntry.entry_id.in_(entry_ids),
                )
            )
            unknown = entry_ids - set(result.scalars().all())
            if unknown:
                raise InvalidRequest(
                    "Annotation references entries outside this timesheet",
                    entry_ids=", ".join(sorted(str(e) for e in unknown)),
                )

        for item in items:
            if not item.message or not item.message.strip():
                raise InvalidRequest("Annotation message cannot be empty")
        return items

    def _add_annotations(
        self,
        timesheet: Timesheet,
        actor: Actor,
        items: Sequence[AnnotationInput],
    ) -> list[Annotation]:
        rows = [
            Annotation(
                tenant_id=timesheet.tenant_id,
                timesheet_id=timesheet.timesheet_id,
                entry_id=item.entry_id,
                field_path=item.field_path,
                message=item.message.strip(),
                created_by=actor.user_id,
            )
            for item in items
        ]
        self.session.add_all(rows)
        return rows

    @storage_guarded
    async def review(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
        decision: ReviewDecision | str,
        message: str | None = None,
        annotations: Iterable[AnnotationInput] = (),
    ) -> Approval:
        """Approve or reject a submitted timesheet.

        Raises:
            Forbidden: actor cannot review this employee
            InvalidState: timesheet is not submitted
            InvalidRequest: unknown decision, rejection without a reason,
                or annotations that do not belong to the timesheet
        """
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id, for_update=True)

        await self.capabilities.require_review(ctx, actor, timesheet.employee_id)

        try:
            decision = ReviewDecision(decision)
        except ValueError as e:
            raise InvalidRequest(f"Unknown review decision: {decision!r}") from e

        target = (
            TimesheetStatus.APPROVED
            if decision == ReviewDecision.APPROVED
            else TimesheetStatus.REJECTED
        )
        TimesheetStateMachine.validate_transition(timesheet.status, target)

        message = message.strip() if message else None
        if decision == ReviewDecision.REJECTED and (
            not message or len(message) < MIN_REJECTION_REASON_LENGTH
        ):
            raise InvalidRequest(
                f"A rejection requires a reason of at least {MIN_REJECTION_REASON_LENGTH} characters"
            )
        items = await self._validate_annotations(timesheet, annotations)

        from_status = timesheet.status
        await claim_or_raise(self.session, timesheet, decision.value, target.value)

        approval = Approval(
            tenant_id=tenant_id,
            timesheet_id=timesheet.timesheet_id,
            manager_id=actor.user_id,
            status=decision.value,
            mensagem=message,
        )
        self.session.add(approval)
        self._add_annotations(timesheet, actor, items)
        await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.APPROVE if decision == ReviewDecision.APPROVED else AuditAction.REJECT,
            "timesheet",
            timesheet.timesheet_id,
            timesheet_id=timesheet.timesheet_id,
            old_values={"status": from_status},
            new_values={
                "status": timesheet.status,
                "mensagem": message,
                "annotations": len(items),
            },
        )
        logger.info(
            "Timesheet %s %s by %s", timesheet.timesheet_id, decision.value, actor.user_id
        )

        metadata = EventMetadata.create(tenant_id, actor_id=actor.user_id)
        if decision == ReviewDecision.APPROVED:
            event = TimesheetApproved(
                metadata=metadata,
                timesheet_id=timesheet.timesheet_id,
                employee_id=timesheet.employee_id,
                manager_id=actor.user_id,
                message=message,
            )
        else:
            event = TimesheetRejected(
                metadata=metadata,
                timesheet_id=timesheet.timesheet_id,
                employee_id=timesheet.employee_id,
                manager_id=actor.user_id,
                reason=message or "",
                annotation_count=len(items),
            )
        await self.emitter.emit(event)
        return approval

    @storage_guarded
    async def annotate(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
        annotations: Iterable[AnnotationInput],
    ) -> list[Annotation]:
        """Attach feedback to a submitted timesheet without deciding on it."""
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id, for_update=True)

        await self.capabilities.require_review(ctx, actor, timesheet.employee_id)
        if not TimesheetStateMachine.can_annotate(timesheet.status):
            raise InvalidState(timesheet.status, "annotate", "only submitted timesheets")

        items = await self._validate_annotations(timesheet, annotations)
        if not items:
            raise InvalidRequest("At least one annotation is required")

        await claim_or_raise(self.session, timesheet, "annotate")
        rows = self._add_annotations(timesheet, actor, items)
        await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.ANNOTATE,
            "timesheet",
            timesheet.timesheet_id,
            timesheet_id=timesheet.timesheet_id,
            new_values={"annotations": len(rows)},
        )
        return rows

    @storage_guarded
    async def get_history(
        self,
        ctx: TenantContext,
        actor: Actor,
        timesheet_id: UUID,
    ) -> ReviewHistory:
        """Review history, readable by reviewers, the owner and admins."""
        tenant_id = require_tenant(ctx)
        timesheet = await get_timesheet_or_404(self.session, tenant_id, timesheet_id)

        if not (
            await self.capabilities.can_review(ctx, actor, timesheet.employee_id)
            or await self.capabilities.is_owner(ctx, actor, timesheet.employee_id)
        ):
            raise Forbidden("Not allowed to read this timesheet's reviews")

        approvals = await self.session.execute(
            select(Approval)
            .where(Approval.timesheet_id == timesheet_id, Approval.tenant_id == tenant_id)
            .order_by(Approval.created_at, Approval.approval_id)
        )
        annotations = await self.session.execute(
            select(Annotation)
            .where(Annotation.timesheet_id == timesheet_id, Annotation.tenant_id == tenant_id)
            .order_by(Annotation.created_at, Annotation.annotation_id)
        )
        return ReviewHistory(
            timesheet_id=timesheet.timesheet_id,
            status=timesheet.status,
            approvals=list(approvals.scalars().all()),
            annotations=list(annotations.scalars().all()),
        )
