"""Administrator maintenance of period lock rows and the deadline auto-lock job."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.context import Actor, ActorRole, TenantContext, require_tenant
from timesheet_engine.database import insert_unique, storage_guarded
from timesheet_engine.errors import (
    ConfigurationError,
    Conflict,
    Forbidden,
    InvalidRequest,
    NotFound,
)
from timesheet_engine.models import (
    LOCK_MODELS,
    LOCK_OWNER_COLUMNS,
    Employee,
    Environment,
    Group,
    TenantPeriodLock,
)
from timesheet_engine.models.periods import PeriodLockMixin
from timesheet_engine.services.audit import AuditAction, AuditLog
from timesheet_engine.services.lock_resolver import (
    LockDecisionCache,
    LockLevel,
    PeriodLockResolver,
    deadline_for,
    normalize_month,
)
from timesheet_engine.services.lock_store import LockStore

logger = logging.getLogger(__name__)

# Actor recorded for changes made by the scheduled job
SYSTEM_ACTOR = Actor(user_id=UUID(int=0), role=ActorRole.ADMIN)

AUTO_LOCK_REASON = "Locked automatically after the submission deadline"

_OWNER_MODELS: dict[str, type] = {
    "employee": Employee,
    "group": Group,
    "environment": Environment,
}


@dataclass(frozen=True)
class LockListing:
    """One explicit lock row, whatever its level."""

    level: LockLevel
    owner_id: UUID
    period_month: date
    locked: bool
    reason: str | None
    updated_by: UUID | None
    updated_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "owner_id": str(self.owner_id),
            "period_month": self.period_month.isoformat(),
            "locked": self.locked,
            "reason": self.reason,
            "updated_by": str(self.updated_by) if self.updated_by else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AutoLockOutcome(str, Enum):
    LOCKED = "locked"
    WOULD_LOCK = "would_lock"
    ALREADY_SET = "already_set"
    NOT_DUE = "not_due"
    DISABLED = "disabled"


@dataclass(frozen=True)
class AutoLockResult:
    tenant_id: UUID
    period_month: date
    deadline: date
    outcome: AutoLockOutcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "period_month": self.period_month.isoformat(),
            "deadline": self.deadline.isoformat(),
            "outcome": self.outcome.value,
        }


def previous_month(today: date) -> date:
    first = today.replace(day=1)
    if first.month == 1:
        return first.replace(year=first.year - 1, month=12)
    return first.replace(month=first.month - 1)


def _listing(level: str, row: PeriodLockMixin) -> LockListing:
    return LockListing(
        level=LockLevel(level),
        owner_id=getattr(row, LOCK_OWNER_COLUMNS[level]),
        period_month=row.period_month,
        locked=row.locked,
        reason=row.reason,
        updated_by=row.updated_by,
        updated_at=row.updated_at,
    )


class PeriodLockAdminService:
    """Writes lock overrides and keeps the decision cache honest."""

    def __init__(self, session: AsyncSession, cache: LockDecisionCache | None = None):
        self.session = session
        self.cache = cache
        self.audit = AuditLog(session)

    def _check_level(self, level: str | LockLevel) -> str:
        try:
            return LockLevel(level).value
        except ValueError as e:
            raise InvalidRequest(f"Unknown lock level: {level!r}") from e

    async def _check_owner(self, tenant_id: UUID, level: str, owner_id: UUID) -> None:
        if level == "tenant":
            if owner_id != tenant_id:
                raise InvalidRequest("A tenant lock must be owned by the tenant itself")
            return
        owner = await self.session.get(_OWNER_MODELS[level], owner_id)
        if owner is None or owner.tenant_id != tenant_id:
            raise NotFound(level.capitalize(), owner_id)

    async def _get_row(
        self,
        tenant_id: UUID,
        level: str,
        owner_id: UUID,
        month: date,
    ) -> PeriodLockMixin | None:
        model = LOCK_MODELS[level]
        owner_column = getattr(model, LOCK_OWNER_COLUMNS[level])
        result = await self.session.execute(
            select(model).where(
                model.tenant_id == tenant_id,
                owner_column == owner_id,
                model.period_month == month,
            )
        )
        return result.scalar_one_or_none()

    def _invalidate(self, tenant_id: UUID, month: date) -> None:
        if self.cache is not None:
            self.cache.invalidate(tenant_id, month)

    @storage_guarded
    async def set_lock(
        self,
        ctx: TenantContext,
        actor: Actor,
        level: str | LockLevel,
        owner_id: UUID,
        period_month: date | datetime | str,
        locked: bool,
        reason: str | None = None,
    ) -> LockListing:
        """Create or update the lock row of one owner for one month."""
        tenant_id = require_tenant(ctx)
        if not actor.is_admin:
            raise Forbidden("Only administrators can change period locks")
        level = self._check_level(level)
        month = normalize_month(period_month)
        await self._check_owner(tenant_id, level, owner_id)

        row = await self._get_row(tenant_id, level, owner_id, month)
        created = False
        if row is None:
            model = LOCK_MODELS[level]
            candidate = model(
                tenant_id=tenant_id,
                period_month=month,
                locked=locked,
                reason=reason,
                updated_by=actor.user_id,
            )
            if level != "tenant":
                setattr(candidate, LOCK_OWNER_COLUMNS[level], owner_id)
            if await insert_unique(self.session, candidate):
                row, created = candidate, True
            else:
                # Another admin created the row first; this write updates it
                row = await self._get_row(tenant_id, level, owner_id, month)
                if row is None:
                    raise Conflict("Lock row could not be written, retry", level=level)

        old_values = None
        if not created:
            old_values = {"locked": row.locked, "reason": row.reason}
            row.locked = locked
            row.reason = reason
            row.updated_by = actor.user_id
            await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.LOCK_PERIOD if locked else AuditAction.UNLOCK_PERIOD,
            f"period_lock_{level}",
            row.lock_id,
            old_values=old_values,
            new_values={
                "owner_id": owner_id,
                "period_month": month,
                "locked": locked,
                "reason": reason,
            },
        )
        self._invalidate(tenant_id, month)
        logger.info(
            "Period %s %s at %s level for %s by %s",
            month,
            "locked" if locked else "unlocked",
            level,
            owner_id,
            actor.user_id,
        )
        return _listing(level, row)

    @storage_guarded
    async def clear_lock(
        self,
        ctx: TenantContext,
        actor: Actor,
        level: str | LockLevel,
        owner_id: UUID,
        period_month: date | datetime | str,
    ) -> bool:
        """Remove an override so the level has no opinion again.

        Returns False when there was nothing to remove.
        """
        tenant_id = require_tenant(ctx)
        if not actor.is_admin:
            raise Forbidden("Only administrators can change period locks")
        level = self._check_level(level)
        month = normalize_month(period_month)

        row = await self._get_row(tenant_id, level, owner_id, month)
        if row is None:
            return False

        old_values = {"locked": row.locked, "reason": row.reason}
        lock_id = row.lock_id
        await self.session.delete(row)
        await self.session.flush()

        await self.audit.record(
            ctx,
            actor,
            AuditAction.CLEAR_PERIOD_LOCK,
            f"period_lock_{level}",
            lock_id,
            old_values=old_values,
            new_values={"owner_id": owner_id, "period_month": month},
        )
        self._invalidate(tenant_id, month)
        logger.info("Cleared %s lock for %s in %s", level, owner_id, month)
        return True

    @storage_guarded
    async def list_locks(
        self,
        ctx: TenantContext,
        period_month: date | datetime | str | None = None,
    ) -> list[LockListing]:
        """All explicit lock rows of the tenant, optionally for one month."""
        tenant_id = require_tenant(ctx)
        month = normalize_month(period_month) if period_month is not None else None

        listings: list[LockListing] = []
        for level, model in LOCK_MODELS.items():
            query = select(model).where(model.tenant_id == tenant_id)
            if month is not None:
                query = query.where(model.period_month == month)
            result = await self.session.execute(query)
            listings.extend(_listing(level, row) for row in result.scalars().all())

        order = [level.value for level in LockLevel]
        listings.sort(key=lambda item: (item.period_month, order.index(item.level.value)))
        return listings

    @storage_guarded
    async def run_auto_lock(
        self,
        ctx: TenantContext,
        today: date | None = None,
        dry_run: bool = False,
    ) -> AutoLockResult:
        """Lock the previous month for the tenant once its deadline has passed.

        An explicit tenant row, locked or not, is left alone: an admin
        decision always beats the job.
        """
        tenant_id = require_tenant(ctx)
        store = LockStore(self.session)
        policy = await store.get_tenant_policy(tenant_id)
        if policy is None:
            raise ConfigurationError(f"Tenant {tenant_id} could not be resolved")

        if today is None:
            today = PeriodLockResolver(store).today_for(policy)
        month = previous_month(today)
        deadline = deadline_for(month, policy.deadline_day)

        def result(outcome: AutoLockOutcome) -> AutoLockResult:
            return AutoLockResult(tenant_id, month, deadline, outcome)

        if not policy.auto_lock_enabled:
            return result(AutoLockOutcome.DISABLED)
        if today < deadline:
            return result(AutoLockOutcome.NOT_DUE)
        if await store.get_tenant_lock(tenant_id, month) is not None:
            return result(AutoLockOutcome.ALREADY_SET)
        if dry_run:
            return result(AutoLockOutcome.WOULD_LOCK)

        row = TenantPeriodLock(
            tenant_id=tenant_id,
            period_month=month,
            locked=True,
            reason=AUTO_LOCK_REASON,
            updated_by=None,
        )
        if not await insert_unique(self.session, row):
            # A concurrent run or an admin wrote the row first
            return result(AutoLockOutcome.ALREADY_SET)

        await self.audit.record(
            ctx,
            SYSTEM_ACTOR,
            AuditAction.LOCK_PERIOD,
            "period_lock_tenant",
            row.lock_id,
            new_values={"period_month": month, "locked": True, "reason": AUTO_LOCK_REASON},
        )
        self._invalidate(tenant_id, month)
        logger.info("Auto-locked %s for tenant %s (deadline %s)", month, tenant_id, deadline)
        return result(AutoLockOutcome.LOCKED)
