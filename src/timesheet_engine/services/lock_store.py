"""Read-only accessor over period lock sources and employee memberships."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.models import (
    EmployeeEnvironment,
    EmployeeGroupMember,
    EmployeePeriodLock,
    EnvironmentPeriodLock,
    GroupPeriodLock,
    Tenant,
    TenantPeriodLock,
    Timesheet,
    TimesheetEntry,
)


@dataclass(frozen=True)
class LockRow:
    """One lock declaration at some level."""

    owner_id: UUID
    locked: bool
    reason: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class TenantPolicy:
    """Tenant default lock policy."""

    tenant_id: UUID
    deadline_day: int
    timezone: str = "UTC"
    auto_lock_enabled: bool = True


@dataclass(frozen=True)
class LockSnapshot:
    """Everything the resolver needs for one (tenant, employee, month)."""

    policy: TenantPolicy
    period_month: date
    employee_lock: LockRow | None = None
    group_locks: tuple[LockRow, ...] = field(default_factory=tuple)
    environment_locks: tuple[LockRow, ...] = field(default_factory=tuple)
    tenant_lock: LockRow | None = None


class LockStore:
    """Queries lock rows and memberships for a tenant.

    Absence of a row is never an error; it means the level has no opinion.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_tenant_policy(self, tenant_id: UUID) -> TenantPolicy | None:
        """Load the tenant's default policy, or None if the tenant is unknown."""
        tenant = await self.session.get(Tenant, tenant_id)
        if tenant is None:
            return None
        return TenantPolicy(
            tenant_id=tenant.tenant_id,
            deadline_day=tenant.deadline_day,
            timezone=tenant.timezone,
            auto_lock_enabled=tenant.auto_lock_enabled,
        )

    async def get_group_ids(self, tenant_id: UUID, employee_id: UUID) -> set[UUID]:
        """Current group memberships of an employee."""
        result = await self.session.execute(
            select(EmployeeGroupMember.group_id).where(
                EmployeeGroupMember.tenant_id == tenant_id,
                EmployeeGroupMember.employee_id == employee_id,
            )
        )
        return set(result.scalars().all())

    async def get_environment_ids(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        period_month: date,
    ) -> set[UUID]:
        """Environments of an employee for a month.

        Union of explicit site assignments and the environments referenced by
        the employee's own entries in that month.
        """
        assigned = await self.session.execute(
            select(EmployeeEnvironment.environment_id).where(
                EmployeeEnvironment.tenant_id == tenant_id,
                EmployeeEnvironment.employee_id == employee_id,
            )
        )
        environment_ids = set(assigned.scalars().all())

        month_end = month_last_day(period_month)
        referenced = await self.session.execute(
            select(TimesheetEntry.environment_id)
            .join(Timesheet, Timesheet.timesheet_id == TimesheetEntry.timesheet_id)
            .where(
                Timesheet.tenant_id == tenant_id,
                Timesheet.employee_id == employee_id,
                TimesheetEntry.environment_id.is_not(None),
                TimesheetEntry.data >= period_month,
                TimesheetEntry.data <= month_end,
            )
            .distinct()
        )
        environment_ids.update(referenced.scalars().all())
        return environment_ids

    async def get_employee_lock(
        self,
        tenant_id: UUID,
        employee_id: UUID,
        period_month: date,
    ) -> LockRow | None:
        result = await self.session.execute(
            select(EmployeePeriodLock).where(
                EmployeePeriodLock.tenant_id == tenant_id,
                EmployeePeriodLock.employee_id == employee_id,
                EmployeePeriodLock.period_month == period_month,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return LockRow(owner_id=row.employee_id, locked=row.locked, reason=row.reason)

    async def get_group_locks(
        self,
        tenant_id: UUID,
        group_ids: set[UUID],
        period_month: date,
    ) -> list[LockRow]:
        if not group_ids:
            return []
        result = await self.session.execute(
            select(GroupPeriodLock)
            .where(
                GroupPeriodLock.tenant_id == tenant_id,
                GroupPeriodLock.group_id.in_(group_ids),
                GroupPeriodLock.period_month == period_month,
            )
            .order_by(GroupPeriodLock.updated_at.desc())
        )
        return [
            LockRow(
                owner_id=row.group_id,
                locked=row.locked,
                reason=row.reason,
                updated_at=row.updated_at,
            )
            for row in result.scalars().all()
        ]

    async def get_environment_locks(
        self,
        tenant_id: UUID,
        environment_ids: set[UUID],
        period_month: date,
    ) -> list[LockRow]:
        if not environment_ids:
            return []
        result = await self.session.execute(
            select(EnvironmentPeriodLock)
            .where(
                EnvironmentPeriodLock.tenant_id == tenant_id,
                EnvironmentPeriodLock.environment_id.in_(environment_ids),
                EnvironmentPeriodLock.period_month == period_month,
            )
            .order_by(EnvironmentPeriodLock.updated_at.desc())
        )
        return [
            LockRow(
                owner_id=row.environment_id,
                locked=row.locked,
                reason=row.reason,
                updated_at=row.updated_at,
            )
            for row in result.scalars().all()
        ]

    async def get_tenant_lock(self, tenant_id: UUID, period_month: date) -> LockRow | None:
        result = await self.session.execute(
            select(TenantPeriodLock).where(
                TenantPeriodLock.tenant_id == tenant_id,
                TenantPeriodLock.period_month == period_month,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return LockRow(owner_id=row.tenant_id, locked=row.locked, reason=row.reason)

    async def load_snapshot(
        self,
        policy: TenantPolicy,
        employee_id: UUID,
        period_month: date,
    ) -> LockSnapshot:
        """Gather every lock source for one employee and month."""
        tenant_id = policy.tenant_id
        group_ids = await self.get_group_ids(tenant_id, employee_id)
        environment_ids = await self.get_environment_ids(tenant_id, employee_id, period_month)

        return LockSnapshot(
            policy=policy,
            period_month=period_month,
            employee_lock=await self.get_employee_lock(tenant_id, employee_id, period_month),
            group_locks=tuple(await self.get_group_locks(tenant_id, group_ids, period_month)),
            environment_locks=tuple(
                await self.get_environment_locks(tenant_id, environment_ids, period_month)
            ),
            tenant_lock=await self.get_tenant_lock(tenant_id, period_month),
        )


def month_last_day(period_month: date) -> date:
    """Last calendar day of the month containing period_month."""
    last = calendar.monthrange(period_month.year, period_month.month)[1]
    return period_month.replace(day=last)
