"""Period lock overrides at employee, group, environment and tenant level.

All four tables share one shape: an owning entity, a first-of-month
period_month and a locked flag. One row per (tenant, owner, month).
A missing row means "no opinion at this level".
"""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from timesheet_engine.models.base import Base, TimestampMixin, UpdatedAtMixin


class PeriodLockMixin(TimestampMixin, UpdatedAtMixin):
    """Columns common to every period lock table."""

    lock_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_month: Mapped[date] = mapped_column(Date, nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)


class TenantPeriodLock(Base, PeriodLockMixin):
    """Explicit tenant-wide lock row (written by admins or the auto-lock job)."""

    __tablename__ = "period_lock"

    __table_args__ = (
        UniqueConstraint("tenant_id", "period_month", name="period_lock_tenant_month_unique"),
    )


class EmployeePeriodLock(Base, PeriodLockMixin):
    """Per-employee override; the most specific level."""

    __tablename__ = "period_lock_employee"

    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "period_month", name="period_lock_employee_unique"
        ),
    )


class GroupPeriodLock(Base, PeriodLockMixin):
    """Group-level lock row."""

    __tablename__ = "period_lock_group"

    group_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_group.group_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "group_id", "period_month", name="period_lock_group_unique"),
    )


class EnvironmentPeriodLock(Base, PeriodLockMixin):
    """Environment (work site) level lock row."""

    __tablename__ = "period_lock_environment"

    environment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("environment.environment_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "environment_id",
            "period_month",
            name="period_lock_environment_unique",
        ),
    )


LOCK_MODELS: dict[str, type[PeriodLockMixin]] = {
    "tenant": TenantPeriodLock,
    "employee": EmployeePeriodLock,
    "group": GroupPeriodLock,
    "environment": EnvironmentPeriodLock,
}

# Column on each lock model identifying its owning entity
LOCK_OWNER_COLUMNS: dict[str, str] = {
    "tenant": "tenant_id",
    "employee": "employee_id",
    "group": "group_id",
    "environment": "environment_id",
}
