"""Tenant, employee, group and environment models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """Multi-tenant container and its default lock policy."""

    __tablename__ = "tenant"

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Day of the month after a period on which the period auto-locks; 0 = last day
    deadline_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="UTC")
    auto_lock_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "deadline_day >= 0 AND deadline_day <= 31",
            name="tenant_deadline_day_check",
        ),
    )

    # Relationships
    employees: Mapped[list[Employee]] = relationship(back_populates="tenant")


class Employee(Base, TimestampMixin):
    """Employee record. profile_id is the user id the employee logs in with."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    profile_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    display_name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "profile_id", name="employee_tenant_profile_unique"),
    )

    # Relationships
    tenant: Mapped[Tenant] = relationship(back_populates="employees")


class Group(Base, TimestampMixin):
    """Work group; the unit of manager delegation and group-level locks."""

    __tablename__ = "employee_group"

    group_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="employee_group_tenant_name_unique"),)


class EmployeeGroupMember(Base, TimestampMixin):
    """Employee membership in a group (current membership only)."""

    __tablename__ = "employee_group_member"

    member_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_group.group_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "group_id", name="employee_group_member_unique"
        ),
    )


class ManagerGroupAssignment(Base, TimestampMixin):
    """Delegation of review authority over a group to a manager user."""

    __tablename__ = "manager_group_assignment"

    assignment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    manager_user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    group_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_group.group_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "manager_user_id", "group_id", name="manager_group_assignment_unique"
        ),
    )


class Environment(Base, TimestampMixin):
    """Work site (vessel, platform, onshore base)."""

    __tablename__ = "environment"

    environment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    slug: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "slug", name="environment_tenant_slug_unique"),)


class EmployeeEnvironment(Base, TimestampMixin):
    """Explicit assignment of an employee to a work site."""

    __tablename__ = "employee_environment"

    assignment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    environment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("environment.environment_id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "environment_id", name="employee_environment_unique"
        ),
    )
