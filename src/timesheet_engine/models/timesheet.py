"""Timesheet, entry, review and audit models."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import (
    AppendOnlyMixin,
    Base,
    JSONType,
    TimestampMixin,
    UpdatedAtMixin,
    utcnow,
)

ENTRY_TYPES = ("embarque", "desembarque", "translado", "onshore", "offshore", "folga")


class Timesheet(Base, TimestampMixin, UpdatedAtMixin):
    """One employee's timesheet for one period.

    status is the authoritative current state; version is bumped by every
    serialized mutation (optimistic concurrency).
    """

    __tablename__ = "timesheet"

    timesheet_id: Mapped[UUID] = mapped_column(
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
    periodo_ini: Mapped[date] = mapped_column(Date, nullable=False)
    periodo_fim: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "periodo_ini", name="timesheet_employee_period_unique"
        ),
        CheckConstraint(
            "status IN ('draft', 'submitted', 'approved', 'rejected')",
            name="timesheet_status_check",
        ),
        CheckConstraint("periodo_fim >= periodo_ini", name="timesheet_period_dates_check"),
    )

    # Relationships
    entries: Mapped[list[TimesheetEntry]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetEntry.data",
    )

    @property
    def period_month(self) -> date:
        """First day of the month the period belongs to."""
        return self.periodo_ini.replace(day=1)


class TimesheetEntry(Base, TimestampMixin, UpdatedAtMixin):
    """A single day record inside a timesheet."""

    __tablename__ = "timesheet_entry"

    entry_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    timesheet_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    data: Mapped[date] = mapped_column(Date, nullable=False)
    tipo: Mapped[str] = mapped_column(String, nullable=False)
    hora_ini: Mapped[time | None] = mapped_column(Time, nullable=True)
    hora_fim: Mapped[time | None] = mapped_column(Time, nullable=True)
    environment_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("environment.environment_id", ondelete="SET NULL"),
        nullable=True,
    )
    observacao: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "tipo IN ('embarque', 'desembarque', 'translado', 'onshore', 'offshore', 'folga')",
            name="timesheet_entry_tipo_check",
        ),
    )

    # Relationships
    timesheet: Mapped[Timesheet] = relationship(back_populates="entries")

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly copy of the editable fields, for audit values."""
        return {
            "timesheet_id": str(self.timesheet_id),
            "data": self.data.isoformat() if self.data else None,
            "tipo": self.tipo,
            "hora_ini": self.hora_ini.strftime("%H:%M") if self.hora_ini else None,
            "hora_fim": self.hora_fim.strftime("%H:%M") if self.hora_fim else None,
            "environment_id": str(self.environment_id) if self.environment_id else None,
            "observacao": self.observacao,
        }


class Annotation(Base, AppendOnlyMixin):
    """Reviewer feedback on a timesheet, optionally scoped to an entry field."""

    __tablename__ = "timesheet_annotation"

    annotation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    timesheet_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No FK: annotations outlive entries that are later deleted
    entry_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    field_path: Mapped[str | None] = mapped_column(String, nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class Approval(Base, AppendOnlyMixin):
    """Review decision record. The latest one is the current review outcome."""

    __tablename__ = "approval"

    approval_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    timesheet_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    manager_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    mensagem: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("status IN ('approved', 'rejected')", name="approval_status_check"),
    )


class AuditEntry(Base, AppendOnlyMixin):
    """Immutable audit trail record.

    Acknowledgment of a closed-period edit is itself an AuditEntry whose
    resource_id points at the edit's audit_id.
    """

    __tablename__ = "audit_log"

    audit_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    # Owning timesheet, kept so edits to deleted entries remain traceable
    timesheet_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True
    )
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
