"""Pydantic schemas for API request/response models."""

from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str


# ============================================================================
# Period lock schemas
# ============================================================================


class ResolveLockRequest(BaseModel):
    employee_id: UUID
    period_month: str = Field(..., description="YYYY-MM or YYYY-MM-DD")


class EffectiveLockResponse(BaseModel):
    locked: bool
    level: str
    reason: str | None = None


class PeriodLockUpsert(BaseModel):
    locked: bool
    reason: str | None = None


class PeriodLockResponse(BaseModel):
    level: str
    owner_id: UUID
    period_month: date
    locked: bool
    reason: str | None = None
    updated_by: UUID | None = None
    updated_at: datetime | None = None


class PeriodLockListResponse(BaseModel):
    items: list[PeriodLockResponse]
    total: int


# ============================================================================
# Timesheet schemas
# ============================================================================


class TimesheetCreate(BaseModel):
    """Schema for opening the timesheet of a month."""

    employee_id: UUID
    period_month: str = Field(..., description="YYYY-MM or YYYY-MM-DD")


class EntryCreate(BaseModel):
    data: date
    tipo: str
    hora_ini: time | None = None
    hora_fim: time | None = None
    environment_id: UUID | None = None
    observacao: str | None = None


class EntryUpdate(BaseModel):
    """Partial entry change; only the fields sent are applied."""

    data: date | None = None
    tipo: str | None = None
    hora_ini: time | None = None
    hora_fim: time | None = None
    environment_id: UUID | None = None
    observacao: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class EntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: UUID
    timesheet_id: UUID
    data: date
    tipo: str
    hora_ini: time | None = None
    hora_fim: time | None = None
    environment_id: UUID | None = None
    observacao: str | None = None


class TimesheetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timesheet_id: UUID
    tenant_id: UUID
    employee_id: UUID
    periodo_ini: date
    periodo_fim: date
    status: str
    version: int


class TimesheetDetailResponse(TimesheetResponse):
    entries: list[EntryResponse] = []


# ============================================================================
# Review schemas
# ============================================================================


class AnnotationIn(BaseModel):
    message: str = Field(..., min_length=1)
    entry_id: UUID | None = None
    field_path: str | None = None


class ReviewRequest(BaseModel):
    decision: str = Field(..., description="approved or rejected")
    message: str | None = None
    annotations: list[AnnotationIn] = []


class AnnotateRequest(BaseModel):
    annotations: list[AnnotationIn] = Field(..., min_length=1)


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_id: UUID
    timesheet_id: UUID
    manager_id: UUID
    status: str
    mensagem: str | None = None
    created_at: datetime


class AnnotationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    annotation_id: UUID
    timesheet_id: UUID
    entry_id: UUID | None = None
    field_path: str | None = None
    message: str
    created_by: UUID
    created_at: datetime


class ReviewHistoryResponse(BaseModel):
    timesheet_id: UUID
    status: str
    latest_decision: ApprovalResponse | None = None
    approvals: list[ApprovalResponse]
    annotations: list[AnnotationResponse]


# ============================================================================
# Closed-period and acknowledgment schemas
# ============================================================================


class ClosedEditRequest(BaseModel):
    changes: EntryUpdate
    justification: str


class ClosedDeleteRequest(BaseModel):
    justification: str


class ClosedEntryCreate(EntryCreate):
    justification: str


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    audit_id: UUID
    user_id: UUID
    action: str
    resource_type: str
    resource_id: UUID | None = None
    timesheet_id: UUID | None = None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    created_at: datetime


class AcknowledgeRequest(BaseModel):
    accepted: bool = True
    note: str | None = None


class AckStateResponse(BaseModel):
    edit_audit_id: UUID
    status: str
    note: str | None = None
    acknowledgment: AuditEntryResponse | None = None


class AckStatusResponse(BaseModel):
    timesheet_id: UUID
    total_entries: int
    edits: int
    pending: int
    acknowledged: int
    contested: int
