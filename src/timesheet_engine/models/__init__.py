"""ORM models for the timesheet engine."""

from timesheet_engine.models.base import Base, TimestampMixin, UpdatedAtMixin
from timesheet_engine.models.organization import (
    Employee,
    EmployeeEnvironment,
    EmployeeGroupMember,
    Environment,
    Group,
    ManagerGroupAssignment,
    Tenant,
)
from timesheet_engine.models.periods import (
    LOCK_MODELS,
    LOCK_OWNER_COLUMNS,
    EmployeePeriodLock,
    EnvironmentPeriodLock,
    GroupPeriodLock,
    TenantPeriodLock,
)
from timesheet_engine.models.timesheet import (
    ENTRY_TYPES,
    Annotation,
    Approval,
    AuditEntry,
    Timesheet,
    TimesheetEntry,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UpdatedAtMixin",
    "Tenant",
    "Employee",
    "Group",
    "EmployeeGroupMember",
    "ManagerGroupAssignment",
    "Environment",
    "EmployeeEnvironment",
    "LOCK_MODELS",
    "LOCK_OWNER_COLUMNS",
    "TenantPeriodLock",
    "EmployeePeriodLock",
    "GroupPeriodLock",
    "EnvironmentPeriodLock",
    "ENTRY_TYPES",
    "Timesheet",
    "TimesheetEntry",
    "Annotation",
    "Approval",
    "AuditEntry",
]
