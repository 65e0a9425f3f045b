"""Timesheet engine services."""

from timesheet_engine.services.closed_period_service import (
    AckState,
    AckStatus,
    AckSummary,
    ClosedPeriodService,
)
from timesheet_engine.services.lock_resolver import (
    EffectiveLock,
    LockDecisionCache,
    LockLevel,
    PeriodLockResolver,
    resolve_effective_lock,
)
from timesheet_engine.services.lock_store import LockRow, LockSnapshot, LockStore, TenantPolicy
from timesheet_engine.services.period_lock_admin import AutoLockOutcome, PeriodLockAdminService
from timesheet_engine.services.permissions import Capabilities, can_edit_closed_period
from timesheet_engine.services.review_service import AnnotationInput, ReviewHistory, ReviewService
from timesheet_engine.services.state_machine import (
    ReviewDecision,
    TimesheetStateMachine,
    TimesheetStatus,
)
from timesheet_engine.services.timesheet_service import TimesheetService

__all__ = [
    "AckState",
    "AckStatus",
    "AckSummary",
    "AnnotationInput",
    "AutoLockOutcome",
    "Capabilities",
    "ClosedPeriodService",
    "EffectiveLock",
    "LockDecisionCache",
    "LockLevel",
    "LockRow",
    "LockSnapshot",
    "LockStore",
    "PeriodLockAdminService",
    "PeriodLockResolver",
    "ReviewDecision",
    "ReviewHistory",
    "ReviewService",
    "TenantPolicy",
    "TimesheetService",
    "TimesheetStateMachine",
    "TimesheetStatus",
    "can_edit_closed_period",
    "resolve_effective_lock",
]
