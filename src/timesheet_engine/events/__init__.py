"""Domain events and the notification emitter."""

from timesheet_engine.events.emitter import (
    AsyncEventEmitter,
    EventBatch,
    HandlerRegistration,
    RecordingHandler,
)
from timesheet_engine.events.types import (
    AdjustmentAcknowledged,
    ClosedPeriodEditRecorded,
    DomainEvent,
    EventCategory,
    EventMetadata,
    TimesheetApproved,
    TimesheetRejected,
    TimesheetReopened,
    TimesheetSubmitted,
)

__all__ = [
    # Base
    "DomainEvent",
    "EventMetadata",
    "EventCategory",
    # Timesheet
    "TimesheetSubmitted",
    "TimesheetReopened",
    # Review
    "TimesheetApproved",
    "TimesheetRejected",
    # Adjustments
    "ClosedPeriodEditRecorded",
    "AdjustmentAcknowledged",
    # Emitter
    "AsyncEventEmitter",
    "EventBatch",
    "HandlerRegistration",
    "RecordingHandler",
]
