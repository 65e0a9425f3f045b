"""Domain events for the timesheet workflows.

Events are immutable records of something that already happened and was
committed. They drive notifications; they are never the source of truth
(the audit log is).
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    TIMESHEET = "timesheet"
    REVIEW = "review"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    tenant_id: UUID
    correlation_id: UUID  # Links events raised by one operation
    actor_id: UUID | None
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        tenant_id: UUID,
        actor_id: UUID | None = None,
        correlation_id: UUID | None = None,
        source_service: str = "timesheet_engine",
    ) -> EventMetadata:
        """Create metadata with generated id and timestamp."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            tenant_id=tenant_id,
            correlation_id=correlation_id or uuid4(),
            actor_id=actor_id,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        data = _serialize(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _serialize(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(v) for v in obj]
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Timesheet lifecycle
# =============================================================================


@dataclass(frozen=True)
class TimesheetSubmitted(DomainEvent):
    """An employee submitted a timesheet; reviewers should be notified."""

    timesheet_id: UUID
    employee_id: UUID
    period_month: date
    recipient_user_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def category(self) -> EventCategory:
        return EventCategory.TIMESHEET


@dataclass(frozen=True)
class TimesheetReopened(DomainEvent):
    """A rejected timesheet went back to draft."""

    timesheet_id: UUID
    employee_id: UUID

    @property
    def category(self) -> EventCategory:
        return EventCategory.TIMESHEET


# =============================================================================
# Review
# =============================================================================


@dataclass(frozen=True)
class TimesheetApproved(DomainEvent):
    timesheet_id: UUID
    employee_id: UUID
    manager_id: UUID
    message: str | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.REVIEW


@dataclass(frozen=True)
class TimesheetRejected(DomainEvent):
    timesheet_id: UUID
    employee_id: UUID
    manager_id: UUID
    reason: str
    annotation_count: int = 0

    @property
    def category(self) -> EventCategory:
        return EventCategory.REVIEW


# =============================================================================
# Closed-period adjustments
# =============================================================================


@dataclass(frozen=True)
class ClosedPeriodEditRecorded(DomainEvent):
    """A manager changed a locked period; the employee must acknowledge."""

    audit_id: UUID
    timesheet_id: UUID
    entry_id: UUID
    employee_id: UUID
    operation: str  # 'update' or 'delete'
    justification: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT


@dataclass(frozen=True)
class AdjustmentAcknowledged(DomainEvent):
    edit_audit_id: UUID
    acknowledgment_audit_id: UUID
    employee_id: UUID
    accepted: bool
    note: str | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT
