"""Timesheet state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from timesheet_engine.errors import EmptyTimesheet, InvalidState

if TYPE_CHECKING:
    from timesheet_engine.models import Timesheet


class TimesheetStatus(str, Enum):
    """Timesheet status values."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(str, Enum):
    """Outcome of a manager review."""

    APPROVED = "approved"
    REJECTED = "rejected"


class TimesheetStateMachine:
    """State machine for timesheet status transitions.

    Allowed transitions:
    - draft → submitted (submit)
    - submitted → approved (review)
    - submitted → rejected (review)
    - rejected → draft (reopen)

    approved is terminal; closed-period edits change entries, never status.
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        TimesheetStatus.DRAFT: [TimesheetStatus.SUBMITTED],
        TimesheetStatus.SUBMITTED: [TimesheetStatus.APPROVED, TimesheetStatus.REJECTED],
        TimesheetStatus.REJECTED: [TimesheetStatus.DRAFT],
        TimesheetStatus.APPROVED: [],  # Terminal state
    }

    # Statuses where the owner may add, change or remove entries
    ENTRIES_MUTABLE = {TimesheetStatus.DRAFT}

    # Statuses where reviewers may annotate
    ANNOTATABLE = {TimesheetStatus.SUBMITTED}

    # Action names used in error messages, keyed by target status
    ACTIONS: dict[str, str] = {
        TimesheetStatus.SUBMITTED: "submit",
        TimesheetStatus.APPROVED: "approve",
        TimesheetStatus.REJECTED: "reject",
        TimesheetStatus.DRAFT: "reopen",
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidState if invalid."""
        if not cls.can_transition(from_status, to_status):
            allowed = cls.get_next_statuses(from_status)
            raise InvalidState(
                str(from_status),
                cls.ACTIONS.get(to_status, f"move to '{to_status}'"),
                f"allowed next: {', '.join(allowed)}" if allowed else "no further transitions",
            )

    @classmethod
    def can_modify_entries(cls, status: str) -> bool:
        """Check if entries can be modified through the regular path."""
        return status in cls.ENTRIES_MUTABLE

    @classmethod
    def validate_entry_mutation(cls, status: str) -> None:
        if not cls.can_modify_entries(status):
            raise InvalidState(status, "modify entries", "timesheet is not a draft")

    @classmethod
    def can_annotate(cls, status: str) -> bool:
        return status in cls.ANNOTATABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return [str(s.value) for s in cls.VALID_TRANSITIONS.get(current_status, [])]

    @classmethod
    def validate_timesheet_for_transition(
        cls,
        timesheet: Timesheet,
        to_status: str,
        entry_count: int | None = None,
    ) -> None:
        """Validate a timesheet for a specific transition.

        The status check runs first, so a replayed submit reports
        InvalidState rather than EmptyTimesheet.

        Raises:
            InvalidState: the transition is not allowed from the current status
            EmptyTimesheet: submitting with no entries
        """
        cls.validate_transition(timesheet.status, to_status)

        if to_status == TimesheetStatus.SUBMITTED and entry_count == 0:
            raise EmptyTimesheet(timesheet.timesheet_id)
