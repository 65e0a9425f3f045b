"""Typed errors raised by the timesheet engine.

Business-rule violations (Forbidden, PeriodLocked, InvalidState,
EmptyTimesheet) are legitimate decisions and must never be retried
automatically. Conflict may be retried once against freshly loaded state.
Unavailable is retryable with backoff. ConfigurationError is fatal.
"""

from __future__ import annotations

from typing import Any


class TimesheetEngineError(Exception):
    """Base class for all engine errors."""

    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        for key, value in self.details.items():
            if value is None or isinstance(value, (str, int, float, bool)):
                payload[key] = value
            else:
                payload[key] = str(value)
        return payload


class Forbidden(TimesheetEngineError):
    """The actor is not authorized for the operation."""

    code = "forbidden"


class PeriodLocked(TimesheetEngineError):
    """The effective lock for the period says locked."""

    code = "period_locked"

    def __init__(self, level: str, reason: str | None = None):
        self.level = level
        self.reason = reason
        msg = f"Period locked by {level} policy"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, level=level, reason=reason)


class InvalidState(TimesheetEngineError):
    """A transition or mutation guard was violated by the current status."""

    code = "invalid_state"

    def __init__(self, current_status: str, action: str, reason: str | None = None):
        self.current_status = current_status
        self.action = action
        self.reason = reason
        msg = f"Cannot {action} while status is '{current_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, current_status=current_status, action=action)


class EmptyTimesheet(TimesheetEngineError):
    """Submission of a timesheet without entries."""

    code = "empty_timesheet"

    def __init__(self, timesheet_id: Any):
        self.timesheet_id = timesheet_id
        super().__init__("Timesheet has no entries", timesheet_id=timesheet_id)


class Conflict(TimesheetEngineError):
    """Lost a concurrent write race; reload and retry once."""

    code = "conflict"
    retryable = True


class ConfigurationError(TimesheetEngineError):
    """Missing or unresolvable tenant context. Fatal for the request."""

    code = "configuration_error"


class Unavailable(TimesheetEngineError):
    """Storage failure or timeout. Retry with backoff."""

    code = "unavailable"
    retryable = True


class NotFound(TimesheetEngineError):
    """A referenced resource does not exist within the tenant."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found", resource=resource)


class InvalidRequest(TimesheetEngineError):
    """The request is well-formed but its content breaks a rule."""

    code = "invalid_request"


class ImmutableRecordError(TimesheetEngineError):
    """Attempt to update or delete an append-only record."""

    code = "immutable_record"
