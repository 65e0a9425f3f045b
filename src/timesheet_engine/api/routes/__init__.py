"""API routes."""

from timesheet_engine.api.routes.audit import router as audit_router
from timesheet_engine.api.routes.entries import router as entries_router
from timesheet_engine.api.routes.health import router as health_router
from timesheet_engine.api.routes.locks import router as locks_router
from timesheet_engine.api.routes.timesheets import router as timesheets_router

__all__ = [
    "audit_router",
    "entries_router",
    "health_router",
    "locks_router",
    "timesheets_router",
]
