"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timesheet_engine import __version__
from timesheet_engine.api.routes import (
    audit_router,
    entries_router,
    health_router,
    locks_router,
    timesheets_router,
)
from timesheet_engine.config import get_settings
from timesheet_engine.database import dispose_db, init_db
from timesheet_engine.errors import TimesheetEngineError
from timesheet_engine.events import AsyncEventEmitter, DomainEvent
from timesheet_engine.logging import setup_logging
from timesheet_engine.services.lock_resolver import LockDecisionCache

logger = logging.getLogger(__name__)

# HTTP status per error code
ERROR_STATUS: dict[str, int] = {
    "forbidden": status.HTTP_403_FORBIDDEN,
    "period_locked": status.HTTP_409_CONFLICT,
    "invalid_state": status.HTTP_409_CONFLICT,
    "empty_timesheet": 422,
    "conflict": status.HTTP_409_CONFLICT,
    "configuration_error": status.HTTP_400_BAD_REQUEST,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_request": 422,
    "immutable_record": status.HTTP_409_CONFLICT,
}


def log_notification(event: DomainEvent) -> None:
    """Default notification sink; delivery transports subscribe alongside it."""
    logger.info("Notification %s: %s", event.event_type, event.to_json())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging(get_settings().log_level)
    init_db()
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="Timesheet Engine API",
        description="Period locking, timesheet review and closed-period audit",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.lock_cache = LockDecisionCache(ttl_seconds=settings.lock_cache_ttl_seconds)
    app.state.emitter = AsyncEventEmitter()
    app.state.emitter.on_all(log_notification)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(TimesheetEngineError)
    async def engine_exception_handler(
        request: Request, exc: TimesheetEngineError
    ) -> JSONResponse:
        """Render typed engine errors with their stable code."""
        status_code = ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(locks_router, prefix="/api/v1")
    app.include_router(timesheets_router, prefix="/api/v1")
    app.include_router(entries_router, prefix="/api/v1")
    app.include_router(audit_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
