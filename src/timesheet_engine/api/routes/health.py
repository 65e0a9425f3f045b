"""Liveness, readiness and health checks."""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine import __version__
from timesheet_engine.api.dependencies import DbSession
from timesheet_engine.errors import Unavailable

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class DatabaseCheck(BaseModel):
    status: str
    latency_ms: float | None = None


class HealthResponse(BaseModel):
    """Storage reachability plus in-process cache and notification state."""

    status: str
    timestamp: datetime
    version: str
    database: DatabaseCheck
    lock_cache_entries: int
    notification_handlers: int


async def check_database(db: AsyncSession) -> DatabaseCheck:
    started = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
    except (sa_exc.SQLAlchemyError, OSError) as e:
        logger.warning("Database check failed: %s", e)
        return DatabaseCheck(status="unreachable")
    elapsed = (time.perf_counter() - started) * 1000
    return DatabaseCheck(status="ok", latency_ms=round(elapsed, 2))


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: DbSession) -> HealthResponse:
    database = await check_database(db)
    return HealthResponse(
        status="healthy" if database.status == "ok" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        database=database,
        lock_cache_entries=len(request.app.state.lock_cache),
        notification_handlers=request.app.state.emitter.handler_count,
    )


@router.get("/ready")
async def readiness_check(db: DbSession) -> dict[str, str]:
    """Ready once storage answers; 503 otherwise so the balancer retries elsewhere."""
    if (await check_database(db)).status != "ok":
        raise Unavailable("Storage unreachable")
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
