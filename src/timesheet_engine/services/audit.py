"""Append-only audit sink."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.context import Actor, TenantContext, require_tenant
from timesheet_engine.models import AuditEntry

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Actions written to the audit log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REOPEN = "reopen"
    ANNOTATE = "annotate"
    LOCK_PERIOD = "lock_period"
    UNLOCK_PERIOD = "unlock_period"
    CLEAR_PERIOD_LOCK = "clear_period_lock"
    MANAGER_EDIT_CLOSED_PERIOD = "manager_edit_closed_period"
    EMPLOYEE_ACKNOWLEDGE_ADJUSTMENT = "employee_acknowledge_adjustment"


@dataclass(frozen=True)
class RequestMeta:
    """Client details captured alongside sensitive audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None


def to_json_value(value: Any) -> Any:
    """Recursively convert values into JSON-compatible types."""
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_value(v) for v in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


class AuditLog:
    """Writes AuditEntry rows in the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        ctx: TenantContext,
        actor: Actor,
        action: AuditAction | str,
        resource_type: str,
        resource_id: UUID | None,
        timesheet_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        request_meta: RequestMeta | None = None,
    ) -> AuditEntry:
        """Append an audit entry and flush it so its id is available."""
        tenant_id = require_tenant(ctx)
        meta = request_meta or RequestMeta()

        entry = AuditEntry(
            tenant_id=tenant_id,
            user_id=actor.user_id,
            action=action.value if isinstance(action, AuditAction) else action,
            resource_type=resource_type,
            resource_id=resource_id,
            timesheet_id=timesheet_id,
            old_values=to_json_value(old_values) if old_values is not None else None,
            new_values=to_json_value(new_values) if new_values is not None else None,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug(
            "Audit %s on %s %s by %s", entry.action, resource_type, resource_id, actor.user_id
        )
        return entry
