"""Explicit request context: which tenant, and who is acting.

Every resolver and workflow call receives these values. Nothing here is
global; a missing tenant is a hard precondition failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from timesheet_engine.errors import ConfigurationError


class ActorRole(str, Enum):
    """Roles recognised by the capability checks."""

    ADMIN = "admin"
    MANAGER = "manager"
    MANAGER_TIMESHEET = "manager_timesheet"
    EMPLOYEE = "employee"


MANAGER_ROLES = frozenset({ActorRole.MANAGER, ActorRole.MANAGER_TIMESHEET})


@dataclass(frozen=True)
class TenantContext:
    """Tenant scope for a single call."""

    tenant_id: UUID


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    user_id: UUID
    role: ActorRole = ActorRole.EMPLOYEE

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES


def require_tenant(ctx: TenantContext | None) -> UUID:
    """Return the tenant id, or fail hard when no tenant context was given."""
    if ctx is None or ctx.tenant_id is None:
        raise ConfigurationError("Tenant context is required")
    return ctx.tenant_id
