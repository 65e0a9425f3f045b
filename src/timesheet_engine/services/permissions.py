"""Capability checks shared by every workflow.

All delegation and ownership logic lives here; call sites ask a question
instead of re-deriving group membership themselves.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.context import Actor, ActorRole, TenantContext, require_tenant
from timesheet_engine.errors import Forbidden
from timesheet_engine.models import Employee, EmployeeGroupMember, ManagerGroupAssignment

logger = logging.getLogger(__name__)

CLOSED_PERIOD_EDITORS = frozenset(
    {ActorRole.ADMIN, ActorRole.MANAGER, ActorRole.MANAGER_TIMESHEET}
)


def can_edit_closed_period(actor: Actor) -> bool:
    """Whether the actor's role may use the closed-period edit path at all."""
    return actor.role in CLOSED_PERIOD_EDITORS


class Capabilities:
    """Answers authorization questions for one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def delegated_group_ids(self, tenant_id: UUID, manager_user_id: UUID) -> set[UUID]:
        """Groups a manager has been delegated review authority over."""
        result = await self.session.execute(
            select(ManagerGroupAssignment.group_id).where(
                ManagerGroupAssignment.tenant_id == tenant_id,
                ManagerGroupAssignment.manager_user_id == manager_user_id,
            )
        )
        return set(result.scalars().all())

    async def employee_group_ids(self, tenant_id: UUID, employee_id: UUID) -> set[UUID]:
        result = await self.session.execute(
            select(EmployeeGroupMember.group_id).where(
                EmployeeGroupMember.tenant_id == tenant_id,
                EmployeeGroupMember.employee_id == employee_id,
            )
        )
        return set(result.scalars().all())

    async def can_review(self, ctx: TenantContext, actor: Actor, employee_id: UUID) -> bool:
        """Admin, or a manager delegated over a group containing the employee."""
        tenant_id = require_tenant(ctx)
        if actor.is_admin:
            return True
        if not actor.is_manager:
            return False

        delegated = await self.delegated_group_ids(tenant_id, actor.user_id)
        if not delegated:
            return False
        return bool(delegated & await self.employee_group_ids(tenant_id, employee_id))

    async def is_owner(self, ctx: TenantContext, actor: Actor, employee_id: UUID) -> bool:
        """Whether the actor is the employee (matched via profile_id in the tenant)."""
        tenant_id = require_tenant(ctx)
        result = await self.session.execute(
            select(Employee.employee_id).where(
                Employee.tenant_id == tenant_id,
                Employee.profile_id == actor.user_id,
            )
        )
        return result.scalar_one_or_none() == employee_id

    async def employee_for(self, ctx: TenantContext, actor: Actor) -> Employee | None:
        """The employee record the actor logs in as, if any."""
        tenant_id = require_tenant(ctx)
        result = await self.session.execute(
            select(Employee).where(
                Employee.tenant_id == tenant_id,
                Employee.profile_id == actor.user_id,
            )
        )
        return result.scalar_one_or_none()

    async def manager_user_ids_for(self, ctx: TenantContext, employee_id: UUID) -> list[UUID]:
        """Managers delegated over any of the employee's groups (notification recipients)."""
        tenant_id = require_tenant(ctx)
        group_ids = await self.employee_group_ids(tenant_id, employee_id)
        if not group_ids:
            return []
        result = await self.session.execute(
            select(ManagerGroupAssignment.manager_user_id)
            .where(
                ManagerGroupAssignment.tenant_id == tenant_id,
                ManagerGroupAssignment.group_id.in_(group_ids),
            )
            .distinct()
        )
        return sorted(result.scalars().all(), key=str)

    async def require_review(self, ctx: TenantContext, actor: Actor, employee_id: UUID) -> None:
        if not await self.can_review(ctx, actor, employee_id):
            logger.info("Review denied: user=%s employee=%s", actor.user_id, employee_id)
            raise Forbidden("Not delegated over any group of this employee")

    async def require_owner_or_admin(
        self, ctx: TenantContext, actor: Actor, employee_id: UUID
    ) -> None:
        if actor.is_admin:
            return
        if not await self.is_owner(ctx, actor, employee_id):
            logger.info("Owner check failed: user=%s employee=%s", actor.user_id, employee_id)
            raise Forbidden("Only the owning employee or an admin may do this")

    async def require_owner(self, ctx: TenantContext, actor: Actor, employee_id: UUID) -> None:
        if not await self.is_owner(ctx, actor, employee_id):
            logger.info("Owner check failed: user=%s employee=%s", actor.user_id, employee_id)
            raise Forbidden("Only the owning employee may do this")

    async def require_closed_period_editor(
        self, ctx: TenantContext, actor: Actor, employee_id: UUID
    ) -> None:
        """Role allows closed-period edits and, unless admin, delegation covers the employee."""
        if not can_edit_closed_period(actor):
            raise Forbidden("Role may not edit closed periods")
        if not actor.is_admin:
            await self.require_review(ctx, actor, employee_id)
