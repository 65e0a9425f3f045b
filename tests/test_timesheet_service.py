"""Tests for the employee-facing timesheet lifecycle."""

from datetime import date, time
from uuid import uuid4

import pytest
from sqlalchemy import select

from timesheet_engine.errors import (
    EmptyTimesheet,
    Forbidden,
    InvalidRequest,
    InvalidState,
    NotFound,
    PeriodLocked,
)
from timesheet_engine.events import TimesheetReopened, TimesheetSubmitted
from timesheet_engine.models import AuditEntry, GroupPeriodLock, Timesheet, TimesheetEntry

from .conftest import AFTER_DEADLINE, PERIOD, make_timesheet

pytestmark = pytest.mark.asyncio


async def audit_actions(session, timesheet_id):
    result = await session.execute(
        select(AuditEntry.action)
        .where(AuditEntry.timesheet_id == timesheet_id)
        .order_by(AuditEntry.created_at)
    )
    return list(result.scalars().all())


class TestOpenTimesheet:
    async def test_creates_draft_for_month(self, session, world, timesheets):
        timesheet = await timesheets.open_timesheet(
            world.ctx, world.employee_actor, world.employee.employee_id, "2025-10-17"
        )

        assert timesheet.status == "draft"
        assert timesheet.version == 1
        assert timesheet.periodo_ini == date(2025, 10, 1)
        assert timesheet.periodo_fim == date(2025, 10, 31)
        assert await audit_actions(session, timesheet.timesheet_id) == ["create"]

    async def test_returns_existing(self, session, world, timesheets, draft):
        timesheet = await timesheets.open_timesheet(
            world.ctx, world.employee_actor, world.employee.employee_id, PERIOD
        )
        assert timesheet.timesheet_id == draft.timesheet_id

    async def test_admin_may_open_for_employee(self, world, timesheets):
        timesheet = await timesheets.open_timesheet(
            world.ctx, world.admin, world.employee.employee_id, "2025-11"
        )
        assert timesheet.periodo_fim == date(2025, 11, 30)

    async def test_other_employee_forbidden(self, world, timesheets):
        with pytest.raises(Forbidden):
            await timesheets.open_timesheet(
                world.ctx, world.outsider_actor, world.employee.employee_id, PERIOD
            )

    async def test_unknown_employee(self, world, timesheets):
        with pytest.raises(NotFound):
            await timesheets.open_timesheet(world.ctx, world.admin, uuid4(), PERIOD)

    async def test_concurrent_open_returns_winner(
        self, session, world, timesheets, draft, monkeypatch
    ):
        """Losing the insert race yields the row the other request created."""
        find = timesheets._find_timesheet
        lookups = []

        async def first_lookup_misses(*args):
            lookups.append(args)
            if len(lookups) == 1:
                return None
            return await find(*args)

        monkeypatch.setattr(timesheets, "_find_timesheet", first_lookup_misses)

        timesheet = await timesheets.open_timesheet(
            world.ctx, world.employee_actor, world.employee.employee_id, PERIOD
        )

        assert timesheet.timesheet_id == draft.timesheet_id
        assert len(lookups) == 2
        # The session is still usable after the rejected insert
        result = await session.execute(
            select(Timesheet.timesheet_id).where(
                Timesheet.employee_id == world.employee.employee_id,
                Timesheet.periodo_ini == PERIOD,
            )
        )
        assert result.scalars().all() == [draft.timesheet_id]


class TestEntries:
    async def test_add_entry(self, session, world, timesheets, draft):
        entry = await timesheets.add_entry(
            world.ctx,
            world.employee_actor,
            draft.timesheet_id,
            data="2025-10-10",
            tipo="embarque",
            hora_ini="06:00",
            hora_fim="18:00",
            environment_id=world.rig.environment_id,
        )

        assert entry.data == date(2025, 10, 10)
        assert entry.hora_ini == time(6, 0)
        assert draft.version == 2
        assert "create" in await audit_actions(session, draft.timesheet_id)

    async def test_entry_outside_period_rejected(self, world, timesheets, draft):
        with pytest.raises(InvalidRequest):
            await timesheets.add_entry(
                world.ctx, world.employee_actor, draft.timesheet_id, data="2025-11-01", tipo="folga"
            )

    async def test_unknown_type_rejected(self, world, timesheets, draft):
        with pytest.raises(InvalidRequest):
            await timesheets.add_entry(
                world.ctx, world.employee_actor, draft.timesheet_id, data="2025-10-02", tipo="vacation"
            )

    async def test_update_entry(self, session, world, timesheets, draft):
        entry = (
            await session.execute(
                select(TimesheetEntry).where(TimesheetEntry.timesheet_id == draft.timesheet_id)
            )
        ).scalars().first()

        updated = await timesheets.update_entry(
            world.ctx, world.employee_actor, entry.entry_id, {"tipo": "folga", "observacao": "rest"}
        )

        assert updated.tipo == "folga"
        assert updated.observacao == "rest"

    async def test_update_rejects_unknown_field(self, session, world, timesheets, draft):
        entry = (
            await session.execute(
                select(TimesheetEntry).where(TimesheetEntry.timesheet_id == draft.timesheet_id)
            )
        ).scalars().first()
        with pytest.raises(InvalidRequest):
            await timesheets.update_entry(
                world.ctx, world.employee_actor, entry.entry_id, {"timesheet_id": str(uuid4())}
            )

    async def test_delete_entry(self, session, world, timesheets, draft):
        entry = (
            await session.execute(
                select(TimesheetEntry).where(TimesheetEntry.timesheet_id == draft.timesheet_id)
            )
        ).scalars().first()

        await timesheets.delete_entry(world.ctx, world.employee_actor, entry.entry_id)

        timesheet = await timesheets.get_timesheet(world.ctx, draft.timesheet_id)
        assert len(timesheet.entries) == 1

    async def test_submitted_timesheet_is_read_only(self, world, timesheets, submitted):
        with pytest.raises(InvalidState):
            await timesheets.add_entry(
                world.ctx, world.employee_actor, submitted.timesheet_id, data="2025-10-05", tipo="folga"
            )

    async def test_locked_period_blocks_entries(self, world, timesheets, draft, clock):
        clock.now = AFTER_DEADLINE
        with pytest.raises(PeriodLocked) as exc_info:
            await timesheets.add_entry(
                world.ctx, world.employee_actor, draft.timesheet_id, data="2025-10-05", tipo="folga"
            )
        assert exc_info.value.level == "tenant"

    async def test_other_employee_cannot_edit(self, world, timesheets, draft):
        with pytest.raises(Forbidden):
            await timesheets.add_entry(
                world.ctx, world.outsider_actor, draft.timesheet_id, data="2025-10-05", tipo="folga"
            )


class TestSubmit:
    async def test_submit(self, session, world, timesheets, draft, recorder):
        timesheet = await timesheets.submit(world.ctx, world.employee_actor, draft.timesheet_id)

        assert timesheet.status == "submitted"
        assert timesheet.version == 2
        assert await audit_actions(session, draft.timesheet_id) == ["submit"]

        events = recorder.of_type(TimesheetSubmitted)
        assert len(events) == 1
        assert events[0].recipient_user_ids == (world.manager.user_id,)
        assert events[0].period_month == PERIOD

    async def test_replayed_submit_is_invalid_state(self, world, timesheets, draft, recorder):
        await timesheets.submit(world.ctx, world.employee_actor, draft.timesheet_id)
        with pytest.raises(InvalidState):
            await timesheets.submit(world.ctx, world.employee_actor, draft.timesheet_id)
        assert len(recorder.events) == 1

    async def test_empty_timesheet(self, session, world, timesheets):
        empty = await make_timesheet(session, world, entries=0)
        with pytest.raises(EmptyTimesheet):
            await timesheets.submit(world.ctx, world.employee_actor, empty.timesheet_id)

    async def test_locked_period(self, world, timesheets, draft, clock, recorder):
        clock.now = AFTER_DEADLINE
        with pytest.raises(PeriodLocked):
            await timesheets.submit(world.ctx, world.employee_actor, draft.timesheet_id)
        assert recorder.events == []

    async def test_group_unlock_allows_late_submit(self, session, world, timesheets, draft, clock):
        clock.now = AFTER_DEADLINE
        session.add(
            GroupPeriodLock(
                tenant_id=world.tenant.tenant_id,
                group_id=world.group_a.group_id,
                period_month=PERIOD,
                locked=False,
            )
        )
        await session.flush()

        timesheet = await timesheets.submit(world.ctx, world.employee_actor, draft.timesheet_id)
        assert timesheet.status == "submitted"

    async def test_guard_order(self, session, world, timesheets, clock):
        """Forbidden beats InvalidState, which beats EmptyTimesheet, which beats PeriodLocked."""
        clock.now = AFTER_DEADLINE
        empty_submitted = await make_timesheet(session, world, status="submitted", entries=0)
        empty_draft = await make_timesheet(
            session, world, entries=0, month=date(2025, 9, 1)
        )

        with pytest.raises(Forbidden):
            await timesheets.submit(world.ctx, world.outsider_actor, empty_submitted.timesheet_id)
        with pytest.raises(InvalidState):
            await timesheets.submit(world.ctx, world.employee_actor, empty_submitted.timesheet_id)
        with pytest.raises(EmptyTimesheet):
            await timesheets.submit(world.ctx, world.employee_actor, empty_draft.timesheet_id)

    async def test_manager_cannot_submit(self, world, timesheets, draft):
        with pytest.raises(Forbidden):
            await timesheets.submit(world.ctx, world.manager, draft.timesheet_id)

    async def test_unknown_timesheet(self, world, timesheets):
        with pytest.raises(NotFound):
            await timesheets.submit(world.ctx, world.employee_actor, uuid4())


class TestReopen:
    async def test_reopen_rejected(self, session, world, timesheets, recorder):
        rejected = await make_timesheet(session, world, status="rejected")

        timesheet = await timesheets.reopen(world.ctx, world.employee_actor, rejected.timesheet_id)

        assert timesheet.status == "draft"
        assert len(recorder.of_type(TimesheetReopened)) == 1

    async def test_reopen_approved_fails(self, session, world, timesheets):
        approved = await make_timesheet(session, world, status="approved")
        with pytest.raises(InvalidState):
            await timesheets.reopen(world.ctx, world.employee_actor, approved.timesheet_id)

    async def test_only_owner_reopens(self, session, world, timesheets):
        rejected = await make_timesheet(session, world, status="rejected")
        with pytest.raises(Forbidden):
            await timesheets.reopen(world.ctx, world.admin, rejected.timesheet_id)
