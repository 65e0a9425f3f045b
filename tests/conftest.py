"""Pytest fixtures for timesheet engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timesheet_engine.context import Actor, ActorRole, TenantContext
from timesheet_engine.events import AsyncEventEmitter, RecordingHandler
from timesheet_engine.models import (
    Base,
    Employee,
    EmployeeEnvironment,
    EmployeeGroupMember,
    Environment,
    Group,
    ManagerGroupAssignment,
    Tenant,
    Timesheet,
    TimesheetEntry,
)
from timesheet_engine.services.closed_period_service import ClosedPeriodService
from timesheet_engine.services.lock_resolver import PeriodLockResolver
from timesheet_engine.services.lock_store import LockStore, month_last_day
from timesheet_engine.services.period_lock_admin import PeriodLockAdminService
from timesheet_engine.services.review_service import ReviewService
from timesheet_engine.services.timesheet_service import TimesheetService

# In-memory SQLite shared by every session of a test through a StaticPool
TEST_DATABASE_URL = "sqlite+aiosqlite://"

# October 2025 is the working period in most tests; with deadline day 16 it
# stays open until 2025-11-16.
PERIOD = date(2025, 10, 1)
BEFORE_DEADLINE = datetime(2025, 10, 20, 12, 0, tzinfo=timezone.utc)
AFTER_DEADLINE = datetime(2025, 11, 20, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock for the resolver."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@dataclass
class World:
    """A tenant with two groups, their managers and employees."""

    tenant: Tenant
    ctx: TenantContext
    admin: Actor
    manager: Actor  # delegated over group_a
    other_manager: Actor  # delegated over group_b only
    employee_actor: Actor
    employee: Employee  # member of group_a, assigned to rig
    outsider_actor: Actor
    outsider: Employee  # member of group_b
    group_a: Group
    group_b: Group
    rig: Environment
    base: Environment


@pytest_asyncio.fixture
async def engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def world(session: AsyncSession) -> World:
    """Seed and commit the standard tenant."""
    tenant = Tenant(
        tenant_id=uuid4(),
        name="Offshore Ops",
        deadline_day=16,
        timezone="UTC",
        auto_lock_enabled=True,
    )
    session.add(tenant)
    await session.flush()
    tid = tenant.tenant_id

    group_a = Group(group_id=uuid4(), tenant_id=tid, name="Rig crew")
    group_b = Group(group_id=uuid4(), tenant_id=tid, name="Base crew")
    rig = Environment(environment_id=uuid4(), tenant_id=tid, slug="rig-7", name="Rig 7")
    base = Environment(environment_id=uuid4(), tenant_id=tid, slug="macae", name="Macaé base")
    session.add_all([group_a, group_b, rig, base])

    admin = Actor(uuid4(), ActorRole.ADMIN)
    manager = Actor(uuid4(), ActorRole.MANAGER)
    other_manager = Actor(uuid4(), ActorRole.MANAGER_TIMESHEET)
    employee_actor = Actor(uuid4(), ActorRole.EMPLOYEE)
    outsider_actor = Actor(uuid4(), ActorRole.EMPLOYEE)

    employee = Employee(
        employee_id=uuid4(),
        tenant_id=tid,
        profile_id=employee_actor.user_id,
        display_name="Ana Souza",
    )
    outsider = Employee(
        employee_id=uuid4(),
        tenant_id=tid,
        profile_id=outsider_actor.user_id,
        display_name="Bruno Lima",
    )
    session.add_all([employee, outsider])
    await session.flush()

    session.add_all(
        [
            EmployeeGroupMember(tenant_id=tid, employee_id=employee.employee_id, group_id=group_a.group_id),
            EmployeeGroupMember(tenant_id=tid, employee_id=outsider.employee_id, group_id=group_b.group_id),
            ManagerGroupAssignment(tenant_id=tid, manager_user_id=manager.user_id, group_id=group_a.group_id),
            ManagerGroupAssignment(
                tenant_id=tid, manager_user_id=other_manager.user_id, group_id=group_b.group_id
            ),
            EmployeeEnvironment(
                tenant_id=tid, employee_id=employee.employee_id, environment_id=rig.environment_id
            ),
        ]
    )
    await session.commit()

    return World(
        tenant=tenant,
        ctx=TenantContext(tid),
        admin=admin,
        manager=manager,
        other_manager=other_manager,
        employee_actor=employee_actor,
        employee=employee,
        outsider_actor=outsider_actor,
        outsider=outsider,
        group_a=group_a,
        group_b=group_b,
        rig=rig,
        base=base,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(BEFORE_DEADLINE)


@pytest.fixture
def resolver(session: AsyncSession, clock: FixedClock) -> PeriodLockResolver:
    return PeriodLockResolver(LockStore(session), clock=clock)


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def emitter(recorder: RecordingHandler) -> AsyncEventEmitter:
    emitter = AsyncEventEmitter()
    emitter.on_all(recorder)
    return emitter


@pytest.fixture
def timesheets(session, resolver, emitter) -> TimesheetService:
    return TimesheetService(session, resolver=resolver, emitter=emitter)


@pytest.fixture
def reviews(session, emitter) -> ReviewService:
    return ReviewService(session, emitter=emitter)


@pytest.fixture
def closed_periods(session, resolver, emitter) -> ClosedPeriodService:
    return ClosedPeriodService(session, resolver=resolver, emitter=emitter)


@pytest.fixture
def lock_admin(session) -> PeriodLockAdminService:
    return PeriodLockAdminService(session)


async def make_timesheet(
    session: AsyncSession,
    world: World,
    status: str = "draft",
    entries: int = 2,
    month: date = PERIOD,
    employee_id: UUID | None = None,
) -> Timesheet:
    """Insert a timesheet directly, bypassing workflow guards."""
    timesheet = Timesheet(
        timesheet_id=uuid4(),
        tenant_id=world.tenant.tenant_id,
        employee_id=employee_id or world.employee.employee_id,
        periodo_ini=month,
        periodo_fim=month_last_day(month),
        status=status,
        version=1,
    )
    session.add(timesheet)
    await session.flush()
    for day in range(1, entries + 1):
        session.add(
            TimesheetEntry(
                entry_id=uuid4(),
                timesheet_id=timesheet.timesheet_id,
                tenant_id=world.tenant.tenant_id,
                data=month.replace(day=day),
                tipo="offshore",
                environment_id=world.rig.environment_id,
            )
        )
    await session.commit()
    return timesheet


@pytest_asyncio.fixture
async def draft(session, world) -> Timesheet:
    return await make_timesheet(session, world)


@pytest_asyncio.fixture
async def submitted(session, world) -> Timesheet:
    return await make_timesheet(session, world, status="submitted")
