"""Tests for effective period lock resolution."""

from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from timesheet_engine.context import TenantContext
from timesheet_engine.errors import ConfigurationError
from timesheet_engine.models import EmployeePeriodLock, EnvironmentPeriodLock, GroupPeriodLock, TenantPeriodLock
from timesheet_engine.services.lock_resolver import (
    EffectiveLock,
    LockDecisionCache,
    LockLevel,
    PeriodLockResolver,
    deadline_for,
    normalize_month,
    resolve_effective_lock,
    tenant_default_locked,
)
from timesheet_engine.services.lock_store import LockRow, LockSnapshot, LockStore, TenantPolicy

from .conftest import AFTER_DEADLINE, PERIOD

OCT = date(2025, 10, 1)


def policy(deadline_day=16, auto_lock_enabled=True, tz="UTC"):
    return TenantPolicy(
        tenant_id=uuid4(),
        deadline_day=deadline_day,
        timezone=tz,
        auto_lock_enabled=auto_lock_enabled,
    )


def row(locked, reason=None):
    return LockRow(owner_id=uuid4(), locked=locked, reason=reason)


class TestNormalizeMonth:
    def test_accepts_month_and_date_strings(self):
        assert normalize_month("2025-10") == OCT
        assert normalize_month("2025-10-17") == OCT
        assert normalize_month(" 2025-10-31T10:00:00 ") == OCT

    def test_accepts_dates(self):
        assert normalize_month(date(2025, 10, 17)) == OCT
        assert normalize_month(datetime(2025, 10, 17, 23, 59)) == OCT

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            normalize_month("October")
        with pytest.raises(ValueError):
            normalize_month("2025-13")


class TestDeadline:
    """Deadline day falls in the month after the period."""

    def test_deadline_in_following_month(self):
        assert deadline_for(OCT, 16) == date(2025, 11, 16)

    def test_december_rolls_into_next_year(self):
        assert deadline_for(date(2025, 12, 1), 5) == date(2026, 1, 5)

    def test_zero_means_last_day(self):
        assert deadline_for(OCT, 0) == date(2025, 11, 30)
        assert deadline_for(date(2025, 12, 1), 0) == date(2026, 1, 31)

    def test_clamped_to_month_length(self):
        # February 2026 has 28 days
        assert deadline_for(date(2026, 1, 1), 31) == date(2026, 2, 28)
        assert deadline_for(date(2024, 1, 1), 30) == date(2024, 2, 29)

    def test_locked_on_deadline_day(self):
        p = policy(deadline_day=16)
        assert tenant_default_locked(p, OCT, date(2025, 11, 15)) is False
        assert tenant_default_locked(p, OCT, date(2025, 11, 16)) is True
        assert tenant_default_locked(p, OCT, date(2026, 3, 1)) is True

    def test_disabled_policy_never_locks(self):
        p = policy(auto_lock_enabled=False)
        assert tenant_default_locked(p, OCT, date(2030, 1, 1)) is False


class TestResolveEffectiveLock:
    """Pure precedence rules over a snapshot."""

    def test_default_policy_after_deadline(self):
        snapshot = LockSnapshot(policy=policy(), period_month=OCT)
        decision = resolve_effective_lock(snapshot, date(2025, 11, 20))
        assert decision == EffectiveLock(locked=True, level=LockLevel.TENANT)

    def test_default_policy_before_deadline(self):
        snapshot = LockSnapshot(policy=policy(), period_month=OCT)
        decision = resolve_effective_lock(snapshot, date(2025, 10, 20))
        assert decision.locked is False
        assert decision.level == LockLevel.TENANT

    def test_group_unlock_overrides_tenant_default(self):
        snapshot = LockSnapshot(
            policy=policy(),
            period_month=OCT,
            group_locks=(row(False, "late crew change"),),
        )
        decision = resolve_effective_lock(snapshot, date(2025, 11, 20))
        assert decision.locked is False
        assert decision.level == LockLevel.GROUP
        assert decision.reason == "late crew change"

    def test_locked_wins_within_a_level(self):
        snapshot = LockSnapshot(
            policy=policy(),
            period_month=OCT,
            group_locks=(row(False), row(True, "audit"), row(False)),
        )
        decision = resolve_effective_lock(snapshot, date(2025, 10, 1))
        assert decision == EffectiveLock(locked=True, level=LockLevel.GROUP, reason="audit")

    def test_locked_wins_between_environments(self):
        snapshot = LockSnapshot(
            policy=policy(),
            period_month=OCT,
            environment_locks=(row(False), row(True)),
        )
        decision = resolve_effective_lock(snapshot, date(2025, 10, 1))
        assert decision.locked is True
        assert decision.level == LockLevel.ENVIRONMENT

    def test_unlocked_reason_from_latest_row(self):
        """The reason does not depend on the order rows were loaded in."""
        older = LockRow(
            owner_id=uuid4(),
            locked=False,
            reason="crew change",
            updated_at=datetime(2025, 11, 1, tzinfo=timezone.utc),
        )
        newer = LockRow(
            owner_id=uuid4(),
            locked=False,
            reason="late invoices",
            updated_at=datetime(2025, 11, 5, tzinfo=timezone.utc),
        )
        for rows in ((older, newer), (newer, older)):
            snapshot = LockSnapshot(policy=policy(), period_month=OCT, group_locks=rows)
            decision = resolve_effective_lock(snapshot, date(2025, 11, 20))
            assert decision == EffectiveLock(
                locked=False, level=LockLevel.GROUP, reason="late invoices"
            )

    def test_locked_reason_ignores_newer_unlocked_rows(self):
        locked = LockRow(
            owner_id=uuid4(),
            locked=True,
            reason="payroll closed",
            updated_at=datetime(2025, 11, 1, tzinfo=timezone.utc),
        )
        unlocked = LockRow(
            owner_id=uuid4(),
            locked=False,
            reason="extension",
            updated_at=datetime(2025, 11, 9, tzinfo=timezone.utc),
        )
        snapshot = LockSnapshot(
            policy=policy(), period_month=OCT, environment_locks=(unlocked, locked)
        )
        decision = resolve_effective_lock(snapshot, date(2025, 11, 20))
        assert decision.reason == "payroll closed"
        assert decision.locked is True

    def test_employee_override_beats_everything(self):
        snapshot = LockSnapshot(
            policy=policy(),
            period_month=OCT,
            employee_lock=row(False, "medical leave"),
            group_locks=(row(True),),
            environment_locks=(row(True),),
            tenant_lock=row(True),
        )
        decision = resolve_effective_lock(snapshot, date(2025, 12, 1))
        assert decision == EffectiveLock(
            locked=False, level=LockLevel.EMPLOYEE, reason="medical leave"
        )

    def test_group_beats_environment(self):
        snapshot = LockSnapshot(
            policy=policy(),
            period_month=OCT,
            group_locks=(row(False),),
            environment_locks=(row(True),),
        )
        assert resolve_effective_lock(snapshot, date(2025, 10, 1)).level == LockLevel.GROUP

    def test_explicit_tenant_row_beats_default(self):
        snapshot = LockSnapshot(
            policy=policy(),
            period_month=OCT,
            tenant_lock=row(False, "extended"),
        )
        decision = resolve_effective_lock(snapshot, date(2025, 12, 1))
        assert decision.locked is False
        assert decision.level == LockLevel.TENANT
        assert decision.reason == "extended"

    def test_explicit_tenant_lock_before_deadline(self):
        snapshot = LockSnapshot(policy=policy(), period_month=OCT, tenant_lock=row(True))
        assert resolve_effective_lock(snapshot, date(2025, 10, 2)).locked is True

    def test_to_dict(self):
        decision = EffectiveLock(locked=True, level=LockLevel.GROUP, reason="x")
        assert decision.to_dict() == {"locked": True, "level": "group", "reason": "x"}


class FakeMonotonic:
    def __init__(self):
        self.value = 100.0

    def __call__(self):
        return self.value


class TestLockDecisionCache:
    def test_hit_until_ttl_expires(self):
        clock = FakeMonotonic()
        cache = LockDecisionCache(ttl_seconds=30, clock=clock)
        key = (uuid4(), uuid4(), OCT)
        decision = EffectiveLock(locked=True, level=LockLevel.TENANT)

        cache.put(key, decision)
        assert cache.get(key) == decision

        clock.value += 30
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_zero_ttl_disables(self):
        cache = LockDecisionCache(ttl_seconds=0)
        key = (uuid4(), uuid4(), OCT)
        cache.put(key, EffectiveLock(locked=True, level=LockLevel.TENANT))
        assert cache.get(key) is None

    def test_invalidate_by_tenant_and_month(self):
        cache = LockDecisionCache(ttl_seconds=30)
        tenant, other_tenant = uuid4(), uuid4()
        decision = EffectiveLock(locked=False, level=LockLevel.TENANT)
        cache.put((tenant, uuid4(), OCT), decision)
        cache.put((tenant, uuid4(), date(2025, 9, 1)), decision)
        cache.put((other_tenant, uuid4(), OCT), decision)

        cache.invalidate(tenant, OCT)
        assert len(cache) == 2

        cache.invalidate(tenant)
        assert len(cache) == 1

    def test_expired_entries_swept_on_put(self):
        """Keys that are never read again do not accumulate."""
        clock = FakeMonotonic()
        cache = LockDecisionCache(ttl_seconds=1, clock=clock)
        decision = EffectiveLock(locked=True, level=LockLevel.TENANT)
        tenant = uuid4()
        for _ in range(1000):
            cache.put((tenant, uuid4(), OCT), decision)
        assert len(cache) == 1000

        clock.value = 10_000
        cache.put((tenant, uuid4(), OCT), decision)
        assert len(cache) == 1

    def test_sweep_keeps_live_entries(self):
        clock = FakeMonotonic()
        cache = LockDecisionCache(ttl_seconds=30, clock=clock)
        decision = EffectiveLock(locked=False, level=LockLevel.TENANT)
        old, fresh = (uuid4(), uuid4(), OCT), (uuid4(), uuid4(), OCT)
        cache.put(old, decision)
        clock.value += 20
        cache.put(fresh, decision)
        clock.value += 15

        assert cache.sweep() == 1
        assert cache.get(fresh) == decision
        assert len(cache) == 1

    def test_bounded_size_evicts_oldest(self):
        cache = LockDecisionCache(ttl_seconds=300, max_entries=3)
        decision = EffectiveLock(locked=True, level=LockLevel.GROUP)
        k1, k2, k3, k4 = [(uuid4(), uuid4(), OCT) for _ in range(4)]
        cache.put(k1, decision)
        cache.put(k2, decision)
        cache.put(k3, decision)
        # Refreshing k1 makes k2 the oldest
        cache.put(k1, decision)
        cache.put(k4, decision)

        assert len(cache) == 3
        assert cache.get(k2) is None
        assert cache.get(k1) == decision
        assert cache.get(k4) == decision


class TestPeriodLockResolver:
    """Resolution against stored lock rows."""

    async def test_default_lock_after_deadline(self, session, world, resolver, clock):
        clock.now = AFTER_DEADLINE
        decision = await resolver.resolve(world.ctx, world.employee.employee_id, "2025-10")
        assert decision.locked is True
        assert decision.level == LockLevel.TENANT

    async def test_open_before_deadline(self, session, world, resolver):
        decision = await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)
        assert decision.locked is False

    async def test_group_unlock_row(self, session, world, resolver, clock):
        clock.now = AFTER_DEADLINE
        session.add(
            GroupPeriodLock(
                tenant_id=world.tenant.tenant_id,
                group_id=world.group_a.group_id,
                period_month=PERIOD,
                locked=False,
                reason="late crew change",
            )
        )
        await session.flush()

        decision = await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)
        assert decision == EffectiveLock(
            locked=False, level=LockLevel.GROUP, reason="late crew change"
        )

        # The other group's member is unaffected
        decision = await resolver.resolve(world.ctx, world.outsider.employee_id, PERIOD)
        assert decision.locked is True
        assert decision.level == LockLevel.TENANT

    async def test_environment_lock_from_assignment(self, session, world, resolver):
        session.add(
            EnvironmentPeriodLock(
                tenant_id=world.tenant.tenant_id,
                environment_id=world.rig.environment_id,
                period_month=PERIOD,
                locked=True,
            )
        )
        await session.flush()

        decision = await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)
        assert decision.locked is True
        assert decision.level == LockLevel.ENVIRONMENT

        decision = await resolver.resolve(world.ctx, world.outsider.employee_id, PERIOD)
        assert decision.locked is False

    async def test_employee_row_beats_group_lock(self, session, world, resolver):
        tid = world.tenant.tenant_id
        session.add_all(
            [
                GroupPeriodLock(
                    tenant_id=tid, group_id=world.group_a.group_id, period_month=PERIOD, locked=True
                ),
                EmployeePeriodLock(
                    tenant_id=tid,
                    employee_id=world.employee.employee_id,
                    period_month=PERIOD,
                    locked=False,
                ),
            ]
        )
        await session.flush()

        decision = await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)
        assert decision.locked is False
        assert decision.level == LockLevel.EMPLOYEE

    async def test_tenant_row_is_month_specific(self, session, world, resolver):
        session.add(
            TenantPeriodLock(tenant_id=world.tenant.tenant_id, period_month=PERIOD, locked=True)
        )
        await session.flush()

        assert (await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)).locked
        other = await resolver.resolve(world.ctx, world.employee.employee_id, "2025-11")
        assert other.locked is False

    async def test_auto_lock_disabled(self, session, world, resolver, clock):
        clock.now = AFTER_DEADLINE
        world.tenant.auto_lock_enabled = False
        await session.flush()

        decision = await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)
        assert decision.locked is False

    async def test_tenant_timezone_decides_the_day(self, session, world, resolver, clock):
        # 02:00 UTC on the deadline is still the previous evening in São Paulo
        clock.now = datetime(2025, 11, 16, 2, 0, tzinfo=timezone.utc)
        assert (await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)).locked

        world.tenant.timezone = "America/Sao_Paulo"
        await session.flush()
        assert not (await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)).locked

    async def test_missing_context(self, session, world, resolver):
        with pytest.raises(ConfigurationError):
            await resolver.resolve(None, world.employee.employee_id, PERIOD)

    async def test_unknown_tenant(self, session, world, resolver):
        with pytest.raises(ConfigurationError):
            await resolver.resolve(TenantContext(uuid4()), world.employee.employee_id, PERIOD)

    async def test_invalid_timezone(self, session, world, resolver):
        world.tenant.timezone = "Mars/Olympus_Mons"
        await session.flush()
        with pytest.raises(ConfigurationError):
            await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)

    async def test_cached_decision_is_reused(self, session, world, clock):
        cache = LockDecisionCache(ttl_seconds=60)
        resolver = PeriodLockResolver(LockStore(session), cache=cache, clock=clock)

        first = await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)
        assert first.locked is False
        assert len(cache) == 1

        # A row written behind the cache's back is not seen until invalidation
        session.add(
            TenantPeriodLock(tenant_id=world.tenant.tenant_id, period_month=PERIOD, locked=True)
        )
        await session.flush()
        assert (await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)) == first

        cache.invalidate(world.tenant.tenant_id, PERIOD)
        assert (await resolver.resolve(world.ctx, world.employee.employee_id, PERIOD)).locked
