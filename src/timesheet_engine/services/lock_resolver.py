"""Effective period lock resolution.

Lock decisions are declared independently at several levels. Resolution
walks them from most to least specific and stops at the first level that
has an opinion:

1. employee override
2. any group the employee belongs to
3. any environment the employee works at
4. tenant: explicit tenant row, else the deadline-day default policy

Within the group and environment levels, locked wins over unlocked
(fail closed).
"""

from __future__ import annotations

import calendar
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from timesheet_engine.context import TenantContext, require_tenant
from timesheet_engine.errors import ConfigurationError
from timesheet_engine.services.lock_store import LockRow, LockSnapshot, LockStore, TenantPolicy

logger = logging.getLogger(__name__)


class LockLevel(str, Enum):
    """Level that produced an effective lock decision."""

    EMPLOYEE = "employee"
    GROUP = "group"
    ENVIRONMENT = "environment"
    TENANT = "tenant"


@dataclass(frozen=True)
class EffectiveLock:
    """The single locked/unlocked decision for one employee and month."""

    locked: bool
    level: LockLevel
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"locked": self.locked, "level": self.level.value, "reason": self.reason}


def normalize_month(value: date | datetime | str) -> date:
    """Normalize a date, datetime, 'YYYY-MM' or 'YYYY-MM-DD' to a first-of-month date."""
    if isinstance(value, datetime):
        return value.date().replace(day=1)
    if isinstance(value, date):
        return value.replace(day=1)
    text = value.strip()
    try:
        if len(text) == 7:
            parsed = datetime.strptime(text, "%Y-%m").date()
        else:
            parsed = date.fromisoformat(text[:10])
    except ValueError as e:
        raise ValueError(f"Invalid period month: {value!r}") from e
    return parsed.replace(day=1)


def deadline_for(period_month: date, deadline_day: int) -> date:
    """Date on which a period auto-locks under the tenant default policy.

    That is deadline_day of the month after the period, clamped to the
    month's length. deadline_day 0 means the last day of that month.
    """
    if period_month.month == 12:
        year, month = period_month.year + 1, 1
    else:
        year, month = period_month.year, period_month.month + 1
    last = calendar.monthrange(year, month)[1]
    day = last if deadline_day <= 0 else min(deadline_day, last)
    return date(year, month, day)


def tenant_default_locked(policy: TenantPolicy, period_month: date, today: date) -> bool:
    """Whether the deadline-day policy alone locks the period."""
    if not policy.auto_lock_enabled:
        return False
    return today >= deadline_for(period_month, policy.deadline_day)


def _recency(row: LockRow) -> tuple[bool, datetime | None]:
    return (row.updated_at is not None, row.updated_at)


def _decide(rows: Iterable[LockRow], level: LockLevel) -> EffectiveLock | None:
    """Combine equally specific rows; None when the level has no rows.

    Any locked row locks the level. The reason comes from the most recently
    updated row among those that agree with the outcome, so it does not
    depend on the order the rows were loaded in.
    """
    rows = list(rows)
    if not rows:
        return None
    locked = [row for row in rows if row.locked]
    deciding = max(locked or rows, key=_recency)
    return EffectiveLock(locked=bool(locked), level=level, reason=deciding.reason)


def resolve_effective_lock(snapshot: LockSnapshot, today: date) -> EffectiveLock:
    """Resolve the effective lock from a snapshot of all lock sources.

    Pure function: no I/O, no clock. today must already be expressed in the
    tenant's timezone.
    """
    if snapshot.employee_lock is not None:
        row = snapshot.employee_lock
        return EffectiveLock(locked=row.locked, level=LockLevel.EMPLOYEE, reason=row.reason)

    decision = _decide(snapshot.group_locks, LockLevel.GROUP)
    if decision is not None:
        return decision

    decision = _decide(snapshot.environment_locks, LockLevel.ENVIRONMENT)
    if decision is not None:
        return decision

    if snapshot.tenant_lock is not None:
        row = snapshot.tenant_lock
        return EffectiveLock(locked=row.locked, level=LockLevel.TENANT, reason=row.reason)

    return EffectiveLock(
        locked=tenant_default_locked(snapshot.policy, snapshot.period_month, today),
        level=LockLevel.TENANT,
        reason=None,
    )


CacheKey = tuple[UUID, UUID, date]


class LockDecisionCache:
    """Short-lived cache of effective lock decisions.

    Lock rows change rarely and a decision stale by a few seconds is
    acceptable. A ttl of 0 disables caching.

    Expired entries are swept on put, at most once per ttl. The cache never
    holds more than max_entries decisions; when full the oldest is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10_000,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, EffectiveLock]] = {}
        self._next_sweep = clock() + ttl_seconds

    def get(self, key: CacheKey) -> EffectiveLock | None:
        if self.ttl_seconds <= 0:
            return None
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, decision = item
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return decision

    def put(self, key: CacheKey, decision: EffectiveLock) -> None:
        if self.ttl_seconds <= 0:
            return
        now = self._clock()
        if now >= self._next_sweep:
            self.sweep()
        # Re-insert so dict order stays oldest-first
        self._entries.pop(key, None)
        while self._entries and len(self._entries) >= self.max_entries:
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (now + self.ttl_seconds, decision)

    def sweep(self) -> int:
        """Drop expired decisions, returning how many were removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self.ttl_seconds
        return len(expired)

    def invalidate(self, tenant_id: UUID, period_month: date | None = None) -> None:
        """Drop cached decisions for a tenant, optionally only one month."""
        for key in list(self._entries):
            if key[0] == tenant_id and (period_month is None or key[2] == period_month):
                del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PeriodLockResolver:
    """Resolves effective period locks against a LockStore.

    Read-only and safe to call concurrently.
    """

    def __init__(
        self,
        store: LockStore,
        cache: LockDecisionCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.cache = cache
        self.clock = clock or _utcnow

    def today_for(self, policy: TenantPolicy) -> date:
        """Current date in the tenant's timezone."""
        try:
            tz = ZoneInfo(policy.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Tenant {policy.tenant_id} has an invalid timezone {policy.timezone!r}"
            ) from e
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(tz).date()

    async def resolve(
        self,
        ctx: TenantContext | None,
        employee_id: UUID,
        period_month: date | datetime | str,
    ) -> EffectiveLock:
        """Effective lock for an employee and month.

        Raises:
            ConfigurationError: no tenant context, or the tenant does not exist
        """
        tenant_id = require_tenant(ctx)
        month = normalize_month(period_month)

        key = (tenant_id, employee_id, month)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        policy = await self.store.get_tenant_policy(tenant_id)
        if policy is None:
            raise ConfigurationError(f"Tenant {tenant_id} could not be resolved")

        snapshot = await self.store.load_snapshot(policy, employee_id, month)
        decision = resolve_effective_lock(snapshot, self.today_for(policy))

        logger.debug(
            "Resolved lock tenant=%s employee=%s month=%s -> locked=%s level=%s",
            tenant_id,
            employee_id,
            month,
            decision.locked,
            decision.level.value,
        )

        if self.cache is not None:
            self.cache.put(key, decision)
        return decision
