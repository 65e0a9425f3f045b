"""Tests for storage error translation, configuration and audit serialization."""

from datetime import date, time
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import exc as sa_exc

from timesheet_engine.config import Settings
from timesheet_engine.database import storage_guarded, translate_db_errors
from timesheet_engine.errors import InvalidState, PeriodLocked, Unavailable
from timesheet_engine.services.audit import AuditAction, to_json_value


def settings(**overrides):
    values = dict(
        database_url="sqlite+aiosqlite://",
        engine_version="1.0.0",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        lock_cache_ttl_seconds=30.0,
        db_timeout_seconds=10.0,
    )
    values.update(overrides)
    return Settings(**values)


class TestTranslateDbErrors:
    def test_operational_error_is_unavailable(self):
        with pytest.raises(Unavailable) as exc_info:
            with translate_db_errors():
                raise sa_exc.OperationalError("SELECT 1", {}, Exception("server closed"))
        assert exc_info.value.retryable is True
        assert exc_info.value.code == "unavailable"

    def test_timeout_is_unavailable(self):
        with pytest.raises(Unavailable):
            with translate_db_errors():
                raise TimeoutError("statement timeout")

    def test_integrity_error_passes_through(self):
        with pytest.raises(sa_exc.IntegrityError):
            with translate_db_errors():
                raise sa_exc.IntegrityError("INSERT", {}, Exception("duplicate key"))

    def test_business_errors_pass_through(self):
        with pytest.raises(InvalidState):
            with translate_db_errors():
                raise InvalidState("approved", "submit")

    async def test_storage_guarded_decorator(self):
        @storage_guarded
        async def flaky():
            raise ConnectionError("reset by peer")

        with pytest.raises(Unavailable):
            await flaky()


class TestSettings:
    def test_postgres_detection(self):
        assert settings(database_url="postgresql+asyncpg://x/y").is_postgres is True
        assert settings().is_postgres is False

    def test_rejects_negative_ttl(self):
        with pytest.raises(ValueError):
            settings(lock_cache_ttl_seconds=-1)

    def test_rejects_zero_timeout(self):
        with pytest.raises(ValueError):
            settings(db_timeout_seconds=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///tmp/ts.db")
        monkeypatch.setenv("LOCK_CACHE_TTL_SECONDS", "5")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        loaded = Settings.from_env()
        assert loaded.database_url == "sqlite+aiosqlite:///tmp/ts.db"
        assert loaded.lock_cache_ttl_seconds == 5.0
        assert loaded.log_level == "DEBUG"


class TestErrorsAndAuditValues:
    def test_error_to_dict(self):
        error = PeriodLocked("group", "crew change")
        assert error.to_dict() == {
            "detail": "Period locked by group policy: crew change",
            "code": "period_locked",
            "level": "group",
            "reason": "crew change",
        }

    def test_to_json_value(self):
        ident = uuid4()
        value = to_json_value(
            {
                "id": ident,
                "day": date(2025, 10, 3),
                "start": time(6, 30),
                "amount": Decimal("1.50"),
                "action": AuditAction.SUBMIT,
                "nested": [ident, {"n": None}],
            }
        )
        assert value == {
            "id": str(ident),
            "day": "2025-10-03",
            "start": "06:30",
            "amount": "1.50",
            "action": "submit",
            "nested": [str(ident), {"n": None}],
        }
