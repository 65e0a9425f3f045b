"""Timesheet engine command line interface.

Operational tools for:
- Resolving the effective lock of an employee and month
- Running the deadline auto-lock job (typically from cron)
- Serving the HTTP API

Usage:
    python -m timesheet_engine.cli resolve-lock --tenant-id X --employee-id Y --month 2025-10
    python -m timesheet_engine.cli auto-lock --tenant-id X [--today 2025-11-20] [--dry-run]
    python -m timesheet_engine.cli serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date, datetime, time, timezone
from typing import Any, Callable
from uuid import UUID

from timesheet_engine.config import get_settings
from timesheet_engine.context import TenantContext
from timesheet_engine.database import dispose_db, get_session
from timesheet_engine.errors import TimesheetEngineError
from timesheet_engine.logging import setup_logging
from timesheet_engine.services.lock_resolver import PeriodLockResolver, normalize_month
from timesheet_engine.services.lock_store import LockStore
from timesheet_engine.services.period_lock_admin import PeriodLockAdminService


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_month(s: str) -> date:
    try:
        return normalize_month(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


class TimesheetCli:
    """Timesheet engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="timesheet-engine",
            description="Timesheet engine operational tools",
        )
        parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # resolve-lock command
        resolve = subparsers.add_parser(
            "resolve-lock",
            help="Print the effective lock of an employee for a month",
        )
        resolve.add_argument("--tenant-id", type=parse_uuid, required=True)
        resolve.add_argument("--employee-id", type=parse_uuid, required=True)
        resolve.add_argument(
            "--month",
            type=parse_month,
            required=True,
            help="Period month (YYYY-MM or YYYY-MM-DD)",
        )
        resolve.add_argument(
            "--today",
            type=parse_date,
            help="Evaluate the deadline as of this date instead of now",
        )

        # auto-lock command
        auto_lock = subparsers.add_parser(
            "auto-lock",
            help="Lock the previous month for a tenant once its deadline has passed",
        )
        auto_lock.add_argument("--tenant-id", type=parse_uuid, required=True)
        auto_lock.add_argument(
            "--today",
            type=parse_date,
            help="Run as of this date (defaults to today in the tenant timezone)",
        )
        auto_lock.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would happen without writing",
        )

        # serve command
        subparsers.add_parser("serve", help="Run the HTTP API")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        setup_logging(parsed.log_level or get_settings().log_level)

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "resolve-lock": self._cmd_resolve_lock,
            "auto-lock": self._cmd_auto_lock,
            "serve": self._cmd_serve,
        }
        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except TimesheetEngineError as e:
            print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
            return 2

    def _cmd_resolve_lock(self, args: argparse.Namespace) -> int:
        async def resolve() -> dict[str, Any]:
            clock = None
            if args.today is not None:
                # Noon UTC keeps the calendar day for offsets up to 12 hours
                as_of = datetime.combine(args.today, time(12), tzinfo=timezone.utc)

                def clock() -> datetime:
                    return as_of

            try:
                async with get_session() as session:
                    resolver = PeriodLockResolver(LockStore(session), clock=clock)
                    decision = await resolver.resolve(
                        TenantContext(args.tenant_id), args.employee_id, args.month
                    )
            finally:
                await dispose_db()
            return {
                "tenant_id": str(args.tenant_id),
                "employee_id": str(args.employee_id),
                "period_month": args.month.isoformat(),
                **decision.to_dict(),
            }

        print(json.dumps(asyncio.run(resolve()), indent=2))
        return 0

    def _cmd_auto_lock(self, args: argparse.Namespace) -> int:
        async def auto_lock() -> dict[str, Any]:
            try:
                async with get_session() as session:
                    service = PeriodLockAdminService(session)
                    result = await service.run_auto_lock(
                        TenantContext(args.tenant_id), today=args.today, dry_run=args.dry_run
                    )
            finally:
                await dispose_db()
            return result.to_dict()

        print(json.dumps(asyncio.run(auto_lock()), indent=2))
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        from timesheet_engine.__main__ import main as serve

        serve()
        return 0


def main() -> int:
    """CLI entry point."""
    cli = TimesheetCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
