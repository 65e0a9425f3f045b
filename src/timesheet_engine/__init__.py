"""Timesheet period locking, review and closed-period audit engine."""

__version__ = "1.0.0"
