"""HTTP API for the timesheet engine."""
