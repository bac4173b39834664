"""Timesheet financial resolution and snapshot engine."""

__version__ = "1.0.0"
