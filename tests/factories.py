"""Test data builders shared by the engine tests."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

LONDON = ZoneInfo("Europe/London")


def london(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Aware datetime on the London wall clock."""
    return datetime(year, month, day, hour, minute, tzinfo=LONDON)


def rate_columns(prefix: str, **rates: str | None) -> dict[str, Decimal | None]:
    """``rate_columns("paye", day="20")`` -> ``{"paye_day": Decimal("20")}``."""
    return {
        f"{prefix}_{suffix}": Decimal(value) if value is not None else None
        for suffix, value in rates.items()
    }


def submission(**overrides: Any) -> dict[str, Any]:
    """A weekday day shift at the Royal Infirmary, 08:00-16:00 with a 30 minute break."""
    data: dict[str, Any] = {
        "candidate_key": "cand-001",
        "hospital": "Royal Infirmary",
        "ward": "Ward 3",
        "job_title": "Staff Nurse",
        "worked_start": london(2026, 10, 14, 8),
        "worked_end": london(2026, 10, 14, 16),
        "break_minutes": 30,
        "auth_name": "J Smith",
        "auth_job_title": "Ward Manager",
    }
    data.update(overrides)
    return data
