"""Type definitions for the resolution pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

HOURS_PRECISION = Decimal("0.01")
MONEY_PRECISION = Decimal("0.01")


def round_hours(value: Decimal) -> Decimal:
    """Round hours to 2 decimal places."""
    return value.quantize(HOURS_PRECISION, rounding=ROUND_HALF_UP)


def round_money(value: Decimal) -> Decimal:
    """Round a monetary amount to 2 decimal places (pence)."""
    return value.quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


class PayChannel(str, Enum):
    """Mutually exclusive ways a candidate is paid."""

    PAYE = "PAYE"  # direct employment
    UMBRELLA = "UMBRELLA"  # via an intermediary company


class Bucket(str, Enum):
    """Pay-time buckets, listed in precedence order (highest first)."""

    BANK_HOLIDAY = "bank_holiday"
    SUNDAY = "sunday"
    SATURDAY = "saturday"
    NIGHT = "night"
    DAY = "day"


BUCKET_PRECEDENCE: tuple[Bucket, ...] = tuple(Bucket)


@dataclass(frozen=True)
class RateSet:
    """Five hourly rates, one per bucket. ``None`` means not set."""

    day: Decimal | None = None
    night: Decimal | None = None
    saturday: Decimal | None = None
    sunday: Decimal | None = None
    bank_holiday: Decimal | None = None

    def get(self, bucket: Bucket) -> Decimal | None:
        return getattr(self, bucket.value)

    def merged_over(self, fallback: RateSet) -> RateSet:
        """Fill unset buckets from ``fallback``."""
        return RateSet(
            **{
                b.value: self.get(b) if self.get(b) is not None else fallback.get(b)
                for b in Bucket
            }
        )

    def missing_for(self, hours: HourBuckets) -> list[Bucket]:
        """Buckets with worked hours but no rate."""
        return [b for b in Bucket if hours.get(b) > 0 and self.get(b) is None]

    def to_dict(self) -> dict[str, str | None]:
        return {b.value: (str(self.get(b)) if self.get(b) is not None else None) for b in Bucket}


@dataclass(frozen=True)
class HourBuckets:
    """Hours split by bucket, each rounded to 2 decimals."""

    day: Decimal = Decimal("0")
    night: Decimal = Decimal("0")
    saturday: Decimal = Decimal("0")
    sunday: Decimal = Decimal("0")
    bank_holiday: Decimal = Decimal("0")

    def get(self, bucket: Bucket) -> Decimal:
        return getattr(self, bucket.value)

    def items(self) -> Iterator[tuple[Bucket, Decimal]]:
        for bucket in Bucket:
            yield bucket, self.get(bucket)

    @property
    def total(self) -> Decimal:
        return sum((h for _, h in self.items()), Decimal("0"))

    def to_dict(self) -> dict[str, str]:
        return {b.value: str(h) for b, h in self.items()}


@dataclass(frozen=True)
class TimeRange:
    """Half-open instant range ``[start, end)``; both ends timezone-aware."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeRange instants must be timezone-aware")
        if self.end < self.start:
            raise ValueError("TimeRange end precedes start")

    def clip(self, other: TimeRange) -> TimeRange | None:
        """Intersection with another range, or None when disjoint."""
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if end <= start:
            return None
        return TimeRange(start, end)


@dataclass(frozen=True)
class PayPolicy:
    """Client pay-time policy used to classify shift hours."""

    timezone: str = "Europe/London"
    day_start: time = time(6, 0)
    day_end: time = time(20, 0)
    bank_holidays: frozenset[date] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.day_end <= self.day_start:
            raise ValueError("day_end must be after day_start")


@dataclass(frozen=True)
class ShiftBreaks:
    """Break specification: explicit intervals, or a bare duration."""

    intervals: tuple[TimeRange, ...] = ()
    minutes: int | None = None

    @property
    def is_explicit(self) -> bool:
        return bool(self.intervals)


@dataclass(frozen=True)
class ResolvedRates:
    """Outcome of rate resolution for one shift date."""

    charge: RateSet
    pay: RateSet | None  # None when the candidate has no pay channel
    pay_channel: PayChannel | None
    window_id: UUID
    override_id: UUID | None = None

    @property
    def source(self) -> dict[str, Any]:
        return {
            "charge": "client_window",
            "pay": "candidate_override" if self.override_id else "client_window",
            "window_id": str(self.window_id),
            "override_id": str(self.override_id) if self.override_id else None,
        }
