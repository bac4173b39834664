"""Shift-to-bucket classification.

A shift is cut at local midnight into per-date pieces. Each piece lands in
exactly one of bank holiday, Sunday or Saturday (in that precedence order),
or is split at the policy's day window into day and night.

Local wall time uses the UTC offset in force at noon of each local date, so
a single calendar day is never split across two offsets on a clock-change
date.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from timesheet_engine.calculators.types import (
    BUCKET_PRECEDENCE,
    Bucket,
    HourBuckets,
    PayPolicy,
    ShiftBreaks,
    TimeRange,
    round_hours,
)

SATURDAY = 5
SUNDAY = 6


def date_offset(local_date: date, tz: ZoneInfo) -> timedelta:
    """UTC offset applied to every instant of a local calendar date."""
    offset = datetime.combine(local_date, time(12, 0), tzinfo=tz).utcoffset()
    return offset or timedelta(0)


def local_midnight_utc(local_date: date, tz: ZoneInfo) -> datetime:
    """UTC instant at which a local date begins."""
    return datetime.combine(local_date, time(0, 0), tzinfo=timezone.utc) - date_offset(
        local_date, tz
    )


def local_date_of(instant: datetime, tz: ZoneInfo) -> date:
    """Local calendar date of an instant under the per-date offset rule."""
    candidate = instant.astimezone(tz).date()
    if instant < local_midnight_utc(candidate, tz):
        return candidate - timedelta(days=1)
    if instant >= local_midnight_utc(candidate + timedelta(days=1), tz):
        return candidate + timedelta(days=1)
    return candidate


def week_ending_sunday(local_date: date) -> date:
    """Sunday that closes the week containing ``local_date``."""
    return local_date + timedelta(days=SUNDAY - local_date.weekday())


def split_at_local_midnight(
    rng: TimeRange, tz: ZoneInfo
) -> list[tuple[date, int, int]]:
    """Cut a range into ``(local_date, start_second, end_second)`` pieces.

    Seconds are counted from local midnight of the piece's date.
    """
    pieces: list[tuple[date, int, int]] = []
    cursor = rng.start
    local_date = local_date_of(cursor, tz)

    while cursor < rng.end:
        day_start = local_midnight_utc(local_date, tz)
        # 23 or 25 hours long on clock-change dates
        next_day_start = local_midnight_utc(local_date + timedelta(days=1), tz)
        piece_end = min(rng.end, next_day_start)
        start_second = round((cursor - day_start).total_seconds())
        end_second = round((piece_end - day_start).total_seconds())
        if end_second > start_second:
            pieces.append((local_date, start_second, end_second))
        cursor = piece_end
        local_date = local_date + timedelta(days=1)

    return pieces


def _seconds_of_day(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def _overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> int:
    return max(0, min(a_end, b_end) - max(a_start, b_start))


def classify_range_seconds(rng: TimeRange, policy: PayPolicy) -> dict[Bucket, int]:
    """Seconds of a range falling in each bucket."""
    tz = ZoneInfo(policy.timezone)
    day_start = _seconds_of_day(policy.day_start)
    day_end = _seconds_of_day(policy.day_end)
    seconds = {bucket: 0 for bucket in Bucket}

    for local_date, start, end in split_at_local_midnight(rng, tz):
        length = end - start
        if local_date in policy.bank_holidays:
            seconds[Bucket.BANK_HOLIDAY] += length
        elif local_date.weekday() == SUNDAY:
            seconds[Bucket.SUNDAY] += length
        elif local_date.weekday() == SATURDAY:
            seconds[Bucket.SATURDAY] += length
        else:
            day = _overlap(start, end, day_start, day_end)
            seconds[Bucket.DAY] += day
            seconds[Bucket.NIGHT] += length - day

    return seconds


def _deduct_duration(seconds: dict[Bucket, int], remaining: int) -> None:
    """Take an unplaced break out of the buckets.

    The largest bucket absorbs first (ties go to the higher-precedence
    bucket); anything left over is taken in precedence order.
    """
    largest = min(
        BUCKET_PRECEDENCE,
        key=lambda b: (-seconds[b], BUCKET_PRECEDENCE.index(b)),
    )
    taken = min(seconds[largest], remaining)
    seconds[largest] -= taken
    remaining -= taken

    for bucket in BUCKET_PRECEDENCE:
        if remaining <= 0:
            break
        taken = min(seconds[bucket], remaining)
        seconds[bucket] -= taken
        remaining -= taken


def classify(
    policy: PayPolicy,
    shift: TimeRange,
    breaks: ShiftBreaks | None = None,
) -> HourBuckets:
    """Split a shift's worked hours into pay buckets.

    Explicit break intervals are classified like the shift itself and
    subtracted bucket by bucket (only the part inside the shift counts).
    A bare break duration is deducted with ``_deduct_duration``.
    """
    seconds = classify_range_seconds(shift, policy)

    if breaks is not None and breaks.is_explicit:
        for interval in breaks.intervals:
            clipped = interval.clip(shift)
            if clipped is None:
                continue
            for bucket, amount in classify_range_seconds(clipped, policy).items():
                seconds[bucket] = max(0, seconds[bucket] - amount)
    elif breaks is not None and breaks.minutes:
        _deduct_duration(seconds, breaks.minutes * 60)

    return HourBuckets(
        **{
            bucket.value: round_hours(Decimal(amount) / Decimal(3600))
            for bucket, amount in seconds.items()
        }
    )
