"""Snapshot writer: recompute one timesheet into a financial snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.rate_resolver import (
    RateNotFoundError,
    RateResolver,
    pay_channel_of,
)
from timesheet_engine.calculators.time_buckets import (
    classify,
    local_date_of,
    week_ending_sunday,
)
from timesheet_engine.calculators.totals import compute_input_hash, compute_totals
from timesheet_engine.calculators.types import (
    HourBuckets,
    PayPolicy,
    ShiftBreaks,
    TimeRange,
)
from timesheet_engine.clock import as_utc, utc_now
from timesheet_engine.models import BankHoliday, Client, FinancialSnapshot, Timesheet
from timesheet_engine.services import lookups
from timesheet_engine.services.state_machine import ProcessingStatus, SnapshotStateMachine

logger = logging.getLogger(__name__)


class RecomputeOutcome(str, Enum):
    WRITTEN = "WRITTEN"  # a new current snapshot was written
    REVOKED = "REVOKED"  # no current version; prior snapshot superseded
    LOCKED = "LOCKED"  # current snapshot is invoiced; nothing written


@dataclass
class RecomputeResult:
    """Outcome of recomputing one timesheet."""

    outcome: RecomputeOutcome
    timesheet_id: UUID
    snapshot: FinancialSnapshot | None = None


class SnapshotWriter:
    """Writes financial snapshots for timesheets.

    Recompute is a pure function of the current timesheet version and the
    rate, candidate and client data at the time it runs. Each run writes a
    fresh snapshot and supersedes the previous current one; a snapshot
    locked by an invoice is never superseded or modified.

    Resolution steps, in order (the first gap sets the status):
    1. Candidate match by occupant key         -> UNASSIGNED
    2. Client resolution from hospital/ward    -> CLIENT_UNRESOLVED
    3. Hour classification (always succeeds once the client is known)
    4. Rate window and pay rates per bucket    -> RATE_MISSING
    5. Pay channel set and fully detailed      -> PAY_CHANNEL_MISSING
    6. Otherwise                               -> READY_FOR_HR
    """

    def __init__(
        self,
        session: AsyncSession,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.now_fn = now_fn
        self.resolver = RateResolver(session)

    async def recompute(self, timesheet_id: UUID) -> RecomputeResult:
        """Recompute the current snapshot for a timesheet."""
        current = await lookups.get_current_snapshot(self.session, timesheet_id)
        if current is not None and current.is_locked:
            logger.info(
                "Timesheet %s snapshot %s is locked by invoice %s; skipping recompute",
                timesheet_id,
                current.snapshot_id,
                current.locked_by_invoice_id,
            )
            return RecomputeResult(RecomputeOutcome.LOCKED, timesheet_id, current)

        timesheet = await lookups.get_current_timesheet(self.session, timesheet_id)
        if timesheet is None:
            superseded = await self._supersede(timesheet_id)
            logger.info(
                "Timesheet %s has no current version; superseded %d snapshot(s)",
                timesheet_id,
                superseded,
            )
            return RecomputeResult(RecomputeOutcome.REVOKED, timesheet_id)

        snapshot = await self.build_snapshot(timesheet)
        await self._supersede(timesheet_id)
        self.session.add(snapshot)
        await self.session.flush()

        logger.info(
            "Wrote snapshot %s for timesheet %s v%d: %s",
            snapshot.snapshot_id,
            timesheet_id,
            timesheet.version,
            snapshot.processing_status,
        )
        return RecomputeResult(RecomputeOutcome.WRITTEN, timesheet_id, snapshot)

    async def build_snapshot(self, timesheet: Timesheet) -> FinancialSnapshot:
        """Resolve a timesheet version into an unsaved snapshot."""
        snapshot = FinancialSnapshot(
            timesheet_id=timesheet.timesheet_id,
            timesheet_version=timesheet.version,
            role=timesheet.job_title_norm,
            band=timesheet.band,
            worked_date_local=timesheet.worked_date_local,
            week_ending_date=timesheet.week_ending_date,
            expense_charge=timesheet.expense_amount,
            mileage_charge=timesheet.mileage_amount,
            is_current=True,
            stale=False,
            computed_at=self.now_fn(),
        )

        candidate = await lookups.match_candidate(self.session, timesheet.occupant_key_norm)
        if candidate is None:
            return self._finish(snapshot, ProcessingStatus.UNASSIGNED, ["NO_MATCHING_CANDIDATE"])
        snapshot.candidate_id = candidate.candidate_id
        channel = pay_channel_of(candidate)
        snapshot.pay_channel = channel.value if channel else None

        client = await lookups.resolve_client(
            self.session, timesheet.hospital_norm, timesheet.ward_norm
        )
        if client is None:
            return self._finish(snapshot, ProcessingStatus.CLIENT_UNRESOLVED, ["NO_CLIENT_FOR_SITE"])
        snapshot.client_id = client.client_id

        shift = TimeRange(as_utc(timesheet.worked_start), as_utc(timesheet.worked_end))
        tz = ZoneInfo(client.timezone)
        worked_date = local_date_of(shift.start, tz)
        snapshot.worked_date_local = worked_date
        snapshot.week_ending_date = week_ending_sunday(worked_date)

        policy = await self._load_policy(client, shift, tz)
        hours = classify(policy, shift, breaks_of(timesheet))
        _set_hours(snapshot, hours)

        try:
            rates = await self.resolver.resolve(
                candidate, client.client_id, timesheet.job_title_norm, timesheet.band, worked_date
            )
        except RateNotFoundError as exc:
            logger.debug("%s", exc)
            return self._finish(snapshot, ProcessingStatus.RATE_MISSING, ["NO_RATE_WINDOW"])

        snapshot.rate_window_id = rates.window_id
        snapshot.rate_override_id = rates.override_id
        snapshot.charge_rates_json = rates.charge.to_dict()

        missing = [f"CHARGE_RATE_MISSING:{b.value}" for b in rates.charge.missing_for(hours)]
        if rates.pay is not None:
            snapshot.pay_rates_json = rates.pay.to_dict()
            missing += [f"PAY_RATE_MISSING:{b.value}" for b in rates.pay.missing_for(hours)]
        if missing:
            return self._finish(snapshot, ProcessingStatus.RATE_MISSING, missing)

        if rates.pay is None:
            return self._finish(
                snapshot, ProcessingStatus.PAY_CHANNEL_MISSING, ["PAY_CHANNEL_NOT_SET"]
            )

        totals = compute_totals(hours, rates.pay, rates.charge)
        snapshot.pay_total = totals.pay_total
        snapshot.charge_total = totals.charge_total
        snapshot.margin = totals.margin

        if not await lookups.pay_channel_complete(self.session, candidate):
            return self._finish(
                snapshot, ProcessingStatus.PAY_CHANNEL_MISSING, ["PAY_CHANNEL_DETAILS_INCOMPLETE"]
            )

        return self._finish(snapshot, ProcessingStatus.READY_FOR_HR, [])

    async def _load_policy(self, client: Client, shift: TimeRange, tz: ZoneInfo) -> PayPolicy:
        first = local_date_of(shift.start, tz)
        last = local_date_of(shift.end, tz)
        result = await self.session.execute(
            select(BankHoliday.holiday_date).where(
                BankHoliday.calendar == client.bank_holiday_calendar,
                BankHoliday.holiday_date >= first,
                BankHoliday.holiday_date <= last,
            )
        )
        return PayPolicy(
            timezone=client.timezone,
            day_start=client.day_start,
            day_end=client.day_end,
            bank_holidays=frozenset(result.scalars().all()),
        )

    async def _supersede(self, timesheet_id: UUID) -> int:
        """Mark the unlocked current snapshot (if any) as not current."""
        result = await self.session.execute(
            update(FinancialSnapshot)
            .where(
                FinancialSnapshot.timesheet_id == timesheet_id,
                FinancialSnapshot.is_current.is_(True),
                FinancialSnapshot.locked_by_invoice_id.is_(None),
            )
            .values(is_current=False)
        )
        return result.rowcount or 0

    def _finish(
        self,
        snapshot: FinancialSnapshot,
        status: ProcessingStatus,
        reasons: list[str],
    ) -> FinancialSnapshot:
        if not SnapshotStateMachine.can_be_written_by_recompute(status):
            raise ValueError(f"Recompute cannot write status {status.value}")
        snapshot.processing_status = status.value
        snapshot.status_reasons = reasons
        snapshot.input_hash = compute_input_hash(_hash_inputs(snapshot))
        return snapshot


def breaks_of(timesheet: Timesheet) -> ShiftBreaks:
    """Break specification stored on a timesheet version."""
    intervals = tuple(
        TimeRange(
            as_utc(datetime.fromisoformat(item["start"])),
            as_utc(datetime.fromisoformat(item["end"])),
        )
        for item in timesheet.breaks_json or []
    )
    if intervals:
        return ShiftBreaks(intervals=intervals)
    return ShiftBreaks(minutes=timesheet.break_minutes)


def _set_hours(snapshot: FinancialSnapshot, hours: HourBuckets) -> None:
    snapshot.hours_day = hours.day
    snapshot.hours_night = hours.night
    snapshot.hours_sat = hours.saturday
    snapshot.hours_sun = hours.sunday
    snapshot.hours_bh = hours.bank_holiday


def _hash_inputs(snapshot: FinancialSnapshot) -> dict:
    hours = snapshot.hours
    return {
        "timesheet_id": snapshot.timesheet_id,
        "version": snapshot.timesheet_version,
        "candidate_id": snapshot.candidate_id,
        "client_id": snapshot.client_id,
        "pay_channel": snapshot.pay_channel,
        "rate_window_id": snapshot.rate_window_id,
        "rate_override_id": snapshot.rate_override_id,
        "worked_date": snapshot.worked_date_local,
        "hours": hours.to_dict() if hours else None,
        "pay_rates": snapshot.pay_rates_json,
        "charge_rates": snapshot.charge_rates_json,
        "extras": [snapshot.expense_charge, snapshot.mileage_charge],
        "status": snapshot.processing_status,
    }

