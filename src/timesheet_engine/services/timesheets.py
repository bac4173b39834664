"""Timesheet intake: versioned submission and revocation."""

from __future__ import annotations

import hashlib
import logging
from datetime import date
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.time_buckets import local_date_of, week_ending_sunday
from timesheet_engine.clock import as_utc, utc_now
from timesheet_engine.errors import ConflictError, NotFoundError
from timesheet_engine.models import Timesheet
from timesheet_engine.schemas import TimesheetSubmission, normalize_text, parse_request
from timesheet_engine.services import lookups
from timesheet_engine.services.audit import record_audit
from timesheet_engine.services.outbox import OutboxService, RecomputeReason

logger = logging.getLogger(__name__)

TIMESHEET_NAMESPACE = uuid5(NAMESPACE_URL, "timesheet-engine/timesheet")


def make_timesheet_key(
    candidate_key: str,
    worked_date: date,
    hospital: str,
    ward: str | None,
    job_title: str,
    shift_label: str | None,
) -> str:
    """Stable key identifying one booked shift across resubmissions."""
    parts = [
        normalize_text(candidate_key) or "",
        worked_date.isoformat(),
        normalize_text(hospital) or "",
        normalize_text(ward) or "",
        normalize_text(job_title) or "",
        normalize_text(shift_label) or "",
    ]
    digest = hashlib.sha256("|".join(parts).encode()).hexdigest()
    return f"ts_{digest[:16]}"


def timesheet_id_for_key(timesheet_key: str) -> UUID:
    """Logical timesheet id shared by every version of a key."""
    return uuid5(TIMESHEET_NAMESPACE, timesheet_key)


class TimesheetService:
    """Accepts authorised timesheets and keeps exactly one current version.

    Every change enqueues a recompute so the snapshot follows the timesheet.
    """

    def __init__(
        self,
        session: AsyncSession,
        outbox: OutboxService | None = None,
        timezone: str = "Europe/London",
    ):
        self.session = session
        self.outbox = outbox or OutboxService(session)
        self.tz = ZoneInfo(timezone)

    async def submit(
        self,
        submission: TimesheetSubmission | dict[str, Any],
        replace_current: bool = False,
        actor: str | None = None,
    ) -> Timesheet:
        """Store a new timesheet version.

        Raises:
            InvalidRequestError: If the submission fails validation
            ConflictError: If a current version exists and ``replace_current`` is False
        """
        submission = parse_request(TimesheetSubmission, submission)
        worked_date = local_date_of(submission.worked_start, self.tz)
        timesheet_key = submission.timesheet_key or make_timesheet_key(
            submission.candidate_key,
            worked_date,
            submission.hospital,
            submission.ward,
            submission.job_title,
            submission.shift_label,
        )
        timesheet_id = timesheet_id_for_key(timesheet_key)

        result = await self.session.execute(
            select(Timesheet)
            .where(Timesheet.timesheet_id == timesheet_id, Timesheet.is_current.is_(True))
            .with_for_update()
        )
        current = result.scalar_one_or_none()
        if current is not None and not replace_current:
            raise ConflictError(
                f"Timesheet {timesheet_key} already has a current version",
                blocking_id=current.timesheet_version_id,
            )

        max_version = await self.session.execute(
            select(func.max(Timesheet.version)).where(Timesheet.timesheet_id == timesheet_id)
        )
        version = (max_version.scalar_one_or_none() or 0) + 1

        if current is not None:
            await self.session.execute(
                update(Timesheet)
                .where(Timesheet.timesheet_version_id == current.timesheet_version_id)
                .values(is_current=False)
            )
            await self.outbox.enqueue(timesheet_id, RecomputeReason.VERSION_ROTATED)

        worked_start = as_utc(submission.worked_start)
        worked_end = as_utc(submission.worked_end)
        break_minutes = submission.break_minutes
        if submission.breaks:
            break_seconds = sum(
                (as_utc(b.end) - as_utc(b.start)).total_seconds() for b in submission.breaks
            )
            break_minutes = int(break_seconds // 60)
        worked_minutes = int((worked_end - worked_start).total_seconds() // 60)

        timesheet = Timesheet(
            timesheet_id=timesheet_id,
            timesheet_key=timesheet_key,
            version=version,
            is_current=True,
            occupant_key_norm=normalize_text(submission.candidate_key),
            hospital_norm=normalize_text(submission.hospital),
            ward_norm=normalize_text(submission.ward),
            job_title_norm=normalize_text(submission.job_title),
            band=normalize_text(submission.band),
            shift_label_norm=normalize_text(submission.shift_label),
            worked_start=worked_start,
            worked_end=worked_end,
            breaks_json=[
                {"start": b.start.isoformat(), "end": b.end.isoformat()}
                for b in submission.breaks
            ],
            break_minutes=break_minutes,
            worked_minutes=max(worked_minutes - (break_minutes or 0), 0),
            worked_date_local=worked_date,
            week_ending_date=week_ending_sunday(worked_date),
            expense_amount=submission.expense_amount,
            expense_evidence_key=submission.expense_evidence_key,
            mileage_amount=submission.mileage_amount,
            mileage_evidence_key=submission.mileage_evidence_key,
            reference_number=submission.reference_number,
            auth_name=submission.auth_name,
            auth_job_title=submission.auth_job_title,
            authorised_at=utc_now(),
        )
        self.session.add(timesheet)
        await self.session.flush()
        await self.outbox.enqueue(timesheet_id, RecomputeReason.NEW_AUTHORISED)

        await record_audit(
            self.session,
            "timesheet",
            timesheet_id,
            "submit",
            actor=actor,
            after={"version": version, "timesheet_key": timesheet_key},
        )
        logger.info("Stored timesheet %s version %d", timesheet_key, version)
        return timesheet

    async def revoke(
        self,
        timesheet_id: UUID,
        reason: str,
        actor: str | None = None,
    ) -> Timesheet:
        """Revoke the current version; its snapshot is superseded on recompute.

        Raises:
            NotFoundError: If the timesheet has no current version
        """
        timesheet = await lookups.get_current_timesheet(self.session, timesheet_id)
        if timesheet is None:
            raise NotFoundError("Timesheet", timesheet_id)

        timesheet.is_current = False
        timesheet.revoked_at = utc_now()
        timesheet.revoked_reason = reason
        timesheet.revoked_by = actor
        await self.session.flush()
        await self.outbox.enqueue(timesheet_id, RecomputeReason.REVOKED)

        await record_audit(
            self.session,
            "timesheet",
            timesheet_id,
            "revoke",
            actor=actor,
            after={"version": timesheet.version, "reason": reason},
        )
        logger.info("Revoked timesheet %s version %d", timesheet_id, timesheet.version)
        return timesheet
