"""Tests for timesheet intake and versioning."""

import re
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select

from timesheet_engine.errors import ConflictError, InvalidRequestError, NotFoundError
from timesheet_engine.models import Timesheet
from timesheet_engine.services.outbox import OutboxService
from timesheet_engine.services.timesheets import (
    TimesheetService,
    make_timesheet_key,
    timesheet_id_for_key,
)

from factories import london


class TestTimesheetKey:
    def test_key_format(self):
        key = make_timesheet_key(
            "cand-001", date(2026, 10, 14), "Royal Infirmary", "Ward 3", "Staff Nurse", None
        )

        assert re.fullmatch(r"ts_[0-9a-f]{16}", key)

    def test_key_ignores_case_and_spacing(self):
        a = make_timesheet_key(
            "cand-001", date(2026, 10, 14), "Royal Infirmary", "Ward 3", "Staff Nurse", None
        )
        b = make_timesheet_key(
            "CAND-001", date(2026, 10, 14), " royal  infirmary", "ward 3", "staff nurse", ""
        )

        assert a == b
        assert timesheet_id_for_key(a) == timesheet_id_for_key(b)

    def test_key_changes_with_shift(self):
        base = ("cand-001", date(2026, 10, 14), "Royal Infirmary", "Ward 3", "Staff Nurse")

        assert make_timesheet_key(*base, "early") != make_timesheet_key(*base, "late")


class TestSubmit:
    """Submission stores versions and requests recomputes."""

    async def test_first_submission(self, session, world, submit):
        timesheet = await submit()

        assert timesheet.version == 1
        assert timesheet.is_current is True
        assert timesheet.hospital_norm == "royal infirmary"
        assert timesheet.job_title_norm == "staff nurse"
        assert timesheet.worked_minutes == 450
        assert timesheet.break_minutes == 30
        assert timesheet.worked_date_local == date(2026, 10, 14)
        assert timesheet.week_ending_date == date(2026, 10, 18)

        items = await OutboxService(session).get_items(timesheet.timesheet_id)
        assert [item.reason for item in items] == ["NEW_AUTHORISED"]

    async def test_duplicate_without_replace_conflicts(self, session, world, submit):
        first = await submit()

        with pytest.raises(ConflictError) as exc_info:
            await submit()

        assert exc_info.value.blocking_id == first.timesheet_version_id

    async def test_replace_rotates_version(self, session, world, submit):
        first = await submit()

        second = await submit(replace_current=True, break_minutes=45)

        assert second.timesheet_id == first.timesheet_id
        assert second.version == 2
        assert first.is_current is False
        assert second.worked_minutes == 435

        rows = await session.execute(
            select(Timesheet).where(
                Timesheet.timesheet_id == first.timesheet_id, Timesheet.is_current.is_(True)
            )
        )
        assert [t.version for t in rows.scalars().all()] == [2]

        reasons = {i.reason for i in await OutboxService(session).get_items(first.timesheet_id)}
        assert reasons == {"NEW_AUTHORISED", "VERSION_ROTATED"}

    async def test_explicit_breaks_set_break_minutes(self, session, world, submit):
        timesheet = await submit(
            break_minutes=None,
            breaks=[
                {"start": london(2026, 10, 14, 12), "end": london(2026, 10, 14, 12, 20)},
                {"start": london(2026, 10, 14, 14), "end": london(2026, 10, 14, 14, 15)},
            ],
        )

        assert timesheet.break_minutes == 35
        assert timesheet.worked_minutes == 445
        assert len(timesheet.breaks_json) == 2

    async def test_clock_change_shift_minutes(self, session, world, submit):
        """A night across the October clock change is an hour longer on the wall."""
        timesheet = await submit(
            worked_start=london(2026, 10, 24, 20),
            worked_end=london(2026, 10, 25, 8),
            break_minutes=0,
        )

        assert timesheet.worked_minutes == 13 * 60

    async def test_explicit_key_is_used(self, session, world, submit):
        timesheet = await submit(timesheet_key="ts_external_42")

        assert timesheet.timesheet_key == "ts_external_42"
        assert timesheet.timesheet_id == timesheet_id_for_key("ts_external_42")

    async def test_invalid_submission(self, session, world, submit):
        with pytest.raises(InvalidRequestError):
            await submit(break_minutes=-5)


class TestRevoke:
    async def test_revoke_current_version(self, session, world, submit):
        timesheet = await submit()

        revoked = await TimesheetService(session).revoke(
            timesheet.timesheet_id, "duplicate booking", actor="ops"
        )

        assert revoked.is_current is False
        assert revoked.is_revoked
        assert revoked.revoked_reason == "duplicate booking"
        assert revoked.revoked_by == "ops"
        reasons = {i.reason for i in await OutboxService(session).get_items(timesheet.timesheet_id)}
        assert "REVOKED" in reasons

    async def test_revoke_unknown(self, session, world):
        with pytest.raises(NotFoundError):
            await TimesheetService(session).revoke(uuid4(), "nope")

    async def test_resubmit_after_revoke_is_next_version(self, session, world, submit):
        timesheet = await submit()
        await TimesheetService(session).revoke(timesheet.timesheet_id, "wrong times")

        again = await submit()

        assert again.version == 2
        assert again.is_current is True
