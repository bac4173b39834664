"""Tests for rate window insertion and candidate overrides."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import select

from timesheet_engine.calculators.rate_resolver import RateResolver
from timesheet_engine.errors import (
    BackCutError,
    DuplicateWindowStartError,
    InvalidRequestError,
    NotFoundError,
    OverrideOutsideWindowError,
)
from timesheet_engine.models import AuditEvent, CandidateRateOverride
from timesheet_engine.services.outbox import OutboxService
from timesheet_engine.services.rate_windows import (
    RateWindowService,
    WindowSpan,
    plan_window_insertion,
)
from timesheet_engine.services.snapshot_writer import SnapshotWriter

JAN_1 = date(2026, 1, 1)


def span(start: date, end: date | None) -> WindowSpan:
    return WindowSpan(window_id=uuid4(), date_from=start, date_to=end)


class TestPlanWindowInsertion:
    """Pure timeline planning."""

    def test_first_window_keeps_requested_range(self):
        plan = plan_window_insertion([], JAN_1, None)

        assert plan.date_to is None
        assert plan.truncate_id is None

    def test_incumbent_truncated_to_day_before(self):
        incumbent = span(JAN_1, None)

        plan = plan_window_insertion([incumbent], date(2026, 3, 1), None)

        assert plan.truncate_id == incumbent.window_id
        assert plan.truncate_to == date(2026, 2, 28)
        assert plan.date_to is None

    def test_same_start_is_duplicate(self):
        incumbent = span(JAN_1, None)

        with pytest.raises(DuplicateWindowStartError) as exc_info:
            plan_window_insertion([incumbent], JAN_1, None)

        assert exc_info.value.blocking_id == incumbent.window_id
        assert str(incumbent.window_id) in str(exc_info.value)

    def test_back_cut_rejected(self):
        first = span(JAN_1, date(2026, 5, 31))
        second = span(date(2026, 6, 1), None)

        with pytest.raises(BackCutError):
            plan_window_insertion([first, second], date(2026, 3, 1), None)

    def test_gap_fill_clamped_to_successor(self):
        first = span(JAN_1, date(2026, 1, 31))
        later = span(date(2026, 6, 1), None)

        plan = plan_window_insertion([first, later], date(2026, 3, 1), None)

        assert plan.truncate_id is None
        assert plan.date_to == date(2026, 5, 31)

    def test_explicit_end_inside_gap_kept(self):
        later = span(date(2026, 6, 1), None)

        plan = plan_window_insertion([later], date(2026, 3, 1), date(2026, 4, 30))

        assert plan.date_to == date(2026, 4, 30)

    @settings(max_examples=200, deadline=None)
    @given(
        st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=365),
                st.one_of(st.none(), st.integers(min_value=0, max_value=120)),
            ),
            min_size=1,
            max_size=12,
        )
    )
    def test_accepted_insertions_never_overlap(self, requests):
        """Whatever sequence is attempted, the accepted timeline has no overlaps."""
        spans: list[WindowSpan] = []
        for offset, length in requests:
            start = JAN_1 + timedelta(days=offset)
            end = start + timedelta(days=length) if length is not None else None
            try:
                plan = plan_window_insertion(spans, start, end)
            except (DuplicateWindowStartError, BackCutError):
                continue
            if plan.truncate_id is not None:
                spans = [
                    WindowSpan(s.window_id, s.date_from, plan.truncate_to)
                    if s.window_id == plan.truncate_id
                    else s
                    for s in spans
                ]
            spans.append(WindowSpan(uuid4(), plan.date_from, plan.date_to))

        ordered = sorted(spans, key=lambda s: s.date_from)
        for earlier, later in zip(ordered, ordered[1:]):
            assert earlier.date_to is not None
            assert earlier.date_to < later.date_from
        for s in ordered:
            assert s.date_to is None or s.date_to >= s.date_from


class TestRateWindowService:
    """Database-backed window and override writes."""

    async def test_insert_truncates_incumbent(self, session, world):
        service = RateWindowService(session)

        window = await service.insert_client_window(
            {
                "client_id": world.client.client_id,
                "role": "Staff Nurse",
                "date_from": date(2026, 7, 1),
                "charge": {"day": "32", "night": "37"},
                "paye": {"day": "21", "night": "25"},
            },
            actor="ops@example.com",
        )

        assert window.date_to is None
        assert window.role == "staff nurse"
        assert world.window.date_to == date(2026, 6, 30)

        await session.flush()
        audit = await session.execute(
            select(AuditEvent.action).where(AuditEvent.entity_type == "client_rate_window")
        )
        assert set(audit.scalars().all()) == {"insert", "truncate"}

    async def test_duplicate_start_names_incumbent(self, session, world):
        service = RateWindowService(session)

        with pytest.raises(DuplicateWindowStartError) as exc_info:
            await service.insert_client_window(
                {
                    "client_id": world.client.client_id,
                    "role": "staff nurse",
                    "date_from": date(2026, 1, 1),
                    "charge": {"day": "32"},
                }
            )

        assert exc_info.value.blocking_id == world.window.window_id

    async def test_other_band_is_a_separate_scope(self, session, world):
        service = RateWindowService(session)

        window = await service.insert_client_window(
            {
                "client_id": world.client.client_id,
                "role": "staff nurse",
                "band": "Band 6",
                "date_from": date(2026, 1, 1),
                "charge": {"day": "36"},
            }
        )

        assert window.band == "band 6"
        assert world.window.date_to is None

    async def test_unknown_client(self, session, world):
        with pytest.raises(NotFoundError):
            await RateWindowService(session).insert_client_window(
                {
                    "client_id": uuid4(),
                    "role": "staff nurse",
                    "date_from": date(2026, 1, 1),
                    "charge": {"day": "36"},
                }
            )

    async def test_invalid_request(self, session, world):
        with pytest.raises(InvalidRequestError) as exc_info:
            await RateWindowService(session).insert_client_window(
                {"client_id": world.client.client_id, "role": "staff nurse", "charge": {"day": "1"}}
            )

        assert exc_info.value.field == "date_from"

    async def test_disabled_window_is_skipped_by_resolution(self, session, world):
        service = RateWindowService(session)

        await service.disable_window(world.window.window_id)

        window = await RateResolver(session).find_window(
            world.client.client_id, "staff nurse", None, date(2026, 10, 14)
        )
        assert window is None

    async def test_window_change_enqueues_affected_timesheets(self, session, world, submit):
        timesheet = await submit()
        await SnapshotWriter(session).recompute(timesheet.timesheet_id)
        outbox = OutboxService(session)
        before = await outbox.get_items(timesheet.timesheet_id)

        await RateWindowService(session, outbox).insert_client_window(
            {
                "client_id": world.client.client_id,
                "role": "staff nurse",
                "date_from": date(2026, 10, 1),
                "charge": {"day": "31"},
                "paye": {"day": "21"},
            }
        )

        after = await outbox.get_items(timesheet.timesheet_id)
        reasons = {item.reason for item in after}
        assert "RATE_CHANGED" in reasons
        assert len(after) == len(before) + 1


class TestCandidateOverrides:
    async def test_open_override_clamped_to_window_end(self, session, world):
        world.window.date_to = date(2026, 12, 31)
        await session.flush()

        override = await RateWindowService(session).insert_candidate_override(
            {
                "candidate_id": world.paye_candidate.candidate_id,
                "client_id": world.client.client_id,
                "role": "staff nurse",
                "rate_type": "PAYE",
                "date_from": date(2026, 6, 1),
                "pay": {"day": "23.50"},
            }
        )

        assert override.date_to == date(2026, 12, 31)
        assert override.pay_day == Decimal("23.50")

    async def test_override_end_past_window_rejected(self, session, world):
        world.window.date_to = date(2026, 12, 31)
        await session.flush()

        with pytest.raises(OverrideOutsideWindowError) as exc_info:
            await RateWindowService(session).insert_candidate_override(
                {
                    "candidate_id": world.paye_candidate.candidate_id,
                    "client_id": world.client.client_id,
                    "role": "staff nurse",
                    "rate_type": "PAYE",
                    "date_from": date(2026, 6, 1),
                    "date_to": date(2027, 1, 31),
                    "pay": {"day": "23.50"},
                }
            )

        assert exc_info.value.blocking_id == world.window.window_id

    async def test_override_without_window_rejected(self, session, world):
        with pytest.raises(OverrideOutsideWindowError):
            await RateWindowService(session).insert_candidate_override(
                {
                    "candidate_id": world.paye_candidate.candidate_id,
                    "client_id": world.client.client_id,
                    "role": "healthcare assistant",
                    "rate_type": "PAYE",
                    "date_from": date(2026, 6, 1),
                    "pay": {"day": "15"},
                }
            )

    async def test_second_override_truncates_first(self, session, world):
        service = RateWindowService(session)
        base = {
            "candidate_id": world.paye_candidate.candidate_id,
            "client_id": world.client.client_id,
            "role": "staff nurse",
            "rate_type": "PAYE",
        }
        first = await service.insert_candidate_override(
            {**base, "date_from": date(2026, 2, 1), "pay": {"day": "22"}}
        )
        second = await service.insert_candidate_override(
            {**base, "date_from": date(2026, 5, 1), "pay": {"day": "23"}}
        )

        assert first.date_to == date(2026, 4, 30)
        assert second.date_to is None

    async def test_overrides_per_channel_do_not_interact(self, session, world):
        service = RateWindowService(session)
        base = {
            "candidate_id": world.paye_candidate.candidate_id,
            "client_id": world.client.client_id,
            "role": "staff nurse",
            "date_from": date(2026, 2, 1),
        }

        await service.insert_candidate_override({**base, "rate_type": "PAYE", "pay": {"day": "22"}})
        await service.insert_candidate_override(
            {**base, "rate_type": "UMBRELLA", "pay": {"day": "24"}}
        )

        rows = await session.execute(select(CandidateRateOverride))
        assert all(o.date_to is None for o in rows.scalars().all())
