"""Tests for the recompute outbox processor."""

from decimal import Decimal

import pytest

from timesheet_engine.config import OutboxConfig
from timesheet_engine.services import lookups
from timesheet_engine.services.outbox import OutboxService
from timesheet_engine.services.processor import DrainResult, RecomputeProcessor
from timesheet_engine.services.snapshot_writer import SnapshotWriter
from timesheet_engine.services.state_machine import ProcessingStatus


@pytest.fixture
def processor(session_factory, outbox_config):
    return RecomputeProcessor(session_factory, outbox_config)


class TestDrain:
    """Draining commits each recompute with its acknowledgement."""

    async def test_drain_writes_snapshot_and_empties_queue(
        self, session, session_factory, world, submit, processor
    ):
        timesheet = await submit()
        await session.commit()

        result = await processor.drain_until_idle(limit=10, max_batches=5)

        assert result.picked == 1
        assert result.succeeded == 1
        assert result.failed == 0
        async with session_factory() as check:
            snapshot = await lookups.get_current_snapshot(check, timesheet.timesheet_id)
            assert snapshot.processing_status == ProcessingStatus.READY_FOR_HR.value
            assert snapshot.charge_total == Decimal("225.00")
            assert await OutboxService(check).pending_count() == 0

    async def test_coalesced_reasons_each_recompute(
        self, session, session_factory, world, submit, processor
    ):
        await submit()
        await submit(replace_current=True, break_minutes=60)
        await session.commit()

        result = await processor.drain_until_idle(limit=10, max_batches=5)

        # NEW_AUTHORISED and VERSION_ROTATED for the same timesheet, one batch each
        assert result.picked == 2
        assert result.succeeded == 2
        assert result.batches == 3

    async def test_batch_holds_one_item_per_timesheet(
        self, session, session_factory, world, submit, outbox_config
    ):
        first = await submit()
        await submit(replace_current=True, break_minutes=60)
        other = await submit(candidate_key="cand-002")
        await session.commit()
        processor = RecomputeProcessor(session_factory, outbox_config, concurrency=4)

        result = await processor.drain_once(limit=10)

        assert result.picked == 2
        assert result.succeeded == 2
        async with session_factory() as check:
            assert len(await OutboxService(check).get_items(first.timesheet_id)) == 1
            assert await OutboxService(check).get_items(other.timesheet_id) == []

    async def test_empty_queue(self, processor):
        result = await processor.drain_once(limit=10)

        assert result == DrainResult(batches=1)

    async def test_concurrency_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            RecomputeProcessor(session_factory, concurrency=0)


class TestFailures:
    async def test_failure_is_recorded_and_batch_continues(
        self, session, session_factory, world, submit, processor, monkeypatch
    ):
        broken = await submit(candidate_key="cand-002")
        healthy = await submit()
        await session.commit()

        original = SnapshotWriter.recompute

        async def flaky(self, timesheet_id):
            if timesheet_id == broken.timesheet_id:
                raise RuntimeError("rate table unavailable")
            return await original(self, timesheet_id)

        monkeypatch.setattr(SnapshotWriter, "recompute", flaky)

        result = await processor.drain_once(limit=10)

        assert result.picked == 2
        assert result.succeeded == 1
        assert result.failed == 1
        assert result.parked == 0
        async with session_factory() as check:
            assert await lookups.get_current_snapshot(check, healthy.timesheet_id) is not None
            assert await lookups.get_current_snapshot(check, broken.timesheet_id) is None
            items = await OutboxService(check).get_items(broken.timesheet_id)
            assert items[0].last_error == "RuntimeError: rate table unavailable"
            assert items[0].attempts == 1

    async def test_exhausted_item_is_parked(
        self, session, session_factory, world, submit, monkeypatch
    ):
        timesheet = await submit()
        await session.commit()

        async def always_fails(self, timesheet_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(SnapshotWriter, "recompute", always_fails)
        processor = RecomputeProcessor(session_factory, OutboxConfig(max_attempts=1))

        result = await processor.drain_until_idle(limit=10, max_batches=5)

        assert result.parked == 1
        async with session_factory() as check:
            items = await OutboxService(check).get_items(timesheet.timesheet_id)
            assert items[0].parked_at is not None
            assert await OutboxService(check).pending_count() == 0
