"""Recompute outbox processor: drains leased items through the snapshot writer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timesheet_engine.config import OutboxConfig
from timesheet_engine.services.outbox import Lease, OutboxService
from timesheet_engine.services.snapshot_writer import SnapshotWriter

logger = logging.getLogger(__name__)


@dataclass
class DrainResult:
    """Counts from one or more drain batches."""

    picked: int = 0
    succeeded: int = 0
    failed: int = 0
    parked: int = 0
    batches: int = 0

    def add(self, other: DrainResult) -> None:
        self.picked += other.picked
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.parked += other.parked
        self.batches += other.batches


class RecomputeProcessor:
    """Leases outbox items and recomputes their timesheets.

    Each item runs in its own transaction: the snapshot write and the
    outbox acknowledgement commit together, so a crash between them leaves
    the item to be redelivered after its lease expires. Recompute is
    idempotent, which makes redelivery safe.

    Failures are recorded in a separate transaction after the failed one
    has rolled back, and never abort the rest of the batch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: OutboxConfig | None = None,
        concurrency: int = 1,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.session_factory = session_factory
        self.config = config or OutboxConfig()
        self.concurrency = concurrency

    async def drain_once(self, limit: int) -> DrainResult:
        """Lease up to ``limit`` items and process them."""
        async with self.session_factory() as session:
            leases = await OutboxService(session, self.config).lease(limit)
            await session.commit()

        result = DrainResult(picked=len(leases), batches=1)
        if not leases:
            return result

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(lease: Lease) -> str:
            async with semaphore:
                return await self._process(lease)

        for status in await asyncio.gather(*(run(lease) for lease in leases)):
            if status == "ok":
                result.succeeded += 1
            else:
                result.failed += 1
                if status == "parked":
                    result.parked += 1

        logger.info(
            "Drained batch: picked=%d succeeded=%d failed=%d parked=%d",
            result.picked,
            result.succeeded,
            result.failed,
            result.parked,
        )
        return result

    async def drain_until_idle(self, limit: int, max_batches: int) -> DrainResult:
        """Drain batches until the queue has nothing ready or the cap is hit."""
        total = DrainResult()
        for _ in range(max_batches):
            batch = await self.drain_once(limit)
            total.add(batch)
            if batch.picked == 0:
                break
        return total

    async def _process(self, lease: Lease) -> str:
        try:
            async with self.session_factory() as session:
                await SnapshotWriter(session).recompute(lease.timesheet_id)
                await OutboxService(session, self.config).ack_success(lease)
                await session.commit()
            return "ok"
        except Exception as exc:
            logger.exception(
                "Recompute failed for timesheet %s (outbox %s, attempt %d)",
                lease.timesheet_id,
                lease.outbox_id,
                lease.attempt,
            )
            error = f"{type(exc).__name__}: {exc}"

        async with self.session_factory() as session:
            parked = await OutboxService(session, self.config).ack_failure(lease, error)
            await session.commit()
        return "parked" if parked else "failed"
