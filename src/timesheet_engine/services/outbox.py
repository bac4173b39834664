"""Recompute outbox: enqueue, lease and acknowledge recompute requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from timesheet_engine.clock import utc_now
from timesheet_engine.config import OutboxConfig
from timesheet_engine.models import RecomputeOutboxItem

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000
LEASE_EXPIRED_ERROR = "lease expired without acknowledgement"


class RecomputeReason(str, Enum):
    """Why a timesheet needs its snapshot recomputed."""

    NEW_AUTHORISED = "NEW_AUTHORISED"
    VERSION_ROTATED = "VERSION_ROTATED"
    REVOKED = "REVOKED"
    RATE_CHANGED = "RATE_CHANGED"
    POLICY_CHANGED = "POLICY_CHANGED"
    CONTEXT_CHANGED = "CONTEXT_CHANGED"
    MANUAL = "MANUAL"


@dataclass(frozen=True)
class Lease:
    """A worker's claim on one outbox item.

    The claim is only valid while ``token`` and ``generation`` still match
    the stored row; acknowledgement is conditional on both.
    """

    outbox_id: UUID
    timesheet_id: UUID
    reason: str
    token: UUID
    attempt: int
    generation: int
    leased_until: datetime


class OutboxService:
    """Table-backed leased queue of recompute requests.

    Delivery is at-least-once:
    - enqueue coalesces on (timesheet, reason) and bumps ``generation``
    - lease hides an item for ``lease_seconds`` and counts the attempt
    - ack_success deletes only if the lease and generation still match
    - ack_failure backs off exponentially, parking after ``max_attempts``

    Expired leases become visible again, so a crashed worker's items are
    picked up by the next drain.
    """

    def __init__(self, session: AsyncSession, config: OutboxConfig | None = None):
        self.session = session
        self.config = config or OutboxConfig()

    async def enqueue(
        self,
        timesheet_id: UUID,
        reason: RecomputeReason | str,
        now: datetime | None = None,
    ) -> None:
        """Enqueue a recompute request.

        A request already queued for the same (timesheet, reason) is
        coalesced: its generation is bumped so in-flight work is redone,
        and a parked item is revived with a fresh attempt budget.
        """
        now = now or utc_now()
        reason = RecomputeReason(reason).value
        table = RecomputeOutboxItem.__table__

        stmt = self._insert().values(
            outbox_id=uuid4(),
            timesheet_id=timesheet_id,
            reason=reason,
            generation=1,
            attempts=0,
            enqueued_at=now,
            available_at=now,
        )
        revived = table.c.parked_at.is_not(None)
        stmt = stmt.on_conflict_do_update(
            index_elements=["timesheet_id", "reason"],
            set_={
                "generation": table.c.generation + 1,
                "attempts": case((revived, 0), else_=table.c.attempts),
                "available_at": case((revived, stmt.excluded.available_at), else_=table.c.available_at),
                "parked_at": None,
            },
        )
        await self.session.execute(stmt)
        logger.debug("Enqueued recompute for timesheet %s (%s)", timesheet_id, reason)

    async def enqueue_many(
        self,
        timesheet_ids: list[UUID],
        reason: RecomputeReason | str,
        now: datetime | None = None,
    ) -> int:
        now = now or utc_now()
        for timesheet_id in dict.fromkeys(timesheet_ids):
            await self.enqueue(timesheet_id, reason, now=now)
        return len(set(timesheet_ids))

    async def lease(self, limit: int, now: datetime | None = None) -> list[Lease]:
        """Claim up to ``limit`` ready items, oldest first.

        Candidates are selected with SKIP LOCKED where the database supports
        it, then claimed one by one with a conditional update so two
        leasers can never hold the same item. At most one item per
        timesheet is leased at a time, so recomputes of one timesheet never
        run side by side.

        Items whose lease expired with no attempts left are parked first:
        a worker that crashed or hung never acknowledges, and its item must
        not be redelivered past ``max_attempts``.
        """
        now = now or utc_now()
        leased_until = now + timedelta(seconds=self.config.lease_seconds)
        max_attempts = self.config.max_attempts
        item = RecomputeOutboxItem

        await self._park_exhausted(now)

        busy = aliased(RecomputeOutboxItem)
        timesheet_busy = (
            select(busy.outbox_id)
            .where(
                busy.timesheet_id == item.timesheet_id,
                busy.outbox_id != item.outbox_id,
                busy.leased_until >= now,
            )
            .exists()
        )
        result = await self.session.execute(
            select(item.outbox_id, item.timesheet_id)
            .where(
                item.parked_at.is_(None),
                item.available_at <= now,
                item.attempts < max_attempts,
                _lease_free(now),
                ~timesheet_busy,
            )
            .order_by(item.enqueued_at, item.outbox_id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        candidates: dict[UUID, UUID] = {}
        for outbox_id, timesheet_id in result.all():
            candidates.setdefault(timesheet_id, outbox_id)

        leases: list[Lease] = []
        for outbox_id in candidates.values():
            token = uuid4()
            claimed = await self.session.execute(
                update(item)
                .where(
                    item.outbox_id == outbox_id,
                    item.parked_at.is_(None),
                    item.attempts < max_attempts,
                    _lease_free(now),
                )
                .values(lease_token=token, leased_until=leased_until, attempts=item.attempts + 1)
                .returning(item.timesheet_id, item.reason, item.attempts, item.generation)
                .execution_options(synchronize_session=False)
            )
            row = claimed.one_or_none()
            if row is None:
                # Claimed by another leaser between select and update
                continue
            leases.append(
                Lease(
                    outbox_id=outbox_id,
                    timesheet_id=row.timesheet_id,
                    reason=row.reason,
                    token=token,
                    attempt=row.attempts,
                    generation=row.generation,
                    leased_until=leased_until,
                )
            )

        if leases:
            logger.debug("Leased %d outbox item(s)", len(leases))
        return leases

    async def _park_exhausted(self, now: datetime) -> int:
        item = RecomputeOutboxItem
        result = await self.session.execute(
            update(item)
            .where(
                item.parked_at.is_(None),
                item.attempts >= self.config.max_attempts,
                _lease_free(now),
            )
            .values(
                parked_at=now,
                lease_token=None,
                leased_until=None,
                last_error=func.coalesce(item.last_error, LEASE_EXPIRED_ERROR),
            )
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            logger.warning(
                "Parked %d outbox item(s) whose final lease expired unacknowledged", count
            )
        return count

    async def ack_success(self, lease: Lease, now: datetime | None = None) -> bool:
        """Complete a leased item.

        Returns True if the item was deleted. If it was re-enqueued while
        leased (generation moved on), the lease is released instead so the
        newer request is processed on the next drain with a fresh attempt
        count.
        """
        item = RecomputeOutboxItem
        result = await self.session.execute(
            delete(item)
            .where(
                item.outbox_id == lease.outbox_id,
                item.lease_token == lease.token,
                item.generation == lease.generation,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return True

        await self.session.execute(
            update(item)
            .where(item.outbox_id == lease.outbox_id, item.lease_token == lease.token)
            .values(
                lease_token=None, leased_until=None, attempts=0, available_at=now or utc_now()
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Outbox item %s changed while leased; left queued for another pass",
            lease.outbox_id,
        )
        return False

    async def ack_failure(self, lease: Lease, error: str, now: datetime | None = None) -> bool:
        """Record a failed attempt.

        Returns True if the item was parked.
        """
        now = now or utc_now()
        item = RecomputeOutboxItem
        parked = lease.attempt >= self.config.max_attempts

        values: dict = {
            "lease_token": None,
            "leased_until": None,
            "last_error": error[:MAX_ERROR_LENGTH],
        }
        if parked:
            values["parked_at"] = now
        else:
            delay = self.config.backoff_seconds(lease.attempt)
            values["available_at"] = now + timedelta(seconds=delay)

        await self.session.execute(
            update(item)
            .where(item.outbox_id == lease.outbox_id, item.lease_token == lease.token)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if parked:
            logger.warning(
                "Parked outbox item %s for timesheet %s after %d attempts: %s",
                lease.outbox_id,
                lease.timesheet_id,
                lease.attempt,
                error,
            )
        return parked

    async def requeue_parked(
        self,
        timesheet_id: UUID | None = None,
        now: datetime | None = None,
    ) -> int:
        """Return parked items to the queue with a fresh attempt budget."""
        item = RecomputeOutboxItem
        stmt = update(item).where(item.parked_at.is_not(None))
        if timesheet_id is not None:
            stmt = stmt.where(item.timesheet_id == timesheet_id)
        result = await self.session.execute(
            stmt.values(parked_at=None, attempts=0, available_at=now or utc_now())
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            logger.info("Requeued %d parked outbox item(s)", count)
        return count

    async def get_items(self, timesheet_id: UUID) -> list[RecomputeOutboxItem]:
        result = await self.session.execute(
            select(RecomputeOutboxItem)
            .where(RecomputeOutboxItem.timesheet_id == timesheet_id)
            .order_by(RecomputeOutboxItem.enqueued_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def pending_count(self) -> int:
        """Items not parked, leased or not."""
        result = await self.session.execute(
            select(func.count())
            .select_from(RecomputeOutboxItem)
            .where(RecomputeOutboxItem.parked_at.is_(None))
        )
        return result.scalar_one()

    def _insert(self):
        if self.session.bind.dialect.name == "sqlite":
            return sqlite.insert(RecomputeOutboxItem)
        return postgresql.insert(RecomputeOutboxItem)


def _lease_free(now: datetime):
    item = RecomputeOutboxItem
    return or_(item.leased_until.is_(None), item.leased_until < now)
