"""Promotion gate: READY_FOR_HR -> READY_FOR_INVOICE."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.models import Candidate, FinancialSnapshot, Timesheet, TimesheetValidation
from timesheet_engine.services import lookups
from timesheet_engine.services.audit import record_audit
from timesheet_engine.services.flags import EngineFlags, load_flags
from timesheet_engine.services.state_machine import ProcessingStatus, SnapshotStateMachine

logger = logging.getLogger(__name__)


class BlockReason(str, Enum):
    """Why a timesheet could not be promoted."""

    NO_CURRENT_SNAPSHOT = "NO_CURRENT_SNAPSHOT"
    SNAPSHOT_LOCKED = "SNAPSHOT_LOCKED"
    SNAPSHOT_STALE = "SNAPSHOT_STALE"
    NOT_READY_FOR_HR = "NOT_READY_FOR_HR"
    VALIDATION_MISSING = "VALIDATION_MISSING"
    VALIDATION_NOT_PASSED = "VALIDATION_NOT_PASSED"
    EXPENSE_EVIDENCE_MISSING = "EXPENSE_EVIDENCE_MISSING"
    MILEAGE_EVIDENCE_MISSING = "MILEAGE_EVIDENCE_MISSING"
    PAY_CHANNEL_INCOMPLETE = "PAY_CHANNEL_INCOMPLETE"
    REFERENCE_NUMBER_MISSING = "REFERENCE_NUMBER_MISSING"
    CONCURRENT_CHANGE = "CONCURRENT_CHANGE"


@dataclass
class PromotionResult:
    """Per-timesheet outcome of a promotion request."""

    promoted: list[UUID] = field(default_factory=list)
    blocked: dict[UUID, list[BlockReason]] = field(default_factory=dict)


class PromotionGate:
    """Moves HR-approved snapshots to READY_FOR_INVOICE.

    Checks run per timesheet and every failing check is reported, not just
    the first. A snapshot already READY_FOR_INVOICE and unlocked counts as
    promoted, so repeated requests are harmless.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def try_promote(
        self,
        timesheet_ids: Sequence[UUID],
        actor: str | None = None,
    ) -> PromotionResult:
        flags = await load_flags(self.session)
        result = PromotionResult()

        for timesheet_id in dict.fromkeys(timesheet_ids):
            reasons = await self._promote_one(timesheet_id, flags, actor)
            if reasons:
                result.blocked[timesheet_id] = reasons
            else:
                result.promoted.append(timesheet_id)

        logger.info(
            "Promotion: %d promoted, %d blocked", len(result.promoted), len(result.blocked)
        )
        return result

    async def _promote_one(
        self,
        timesheet_id: UUID,
        flags: EngineFlags,
        actor: str | None,
    ) -> list[BlockReason]:
        snapshot = await lookups.get_current_snapshot(self.session, timesheet_id)
        if snapshot is None:
            return [BlockReason.NO_CURRENT_SNAPSHOT]
        if snapshot.is_locked:
            return [BlockReason.SNAPSHOT_LOCKED]
        if snapshot.stale:
            return [BlockReason.SNAPSHOT_STALE]
        if snapshot.processing_status == ProcessingStatus.READY_FOR_INVOICE.value:
            return []
        if snapshot.processing_status != ProcessingStatus.READY_FOR_HR.value:
            return [BlockReason.NOT_READY_FOR_HR]

        reasons = await self.evaluate(snapshot, flags)
        if reasons:
            return reasons

        SnapshotStateMachine.validate_transition(
            snapshot.processing_status, ProcessingStatus.READY_FOR_INVOICE
        )
        updated = await self.session.execute(
            update(FinancialSnapshot)
            .where(
                FinancialSnapshot.snapshot_id == snapshot.snapshot_id,
                FinancialSnapshot.is_current.is_(True),
                FinancialSnapshot.processing_status == ProcessingStatus.READY_FOR_HR.value,
                FinancialSnapshot.locked_by_invoice_id.is_(None),
                FinancialSnapshot.stale.is_(False),
            )
            .values(processing_status=ProcessingStatus.READY_FOR_INVOICE.value)
        )
        if updated.rowcount != 1:
            logger.warning("Snapshot %s changed during promotion", snapshot.snapshot_id)
            return [BlockReason.CONCURRENT_CHANGE]

        await record_audit(
            self.session,
            "financial_snapshot",
            snapshot.snapshot_id,
            "promote",
            actor=actor,
            before={"processing_status": ProcessingStatus.READY_FOR_HR.value},
            after={"processing_status": ProcessingStatus.READY_FOR_INVOICE.value},
        )
        return []

    async def evaluate(self, snapshot: FinancialSnapshot, flags: EngineFlags) -> list[BlockReason]:
        """All gate checks that currently fail for a READY_FOR_HR snapshot."""
        reasons: list[BlockReason] = []
        timesheet = await lookups.get_timesheet_version(
            self.session, snapshot.timesheet_id, snapshot.timesheet_version
        )

        if flags.require_validation_pass:
            validation = await self._validation_reason(snapshot)
            if validation is not None:
                reasons.append(validation)

        if _positive(snapshot.expense_charge) and not _evidence(timesheet, "expense_evidence_key"):
            reasons.append(BlockReason.EXPENSE_EVIDENCE_MISSING)
        if _positive(snapshot.mileage_charge) and not _evidence(timesheet, "mileage_evidence_key"):
            reasons.append(BlockReason.MILEAGE_EVIDENCE_MISSING)

        if not await self._pay_channel_ready(snapshot):
            reasons.append(BlockReason.PAY_CHANNEL_INCOMPLETE)

        if flags.require_reference_number and not _evidence(timesheet, "reference_number"):
            reasons.append(BlockReason.REFERENCE_NUMBER_MISSING)

        return reasons

    async def _validation_reason(self, snapshot: FinancialSnapshot) -> BlockReason | None:
        result = await self.session.execute(
            select(TimesheetValidation.status).where(
                TimesheetValidation.timesheet_id == snapshot.timesheet_id,
                TimesheetValidation.version == snapshot.timesheet_version,
            )
        )
        statuses = set(result.scalars().all())
        if not statuses:
            return BlockReason.VALIDATION_MISSING
        if "PASS" not in statuses:
            return BlockReason.VALIDATION_NOT_PASSED
        return None

    async def _pay_channel_ready(self, snapshot: FinancialSnapshot) -> bool:
        """The snapshot's channel is still the candidate's, with full details."""
        if snapshot.candidate_id is None or snapshot.pay_channel is None:
            return False
        candidate = await self.session.get(Candidate, snapshot.candidate_id)
        if candidate is None or candidate.pay_method != snapshot.pay_channel:
            return False
        return await lookups.pay_channel_complete(self.session, candidate)


def _positive(amount: Decimal | None) -> bool:
    return amount is not None and amount > 0


def _evidence(timesheet: Timesheet | None, attribute: str) -> bool:
    if timesheet is None:
        return False
    value = getattr(timesheet, attribute)
    return bool(value and value.strip())
