"""Invoice lock manager: invoice creation, status changes and credit notes.

An invoice freezes the snapshots it bills. Each snapshot may be locked by
at most one invoice; the lock is taken with a single conditional update
(``WHERE locked_by_invoice_id IS NULL``), so two concurrent invoices can
never both claim the same snapshot. The loser's transaction is aborted.

A credit note is the only way to release a lock. It reverses the whole
invoice, unlocks its snapshots, marks them stale and requeues their
timesheets for recompute.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.clock import utc_now
from timesheet_engine.errors import (
    ConflictError,
    CreditNoteExistsError,
    InvalidRequestError,
    MultipleClientsError,
    NotFoundError,
    SnapshotLockConflictError,
)
from timesheet_engine.models import (
    CreditNote,
    CreditNoteLine,
    FinancialSnapshot,
    Invoice,
    InvoiceLine,
)
from timesheet_engine.services.audit import record_audit
from timesheet_engine.services.outbox import OutboxService, RecomputeReason
from timesheet_engine.services.state_machine import (
    InvalidTransitionError,
    InvoiceStateMachine,
    InvoiceStatus,
    ProcessingStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class InvoiceResult:
    """A created invoice plus the requested timesheets it did not bill."""

    invoice: Invoice
    skipped_timesheet_ids: list[UUID] = field(default_factory=list)


class InvoiceLockManager:
    """Creates invoices from READY_FOR_INVOICE snapshots and credits them."""

    def __init__(self, session: AsyncSession, outbox: OutboxService | None = None):
        self.session = session
        self.outbox = outbox or OutboxService(session)

    async def create_invoice_from_snapshots(
        self,
        timesheet_ids: Sequence[UUID],
        invoice_date: date | None = None,
        actor: str | None = None,
    ) -> InvoiceResult:
        """Create a DRAFT invoice for the eligible snapshots of the given timesheets.

        Eligible means current, unlocked, not stale and READY_FOR_INVOICE.
        Ineligible timesheets are skipped and reported.

        On a lock conflict the error is raised after partial writes; the
        caller must roll back its transaction.

        Raises:
            InvalidRequestError: If no timesheet ids are given
            ConflictError: If none of the timesheets has an eligible snapshot
            MultipleClientsError: If eligible snapshots span more than one client
            SnapshotLockConflictError: If a snapshot was locked concurrently
        """
        requested = list(dict.fromkeys(timesheet_ids))
        if not requested:
            raise InvalidRequestError("timesheet_ids", "at least one timesheet id is required")

        snapshots = await self._select_eligible(requested)
        if not snapshots:
            raise ConflictError("None of the requested timesheets has an invoice-ready snapshot")

        client_ids = list(dict.fromkeys(s.client_id for s in snapshots))
        if len(client_ids) > 1:
            other = next(s for s in snapshots if s.client_id != client_ids[0])
            raise MultipleClientsError(
                f"Selected snapshots span {len(client_ids)} clients; "
                "an invoice bills exactly one client",
                blocking_id=other.snapshot_id,
            )

        lines = [
            InvoiceLine(
                snapshot_id=s.snapshot_id,
                timesheet_id=s.timesheet_id,
                worked_date_local=s.worked_date_local,
                hours_total=s.hours.total,
                pay_amount=s.pay_total,
                hours_charge=s.charge_total,
                extras_charge=s.extras_charge,
                line_total=s.charge_total + s.extras_charge,
            )
            for s in snapshots
        ]
        pay_total = _sum(line.pay_amount for line in lines)
        hours_charge_total = _sum(line.hours_charge for line in lines)
        extras_total = _sum(line.extras_charge for line in lines)
        invoice = Invoice(
            invoice_id=uuid4(),
            client_id=client_ids[0],
            status=InvoiceStatus.DRAFT.value,
            invoice_date=invoice_date or utc_now().date(),
            pay_total=pay_total,
            hours_charge_total=hours_charge_total,
            extras_total=extras_total,
            total=hours_charge_total + extras_total,
            margin_total=hours_charge_total - pay_total,
            lines=lines,
        )
        self.session.add(invoice)
        await self.session.flush()

        snapshot_ids = [s.snapshot_id for s in snapshots]
        locked = await self.session.execute(
            update(FinancialSnapshot)
            .where(
                FinancialSnapshot.snapshot_id.in_(snapshot_ids),
                FinancialSnapshot.is_current.is_(True),
                FinancialSnapshot.locked_by_invoice_id.is_(None),
            )
            .values(locked_by_invoice_id=invoice.invoice_id, locked_at=utc_now())
            .execution_options(synchronize_session="fetch")
        )
        if locked.rowcount != len(snapshot_ids):
            blocker = await self._find_blocker(snapshot_ids, invoice.invoice_id)
            logger.warning(
                "Invoice %s lost a lock race: locked %d of %d snapshots",
                invoice.invoice_id,
                locked.rowcount,
                len(snapshot_ids),
            )
            raise SnapshotLockConflictError(
                "A selected snapshot was locked or superseded during invoice creation",
                blocking_id=blocker,
            )

        await record_audit(
            self.session,
            "invoice",
            invoice.invoice_id,
            "create",
            actor=actor,
            after={"client_id": invoice.client_id, "lines": len(lines), "total": invoice.total},
        )
        billed = {s.timesheet_id for s in snapshots}
        skipped = [tid for tid in requested if tid not in billed]
        logger.info(
            "Created invoice %s for client %s: %d line(s), total %s, %d skipped",
            invoice.invoice_id,
            invoice.client_id,
            len(lines),
            invoice.total,
            len(skipped),
        )
        return InvoiceResult(invoice=invoice, skipped_timesheet_ids=skipped)

    async def issue_invoice(self, invoice_id: UUID, actor: str | None = None) -> Invoice:
        return await self.transition(invoice_id, InvoiceStatus.ISSUED, actor)

    async def hold_invoice(self, invoice_id: UUID, actor: str | None = None) -> Invoice:
        return await self.transition(invoice_id, InvoiceStatus.ON_HOLD, actor)

    async def mark_paid(self, invoice_id: UUID, actor: str | None = None) -> Invoice:
        return await self.transition(invoice_id, InvoiceStatus.PAID, actor)

    async def transition(
        self,
        invoice_id: UUID,
        to_status: InvoiceStatus,
        actor: str | None = None,
    ) -> Invoice:
        """Move an invoice to a new status.

        Raises:
            NotFoundError: If the invoice does not exist
            InvalidTransitionError: If the transition is not allowed
        """
        invoice = await self._get_invoice(invoice_id)
        from_status = invoice.status
        InvoiceStateMachine.validate_transition(from_status, to_status)

        invoice.status = to_status.value
        now = utc_now()
        if to_status == InvoiceStatus.ISSUED and invoice.issued_at is None:
            invoice.issued_at = now
        elif to_status == InvoiceStatus.PAID:
            invoice.paid_at = now

        await record_audit(
            self.session,
            "invoice",
            invoice_id,
            "status_change",
            actor=actor,
            before={"status": from_status},
            after={"status": to_status.value},
        )
        await self.session.flush()
        return invoice

    async def issue_credit_note(
        self,
        invoice_id: UUID,
        reason: str | None = None,
        credit_date: date | None = None,
        actor: str | None = None,
    ) -> CreditNote:
        """Fully reverse an invoice and release its snapshot locks.

        Raises:
            NotFoundError: If the invoice does not exist
            CreditNoteExistsError: If the invoice was already credited
            InvalidTransitionError: If the invoice is still a draft
        """
        invoice = await self._get_invoice(invoice_id)

        existing = await self.session.execute(
            select(CreditNote.credit_note_id).where(CreditNote.invoice_id == invoice_id)
        )
        existing_id = existing.scalar_one_or_none()
        if existing_id is not None:
            raise CreditNoteExistsError(
                f"Invoice {invoice_id} has already been credited", blocking_id=existing_id
            )
        if not InvoiceStateMachine.can_credit(invoice.status):
            raise InvalidTransitionError(
                invoice.status, "CREDITED", "only issued, held or paid invoices can be credited"
            )

        lines = [
            CreditNoteLine(
                invoice_line_id=line.invoice_line_id,
                snapshot_id=line.snapshot_id,
                timesheet_id=line.timesheet_id,
                hours_total=-line.hours_total,
                pay_amount=-line.pay_amount,
                hours_charge=-line.hours_charge,
                extras_charge=-line.extras_charge,
                line_total=-line.line_total,
            )
            for line in invoice.lines
        ]
        credit_note = CreditNote(
            invoice_id=invoice_id,
            client_id=invoice.client_id,
            credit_date=credit_date or utc_now().date(),
            total=-invoice.total,
            reason=reason,
            lines=lines,
        )
        self.session.add(credit_note)
        await self.session.flush()

        unlocked = await self.session.execute(
            update(FinancialSnapshot)
            .where(FinancialSnapshot.locked_by_invoice_id == invoice_id)
            .values(locked_by_invoice_id=None, locked_at=None, stale=True)
            .execution_options(synchronize_session="fetch")
        )
        timesheet_ids = [line.timesheet_id for line in invoice.lines]
        await self.outbox.enqueue_many(timesheet_ids, RecomputeReason.CONTEXT_CHANGED)

        await record_audit(
            self.session,
            "credit_note",
            credit_note.credit_note_id,
            "create",
            actor=actor,
            after={"invoice_id": invoice_id, "total": credit_note.total, "reason": reason},
        )
        logger.info(
            "Credited invoice %s with credit note %s; unlocked %d snapshot(s)",
            invoice_id,
            credit_note.credit_note_id,
            unlocked.rowcount or 0,
        )
        return credit_note

    async def _select_eligible(self, timesheet_ids: list[UUID]) -> list[FinancialSnapshot]:
        result = await self.session.execute(
            select(FinancialSnapshot)
            .where(
                FinancialSnapshot.timesheet_id.in_(timesheet_ids),
                FinancialSnapshot.is_current.is_(True),
                FinancialSnapshot.locked_by_invoice_id.is_(None),
                FinancialSnapshot.stale.is_(False),
                FinancialSnapshot.processing_status == ProcessingStatus.READY_FOR_INVOICE.value,
            )
            .order_by(FinancialSnapshot.worked_date_local, FinancialSnapshot.timesheet_id)
        )
        return list(result.scalars().all())

    async def _find_blocker(self, snapshot_ids: list[UUID], invoice_id: UUID) -> UUID | None:
        """Invoice (or superseding snapshot) that took a selected snapshot."""
        result = await self.session.execute(
            select(FinancialSnapshot).where(
                FinancialSnapshot.snapshot_id.in_(snapshot_ids),
                (FinancialSnapshot.locked_by_invoice_id != invoice_id)
                | FinancialSnapshot.locked_by_invoice_id.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        for snapshot in result.scalars().all():
            if snapshot.locked_by_invoice_id is not None:
                return snapshot.locked_by_invoice_id
            return snapshot.snapshot_id
        return None

    async def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = await self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice


def _sum(values) -> Decimal:
    return sum(values, Decimal("0"))
