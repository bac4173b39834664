"""Tests for the HR -> invoice promotion gate."""

from decimal import Decimal

from sqlalchemy import select

from timesheet_engine.models import AuditEvent, TimesheetValidation
from timesheet_engine.services import lookups
from timesheet_engine.services.flags import REQUIRE_REFERENCE_NUMBER, REQUIRE_VALIDATION_PASS
from timesheet_engine.services.invoicing import InvoiceLockManager
from timesheet_engine.services.promotion_gate import BlockReason, PromotionGate
from timesheet_engine.services.snapshot_writer import SnapshotWriter
from timesheet_engine.services.state_machine import ProcessingStatus


async def priced(session, submit, **overrides):
    """Submit and recompute a timesheet; returns it with its snapshot."""
    timesheet = await submit(**overrides)
    result = await SnapshotWriter(session).recompute(timesheet.timesheet_id)
    return timesheet, result.snapshot


class TestPromotion:
    """Promotion of READY_FOR_HR snapshots."""

    async def test_clean_snapshot_is_promoted(self, session, world, submit):
        timesheet, snapshot = await priced(session, submit)

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id], actor="hr")

        assert result.promoted == [timesheet.timesheet_id]
        assert result.blocked == {}
        current = await lookups.get_current_snapshot(session, timesheet.timesheet_id)
        assert current.processing_status == ProcessingStatus.READY_FOR_INVOICE.value

        await session.flush()
        audit = await session.execute(
            select(AuditEvent).where(AuditEvent.entity_id == snapshot.snapshot_id)
        )
        event = audit.scalar_one()
        assert event.action == "promote"
        assert event.actor == "hr"

    async def test_promotion_is_idempotent(self, session, world, submit):
        timesheet, _ = await priced(session, submit)
        gate = PromotionGate(session)

        await gate.try_promote([timesheet.timesheet_id])
        again = await gate.try_promote([timesheet.timesheet_id])

        assert again.promoted == [timesheet.timesheet_id]

    async def test_no_snapshot(self, session, world, submit):
        timesheet = await submit()

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked == {timesheet.timesheet_id: [BlockReason.NO_CURRENT_SNAPSHOT]}

    async def test_gap_status_blocks(self, session, world, submit):
        timesheet, _ = await priced(session, submit, candidate_key="cand-999")

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [BlockReason.NOT_READY_FOR_HR]

    async def test_mixed_batch(self, session, world, submit):
        good, _ = await priced(session, submit)
        bad, _ = await priced(session, submit, hospital="St Elsewhere")

        result = await PromotionGate(session).try_promote([good.timesheet_id, bad.timesheet_id])

        assert result.promoted == [good.timesheet_id]
        assert list(result.blocked) == [bad.timesheet_id]

    async def test_locked_and_stale_snapshots_block(self, session, world, submit):
        timesheet, _ = await priced(session, submit)
        gate = PromotionGate(session)
        await gate.try_promote([timesheet.timesheet_id])
        manager = InvoiceLockManager(session)
        invoice = (await manager.create_invoice_from_snapshots([timesheet.timesheet_id])).invoice

        locked = await gate.try_promote([timesheet.timesheet_id])
        assert locked.blocked[timesheet.timesheet_id] == [BlockReason.SNAPSHOT_LOCKED]

        await manager.issue_invoice(invoice.invoice_id)
        await manager.issue_credit_note(invoice.invoice_id, reason="wrong ward")
        stale = await gate.try_promote([timesheet.timesheet_id])
        assert stale.blocked[timesheet.timesheet_id] == [BlockReason.SNAPSHOT_STALE]


class TestGateChecks:
    """Every failing check is reported."""

    async def test_evidence_required_for_claimed_extras(self, session, world, submit):
        timesheet, _ = await priced(
            session,
            submit,
            expense_amount=Decimal("15.00"),
            mileage_amount=Decimal("9.90"),
            mileage_evidence_key="   ",
        )

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [
            BlockReason.EXPENSE_EVIDENCE_MISSING,
            BlockReason.MILEAGE_EVIDENCE_MISSING,
        ]

    async def test_evidence_present(self, session, world, submit):
        timesheet, _ = await priced(
            session,
            submit,
            expense_amount=Decimal("15.00"),
            expense_evidence_key="receipts/taxi.pdf",
        )

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.promoted == [timesheet.timesheet_id]

    async def test_pay_channel_changed_since_pricing(self, session, world, submit):
        timesheet, _ = await priced(session, submit)
        world.paye_candidate.pay_method = "UMBRELLA"
        world.paye_candidate.umbrella_company_id = world.umbrella.umbrella_company_id
        await session.flush()

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [BlockReason.PAY_CHANNEL_INCOMPLETE]

    async def test_bank_details_removed_since_pricing(self, session, world, submit):
        timesheet, _ = await priced(session, submit)
        world.paye_candidate.bank_account_number = ""
        await session.flush()

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [BlockReason.PAY_CHANNEL_INCOMPLETE]

    async def test_all_failures_reported_together(self, session, world, submit, set_flag):
        await set_flag(REQUIRE_VALIDATION_PASS)
        await set_flag(REQUIRE_REFERENCE_NUMBER)
        timesheet, _ = await priced(session, submit, expense_amount=Decimal("5"))

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [
            BlockReason.VALIDATION_MISSING,
            BlockReason.EXPENSE_EVIDENCE_MISSING,
            BlockReason.REFERENCE_NUMBER_MISSING,
        ]


class TestFlags:
    async def test_validation_not_passed(self, session, world, submit, set_flag):
        await set_flag(REQUIRE_VALIDATION_PASS)
        timesheet, _ = await priced(session, submit)
        session.add(
            TimesheetValidation(
                timesheet_id=timesheet.timesheet_id, version=timesheet.version, status="FAIL"
            )
        )
        await session.flush()

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [BlockReason.VALIDATION_NOT_PASSED]

    async def test_validation_for_other_version_does_not_count(
        self, session, world, submit, set_flag
    ):
        await set_flag(REQUIRE_VALIDATION_PASS)
        timesheet, _ = await priced(session, submit)
        session.add(
            TimesheetValidation(
                timesheet_id=timesheet.timesheet_id, version=timesheet.version + 1, status="PASS"
            )
        )
        await session.flush()

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.blocked[timesheet.timesheet_id] == [BlockReason.VALIDATION_MISSING]

    async def test_validation_passed(self, session, world, submit, set_flag):
        await set_flag(REQUIRE_VALIDATION_PASS)
        timesheet, _ = await priced(session, submit)
        session.add(
            TimesheetValidation(
                timesheet_id=timesheet.timesheet_id, version=timesheet.version, status="PASS"
            )
        )
        await session.flush()

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.promoted == [timesheet.timesheet_id]

    async def test_reference_number_flag(self, session, world, submit, set_flag):
        await set_flag(REQUIRE_REFERENCE_NUMBER)
        with_ref, _ = await priced(session, submit, reference_number="PO-4411")
        without_ref, _ = await priced(session, submit, candidate_key="cand-002")

        result = await PromotionGate(session).try_promote(
            [with_ref.timesheet_id, without_ref.timesheet_id]
        )

        assert result.promoted == [with_ref.timesheet_id]
        assert result.blocked[without_ref.timesheet_id] == [BlockReason.REFERENCE_NUMBER_MISSING]

    async def test_flag_turned_off(self, session, world, submit, set_flag):
        await set_flag(REQUIRE_REFERENCE_NUMBER)
        await set_flag(REQUIRE_REFERENCE_NUMBER, enabled=False)
        timesheet, _ = await priced(session, submit)

        result = await PromotionGate(session).try_promote([timesheet.timesheet_id])

        assert result.promoted == [timesheet.timesheet_id]
