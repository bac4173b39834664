"""Financial snapshot computed for one timesheet version."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from timesheet_engine.calculators.types import HourBuckets
from timesheet_engine.models.base import Base, TimestampMixin


class FinancialSnapshot(Base, TimestampMixin):
    """Immutable priced fact for one timesheet version.

    Only ``is_current``, ``processing_status`` (HR -> invoice promotion),
    ``stale`` and the lock pair ever change after insert, and none of them
    change while ``locked_by_invoice_id`` is set except by a credit note.
    Hours, rates and totals are NULL when they could not be resolved.
    """

    __tablename__ = "financial_snapshot"

    snapshot_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    timesheet_version: Mapped[int] = mapped_column(Integer, nullable=False)
    candidate_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("candidate.candidate_id"), nullable=True
    )
    client_id: Mapped[UUID | None] = mapped_column(ForeignKey("client.client_id"), nullable=True)
    role: Mapped[str] = mapped_column(String, nullable=False)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_channel: Mapped[str | None] = mapped_column(String, nullable=True)
    worked_date_local: Mapped[date] = mapped_column(Date, nullable=False)
    week_ending_date: Mapped[date] = mapped_column(Date, nullable=False)

    processing_status: Mapped[str] = mapped_column(String, nullable=False)
    status_reasons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    hours_day: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    hours_night: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    hours_sat: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    hours_sun: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    hours_bh: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)

    pay_rates_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    charge_rates_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    rate_window_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rate_override_id: Mapped[UUID | None] = mapped_column(nullable=True)

    pay_total: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    charge_total: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    margin: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    expense_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    mileage_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)

    input_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_by_invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoice.invoice_id"), nullable=True
    )
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('UNASSIGNED', 'CLIENT_UNRESOLVED', 'RATE_MISSING', "
            "'PAY_CHANNEL_MISSING', 'READY_FOR_HR', 'READY_FOR_INVOICE')",
            name="financial_snapshot_status_check",
        ),
        CheckConstraint(
            "margin IS NULL OR (pay_total IS NOT NULL AND charge_total IS NOT NULL)",
            name="financial_snapshot_margin_check",
        ),
        Index(
            "financial_snapshot_one_current",
            "timesheet_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
        Index("financial_snapshot_lock_idx", "locked_by_invoice_id"),
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_by_invoice_id is not None

    @property
    def hours(self) -> HourBuckets | None:
        """Resolved hour buckets, or None if never classified."""
        if self.hours_day is None:
            return None
        return HourBuckets(
            day=self.hours_day,
            night=self.hours_night,
            saturday=self.hours_sat,
            sunday=self.hours_sun,
            bank_holiday=self.hours_bh,
        )

    @property
    def extras_charge(self) -> Decimal:
        """Expense and mileage amounts billed alongside the hours."""
        return (self.expense_charge or Decimal("0")) + (self.mileage_charge or Decimal("0"))
