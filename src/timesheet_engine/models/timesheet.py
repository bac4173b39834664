"""Versioned timesheet records and external validation results."""

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
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from timesheet_engine.models.base import Base, TimestampMixin


class Timesheet(Base, TimestampMixin):
    """One version of a worked-shift record.

    ``timesheet_id`` identifies the logical booking and is shared by every
    version; ``timesheet_version_id`` identifies this row. Versions are never
    mutated apart from ``is_current`` and the revocation fields.
    """

    __tablename__ = "timesheet"

    timesheet_version_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    timesheet_key: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Shift context
    occupant_key_norm: Mapped[str] = mapped_column(String, nullable=False)
    hospital_norm: Mapped[str] = mapped_column(String, nullable=False)
    ward_norm: Mapped[str | None] = mapped_column(String, nullable=True)
    job_title_norm: Mapped[str] = mapped_column(String, nullable=False)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    shift_label_norm: Mapped[str | None] = mapped_column(String, nullable=True)

    worked_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    worked_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # [{"start": iso, "end": iso}, ...]
    breaks_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    break_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    worked_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    worked_date_local: Mapped[date] = mapped_column(Date, nullable=False)
    week_ending_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Expenses claimed on the shift (charged to the client)
    expense_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    expense_evidence_key: Mapped[str | None] = mapped_column(String, nullable=True)
    mileage_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    mileage_evidence_key: Mapped[str | None] = mapped_column(String, nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)

    auth_name: Mapped[str | None] = mapped_column(String, nullable=True)
    auth_job_title: Mapped[str | None] = mapped_column(String, nullable=True)
    authorised_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("timesheet_id", "version", name="timesheet_id_version_unique"),
        CheckConstraint("version >= 1", name="timesheet_version_check"),
        CheckConstraint("worked_end > worked_start", name="timesheet_worked_range_check"),
        Index(
            "timesheet_one_current",
            "timesheet_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
    )

    @property
    def is_revoked(self) -> bool:
        """Whether this version was revoked."""
        return self.revoked_at is not None


class TimesheetValidation(Base, TimestampMixin):
    """Validation outcome written by an external checker (e.g. HR source)."""

    __tablename__ = "timesheet_validation"

    timesheet_validation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    detail: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PASS', 'FAIL', 'PENDING')",
            name="timesheet_validation_status_check",
        ),
    )
