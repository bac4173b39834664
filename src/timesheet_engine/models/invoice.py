"""Invoice, credit note and their lines."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import Base, TimestampMixin


class Invoice(Base, TimestampMixin):
    """Invoice header; billed to exactly one client."""

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("client.client_id"), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    hours_charge_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    extras_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    margin_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'ISSUED', 'ON_HOLD', 'PAID')",
            name="invoice_status_check",
        ),
    )

    # Relationships
    lines: Mapped[list[InvoiceLine]] = relationship(
        back_populates="invoice", lazy="selectin", order_by="InvoiceLine.worked_date_local"
    )


class InvoiceLine(Base, TimestampMixin):
    """One invoiced timesheet; references exactly one locked snapshot."""

    __tablename__ = "invoice_line"

    invoice_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    snapshot_id: Mapped[UUID] = mapped_column(
        ForeignKey("financial_snapshot.snapshot_id"),
        nullable=False,
    )
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    worked_date_local: Mapped[date] = mapped_column(Date, nullable=False)
    hours_total: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    pay_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    hours_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    extras_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("invoice_id", "snapshot_id", name="invoice_line_snapshot_unique"),
    )

    # Relationships
    invoice: Mapped[Invoice] = relationship(back_populates="lines")


class CreditNote(Base, TimestampMixin):
    """Full reversal of an invoice; mirrors its lines with negated amounts."""

    __tablename__ = "credit_note"

    credit_note_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=False,
        unique=True,
    )
    client_id: Mapped[UUID] = mapped_column(ForeignKey("client.client_id"), nullable=False)
    credit_date: Mapped[date] = mapped_column(Date, nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)

    # Relationships
    lines: Mapped[list[CreditNoteLine]] = relationship(
        back_populates="credit_note", lazy="selectin"
    )


class CreditNoteLine(Base, TimestampMixin):
    """Negated mirror of an invoice line."""

    __tablename__ = "credit_note_line"

    credit_note_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    credit_note_id: Mapped[UUID] = mapped_column(
        ForeignKey("credit_note.credit_note_id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice_line.invoice_line_id"),
        nullable=False,
    )
    snapshot_id: Mapped[UUID] = mapped_column(nullable=False)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    hours_total: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    pay_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    hours_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    extras_charge: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Relationships
    credit_note: Mapped[CreditNote] = relationship(back_populates="lines")
