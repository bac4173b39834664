"""Client rate windows and candidate rate overrides."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from timesheet_engine.calculators.types import PayChannel, RateSet
from timesheet_engine.models.base import Base, TimestampMixin


class DateWindowMixin:
    """Inclusive date range with an open end and a soft-disable flag."""

    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class ClientRateWindow(Base, DateWindowMixin, TimestampMixin):
    """Date-ranged pricing rule for a (client, role, band) scope.

    One row carries three rate sets sharing the same effective range: the
    client charge, PAYE pay and UMBRELLA pay. ``band`` NULL is the
    role-wide default.
    """

    __tablename__ = "client_rate_window"

    window_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String, nullable=False)
    band: Mapped[str | None] = mapped_column(String, nullable=True)

    charge_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_sat: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_sun: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_bh: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    paye_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    paye_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    paye_sat: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    paye_sun: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    paye_bh: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    umb_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    umb_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    umb_sat: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    umb_sun: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    umb_bh: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "date_to IS NULL OR date_to >= date_from",
            name="client_rate_window_dates_check",
        ),
        Index("client_rate_window_scope_idx", "client_id", "role", "band", "date_from"),
    )

    @property
    def charge(self) -> RateSet:
        """Rates charged to the client."""
        return RateSet(
            day=self.charge_day,
            night=self.charge_night,
            saturday=self.charge_sat,
            sunday=self.charge_sun,
            bank_holiday=self.charge_bh,
        )

    @property
    def paye(self) -> RateSet:
        """Pay rates for directly employed candidates."""
        return RateSet(
            day=self.paye_day,
            night=self.paye_night,
            saturday=self.paye_sat,
            sunday=self.paye_sun,
            bank_holiday=self.paye_bh,
        )

    @property
    def umbrella(self) -> RateSet:
        """Pay rates for candidates paid through an umbrella company."""
        return RateSet(
            day=self.umb_day,
            night=self.umb_night,
            saturday=self.umb_sat,
            sunday=self.umb_sun,
            bank_holiday=self.umb_bh,
        )

    def pay_for(self, channel: PayChannel) -> RateSet:
        """Pay rate set for a pay channel."""
        if channel == PayChannel.PAYE:
            return self.paye
        return self.umbrella


class CandidateRateOverride(Base, DateWindowMixin, TimestampMixin):
    """Candidate-specific pay rates for a (client, role, band) scope.

    Overrides only ever carry pay rates; charge always comes from the
    client window. ``rate_type`` is the pay channel the override applies to.
    """

    __tablename__ = "candidate_rate_override"

    override_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    candidate_id: Mapped[UUID] = mapped_column(
        ForeignKey("candidate.candidate_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String, nullable=False)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    rate_type: Mapped[str] = mapped_column(String, nullable=False)

    pay_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_sat: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_sun: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_bh: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "rate_type IN ('PAYE', 'UMBRELLA')",
            name="candidate_rate_override_type_check",
        ),
        CheckConstraint(
            "date_to IS NULL OR date_to >= date_from",
            name="candidate_rate_override_dates_check",
        ),
        Index(
            "candidate_rate_override_scope_idx",
            "candidate_id",
            "client_id",
            "role",
            "band",
            "rate_type",
            "date_from",
        ),
    )

    @property
    def pay(self) -> RateSet:
        """Override pay rates (NULL buckets defer to the client window)."""
        return RateSet(
            day=self.pay_day,
            night=self.pay_night,
            saturday=self.pay_sat,
            sunday=self.pay_sun,
            bank_holiday=self.pay_bh,
        )
