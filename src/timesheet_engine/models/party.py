"""Candidate, client and policy records consumed by the engine."""

from __future__ import annotations

from datetime import date, time
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import Base, TimestampMixin


class UmbrellaCompany(Base, TimestampMixin):
    """Intermediary company paying candidates on the UMBRELLA channel."""

    __tablename__ = "umbrella_company"

    umbrella_company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    company_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_sort_code: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)

    def has_complete_details(self) -> bool:
        """Company and bank details are all present."""
        return all(
            _filled(v)
            for v in (
                self.name,
                self.company_number,
                self.bank_account_name,
                self.bank_sort_code,
                self.bank_account_number,
            )
        )


class Candidate(Base, TimestampMixin):
    """Worker record, matched to timesheets by ``candidate_key``."""

    __tablename__ = "candidate"

    candidate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    candidate_key: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    pay_method: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_sort_code: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    umbrella_company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("umbrella_company.umbrella_company_id"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "pay_method IS NULL OR pay_method IN ('PAYE', 'UMBRELLA')",
            name="candidate_pay_method_check",
        ),
    )

    @property
    def full_name(self) -> str:
        """Get full name."""
        return f"{self.first_name} {self.last_name}"

    def has_complete_pay_channel(self, umbrella: UmbrellaCompany | None = None) -> bool:
        """Bank or company details for the candidate's pay channel are complete.

        ``umbrella`` is the candidate's umbrella company, loaded by the caller.
        """
        if self.pay_method == "PAYE":
            return all(
                _filled(v)
                for v in (
                    self.bank_account_name,
                    self.bank_sort_code,
                    self.bank_account_number,
                )
            )
        if self.pay_method == "UMBRELLA":
            return (
                umbrella is not None
                and umbrella.umbrella_company_id == self.umbrella_company_id
                and umbrella.has_complete_details()
            )
        return False


class Client(Base, TimestampMixin):
    """Billed client together with its pay-time policy."""

    __tablename__ = "client"

    client_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="Europe/London")
    day_start: Mapped[time] = mapped_column(Time, nullable=False, default=time(6, 0))
    day_end: Mapped[time] = mapped_column(Time, nullable=False, default=time(20, 0))
    bank_holiday_calendar: Mapped[str] = mapped_column(
        String, nullable=False, default="england-and-wales"
    )

    __table_args__ = (
        CheckConstraint("day_end > day_start", name="client_day_window_check"),
    )

    # Relationships
    sites: Mapped[list[ClientSite]] = relationship(back_populates="client")


class ClientSite(Base, TimestampMixin):
    """Maps a normalised hospital/ward from shift context to a client.

    A row with ``ward_norm`` NULL covers every ward of the hospital.
    """

    __tablename__ = "client_site"

    client_site_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    hospital_norm: Mapped[str] = mapped_column(String, nullable=False)
    ward_norm: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("hospital_norm", "ward_norm", name="client_site_unique"),
    )

    # Relationships
    client: Mapped[Client] = relationship(back_populates="sites")


class BankHoliday(Base):
    """A bank-holiday date in a named calendar."""

    __tablename__ = "bank_holiday"

    bank_holiday_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    calendar: Mapped[str] = mapped_column(String, nullable=False)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("calendar", "holiday_date", name="bank_holiday_unique"),
    )


class SystemSetting(Base, TimestampMixin):
    """Global feature flag, read per request."""

    __tablename__ = "system_setting"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


def _filled(value: str | None) -> bool:
    return value is not None and value.strip() != ""
