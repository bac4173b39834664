"""ORM models."""

from timesheet_engine.models.audit import AuditEvent
from timesheet_engine.models.base import Base, TimestampMixin
from timesheet_engine.models.invoice import CreditNote, CreditNoteLine, Invoice, InvoiceLine
from timesheet_engine.models.outbox import RecomputeOutboxItem
from timesheet_engine.models.party import (
    BankHoliday,
    Candidate,
    Client,
    ClientSite,
    SystemSetting,
    UmbrellaCompany,
)
from timesheet_engine.models.rates import CandidateRateOverride, ClientRateWindow
from timesheet_engine.models.snapshot import FinancialSnapshot
from timesheet_engine.models.timesheet import Timesheet, TimesheetValidation

__all__ = [
    "AuditEvent",
    "BankHoliday",
    "Base",
    "Candidate",
    "CandidateRateOverride",
    "Client",
    "ClientRateWindow",
    "ClientSite",
    "CreditNote",
    "CreditNoteLine",
    "FinancialSnapshot",
    "Invoice",
    "InvoiceLine",
    "RecomputeOutboxItem",
    "SystemSetting",
    "TimestampMixin",
    "Timesheet",
    "TimesheetValidation",
    "UmbrellaCompany",
]
