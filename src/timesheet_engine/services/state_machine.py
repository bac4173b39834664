"""Snapshot processing-status and invoice status state machines."""

from __future__ import annotations

from enum import Enum


class ProcessingStatus(str, Enum):
    """Snapshot processing status values, in evaluation order."""

    UNASSIGNED = "UNASSIGNED"
    CLIENT_UNRESOLVED = "CLIENT_UNRESOLVED"
    RATE_MISSING = "RATE_MISSING"
    PAY_CHANNEL_MISSING = "PAY_CHANNEL_MISSING"
    READY_FOR_HR = "READY_FOR_HR"
    READY_FOR_INVOICE = "READY_FOR_INVOICE"


class InvoiceStatus(str, Enum):
    """Invoice status values."""

    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    ON_HOLD = "ON_HOLD"
    PAID = "PAID"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SnapshotStateMachine:
    """Processing status rules for financial snapshots.

    A recompute always writes a fresh snapshot whose status is one of the
    ``COMPUTED`` statuses; it never writes READY_FOR_INVOICE. The only
    in-place transition is the promotion gate's READY_FOR_HR ->
    READY_FOR_INVOICE.
    """

    COMPUTED = frozenset(
        {
            ProcessingStatus.UNASSIGNED,
            ProcessingStatus.CLIENT_UNRESOLVED,
            ProcessingStatus.RATE_MISSING,
            ProcessingStatus.PAY_CHANNEL_MISSING,
            ProcessingStatus.READY_FOR_HR,
        }
    )

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ProcessingStatus.READY_FOR_HR: [ProcessingStatus.READY_FOR_INVOICE],
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_be_written_by_recompute(cls, status: str) -> bool:
        return status in cls.COMPUTED

    @classmethod
    def is_invoiceable(cls, status: str) -> bool:
        return status == ProcessingStatus.READY_FOR_INVOICE


class InvoiceStateMachine:
    """State machine for invoice status transitions.

    Allowed transitions:
    - DRAFT → ISSUED
    - DRAFT → ON_HOLD
    - ON_HOLD → DRAFT
    - ON_HOLD → ISSUED
    - ISSUED → ON_HOLD
    - ISSUED → PAID
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        InvoiceStatus.DRAFT: [InvoiceStatus.ISSUED, InvoiceStatus.ON_HOLD],
        InvoiceStatus.ON_HOLD: [InvoiceStatus.DRAFT, InvoiceStatus.ISSUED],
        InvoiceStatus.ISSUED: [InvoiceStatus.ON_HOLD, InvoiceStatus.PAID],
        InvoiceStatus.PAID: [],
    }

    # Statuses against which a credit note may be raised
    CREDITABLE = frozenset({InvoiceStatus.ISSUED, InvoiceStatus.ON_HOLD, InvoiceStatus.PAID})

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_credit(cls, status: str) -> bool:
        return status in cls.CREDITABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])
