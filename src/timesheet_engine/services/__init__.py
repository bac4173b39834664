"""Timesheet engine services."""

from timesheet_engine.services.invoicing import InvoiceLockManager, InvoiceResult
from timesheet_engine.services.outbox import Lease, OutboxService, RecomputeReason
from timesheet_engine.services.processor import DrainResult, RecomputeProcessor
from timesheet_engine.services.promotion_gate import BlockReason, PromotionGate, PromotionResult
from timesheet_engine.services.rate_windows import RateWindowService, plan_window_insertion
from timesheet_engine.services.snapshot_writer import (
    RecomputeOutcome,
    RecomputeResult,
    SnapshotWriter,
)
from timesheet_engine.services.state_machine import (
    InvalidTransitionError,
    InvoiceStateMachine,
    InvoiceStatus,
    ProcessingStatus,
    SnapshotStateMachine,
)
from timesheet_engine.services.timesheets import TimesheetService, make_timesheet_key

__all__ = [
    "BlockReason",
    "DrainResult",
    "InvalidTransitionError",
    "InvoiceLockManager",
    "InvoiceResult",
    "InvoiceStateMachine",
    "InvoiceStatus",
    "Lease",
    "OutboxService",
    "ProcessingStatus",
    "PromotionGate",
    "PromotionResult",
    "RateWindowService",
    "RecomputeOutcome",
    "RecomputeProcessor",
    "RecomputeReason",
    "RecomputeResult",
    "SnapshotStateMachine",
    "SnapshotWriter",
    "TimesheetService",
    "make_timesheet_key",
    "plan_window_insertion",
]
