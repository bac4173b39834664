"""Recompute outbox: a table-backed leased work queue."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from timesheet_engine.models.base import Base, TimestampMixin


class RecomputeOutboxItem(Base, TimestampMixin):
    """Pending recompute request, one per (timesheet, reason).

    ``generation`` is bumped whenever the same request is enqueued again,
    so a worker holding an older lease cannot delete the newer request.
    """

    __tablename__ = "recompute_outbox"

    outbox_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lease_token: Mapped[UUID | None] = mapped_column(nullable=True)
    leased_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    parked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("timesheet_id", "reason", name="recompute_outbox_dedupe"),
        CheckConstraint(
            "reason IN ('NEW_AUTHORISED', 'VERSION_ROTATED', 'REVOKED', 'RATE_CHANGED', "
            "'POLICY_CHANGED', 'CONTEXT_CHANGED', 'MANUAL')",
            name="recompute_outbox_reason_check",
        ),
        Index("recompute_outbox_ready_idx", "parked_at", "available_at", "enqueued_at"),
    )

    @property
    def is_parked(self) -> bool:
        return self.parked_at is not None
