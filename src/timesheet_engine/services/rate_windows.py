"""Rate window insertion with automatic truncation of the incumbent.

For any scope, enabled windows never overlap. A new window starting on
date N is inserted as follows:

1. A window already starting on N is a duplicate and is rejected.
2. If a window covers N and a later window exists, inserting would cut
   into a closed stretch of the timeline; this back-cut is rejected.
3. Otherwise the window covering N (if any) is truncated to end on N - 1,
   and the new window's end is clamped to the day before the next
   window's start (if any).

Candidate overrides follow the same rules within their own scope, and must
also lie inside an active client window for the same client, role and band.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.rate_resolver import RateResolver
from timesheet_engine.errors import (
    BackCutError,
    DuplicateWindowStartError,
    NotFoundError,
    OverrideOutsideWindowError,
)
from timesheet_engine.models import (
    Candidate,
    CandidateRateOverride,
    Client,
    ClientRateWindow,
    FinancialSnapshot,
)
from timesheet_engine.schemas import (
    CandidateRateOverrideRequest,
    ClientRateWindowRequest,
    parse_request,
)
from timesheet_engine.services.audit import record_audit
from timesheet_engine.services.outbox import OutboxService, RecomputeReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowSpan:
    """Dates of an existing enabled window within one scope."""

    window_id: UUID
    date_from: date
    date_to: date | None

    def covers(self, day: date) -> bool:
        return self.date_from <= day and (self.date_to is None or day <= self.date_to)


@dataclass(frozen=True)
class InsertionPlan:
    """What inserting a window will do to its scope's timeline."""

    date_from: date
    date_to: date | None
    truncate_id: UUID | None = None
    truncate_to: date | None = None


def plan_window_insertion(
    existing: Sequence[WindowSpan],
    date_from: date,
    date_to: date | None,
) -> InsertionPlan:
    """Plan inserting ``[date_from, date_to]`` among non-overlapping spans.

    Raises:
        DuplicateWindowStartError: If a span already starts on ``date_from``
        BackCutError: If a span covers ``date_from`` and a later span exists
    """
    incumbent = next((span for span in existing if span.covers(date_from)), None)
    later = sorted(
        (span for span in existing if span.date_from > date_from),
        key=lambda span: span.date_from,
    )
    successor = later[0] if later else None

    if incumbent is not None and incumbent.date_from == date_from:
        raise DuplicateWindowStartError(
            f"A window already starts on {date_from}", blocking_id=incumbent.window_id
        )
    if incumbent is not None and successor is not None:
        raise BackCutError(
            f"A window starting {date_from} would cut into window "
            f"{incumbent.window_id} which already has a successor starting "
            f"{successor.date_from}",
            blocking_id=successor.window_id,
        )

    end = date_to
    if successor is not None:
        limit = successor.date_from - timedelta(days=1)
        if end is None or end > limit:
            end = limit

    if incumbent is None:
        return InsertionPlan(date_from=date_from, date_to=end)
    return InsertionPlan(
        date_from=date_from,
        date_to=end,
        truncate_id=incumbent.window_id,
        truncate_to=date_from - timedelta(days=1),
    )


class RateWindowService:
    """Admin writes to client rate windows and candidate overrides.

    Every successful write enqueues a RATE_CHANGED recompute for current,
    unlocked snapshots the change can affect.
    """

    def __init__(self, session: AsyncSession, outbox: OutboxService | None = None):
        self.session = session
        self.outbox = outbox or OutboxService(session)

    async def insert_client_window(
        self,
        request: ClientRateWindowRequest | dict[str, Any],
        actor: str | None = None,
    ) -> ClientRateWindow:
        """Insert a client rate window, truncating the incumbent.

        Raises:
            InvalidRequestError: If the request fails validation
            NotFoundError: If the client does not exist
            DuplicateWindowStartError: If a window already starts on date_from
            BackCutError: If the insertion would cut into a closed stretch
        """
        request = parse_request(ClientRateWindowRequest, request)
        if await self.session.get(Client, request.client_id) is None:
            raise NotFoundError("Client", request.client_id)

        result = await self.session.execute(
            select(ClientRateWindow)
            .where(
                ClientRateWindow.client_id == request.client_id,
                ClientRateWindow.role == request.role,
                _band_equals(ClientRateWindow.band, request.band),
                ClientRateWindow.disabled.is_(False),
            )
            .with_for_update()
        )
        spans = [_span(w, w.window_id) for w in result.scalars().all()]
        plan = plan_window_insertion(spans, request.date_from, request.date_to)

        if plan.truncate_id is not None:
            await self._truncate(ClientRateWindow, ClientRateWindow.window_id, plan, actor)

        window = ClientRateWindow(
            client_id=request.client_id,
            role=request.role,
            band=request.band,
            date_from=plan.date_from,
            date_to=plan.date_to,
            **_columns("charge", request.charge.to_rate_set()),
            **_columns("paye", request.paye.to_rate_set()),
            **_columns("umb", request.umbrella.to_rate_set()),
        )
        self.session.add(window)
        await self.session.flush()

        await record_audit(
            self.session,
            "client_rate_window",
            window.window_id,
            "insert",
            actor=actor,
            after={"date_from": plan.date_from, "date_to": plan.date_to},
        )
        await self._enqueue_affected(
            request.client_id, request.role, request.band, plan.date_from, plan.date_to
        )
        logger.info(
            "Inserted rate window %s for client %s role '%s' band %r from %s to %s",
            window.window_id,
            request.client_id,
            request.role,
            request.band,
            plan.date_from,
            plan.date_to,
        )
        return window

    async def insert_candidate_override(
        self,
        request: CandidateRateOverrideRequest | dict[str, Any],
        actor: str | None = None,
    ) -> CandidateRateOverride:
        """Insert a candidate override, truncating the incumbent override.

        The override must start inside an active client window for the same
        client, role and band. An open end is clamped to that window's end;
        an explicit end beyond it is rejected.

        Raises:
            InvalidRequestError: If the request fails validation
            NotFoundError: If the candidate or client does not exist
            OverrideOutsideWindowError: If no client window contains the override
            DuplicateWindowStartError: If an override already starts on date_from
            BackCutError: If the insertion would cut into a closed stretch
        """
        request = parse_request(CandidateRateOverrideRequest, request)
        if await self.session.get(Candidate, request.candidate_id) is None:
            raise NotFoundError("Candidate", request.candidate_id)
        if await self.session.get(Client, request.client_id) is None:
            raise NotFoundError("Client", request.client_id)

        window = await RateResolver(self.session).find_window(
            request.client_id, request.role, request.band, request.date_from
        )
        if window is None:
            raise OverrideOutsideWindowError(
                f"No active client window for role '{request.role}' band "
                f"{request.band!r} covers {request.date_from}"
            )
        date_to = request.date_to
        if window.date_to is not None:
            if date_to is None:
                date_to = window.date_to
            elif date_to > window.date_to:
                raise OverrideOutsideWindowError(
                    f"Override end {date_to} is past the client window end {window.date_to}",
                    blocking_id=window.window_id,
                )

        result = await self.session.execute(
            select(CandidateRateOverride)
            .where(
                CandidateRateOverride.candidate_id == request.candidate_id,
                CandidateRateOverride.client_id == request.client_id,
                CandidateRateOverride.role == request.role,
                _band_equals(CandidateRateOverride.band, request.band),
                CandidateRateOverride.rate_type == request.rate_type.value,
                CandidateRateOverride.disabled.is_(False),
            )
            .with_for_update()
        )
        spans = [_span(o, o.override_id) for o in result.scalars().all()]
        plan = plan_window_insertion(spans, request.date_from, date_to)

        if plan.truncate_id is not None:
            await self._truncate(
                CandidateRateOverride, CandidateRateOverride.override_id, plan, actor
            )

        override = CandidateRateOverride(
            candidate_id=request.candidate_id,
            client_id=request.client_id,
            role=request.role,
            band=request.band,
            rate_type=request.rate_type.value,
            date_from=plan.date_from,
            date_to=plan.date_to,
            **_columns("pay", request.pay.to_rate_set()),
        )
        self.session.add(override)
        await self.session.flush()

        await record_audit(
            self.session,
            "candidate_rate_override",
            override.override_id,
            "insert",
            actor=actor,
            after={"date_from": plan.date_from, "date_to": plan.date_to},
        )
        await self._enqueue_affected(
            request.client_id,
            request.role,
            request.band,
            plan.date_from,
            plan.date_to,
            candidate_id=request.candidate_id,
        )
        logger.info(
            "Inserted %s override %s for candidate %s from %s to %s",
            request.rate_type.value,
            override.override_id,
            request.candidate_id,
            plan.date_from,
            plan.date_to,
        )
        return override

    async def disable_window(self, window_id: UUID, actor: str | None = None) -> ClientRateWindow:
        """Soft-disable a client window and recompute what it priced."""
        window = await self.session.get(ClientRateWindow, window_id)
        if window is None:
            raise NotFoundError("ClientRateWindow", window_id)
        if not window.disabled:
            window.disabled = True
            await self.session.flush()
            await record_audit(
                self.session, "client_rate_window", window_id, "disable", actor=actor
            )
            await self._enqueue_affected(
                window.client_id, window.role, window.band, window.date_from, window.date_to
            )
        return window

    async def disable_override(
        self, override_id: UUID, actor: str | None = None
    ) -> CandidateRateOverride:
        """Soft-disable a candidate override and recompute what it priced."""
        override = await self.session.get(CandidateRateOverride, override_id)
        if override is None:
            raise NotFoundError("CandidateRateOverride", override_id)
        if not override.disabled:
            override.disabled = True
            await self.session.flush()
            await record_audit(
                self.session, "candidate_rate_override", override_id, "disable", actor=actor
            )
            await self._enqueue_affected(
                override.client_id,
                override.role,
                override.band,
                override.date_from,
                override.date_to,
                candidate_id=override.candidate_id,
            )
        return override

    async def _truncate(self, model, id_column, plan: InsertionPlan, actor: str | None) -> None:
        await self.session.execute(
            update(model).where(id_column == plan.truncate_id).values(date_to=plan.truncate_to)
        )
        await record_audit(
            self.session,
            model.__tablename__,
            plan.truncate_id,
            "truncate",
            actor=actor,
            after={"date_to": plan.truncate_to},
        )

    async def _enqueue_affected(
        self,
        client_id: UUID,
        role: str,
        band: str | None,
        date_from: date,
        date_to: date | None,
        candidate_id: UUID | None = None,
    ) -> int:
        """Enqueue RATE_CHANGED for current unlocked snapshots in range.

        A band-NULL change can affect every band of the role.
        """
        stmt = select(FinancialSnapshot.timesheet_id).where(
            FinancialSnapshot.client_id == client_id,
            FinancialSnapshot.role == role,
            FinancialSnapshot.is_current.is_(True),
            FinancialSnapshot.locked_by_invoice_id.is_(None),
            FinancialSnapshot.worked_date_local >= date_from,
        )
        if band is not None:
            stmt = stmt.where(FinancialSnapshot.band == band)
        if date_to is not None:
            stmt = stmt.where(FinancialSnapshot.worked_date_local <= date_to)
        if candidate_id is not None:
            stmt = stmt.where(FinancialSnapshot.candidate_id == candidate_id)

        result = await self.session.execute(stmt)
        timesheet_ids = list(result.scalars().all())
        if not timesheet_ids:
            return 0
        return await self.outbox.enqueue_many(timesheet_ids, RecomputeReason.RATE_CHANGED)


def _span(row: ClientRateWindow | CandidateRateOverride, row_id: UUID) -> WindowSpan:
    return WindowSpan(window_id=row_id, date_from=row.date_from, date_to=row.date_to)


def _band_equals(column, band: str | None):
    if band is None:
        return column.is_(None)
    return column == band


_COLUMN_SUFFIXES = {
    "day": "day",
    "night": "night",
    "saturday": "sat",
    "sunday": "sun",
    "bank_holiday": "bh",
}


def _columns(prefix: str, rates) -> dict[str, Any]:
    """Map a RateSet onto ``<prefix>_<suffix>`` model columns."""
    return {
        f"{prefix}_{suffix}": getattr(rates, name) for name, suffix in _COLUMN_SUFFIXES.items()
    }
