"""Pay and charge rate resolution with override/default lookup."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.types import PayChannel, ResolvedRates
from timesheet_engine.models import Candidate, CandidateRateOverride, ClientRateWindow


class RateNotFoundError(Exception):
    """Raised when no active client rate window covers the shift."""

    def __init__(
        self,
        client_id: UUID,
        role: str,
        band: str | None,
        as_of_date: date,
    ):
        self.client_id = client_id
        self.role = role
        self.band = band
        self.as_of_date = as_of_date
        super().__init__(
            f"No active rate window for client {client_id} role '{role}' "
            f"band {band!r} on {as_of_date}"
        )


def pay_channel_of(candidate: Candidate) -> PayChannel | None:
    """Pay channel declared on the candidate, if any."""
    if candidate.pay_method is None:
        return None
    return PayChannel(candidate.pay_method)


class RateResolver:
    """Resolves pay and charge rates for a shift.

    Resolution order:
    1. Charge rates always come from the active ClientRateWindow for
       (client, role, band), falling back to the band-NULL window.
    2. Pay rates come from an active CandidateRateOverride for the
       candidate's pay channel (exact band, then band-NULL). Buckets the
       override leaves NULL fall back to the window's channel rates.
    3. Without an override, pay rates are the window's channel rate set.

    No window means no resolution: ``RateNotFoundError`` is raised rather
    than defaulting anything to zero.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(
        self,
        candidate: Candidate,
        client_id: UUID,
        role: str,
        band: str | None,
        as_of_date: date,
    ) -> ResolvedRates:
        """Resolve rates for a candidate working a role at a client on a date.

        Raises:
            RateNotFoundError: If no active client window covers the date
        """
        channel = pay_channel_of(candidate)

        window = await self.find_window(client_id, role, band, as_of_date)
        if window is None:
            raise RateNotFoundError(client_id, role, band, as_of_date)

        if channel is None:
            return ResolvedRates(
                charge=window.charge,
                pay=None,
                pay_channel=None,
                window_id=window.window_id,
            )

        override = await self.find_override(
            candidate.candidate_id, client_id, role, band, channel, as_of_date
        )
        window_pay = window.pay_for(channel)
        if override is None:
            return ResolvedRates(
                charge=window.charge,
                pay=window_pay,
                pay_channel=channel,
                window_id=window.window_id,
            )

        return ResolvedRates(
            charge=window.charge,
            pay=override.pay.merged_over(window_pay),
            pay_channel=channel,
            window_id=window.window_id,
            override_id=override.override_id,
        )

    async def find_window(
        self,
        client_id: UUID,
        role: str,
        band: str | None,
        as_of_date: date,
    ) -> ClientRateWindow | None:
        """Active window for the scope, exact band first, then band-NULL."""
        for band_match in _band_candidates(band):
            result = await self.session.execute(
                select(ClientRateWindow)
                .where(
                    ClientRateWindow.client_id == client_id,
                    ClientRateWindow.role == role,
                    _band_clause(ClientRateWindow.band, band_match),
                    ClientRateWindow.disabled.is_(False),
                    ClientRateWindow.date_from <= as_of_date,
                    (
                        ClientRateWindow.date_to.is_(None)
                        | (ClientRateWindow.date_to >= as_of_date)
                    ),
                )
                .order_by(ClientRateWindow.date_from.desc())
                .limit(1)
            )
            window = result.scalar_one_or_none()
            if window is not None:
                return window
        return None

    async def find_override(
        self,
        candidate_id: UUID,
        client_id: UUID,
        role: str,
        band: str | None,
        channel: PayChannel,
        as_of_date: date,
    ) -> CandidateRateOverride | None:
        """Active override for the candidate's channel, exact band first."""
        for band_match in _band_candidates(band):
            result = await self.session.execute(
                select(CandidateRateOverride)
                .where(
                    CandidateRateOverride.candidate_id == candidate_id,
                    CandidateRateOverride.client_id == client_id,
                    CandidateRateOverride.role == role,
                    _band_clause(CandidateRateOverride.band, band_match),
                    CandidateRateOverride.rate_type == channel.value,
                    CandidateRateOverride.disabled.is_(False),
                    CandidateRateOverride.date_from <= as_of_date,
                    (
                        CandidateRateOverride.date_to.is_(None)
                        | (CandidateRateOverride.date_to >= as_of_date)
                    ),
                )
                .order_by(CandidateRateOverride.date_from.desc())
                .limit(1)
            )
            override = result.scalar_one_or_none()
            if override is not None:
                return override
        return None


def _band_candidates(band: str | None) -> list[str | None]:
    """Bands to try in order: the exact band, then the role-wide default."""
    if band is None:
        return [None]
    return [band, None]


def _band_clause(column, band: str | None):
    if band is None:
        return column.is_(None)
    return column == band
