"""Shared read queries used by several engine services."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.models import (
    Candidate,
    Client,
    ClientSite,
    FinancialSnapshot,
    Timesheet,
    UmbrellaCompany,
)


async def get_current_timesheet(session: AsyncSession, timesheet_id: UUID) -> Timesheet | None:
    """Current, non-revoked version of a timesheet."""
    result = await session.execute(
        select(Timesheet).where(
            Timesheet.timesheet_id == timesheet_id,
            Timesheet.is_current.is_(True),
            Timesheet.revoked_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def get_timesheet_version(
    session: AsyncSession, timesheet_id: UUID, version: int
) -> Timesheet | None:
    result = await session.execute(
        select(Timesheet).where(
            Timesheet.timesheet_id == timesheet_id,
            Timesheet.version == version,
        )
    )
    return result.scalar_one_or_none()


async def get_current_snapshot(
    session: AsyncSession, timesheet_id: UUID
) -> FinancialSnapshot | None:
    result = await session.execute(
        select(FinancialSnapshot)
        .where(
            FinancialSnapshot.timesheet_id == timesheet_id,
            FinancialSnapshot.is_current.is_(True),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def match_candidate(session: AsyncSession, occupant_key_norm: str) -> Candidate | None:
    """Candidate whose key matches the timesheet's occupant key."""
    if not occupant_key_norm:
        return None
    result = await session.execute(
        select(Candidate).where(Candidate.candidate_key == occupant_key_norm)
    )
    return result.scalar_one_or_none()


async def resolve_client(
    session: AsyncSession, hospital_norm: str, ward_norm: str | None
) -> Client | None:
    """Client for a shift's site: ward-specific mapping first, then hospital-wide."""
    if ward_norm:
        result = await session.execute(
            select(ClientSite).where(
                ClientSite.hospital_norm == hospital_norm,
                ClientSite.ward_norm == ward_norm,
            )
        )
        site = result.scalar_one_or_none()
        if site is not None:
            return await session.get(Client, site.client_id)

    result = await session.execute(
        select(ClientSite).where(
            ClientSite.hospital_norm == hospital_norm,
            ClientSite.ward_norm.is_(None),
        )
    )
    site = result.scalar_one_or_none()
    if site is None:
        return None
    return await session.get(Client, site.client_id)


async def pay_channel_complete(session: AsyncSession, candidate: Candidate) -> bool:
    """Whether the candidate's pay channel has complete bank/company details."""
    umbrella = None
    if candidate.umbrella_company_id is not None:
        umbrella = await session.get(UmbrellaCompany, candidate.umbrella_company_id)
    return candidate.has_complete_pay_channel(umbrella)
