"""Pytest fixtures for timesheet engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.config import OutboxConfig
from timesheet_engine.database import create_schema, get_engine, make_session_factory
from timesheet_engine.models import (
    BankHoliday,
    Candidate,
    Client,
    ClientRateWindow,
    ClientSite,
    SystemSetting,
    UmbrellaCompany,
)
from timesheet_engine.services.outbox import OutboxService
from timesheet_engine.services.timesheets import TimesheetService

from factories import rate_columns, submission


# A file database per test: processor tests open several sessions and
# each test needs its own clean schema.
@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create test database engine."""
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def outbox_config() -> OutboxConfig:
    return OutboxConfig(
        lease_seconds=60, max_attempts=3, backoff_base_seconds=10, backoff_max_seconds=100
    )


@dataclass
class World:
    """Reference data shared by engine tests."""

    client: Client
    other_client: Client
    window: ClientRateWindow
    paye_candidate: Candidate
    umbrella_candidate: Candidate
    bare_candidate: Candidate
    umbrella: UmbrellaCompany


@pytest_asyncio.fixture
async def world(session) -> World:
    """Seed clients, sites, candidates, a rate window and bank holidays."""
    client = Client(
        name="Royal Infirmary Trust",
        timezone="Europe/London",
        day_start=time(6, 0),
        day_end=time(20, 0),
        bank_holiday_calendar="england",
    )
    other_client = Client(
        name="Northern Care Group",
        timezone="Europe/London",
        day_start=time(7, 0),
        day_end=time(19, 0),
        bank_holiday_calendar="england",
    )
    session.add_all([client, other_client])
    await session.flush()

    session.add_all(
        [
            ClientSite(client_id=client.client_id, hospital_norm="royal infirmary", ward_norm=None),
            # Ward 9 of the same hospital is run by another trust
            ClientSite(
                client_id=other_client.client_id,
                hospital_norm="royal infirmary",
                ward_norm="ward 9",
            ),
            ClientSite(client_id=other_client.client_id, hospital_norm="northern general", ward_norm=None),
            BankHoliday(calendar="england", holiday_date=date(2026, 8, 31), name="Summer bank holiday"),
            BankHoliday(calendar="england", holiday_date=date(2026, 12, 25), name="Christmas Day"),
        ]
    )

    umbrella = UmbrellaCompany(
        name="Brolly Ltd",
        company_number="01234567",
        bank_account_name="Brolly Ltd",
        bank_sort_code="10-20-30",
        bank_account_number="12345678",
    )
    session.add(umbrella)
    await session.flush()

    paye_candidate = Candidate(
        candidate_key="cand-001",
        first_name="Ada",
        last_name="Okafor",
        pay_method="PAYE",
        bank_account_name="A Okafor",
        bank_sort_code="11-22-33",
        bank_account_number="87654321",
    )
    umbrella_candidate = Candidate(
        candidate_key="cand-002",
        first_name="Sam",
        last_name="Reyes",
        pay_method="UMBRELLA",
        umbrella_company_id=umbrella.umbrella_company_id,
    )
    bare_candidate = Candidate(
        candidate_key="cand-003",
        first_name="Kit",
        last_name="Moran",
        pay_method=None,
    )
    session.add_all([paye_candidate, umbrella_candidate, bare_candidate])

    window = ClientRateWindow(
        client_id=client.client_id,
        role="staff nurse",
        band=None,
        date_from=date(2026, 1, 1),
        date_to=None,
        **rate_columns("charge", day="30", night="35", sat="40", sun="45", bh="60"),
        **rate_columns("paye", day="20", night="24", sat="26", sun="28", bh="40"),
        **rate_columns("umb", day="22", night="26", sat="28", sun="30", bh="44"),
    )
    session.add(window)
    await session.flush()

    return World(
        client=client,
        other_client=other_client,
        window=window,
        paye_candidate=paye_candidate,
        umbrella_candidate=umbrella_candidate,
        bare_candidate=bare_candidate,
        umbrella=umbrella,
    )


@pytest.fixture
def submit(session, outbox_config):
    """Submit a timesheet through the intake service."""

    async def _submit(replace_current: bool = False, **overrides: Any):
        service = TimesheetService(session, OutboxService(session, outbox_config))
        return await service.submit(submission(**overrides), replace_current=replace_current)

    return _submit


@pytest.fixture
def set_flag(session):
    async def _set(key: str, enabled: bool = True) -> None:
        setting = await session.get(SystemSetting, key)
        if setting is None:
            session.add(SystemSetting(key=key, enabled=enabled))
        else:
            setting.enabled = enabled
        await session.flush()

    return _set
