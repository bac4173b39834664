"""Global feature flags, read from the datastore per request."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.models import SystemSetting

REQUIRE_VALIDATION_PASS = "require_validation_pass"
REQUIRE_REFERENCE_NUMBER = "require_reference_number"


@dataclass(frozen=True)
class EngineFlags:
    """
    Business feature flags.

    Attributes:
        require_validation_pass: Promotion needs a passing external
            validation record for the timesheet version.
        require_reference_number: Promotion needs a non-empty reference
            number on the timesheet.
    """

    require_validation_pass: bool = False
    require_reference_number: bool = False


async def load_flags(session: AsyncSession) -> EngineFlags:
    """Read the current flag values; unset flags are off."""
    result = await session.execute(
        select(SystemSetting).where(
            SystemSetting.key.in_([REQUIRE_VALIDATION_PASS, REQUIRE_REFERENCE_NUMBER])
        )
    )
    values = {row.key: row.enabled for row in result.scalars().all()}
    return EngineFlags(
        require_validation_pass=values.get(REQUIRE_VALIDATION_PASS, False),
        require_reference_number=values.get(REQUIRE_REFERENCE_NUMBER, False),
    )
