"""Pydantic schemas for engine write requests."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from timesheet_engine.calculators.types import PayChannel, RateSet
from timesheet_engine.errors import InvalidRequestError

RequestT = TypeVar("RequestT", bound=BaseModel)

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s\-@&/,.:']")


def normalize_text(value: str | None) -> str | None:
    """Lower-case, strip punctuation noise and collapse whitespace."""
    if value is None:
        return None
    value = _DISALLOWED.sub(" ", value.strip().lower())
    value = _WHITESPACE.sub(" ", value).strip()
    return value or None


def parse_request(model: type[RequestT], data: RequestT | dict[str, Any]) -> RequestT:
    """Validate a request, translating the first failure to InvalidRequestError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "request"
        raise InvalidRequestError(field, error["msg"]) from exc


# ============================================================================
# Rate schemas
# ============================================================================


class RateValues(BaseModel):
    """Hourly rates per bucket; omitted buckets are unset."""

    model_config = ConfigDict(frozen=True)

    day: Decimal | None = Field(default=None, ge=0)
    night: Decimal | None = Field(default=None, ge=0)
    saturday: Decimal | None = Field(default=None, ge=0)
    sunday: Decimal | None = Field(default=None, ge=0)
    bank_holiday: Decimal | None = Field(default=None, ge=0)

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())

    def to_rate_set(self) -> RateSet:
        return RateSet(**self.model_dump())


class _DatedScope(BaseModel):
    client_id: UUID
    role: str = Field(min_length=1)
    band: str | None = None
    date_from: date
    date_to: date | None = None

    @field_validator("role", "band")
    @classmethod
    def _normalize(cls, value: str | None) -> str | None:
        return normalize_text(value)

    @field_validator("date_to")
    @classmethod
    def _check_range(cls, value: date | None, info) -> date | None:
        date_from = info.data.get("date_from")
        if value is not None and date_from is not None and value < date_from:
            raise ValueError("date_to must be on or after date_from")
        return value


class ClientRateWindowRequest(_DatedScope):
    """Schema for inserting a client rate window."""

    charge: RateValues
    paye: RateValues = Field(default_factory=RateValues)
    umbrella: RateValues = Field(default_factory=RateValues)

    @field_validator("charge")
    @classmethod
    def _charge_required(cls, value: RateValues) -> RateValues:
        if value.is_empty:
            raise ValueError("at least one charge rate is required")
        return value


class CandidateRateOverrideRequest(_DatedScope):
    """Schema for inserting a candidate pay-rate override."""

    candidate_id: UUID
    rate_type: PayChannel
    pay: RateValues

    @field_validator("pay")
    @classmethod
    def _pay_required(cls, value: RateValues) -> RateValues:
        if value.is_empty:
            raise ValueError("at least one pay rate is required")
        return value


# ============================================================================
# Timesheet schemas
# ============================================================================


class BreakInterval(BaseModel):
    """An explicit unpaid break."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check(self) -> BreakInterval:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("break times must include a UTC offset")
        if self.end <= self.start:
            raise ValueError("break end must be after break start")
        return self


class TimesheetSubmission(BaseModel):
    """Schema for an authorised timesheet submission."""

    timesheet_key: str | None = None
    candidate_key: str = Field(min_length=1)
    hospital: str = Field(min_length=1)
    ward: str | None = None
    job_title: str = Field(min_length=1)
    band: str | None = None
    shift_label: str | None = None

    worked_start: datetime
    worked_end: datetime
    breaks: list[BreakInterval] = Field(default_factory=list)
    break_minutes: int | None = Field(default=None, ge=0)

    expense_amount: Decimal = Field(default=Decimal("0"), ge=0)
    expense_evidence_key: str | None = None
    mileage_amount: Decimal = Field(default=Decimal("0"), ge=0)
    mileage_evidence_key: str | None = None
    reference_number: str | None = None

    auth_name: str | None = None
    auth_job_title: str | None = None

    @field_validator("worked_start", "worked_end")
    @classmethod
    def _require_offset(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("worked times must include a UTC offset")
        return value

    @field_validator("worked_end")
    @classmethod
    def _check_end(cls, value: datetime, info) -> datetime:
        start = info.data.get("worked_start")
        if start is not None and value <= start:
            raise ValueError("worked_end must be after worked_start")
        return value

    @field_validator("breaks")
    @classmethod
    def _check_break_overlap(cls, value: list[BreakInterval]) -> list[BreakInterval]:
        ordered = sorted(value, key=lambda b: b.start)
        for previous, current in zip(ordered, ordered[1:]):
            if current.start < previous.end:
                raise ValueError("break intervals must not overlap")
        return value

    @model_validator(mode="after")
    def _check_breaks(self) -> TimesheetSubmission:
        if self.breaks and self.break_minutes is not None:
            raise ValueError("give either explicit breaks or break_minutes, not both")
        return self
