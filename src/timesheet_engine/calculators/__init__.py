"""Pure calculation pipeline: bucket classification, rate types and totals.

``RateResolver`` lives in ``timesheet_engine.calculators.rate_resolver``; it
needs the ORM models, which themselves depend on the types exported here.
"""

from timesheet_engine.calculators.time_buckets import classify
from timesheet_engine.calculators.totals import Totals, compute_totals
from timesheet_engine.calculators.types import (
    Bucket,
    HourBuckets,
    PayChannel,
    PayPolicy,
    RateSet,
    ResolvedRates,
    ShiftBreaks,
    TimeRange,
)

__all__ = [
    "Bucket",
    "HourBuckets",
    "PayChannel",
    "PayPolicy",
    "RateSet",
    "ResolvedRates",
    "ShiftBreaks",
    "TimeRange",
    "Totals",
    "classify",
    "compute_totals",
]
