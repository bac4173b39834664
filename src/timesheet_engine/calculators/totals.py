"""Snapshot totals and deterministic input hashing."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from timesheet_engine.calculators.types import HourBuckets, RateSet, round_money


@dataclass(frozen=True)
class Totals:
    """Pay, charge and margin for one snapshot.

    Rounding happens once, at the total level; ``margin`` is derived from
    the rounded totals so ``margin == charge_total - pay_total`` exactly.
    """

    pay_total: Decimal
    charge_total: Decimal

    @property
    def margin(self) -> Decimal:
        return self.charge_total - self.pay_total


def extend(hours: HourBuckets, rates: RateSet) -> Decimal:
    """Unrounded sum of hours x rate over all buckets.

    Buckets without hours contribute nothing even when their rate is unset.
    """
    total = Decimal("0")
    for bucket, bucket_hours in hours.items():
        if bucket_hours == 0:
            continue
        rate = rates.get(bucket)
        if rate is None:
            raise ValueError(f"No rate for bucket '{bucket.value}' with {bucket_hours} hours")
        total += bucket_hours * rate
    return total


def compute_totals(hours: HourBuckets, pay: RateSet, charge: RateSet) -> Totals:
    """Compute rounded totals for resolved hours and rates."""
    return Totals(
        pay_total=round_money(extend(hours, pay)),
        charge_total=round_money(extend(hours, charge)),
    )


def compute_input_hash(data: dict[str, Any]) -> str:
    """Compute a deterministic hash of resolved snapshot inputs."""
    # Sort keys for deterministic JSON
    json_str = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(json_str.encode()).hexdigest()[:32]
