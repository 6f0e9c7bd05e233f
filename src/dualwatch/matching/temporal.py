"""Employment-interval overlap and grace-period risk classification."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, timedelta

from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.models import EmployeeProfile

_ONE_DAY = timedelta(days=1)

# Upper bounds (inclusive) of adjusted overlap days per risk level.
LOW_RISK_MAX_DAYS = 30
MEDIUM_RISK_MAX_DAYS = 90


@dataclass(frozen=True)
class EmploymentInterval:
    start: date
    end: date | None = None  # None = ongoing

    def effective_end(self, as_of: date) -> date:
        return self.end if self.end is not None else as_of


@dataclass(frozen=True)
class TemporalResult:
    overlap_days: int
    adjusted_days: int
    grace_period_days: int
    within_grace_period: bool
    risk_level: str

    @property
    def temporal_overlap(self) -> bool:
        return self.overlap_days > 0


def overlap_days(a: EmploymentInterval, b: EmploymentInterval, *, as_of: date) -> int:
    """Whole days both intervals share, rounded up; 0 when disjoint."""
    overlap_start = max(a.start, b.start)
    overlap_end = min(a.effective_end(as_of), b.effective_end(as_of))
    return max(0, math.ceil((overlap_end - overlap_start) / _ONE_DAY))


def grace_period_for(type_a: str, type_b: str, config: MatchingConfiguration) -> int:
    """Grace days of the more permissive of the two employee types."""
    return max(config.grace_days_for(type_a), config.grace_days_for(type_b))


def classify_overlap(adjusted_days: int, *, both_full_time: bool) -> str:
    if adjusted_days <= 0:
        return "informational"
    if adjusted_days <= LOW_RISK_MAX_DAYS:
        return "low"
    if adjusted_days <= MEDIUM_RISK_MAX_DAYS:
        return "medium"
    # Two full-time roles over a long stretch almost certainly share core
    # business hours; shift data is not available to confirm it.
    return "critical" if both_full_time else "high"


def analyze_overlap(
    a: EmployeeProfile,
    b: EmployeeProfile,
    config: MatchingConfiguration,
    *,
    as_of: date | None = None,
) -> TemporalResult:
    """Overlap, grace-period adjustment and temporal risk for two employees."""
    as_of = as_of or date.today()
    raw = overlap_days(
        EmploymentInterval(a.start_date, a.end_date),
        EmploymentInterval(b.start_date, b.end_date),
        as_of=as_of,
    )
    grace = grace_period_for(a.employee_type, b.employee_type, config)
    adjusted = max(0, raw - grace)
    both_full_time = a.employee_type == "full_time" and b.employee_type == "full_time"

    return TemporalResult(
        overlap_days=raw,
        adjusted_days=adjusted,
        grace_period_days=grace,
        within_grace_period=raw <= grace,
        risk_level=classify_overlap(adjusted, both_full_time=both_full_time),
    )
