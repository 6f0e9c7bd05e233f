"""Confidence aggregation and risk classification.

Confidence answers "is this the same person?" and is the weighted mean of
per-identifier similarity, renormalised over the identifiers present in
*both* records.  A missing SSN therefore removes the SSN weight from the
denominator instead of counting as a disagreement.

Risk answers "is there a dual-employment conflict?" and comes from the
temporal analysis.  Identity confidence never raises risk; it only drops it
to ``informational`` when the pair falls in the auto-reject band.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.matching.temporal import TemporalResult
from dualwatch.models import ALL_IDENTIFIERS, FieldScore

DECISION_STATUS = {
    "auto_confirm": "confirmed",
    "auto_reject": "rejected",
    "review": "pending",
}


@dataclass(frozen=True)
class AggregateResult:
    confidence: float
    risk_level: str
    decision: str  # auto_confirm | review | auto_reject
    factors: list[FieldScore]
    present_weight: float

    @property
    def initial_status(self) -> str:
        """Status given to a Match the first time it is stored."""
        return DECISION_STATUS[self.decision]


def weigh_factors(factors: list[FieldScore], config: MatchingConfiguration) -> list[FieldScore]:
    """Attach configured weights to *factors*.

    Built-in identifiers take their weight from *config*; factors from
    pluggable scorers keep the weight they were produced with.
    """
    weighted = []
    for factor in factors:
        if factor.identifier in ALL_IDENTIFIERS:
            factor = replace(factor, weight=config.weight_for(factor.identifier))
        weighted.append(factor)
    return weighted


def compute_confidence(factors: list[FieldScore]) -> tuple[float, float]:
    """Return ``(confidence, present_weight)`` for already-weighted factors."""
    present_weight = sum(f.weight for f in factors if f.weight > 0)
    if present_weight <= 0:
        return 0.0, 0.0
    total = sum(f.weight * f.similarity for f in factors if f.weight > 0)
    confidence = min(1.0, max(0.0, total / present_weight))
    return confidence, present_weight


def decide(confidence: float, config: MatchingConfiguration) -> str:
    if confidence >= config.auto_confirm_confidence:
        return "auto_confirm"
    if confidence <= config.auto_reject_confidence:
        return "auto_reject"
    return "review"


def passes_minimum(confidence: float, config: MatchingConfiguration) -> bool:
    """Whether a pair is strong enough to be stored as a Match at all."""
    return confidence >= config.minimum_confidence


def aggregate(
    factors: list[FieldScore],
    temporal: TemporalResult,
    config: MatchingConfiguration,
) -> AggregateResult:
    """Fuse per-identifier evidence and temporal overlap into one verdict."""
    weighted = weigh_factors(factors, config)
    confidence, present_weight = compute_confidence(weighted)
    decision = decide(confidence, config)

    risk_level = temporal.risk_level
    if decision == "auto_reject":
        risk_level = "informational"

    return AggregateResult(
        confidence=confidence,
        risk_level=risk_level,
        decision=decision,
        factors=weighted,
        present_weight=present_weight,
    )
