"""False-positive filter applied after aggregation and before persistence.

A suppressed match is never stored, so every suppression is logged with its
reason and counted in the run metrics.
"""

from __future__ import annotations

import structlog

from dualwatch.matching.aggregator import AggregateResult
from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.matching.index import CandidateIndex
from dualwatch.models import HASHED_IDENTIFIERS, HashedIdentifierSet

logger = structlog.get_logger(__name__)

SINGLE_SIGNAL = "single_signal"
GENERIC_IDENTIFIER = "generic_identifier"
NAME_ONLY_CONFLICT = "name_only_conflict"

SUPPRESSION_REASONS = (GENERIC_IDENTIFIER, SINGLE_SIGNAL, NAME_ONLY_CONFLICT)


class AnomalyFilter:
    """Flags statistically implausible matches.

    Rules, checked in order:
      - ``generic_identifier``: a matching digest is shared by more companies
        than ``generic_identifier_company_limit`` (a placeholder SSN, a shared
        HR mailbox).
      - ``single_signal``: high confidence carried by fewer than two
        identifier types with non-trivial similarity.
      - ``name_only_conflict``: near-identical names while every other
        present identifier clearly disagrees.
    """

    def __init__(self, config: MatchingConfiguration, index: CandidateIndex) -> None:
        self.config = config
        self.index = index

    def _generic_identifier(self, identifiers: HashedIdentifierSet, result: AggregateResult) -> str | None:
        for factor in result.factors:
            if factor.identifier not in HASHED_IDENTIFIERS or factor.similarity < 1.0:
                continue
            digest = identifiers.digest(factor.identifier)
            if digest is None:
                continue
            companies = self.index.company_count(factor.identifier, digest)
            if companies > self.config.generic_identifier_company_limit:
                return factor.identifier
        return None

    def _is_single_signal(self, result: AggregateResult) -> bool:
        if result.confidence < self.config.single_signal_confidence:
            return False
        signals = {
            f.identifier
            for f in result.factors
            if f.weight > 0
            and not f.low_confidence
            and f.similarity >= self.config.nontrivial_similarity
        }
        return len(signals) < 2

    def _is_name_only_conflict(self, result: AggregateResult) -> bool:
        name = next((f for f in result.factors if f.identifier == "name"), None)
        if name is None or name.similarity < self.config.name_conflict_similarity:
            return False
        others = [f for f in result.factors if f.identifier != "name" and f.weight > 0]
        return bool(others) and all(f.similarity <= self.config.conflict_ceiling for f in others)

    def evaluate(self, identifiers: HashedIdentifierSet, result: AggregateResult) -> str | None:
        """Return the suppression reason for a would-be match, or None to keep it.

        *identifiers* is either side of the pair; only digests that matched
        are inspected, and those are equal on both sides.
        """
        if self._generic_identifier(identifiers, result) is not None:
            return GENERIC_IDENTIFIER
        if self._is_single_signal(result):
            return SINGLE_SIGNAL
        if self._is_name_only_conflict(result):
            return NAME_ONLY_CONFLICT
        return None

    def check(
        self,
        a: HashedIdentifierSet,
        b: HashedIdentifierSet,
        result: AggregateResult,
    ) -> str | None:
        """:meth:`evaluate` plus a structured log line for suppressed pairs."""
        reason = self.evaluate(a, result)
        if reason is not None:
            logger.warning(
                "match_suppressed",
                reason=reason,
                employee1=f"{a.company_id}/{a.employee_id}",
                employee2=f"{b.company_id}/{b.employee_id}",
                confidence=round(result.confidence, 4),
                identifiers=[f.identifier for f in result.factors if f.similarity >= 1.0],
            )
        return reason
