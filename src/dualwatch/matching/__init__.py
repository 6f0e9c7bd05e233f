"""Candidate generation, similarity scoring, temporal analysis and aggregation."""

from __future__ import annotations

from dualwatch.matching.aggregator import (
    AggregateResult,
    aggregate,
    compute_confidence,
    decide,
    passes_minimum,
)
from dualwatch.matching.anomaly import AnomalyFilter
from dualwatch.matching.configuration import (
    MatchingConfiguration,
    fetch_configuration,
    load_company_configuration,
    load_configuration,
)
from dualwatch.matching.index import CandidateIndex, CandidateResult
from dualwatch.matching.nicknames import NicknameTable
from dualwatch.matching.scorers import (
    ExactHashScorer,
    NameScorer,
    SimilarityScorer,
    build_scorers,
    compare_names,
    jaro_winkler_similarity,
    levenshtein_similarity,
    score_identifiers,
)
from dualwatch.matching.temporal import (
    EmploymentInterval,
    TemporalResult,
    analyze_overlap,
    overlap_days,
)

__all__ = [
    "AggregateResult",
    "AnomalyFilter",
    "CandidateIndex",
    "CandidateResult",
    "EmploymentInterval",
    "ExactHashScorer",
    "MatchingConfiguration",
    "NameScorer",
    "NicknameTable",
    "SimilarityScorer",
    "TemporalResult",
    "aggregate",
    "analyze_overlap",
    "build_scorers",
    "compare_names",
    "compute_confidence",
    "decide",
    "fetch_configuration",
    "jaro_winkler_similarity",
    "levenshtein_similarity",
    "load_company_configuration",
    "load_configuration",
    "overlap_days",
    "passes_minimum",
    "score_identifiers",
]
