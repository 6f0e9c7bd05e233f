"""Batch matching runs, pair caching, persistence and run accounting."""

from __future__ import annotations

from dualwatch.orchestration.cache import PairCache, pair_cache_key
from dualwatch.orchestration.metrics import (
    RunSummary,
    compute_match_quality_metrics,
    generate_run_report,
)
from dualwatch.orchestration.runner import RUN_MODES, MatchingEngine, PairOutcome
from dualwatch.orchestration.store import (
    InMemoryMatchStore,
    MatchStore,
    PostgresMatchStore,
    UpsertResult,
    fetch_employees,
    save_identifier_sets,
)

__all__ = [
    "RUN_MODES",
    "InMemoryMatchStore",
    "MatchStore",
    "MatchingEngine",
    "PairCache",
    "PairOutcome",
    "PostgresMatchStore",
    "RunSummary",
    "UpsertResult",
    "compute_match_quality_metrics",
    "fetch_employees",
    "generate_run_report",
    "pair_cache_key",
    "save_identifier_sets",
]
