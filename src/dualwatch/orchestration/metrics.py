"""Run accounting and match-quality measurement.

:class:`RunSummary` is the operator-facing record of one matching run: every
discarded candidate, suppressed match, failed pair and skipped employee is
counted here, so nothing is dropped without a trace.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from dualwatch.models import EmployeeKey, canonical_pair

COUNTERS = (
    "employees_in_scope",
    "employees_processed",
    "employees_skipped",
    "candidates_generated",
    "candidates_dropped",
    "pairs_scored",
    "pairs_failed",
    "below_minimum",
    "matches_emitted",
    "matches_created",
    "matches_updated",
    "matches_downgraded",
    "matches_suppressed",
    "cache_hits",
    "cache_misses",
    "normalization_issues",
)


def _fmt(key: EmployeeKey) -> str:
    return f"{key[0]}/{key[1]}"


@dataclass
class RunSummary:
    job_id: str
    mode: str  # incremental | full
    company_id: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    cancelled: bool = False
    aborted: str | None = None
    counters: Counter = field(default_factory=Counter)
    suppressed: Counter = field(default_factory=Counter)
    skipped_employees: list[dict[str, Any]] = field(default_factory=list)
    failed_pairs: list[dict[str, Any]] = field(default_factory=list)
    dropped_candidates: list[dict[str, Any]] = field(default_factory=list)
    normalization_issues: list[dict[str, Any]] = field(default_factory=list)
    batch_latencies: list[float] = field(default_factory=list)
    notify_match_ids: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, name: str, amount: int = 1) -> None:
        if name not in COUNTERS:
            msg = f"Unknown counter: {name!r}"
            raise KeyError(msg)
        with self._lock:
            self.counters[name] += amount

    def __getitem__(self, name: str) -> int:
        return self.counters[name]

    def suppress(self, reason: str) -> None:
        with self._lock:
            self.counters["matches_suppressed"] += 1
            self.suppressed[reason] += 1

    def skip_employee(self, employee: EmployeeKey, error: str) -> None:
        with self._lock:
            self.counters["employees_skipped"] += 1
            self.skipped_employees.append({"employee": _fmt(employee), "error": error})

    def fail_pair(self, pair: tuple[EmployeeKey, EmployeeKey], error: str) -> None:
        with self._lock:
            self.counters["pairs_failed"] += 1
            self.failed_pairs.append(
                {"employee1": _fmt(pair[0]), "employee2": _fmt(pair[1]), "error": error}
            )

    def record_dropped(self, employee: EmployeeKey, dropped: int) -> None:
        with self._lock:
            self.counters["candidates_dropped"] += dropped
            self.dropped_candidates.append({"employee": _fmt(employee), "dropped": dropped})

    def record_issues(self, employee: EmployeeKey, issues: tuple[str, ...]) -> None:
        if not issues:
            return
        with self._lock:
            self.counters["normalization_issues"] += len(issues)
            self.normalization_issues.append({"employee": _fmt(employee), "issues": list(issues)})

    def record_batch(self, latency_seconds: float) -> None:
        with self._lock:
            self.batch_latencies.append(latency_seconds)

    def notify(self, match_id: str) -> None:
        with self._lock:
            self.notify_match_ids.append(match_id)

    @property
    def cache_hit_rate(self) -> float:
        total = self.counters["cache_hits"] + self.counters["cache_misses"]
        return self.counters["cache_hits"] / total if total else 0.0

    def finish(self) -> RunSummary:
        self.finished_at = datetime.now(UTC)
        return self

    def to_dict(self) -> dict[str, Any]:
        latencies = self.batch_latencies
        return {
            "job_id": self.job_id,
            "mode": self.mode,
            "company_id": self.company_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "cancelled": self.cancelled,
            "aborted": self.aborted,
            **{name: self.counters[name] for name in COUNTERS},
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "suppressed_by_reason": dict(self.suppressed),
            "batches": len(latencies),
            "batch_latency_max_s": round(max(latencies), 4) if latencies else 0.0,
            "batch_latency_avg_s": (
                round(sum(latencies) / len(latencies), 4) if latencies else 0.0
            ),
            "skipped_employees": self.skipped_employees,
            "failed_pairs": self.failed_pairs,
            "dropped_candidates": self.dropped_candidates,
            "normalization_issues": self.normalization_issues,
            "notify_match_ids": self.notify_match_ids,
        }


def generate_run_report(summary: RunSummary) -> str:
    """Format a run summary into a human-readable report."""
    data = summary.to_dict()
    lines = [
        f"Matching Run Report: job {summary.job_id} ({summary.mode})",
        "=" * 50,
        "",
        f"Scope:                  {summary.company_id or 'all companies'}",
        f"Employees in scope:     {data['employees_in_scope']}",
        f"Employees processed:    {data['employees_processed']}",
        f"Employees skipped:      {data['employees_skipped']}",
        "",
        f"Candidates generated:   {data['candidates_generated']}",
        f"Candidates dropped:     {data['candidates_dropped']}",
        f"Pairs scored:           {data['pairs_scored']}",
        f"Pairs failed:           {data['pairs_failed']}",
        f"Below minimum:          {data['below_minimum']}",
        "",
        f"Matches emitted:        {data['matches_emitted']}"
        f" ({data['matches_created']} new, {data['matches_updated']} updated)",
        f"Matches suppressed:     {data['matches_suppressed']}",
        f"Matches downgraded:     {data['matches_downgraded']}",
    ]
    for reason, count in sorted(summary.suppressed.items()):
        lines.append(f"  - {reason}: {count}")
    lines += [
        "",
        f"Cache hit rate:         {data['cache_hit_rate']:.2%}",
        f"Batches:                {data['batches']}"
        f" (avg {data['batch_latency_avg_s']:.3f}s, max {data['batch_latency_max_s']:.3f}s)",
    ]
    if summary.cancelled:
        lines.append("\nRun was CANCELLED before all batches completed")
    if summary.aborted:
        lines.append(f"\nRun ABORTED: {summary.aborted}")
    return "\n".join(lines)


def compute_match_quality_metrics(
    predicted_pairs: set[tuple[EmployeeKey, EmployeeKey]],
    ground_truth: list[dict],
) -> dict[str, float]:
    """Compute precision, recall, and F1 of emitted matches against labelled pairs.

    Parameters
    ----------
    predicted_pairs:
        Canonical pairs the engine emitted as Matches.
    ground_truth:
        List of dicts each containing:
          - ``employee_a``: ``(company_id, employee_id)``
          - ``employee_b``: ``(company_id, employee_id)``
          - ``same_person``: bool, the reviewer verdict for the pair.

    Returns
    -------
    dict
        ``{"precision", "recall", "f1", "true_positives",
          "false_positives", "false_negatives", "total_pairs"}``
    """
    outcomes: Counter = Counter()
    for pair in ground_truth:
        key = canonical_pair(tuple(pair["employee_a"]), tuple(pair["employee_b"]))
        outcomes[(key in predicted_pairs, bool(pair["same_person"]))] += 1

    tp = outcomes[(True, True)]
    fp = outcomes[(True, False)]
    fn = outcomes[(False, True)]
    precision = _ratio(tp, tp + fp)
    recall = _ratio(tp, tp + fn)

    return {
        "precision": precision,
        "recall": recall,
        "f1": _ratio(2 * precision * recall, precision + recall),
        "true_positives": tp,
        "false_positives": fp,
        "false_negatives": fn,
        "total_pairs": len(ground_truth),
    }


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0
