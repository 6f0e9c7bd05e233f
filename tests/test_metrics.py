"""Tests for run accounting, the pair cache and match-quality metrics."""

import pytest

from conftest import make_employee
from dualwatch.orchestration.cache import PairCache, pair_cache_key
from dualwatch.orchestration.metrics import (
    RunSummary,
    compute_match_quality_metrics,
    generate_run_report,
)


class TestRunSummary:
    def test_unknown_counter(self):
        with pytest.raises(KeyError):
            RunSummary(job_id="j", mode="full").increment("bogus")

    def test_suppression_by_reason(self):
        summary = RunSummary(job_id="j", mode="full")
        summary.suppress("generic_identifier")
        summary.suppress("generic_identifier")
        summary.suppress("single_signal")
        assert summary["matches_suppressed"] == 3
        assert summary.to_dict()["suppressed_by_reason"] == {
            "generic_identifier": 2,
            "single_signal": 1,
        }

    def test_failures_recorded(self):
        summary = RunSummary(job_id="j", mode="incremental")
        summary.skip_employee(("acme", "1"), "timeout")
        summary.fail_pair((("acme", "1"), ("globex", "2")), "boom")
        summary.record_dropped(("acme", "1"), 12)
        data = summary.to_dict()
        assert data["employees_skipped"] == 1
        assert data["pairs_failed"] == 1
        assert data["candidates_dropped"] == 12
        assert data["failed_pairs"] == [
            {"employee1": "acme/1", "employee2": "globex/2", "error": "boom"}
        ]

    def test_cache_hit_rate(self):
        summary = RunSummary(job_id="j", mode="full")
        summary.increment("cache_hits", 3)
        summary.increment("cache_misses", 1)
        assert summary.cache_hit_rate == 0.75

    def test_batch_latency(self):
        summary = RunSummary(job_id="j", mode="full")
        summary.record_batch(0.2)
        summary.record_batch(0.4)
        data = summary.finish().to_dict()
        assert data["batches"] == 2
        assert data["batch_latency_max_s"] == 0.4
        assert data["batch_latency_avg_s"] == pytest.approx(0.3)
        assert data["finished_at"] is not None


class TestGenerateRunReport:
    def test_contains_sections(self):
        summary = RunSummary(job_id="nightly", mode="full", company_id="acme")
        summary.increment("matches_emitted", 4)
        summary.suppress("single_signal")
        summary.aborted = "candidate index unavailable"
        report = generate_run_report(summary)
        assert "Matching Run Report: job nightly (full)" in report
        assert "single_signal: 1" in report
        assert "ABORTED" in report


class TestPairCache:
    def test_key_is_order_independent(self, profile_for):
        a = profile_for(make_employee("1", "acme"))
        b = profile_for(make_employee("2", "globex", version=5))
        assert pair_cache_key(a, b) == pair_cache_key(b, a)
        assert pair_cache_key(a, b) == (("acme", "1"), 1, ("globex", "2"), 5)

    def test_lru_eviction(self):
        cache = PairCache(max_entries=2)
        k1 = (("a", "1"), 1, ("b", "1"), 1)
        k2 = (("a", "2"), 1, ("b", "1"), 1)
        k3 = (("a", "3"), 1, ("b", "1"), 1)
        cache.put(k1, "one")
        cache.put(k2, "two")
        cache.get(k1)
        cache.put(k3, "three")
        assert cache.get(k2) is None
        assert cache.get(k1) == "one"
        assert len(cache) == 2

    def test_hit_rate(self):
        cache = PairCache()
        key = (("a", "1"), 1, ("b", "1"), 1)
        cache.get(key)
        cache.put(key, "x")
        cache.get(key)
        assert cache.hit_rate == 0.5


class TestComputeMatchQualityMetrics:
    def test_perfect(self):
        predicted = {(("acme", "1"), ("globex", "2"))}
        truth = [{"employee_a": ("globex", "2"), "employee_b": ("acme", "1"), "same_person": True}]
        metrics = compute_match_quality_metrics(predicted, truth)
        assert metrics["precision"] == 1.0
        assert metrics["recall"] == 1.0
        assert metrics["f1"] == 1.0

    def test_mixed(self):
        predicted = {
            (("acme", "1"), ("globex", "2")),
            (("acme", "3"), ("globex", "4")),
        }
        truth = [
            {"employee_a": ("acme", "1"), "employee_b": ("globex", "2"), "same_person": True},
            {"employee_a": ("acme", "3"), "employee_b": ("globex", "4"), "same_person": False},
            {"employee_a": ("acme", "5"), "employee_b": ("globex", "6"), "same_person": True},
        ]
        metrics = compute_match_quality_metrics(predicted, truth)
        assert metrics["true_positives"] == 1
        assert metrics["false_positives"] == 1
        assert metrics["false_negatives"] == 1
        assert metrics["precision"] == 0.5
        assert metrics["recall"] == 0.5

    def test_empty(self):
        metrics = compute_match_quality_metrics(set(), [])
        assert metrics["f1"] == 0.0
        assert metrics["total_pairs"] == 0
