"""Tests for the false-positive anomaly filter."""

from structlog.testing import capture_logs

from conftest import make_employee
from dualwatch.matching.aggregator import AggregateResult
from dualwatch.matching.anomaly import (
    GENERIC_IDENTIFIER,
    NAME_ONLY_CONFLICT,
    SINGLE_SIGNAL,
    AnomalyFilter,
)
from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.matching.index import CandidateIndex
from dualwatch.models import FieldScore


def _result(confidence: float, *factors: FieldScore) -> AggregateResult:
    return AggregateResult(
        confidence=confidence,
        risk_level="high",
        decision="review",
        factors=list(factors),
        present_weight=sum(f.weight for f in factors),
    )


def _f(identifier: str, similarity: float, weight: float, **kwargs) -> FieldScore:
    return FieldScore(identifier, similarity, "exact", weight=weight, **kwargs)


class TestAnomalyFilter:
    def test_generic_identifier(self, profile_for):
        config = MatchingConfiguration(generic_identifier_company_limit=3)
        index = CandidateIndex()
        profiles = [
            profile_for(make_employee("1", f"company-{n}", ssn="123-45-6789")) for n in range(4)
        ]
        for profile in profiles:
            index.insert(profile)

        result = _result(
            0.95, _f("ssn", 1.0, 0.45), _f("email", 1.0, 0.20), _f("name", 0.9, 0.10)
        )
        reason = AnomalyFilter(config, index).evaluate(profiles[0].identifiers, result)
        assert reason == GENERIC_IDENTIFIER

    def test_shared_by_few_companies_kept(self, profile_for):
        index = CandidateIndex()
        a = profile_for(make_employee("1", "acme", ssn="123-45-6789"))
        b = profile_for(make_employee("9", "globex", ssn="123-45-6789"))
        index.insert(a)
        index.insert(b)
        result = _result(0.95, _f("ssn", 1.0, 0.45), _f("name", 1.0, 0.10))
        assert AnomalyFilter(MatchingConfiguration(), index).evaluate(a.identifiers, result) is None

    def test_single_signal(self, profile_for):
        a = profile_for(make_employee("1", "acme"))
        result = _result(1.0, _f("name", 1.0, 0.10))
        reason = AnomalyFilter(MatchingConfiguration(), CandidateIndex()).evaluate(
            a.identifiers, result
        )
        assert reason == SINGLE_SIGNAL

    def test_low_confidence_factor_not_a_signal(self, profile_for):
        a = profile_for(make_employee("1", "acme"))
        result = _result(
            0.9, _f("email", 1.0, 0.20), _f("name", 0.6, 0.10, low_confidence=True)
        )
        reason = AnomalyFilter(MatchingConfiguration(), CandidateIndex()).evaluate(
            a.identifiers, result
        )
        assert reason == SINGLE_SIGNAL

    def test_single_signal_ignored_below_threshold(self, profile_for):
        a = profile_for(make_employee("1", "acme"))
        result = _result(0.7, _f("email", 1.0, 0.20), _f("phone", 0.0, 0.15))
        assert AnomalyFilter(MatchingConfiguration(), CandidateIndex()).evaluate(
            a.identifiers, result
        ) is None

    def test_name_only_conflict(self, profile_for):
        a = profile_for(make_employee("1", "acme"))
        result = _result(
            0.55, _f("ssn", 0.0, 0.45), _f("email", 0.0, 0.20), _f("name", 1.0, 0.10)
        )
        reason = AnomalyFilter(MatchingConfiguration(), CandidateIndex()).evaluate(
            a.identifiers, result
        )
        assert reason == NAME_ONLY_CONFLICT

    def test_check_logs_suppression(self, profile_for):
        a = profile_for(make_employee("1", "acme"))
        b = profile_for(make_employee("9", "globex"))
        result = _result(1.0, _f("name", 1.0, 0.10))
        with capture_logs() as logs:
            reason = AnomalyFilter(MatchingConfiguration(), CandidateIndex()).check(
                a.identifiers, b.identifiers, result
            )
        assert reason == SINGLE_SIGNAL
        assert logs[0]["event"] == "match_suppressed"
        assert logs[0]["reason"] == SINGLE_SIGNAL
        assert logs[0]["employee2"] == "globex/9"
