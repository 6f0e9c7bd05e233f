"""Tests for match persistence and employee loading."""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from psycopg import errors as pg_errors

from conftest import make_employee
from dualwatch.errors import PersistenceConflict
from dualwatch.identity.hashing import hash_identifiers
from dualwatch.models import FieldScore, Match
from dualwatch.orchestration.store import (
    InMemoryMatchStore,
    PostgresMatchStore,
    UpsertResult,
    fetch_employees,
    save_identifier_sets,
)


def _match(**overrides) -> Match:
    fields = {
        "company1_id": "acme",
        "employee1_id": "E-100",
        "company2_id": "globex",
        "employee2_id": "C-7",
        "confidence_score": 0.97,
        "match_factors": [FieldScore("ssn", 1.0, "exact", weight=0.45)],
        "temporal_overlap": True,
        "overlap_days": 120,
        "risk_level": "high",
        "status": "confirmed",
    }
    fields.update(overrides)
    return Match(**fields)


def _mock_conn(fetchone=None):
    conn = MagicMock()
    cur = conn.cursor.return_value.__enter__.return_value
    cur.fetchone.return_value = fetchone
    return conn, cur


class TestUpsertResult:
    def test_new_match_notifies(self):
        assert UpsertResult(match=_match(), created=True).should_notify

    def test_pending_risk_change_notifies(self):
        result = UpsertResult(
            match=_match(status="pending"), created=False, previous_risk_level="medium"
        )
        assert result.should_notify

    def test_reviewed_match_not_renotified(self):
        result = UpsertResult(
            match=_match(status="rejected"), created=False, previous_risk_level="medium"
        )
        assert not result.should_notify


class TestInMemoryMatchStore:
    def test_insert_then_update(self):
        store = InMemoryMatchStore()
        first = store.upsert(_match())
        second = store.upsert(_match(confidence_score=0.99, status="pending"))

        assert first.created is True
        assert second.created is False
        assert second.match.match_id == first.match.match_id
        assert second.match.status == "confirmed"
        assert second.match.confidence_score == 0.99
        assert len(store) == 1

    def test_matches_for_either_side(self):
        store = InMemoryMatchStore()
        store.upsert(_match())
        store.upsert(
            _match(
                company1_id="globex", employee1_id="C-7", company2_id="initech", employee2_id="9"
            )
        )
        store.upsert(_match(company2_id="umbrella", employee2_id="4"))

        pairs = [m.pair_key for m in store.matches_for(("globex", "C-7"))]
        assert pairs == [
            (("acme", "E-100"), ("globex", "C-7")),
            (("globex", "C-7"), ("initech", "9")),
        ]
        assert len(store.matches_for(("acme", "E-100"))) == 2
        assert store.matches_for(("acme", "nobody")) == []


class TestPostgresMatchStore:
    def test_upsert_inserted(self):
        conn, cur = _mock_conn(
            {"match_id": "m-1", "status": "confirmed", "inserted": True,
             "previous_risk_level": None}
        )
        result = PostgresMatchStore(conn).upsert(_match())

        assert result.created is True
        assert result.match.match_id == "m-1"
        sql, params = cur.execute.call_args[0]
        assert "ON CONFLICT (company1_id, employee1_id, company2_id, employee2_id)" in sql
        assert json.loads(params["match_factors"])[0]["identifier"] == "ssn"

    def test_upsert_keeps_stored_status(self):
        conn, _ = _mock_conn(
            {"match_id": "m-1", "status": "rejected", "inserted": False,
             "previous_risk_level": "high"}
        )
        result = PostgresMatchStore(conn).upsert(_match(status="confirmed"))
        assert result.created is False
        assert result.match.status == "rejected"
        assert result.previous_risk_level == "high"

    def test_unique_violation_is_conflict(self):
        conn, cur = _mock_conn()
        cur.execute.side_effect = pg_errors.UniqueViolation("duplicate key")
        with pytest.raises(PersistenceConflict):
            PostgresMatchStore(conn).upsert(_match())

    def test_get(self):
        row = {
            "match_id": "m-1",
            "company1_id": "acme",
            "employee1_id": "E-100",
            "company2_id": "globex",
            "employee2_id": "C-7",
            "confidence_score": 0.97,
            "match_factors": json.dumps(
                [{"identifier": "ssn", "similarity": 1.0, "method": "exact", "weight": 0.45}]
            ),
            "temporal_overlap": True,
            "overlap_days": 120,
            "risk_level": "high",
            "status": "pending",
        }
        with patch("dualwatch.orchestration.store.execute_query", return_value=[row]):
            match = PostgresMatchStore(MagicMock()).get((("acme", "E-100"), ("globex", "C-7")))
        assert match.match_id == "m-1"
        assert match.match_factors[0].weight == 0.45

    def test_get_missing(self):
        with patch("dualwatch.orchestration.store.execute_query", return_value=[]):
            assert PostgresMatchStore(MagicMock()).get((("a", "1"), ("b", "2"))) is None

    def test_matches_for_queries_both_sides(self):
        with patch("dualwatch.orchestration.store.execute_query", return_value=[]) as mock:
            assert PostgresMatchStore(MagicMock()).matches_for(("acme", "E-100")) == []

        sql, params = mock.call_args[0][1:]
        assert "OR (company2_id = %s AND employee2_id = %s)" in sql
        assert params == ("acme", "E-100", "acme", "E-100")


class TestFetchEmployees:
    def test_bad_rows_skipped(self):
        rows = [
            {"employee_id": "1", "company_id": "acme", "first_name": "Ann",
             "last_name": "Lee", "start_date": date(2022, 1, 1), "version": 3},
            {"employee_id": "2", "company_id": "acme", "first_name": "No",
             "last_name": "Start", "start_date": None},
        ]
        with patch("dualwatch.orchestration.store.execute_query", return_value=rows) as mock:
            employees = fetch_employees(MagicMock(), company_id="acme")

        assert [e.employee_id for e in employees] == ["1"]
        assert employees[0].version == 3
        assert mock.call_args[0][2] == ("acme",)


class TestSaveIdentifierSets:
    def test_only_digests_written(self, salts):
        hashed = hash_identifiers(
            make_employee("1", "acme", ssn="123-45-6789", email="ann@example.com"), salts
        )
        with patch("dualwatch.orchestration.store.execute_many", return_value=1) as mock:
            assert save_identifier_sets(MagicMock(), [hashed]) == 1

        row = mock.call_args[0][2][0]
        assert "123456789" not in row
        assert "ann@example.com" not in row
        assert hashed.ssn_hash in row
