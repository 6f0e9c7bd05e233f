"""Match persistence and employee loading.

Matches are upserted on the canonical pair ``(company1_id, employee1_id,
company2_id, employee2_id)`` so re-running a job never creates duplicates.
The ``status`` column belongs to human reviewers: it is set once on insert
and never overwritten by a later run.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

import psycopg
import structlog
from psycopg import errors as pg_errors

from dualwatch.db import execute_many, execute_query
from dualwatch.errors import PersistenceConflict
from dualwatch.models import Employee, EmployeeKey, FieldScore, HashedIdentifierSet, Match

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    match: Match
    created: bool
    previous_risk_level: str | None = None

    @property
    def should_notify(self) -> bool:
        """New matches, and pending ones whose risk changed, are re-announced.

        Reviewed (confirmed / rejected) matches are never re-notified.
        """
        if self.created:
            return True
        return (
            self.match.status == "pending"
            and self.previous_risk_level != self.match.risk_level
        )


class MatchStore(Protocol):
    def get(self, pair: tuple[EmployeeKey, EmployeeKey]) -> Match | None: ...

    def matches_for(self, employee: EmployeeKey) -> list[Match]: ...

    def upsert(self, match: Match) -> UpsertResult: ...


# ---------------------------------------------------------------------------
# In-memory store (dry runs, tests)
# ---------------------------------------------------------------------------


class InMemoryMatchStore:
    """Dict-backed store with the same upsert semantics as the SQL store."""

    def __init__(self) -> None:
        self._matches: dict[tuple[EmployeeKey, EmployeeKey], Match] = {}
        self._by_employee: dict[EmployeeKey, set[tuple[EmployeeKey, EmployeeKey]]] = {}
        self._lock = threading.Lock()

    def get(self, pair: tuple[EmployeeKey, EmployeeKey]) -> Match | None:
        with self._lock:
            return self._matches.get(pair)

    def matches_for(self, employee: EmployeeKey) -> list[Match]:
        """Stored matches with *employee* on either side."""
        with self._lock:
            return [self._matches[pair] for pair in sorted(self._by_employee.get(employee, ()))]

    def upsert(self, match: Match) -> UpsertResult:
        with self._lock:
            existing = self._matches.get(match.pair_key)
            if existing is None:
                self._matches[match.pair_key] = match
                for key in match.pair_key:
                    self._by_employee.setdefault(key, set()).add(match.pair_key)
                return UpsertResult(match=match, created=True)

            merged = replace(match, match_id=existing.match_id, status=existing.status)
            self._matches[match.pair_key] = merged
            return UpsertResult(
                match=merged,
                created=False,
                previous_risk_level=existing.risk_level,
            )

    def set_status(self, pair: tuple[EmployeeKey, EmployeeKey], status: str) -> None:
        """Record a reviewer decision."""
        with self._lock:
            self._matches[pair] = replace(self._matches[pair], status=status)

    def all(self) -> list[Match]:
        with self._lock:
            return list(self._matches.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._matches)


# ---------------------------------------------------------------------------
# PostgreSQL store
# ---------------------------------------------------------------------------

_MATCH_COLUMNS = """
    match_id::text AS match_id, company1_id, employee1_id, company2_id,
    employee2_id, confidence_score, match_factors, temporal_overlap,
    overlap_days, risk_level, status
"""

_UPSERT_MATCH_SQL = """
    WITH previous AS (
        SELECT risk_level
        FROM matches
        WHERE company1_id = %(company1_id)s AND employee1_id = %(employee1_id)s
          AND company2_id = %(company2_id)s AND employee2_id = %(employee2_id)s
    )
    INSERT INTO matches
        (match_id, company1_id, employee1_id, company2_id, employee2_id,
         confidence_score, match_factors, temporal_overlap, overlap_days,
         risk_level, status)
    VALUES
        (%(match_id)s, %(company1_id)s, %(employee1_id)s, %(company2_id)s,
         %(employee2_id)s, %(confidence_score)s, %(match_factors)s::jsonb,
         %(temporal_overlap)s, %(overlap_days)s, %(risk_level)s, %(status)s)
    ON CONFLICT (company1_id, employee1_id, company2_id, employee2_id)
    DO UPDATE SET
        confidence_score = EXCLUDED.confidence_score,
        match_factors = EXCLUDED.match_factors,
        temporal_overlap = EXCLUDED.temporal_overlap,
        overlap_days = EXCLUDED.overlap_days,
        risk_level = EXCLUDED.risk_level,
        updated_at = now()
    RETURNING
        match_id::text AS match_id,
        status,
        (xmax = 0) AS inserted,
        (SELECT risk_level FROM previous) AS previous_risk_level
"""


class PostgresMatchStore:
    """Match store on the ``matches`` table.

    psycopg connections serialise their own commands; the store lock keeps
    each upsert transaction from interleaving with another thread's.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn
        self._lock = threading.Lock()

    def get(self, pair: tuple[EmployeeKey, EmployeeKey]) -> Match | None:
        (company1, employee1), (company2, employee2) = pair
        with self._lock:
            rows = execute_query(
                self.conn,
                f"""
                SELECT {_MATCH_COLUMNS}
                FROM matches
                WHERE company1_id = %s AND employee1_id = %s
                  AND company2_id = %s AND employee2_id = %s
                """,
                (company1, employee1, company2, employee2),
            )
        return _row_to_match(rows[0]) if rows else None

    def matches_for(self, employee: EmployeeKey) -> list[Match]:
        company_id, employee_id = employee
        with self._lock:
            rows = execute_query(
                self.conn,
                f"""
                SELECT {_MATCH_COLUMNS}
                FROM matches
                WHERE (company1_id = %s AND employee1_id = %s)
                   OR (company2_id = %s AND employee2_id = %s)
                """,
                (company_id, employee_id, company_id, employee_id),
            )
        return [_row_to_match(row) for row in rows]

    def upsert(self, match: Match) -> UpsertResult:
        params = {
            "match_id": match.match_id,
            "company1_id": match.company1_id,
            "employee1_id": match.employee1_id,
            "company2_id": match.company2_id,
            "employee2_id": match.employee2_id,
            "confidence_score": match.confidence_score,
            "match_factors": json.dumps([f.to_dict() for f in match.match_factors]),
            "temporal_overlap": match.temporal_overlap,
            "overlap_days": match.overlap_days,
            "risk_level": match.risk_level,
            "status": match.status,
        }
        try:
            with self._lock, self.conn.transaction(), self.conn.cursor() as cur:
                cur.execute(_UPSERT_MATCH_SQL, params)
                row = cur.fetchone()
        except (pg_errors.UniqueViolation, pg_errors.SerializationFailure) as exc:
            raise PersistenceConflict(match.employee1_id, match.employee2_id) from exc

        stored = replace(match, match_id=row["match_id"], status=row["status"])
        return UpsertResult(
            match=stored,
            created=bool(row["inserted"]),
            previous_risk_level=row["previous_risk_level"],
        )


def _row_to_match(row: dict) -> Match:
    factors = row["match_factors"]
    if isinstance(factors, str):
        factors = json.loads(factors)
    return Match(
        match_id=row["match_id"],
        company1_id=row["company1_id"],
        employee1_id=row["employee1_id"],
        company2_id=row["company2_id"],
        employee2_id=row["employee2_id"],
        confidence_score=float(row["confidence_score"]),
        match_factors=[
            FieldScore(
                identifier=f["identifier"],
                similarity=f["similarity"],
                method=f["method"],
                weight=f.get("weight", 0.0),
                low_confidence=f.get("low_confidence", False),
                details=f.get("details", {}),
            )
            for f in factors
        ],
        temporal_overlap=bool(row["temporal_overlap"]),
        overlap_days=int(row["overlap_days"]),
        risk_level=row["risk_level"],
        status=row["status"],
    )


# ---------------------------------------------------------------------------
# Employees and identifier digests
# ---------------------------------------------------------------------------


def fetch_employees(
    conn: psycopg.Connection,
    *,
    company_id: str | None = None,
    updated_since: datetime | None = None,
) -> list[Employee]:
    """Load canonical employee records written by the ingestion collaborator.

    Rows that cannot be parsed are logged and skipped.
    """
    query = """
        SELECT employee_id, company_id, first_name, last_name, middle_name,
               date_of_birth, ssn, email, phone, address, start_date, end_date,
               employee_type, job_title, department, version, updated_at
        FROM employees
        WHERE TRUE
    """
    params: list = []
    if company_id:
        query += " AND company_id = %s"
        params.append(company_id)
    if updated_since:
        query += " AND updated_at > %s"
        params.append(updated_since)
    query += " ORDER BY company_id, employee_id"

    employees: list[Employee] = []
    for row in execute_query(conn, query, tuple(params)):
        try:
            employees.append(Employee.from_row(row))
        except ValueError as e:
            logger.warning(
                "employee_row_skip",
                employee_id=row.get("employee_id"),
                company_id=row.get("company_id"),
                error=str(e),
            )
    return employees


def save_identifier_sets(
    conn: psycopg.Connection,
    identifier_sets: Iterable[HashedIdentifierSet],
) -> int:
    """Upsert digests for each employee; older versions are overwritten.

    Only digests and the normalised name are written; raw SSN, email and
    phone never reach this table.
    """
    rows = [
        (
            s.company_id,
            s.employee_id,
            s.version,
            s.salt_version,
            s.ssn_hash,
            s.email_hash,
            s.phone_hash,
            s.dob_hash,
            s.record_key,
            s.name_soundex,
            s.name_normalized,
        )
        for s in identifier_sets
    ]
    return execute_many(
        conn,
        """
        INSERT INTO employee_identifiers
            (company_id, employee_id, version, salt_version, ssn_hash, email_hash,
             phone_hash, dob_hash, record_key, name_soundex, name_normalized)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (company_id, employee_id) DO UPDATE SET
            version = EXCLUDED.version,
            salt_version = EXCLUDED.salt_version,
            ssn_hash = EXCLUDED.ssn_hash,
            email_hash = EXCLUDED.email_hash,
            phone_hash = EXCLUDED.phone_hash,
            dob_hash = EXCLUDED.dob_hash,
            record_key = EXCLUDED.record_key,
            name_soundex = EXCLUDED.name_soundex,
            name_normalized = EXCLUDED.name_normalized,
            updated_at = now()
        """,
        rows,
    )
