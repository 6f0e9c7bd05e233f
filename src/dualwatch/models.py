"""Core records shared by every stage of the matching engine.

Employee ids are only unique within a company, so every cross-company
reference uses an :data:`EmployeeKey` of ``(company_id, employee_id)``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

EmployeeKey = tuple[str, str]

EMPLOYEE_TYPES = ("full_time", "part_time", "contract", "intern")

# Ordered from least to most severe.
RISK_LEVELS = ("informational", "low", "medium", "high", "critical")

MATCH_STATUSES = ("pending", "confirmed", "rejected")

# Identifiers compared by digest equality, in scoring order.
HASHED_IDENTIFIERS = ("ssn", "email", "phone", "dob")
ALL_IDENTIFIERS = (*HASHED_IDENTIFIERS, "name")


def risk_rank(level: str) -> int:
    """Position of *level* in :data:`RISK_LEVELS` (higher is more severe)."""
    return RISK_LEVELS.index(level)


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def as_utc(value: datetime) -> datetime:
    """*value* as an aware UTC datetime; naive values are taken to be UTC.

    Timestamps arrive naive from CSV exports and the CLI but aware from
    ``timestamptz`` columns, and the two cannot be compared directly.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class Employee:
    """Canonical employee record produced by the ingestion collaborator.

    Raw ``ssn``, ``email`` and ``phone`` are only read by the hasher; nothing
    downstream of :func:`dualwatch.identity.hashing.hash_identifiers` keeps them.
    """

    employee_id: str
    company_id: str
    first_name: str
    last_name: str
    start_date: date
    middle_name: str | None = None
    date_of_birth: date | None = None
    ssn: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    end_date: date | None = None  # None = ongoing
    employee_type: str = "full_time"  # full_time | part_time | contract | intern
    job_title: str | None = None
    department: str | None = None
    version: int = 1
    updated_at: datetime | None = None

    @property
    def key(self) -> EmployeeKey:
        return (self.company_id, self.employee_id)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Employee:
        """Build an Employee from a database row or a flat JSON/CSV record.

        Accepts both snake_case and the camelCase keys used by HR exports.
        """

        def pick(*names: str) -> Any:
            for name in names:
                if name in row and row[name] not in (None, ""):
                    return row[name]
            return None

        employee_id = pick("employee_id", "employeeId")
        company_id = pick("company_id", "companyId")
        if employee_id is None or company_id is None:
            msg = "record has no employee_id or company_id"
            raise ValueError(msg)

        start = _parse_date(pick("start_date", "startDate"))
        if start is None:
            msg = f"employee {employee_id!r} has no start date"
            raise ValueError(msg)

        employee_type = (pick("employee_type", "employeeType") or "full_time").lower()
        employee_type = employee_type.replace("-", "_").replace(" ", "_")
        if employee_type not in EMPLOYEE_TYPES:
            msg = f"Unknown employee type: {employee_type!r}"
            raise ValueError(msg)

        return cls(
            employee_id=str(employee_id),
            company_id=str(company_id),
            first_name=pick("first_name", "firstName") or "",
            last_name=pick("last_name", "lastName") or "",
            middle_name=pick("middle_name", "middleName"),
            date_of_birth=_parse_date(pick("date_of_birth", "dateOfBirth")),
            ssn=pick("ssn"),
            email=pick("email"),
            phone=pick("phone"),
            address=pick("address"),
            start_date=start,
            end_date=_parse_date(pick("end_date", "endDate")),
            employee_type=employee_type,
            job_title=pick("job_title", "jobTitle"),
            department=pick("department"),
            version=int(pick("version") or 1),
            updated_at=_parse_datetime(pick("updated_at", "updatedAt")),
        )


@dataclass(frozen=True)
class HashedIdentifierSet:
    """One-way digests and fuzzy-comparison keys for one employee version.

    ``ssn_hash``, ``email_hash``, ``phone_hash`` and ``dob_hash`` are salted
    with the global salt; ``record_key`` with the employee's company salt.
    """

    employee_id: str
    company_id: str
    version: int
    salt_version: int
    ssn_hash: str | None = None
    email_hash: str | None = None
    phone_hash: str | None = None
    dob_hash: str | None = None
    record_key: str | None = None
    name_soundex: str = ""
    name_normalized: str = ""
    first_name: str = ""
    last_name: str = ""
    absent: tuple[str, ...] = ()
    issues: tuple[str, ...] = ()

    def digest(self, identifier: str) -> str | None:
        """Return the digest for a hashed identifier name (``ssn``, ``email``, ...)."""
        if identifier not in HASHED_IDENTIFIERS:
            msg = f"Not a hashed identifier: {identifier!r}"
            raise KeyError(msg)
        return getattr(self, f"{identifier}_hash")

    def exact_keys(self) -> list[tuple[str, str]]:
        """All ``(identifier, digest)`` pairs that are present."""
        keys = []
        for identifier in HASHED_IDENTIFIERS:
            value = self.digest(identifier)
            if value:
                keys.append((identifier, value))
        return keys


@dataclass(frozen=True)
class EmployeeProfile:
    """PII-free view of an employee used by the index, scorers and runner."""

    employee_id: str
    company_id: str
    version: int
    employee_type: str
    start_date: date
    end_date: date | None
    identifiers: HashedIdentifierSet
    updated_at: datetime | None = None

    @property
    def key(self) -> EmployeeKey:
        return (self.company_id, self.employee_id)


@dataclass(frozen=True)
class FieldScore:
    """Evidence for one identifier: how similar, how it was compared, its weight."""

    identifier: str
    similarity: float
    method: str  # exact | nickname | fuzzy | phonetic | model
    weight: float = 0.0
    low_confidence: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "similarity": round(self.similarity, 4),
            "weight": self.weight,
            "method": self.method,
            "low_confidence": self.low_confidence,
            **({"details": self.details} if self.details else {}),
        }


def canonical_pair(a: EmployeeKey, b: EmployeeKey) -> tuple[EmployeeKey, EmployeeKey]:
    """Order two employee keys deterministically so each pair has one identity."""
    return (a, b) if a <= b else (b, a)


@dataclass
class Match:
    """Durable matching result for one unordered pair of employees."""

    employee1_id: str
    company1_id: str
    employee2_id: str
    company2_id: str
    confidence_score: float
    match_factors: list[FieldScore]
    temporal_overlap: bool
    overlap_days: int
    risk_level: str  # informational | low | medium | high | critical
    status: str = "pending"  # pending | confirmed | rejected
    match_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def pair_key(self) -> tuple[EmployeeKey, EmployeeKey]:
        return ((self.company1_id, self.employee1_id), (self.company2_id, self.employee2_id))

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation for reporting and webhook collaborators."""
        return {
            "match_id": self.match_id,
            "employee1_id": self.employee1_id,
            "company1_id": self.company1_id,
            "employee2_id": self.employee2_id,
            "company2_id": self.company2_id,
            "confidence_score": round(self.confidence_score, 4),
            "match_factors": [f.to_dict() for f in self.match_factors],
            "temporal_overlap": self.temporal_overlap,
            "overlap_days": self.overlap_days,
            "risk_level": self.risk_level,
            "status": self.status,
        }
