"""Salted one-way hashing of employee identifiers.

Identifiers compared across companies (SSN, email, phone, date of birth) are
keyed with the *global* salt so the same raw value produces the same digest
for every tenant.  The company-scoped salt is only used for ``record_key``,
which is never compared across companies.  Swapping the two silently breaks
cross-company matching, so the salt choice lives in one place:
:func:`hash_identifiers`.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date

import structlog

from dualwatch.config import Settings
from dualwatch.errors import ConfigurationError, NormalizationError
from dualwatch.identity.normalizer import (
    normalize_dob,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_ssn,
    soundex_key,
)
from dualwatch.matching.nicknames import NicknameTable
from dualwatch.models import Employee, EmployeeProfile, HashedIdentifierSet

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SaltSet:
    """Explicit hashing salts for one salt version.

    ``company_salts`` maps company id to its private salt.  Companies without
    an entry fall back to a salt derived from the global salt and the company
    id unless ``strict_company_salts`` is set.
    """

    global_salt: str
    company_salts: dict[str, str] = field(default_factory=dict)
    version: int = 1
    strict_company_salts: bool = False

    def __post_init__(self) -> None:
        if not self.global_salt:
            msg = "A non-empty global salt is required"
            raise ConfigurationError(msg)

    def for_company(self, company_id: str) -> str:
        salt = self.company_salts.get(company_id)
        if salt:
            return salt
        if self.strict_company_salts:
            msg = f"No salt configured for company {company_id!r}"
            raise ConfigurationError(msg)
        return hash_identifier(f"company:{company_id}", self.global_salt)

    @classmethod
    def from_settings(cls, settings: Settings) -> SaltSet:
        return cls(
            global_salt=settings.global_salt,
            company_salts=dict(settings.company_salts),
            version=settings.salt_version,
        )


def hash_identifier(value: str, salt: str) -> str:
    """HMAC-SHA256 of *value* keyed by *salt*, as lowercase hex."""
    return hmac.new(salt.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def digests_equal(a: str, b: str) -> bool:
    """Constant-time digest comparison."""
    return hmac.compare_digest(a, b)


def hash_identifiers(
    employee: Employee,
    salts: SaltSet,
    *,
    nicknames: NicknameTable | None = None,
    required: Iterable[str] = (),
    today: date | None = None,
) -> HashedIdentifierSet:
    """Normalise and hash every identifier of *employee*.

    Missing or malformed identifiers are marked absent and their
    :class:`NormalizationError` message is kept in ``issues``; a single bad
    field never fails the whole record.  Identifiers listed in *required*
    that turn out absent are logged at warning level.
    """
    nicknames = nicknames or NicknameTable()
    required = set(required)

    absent: list[str] = []
    issues: list[str] = []

    def global_digest(identifier: str, normalizer: Callable[[], str]) -> str | None:
        try:
            value = normalizer()
        except NormalizationError as exc:
            absent.append(identifier)
            issues.append(str(exc))
            if identifier in required:
                logger.warning(
                    "required_identifier_absent",
                    employee_id=employee.employee_id,
                    company_id=employee.company_id,
                    identifier=identifier,
                    reason=str(exc),
                )
            return None
        return hash_identifier(value, salts.global_salt)

    ssn_hash = global_digest("ssn", lambda: normalize_ssn(employee.ssn))
    email_hash = global_digest("email", lambda: normalize_email(employee.email))
    phone_hash = global_digest("phone", lambda: normalize_phone(employee.phone))
    dob_hash = global_digest("dob", lambda: normalize_dob(employee.date_of_birth, today=today))

    first = normalize_name(employee.first_name)
    last = normalize_name(employee.last_name)
    if not first and not last:
        absent.append("name")
        issues.append(str(NormalizationError("name", "missing")))

    record_key = hash_identifier(employee.employee_id, salts.for_company(employee.company_id))

    if issues:
        logger.debug(
            "identifier_normalization_failed",
            employee_id=employee.employee_id,
            company_id=employee.company_id,
            absent=absent,
        )

    return HashedIdentifierSet(
        employee_id=employee.employee_id,
        company_id=employee.company_id,
        version=employee.version,
        salt_version=salts.version,
        ssn_hash=ssn_hash,
        email_hash=email_hash,
        phone_hash=phone_hash,
        dob_hash=dob_hash,
        record_key=record_key,
        name_soundex=soundex_key(first, last, nicknames),
        name_normalized=" ".join(part for part in (first, last) if part),
        first_name=first,
        last_name=last,
        absent=tuple(absent),
        issues=tuple(issues),
    )


def build_profile(
    employee: Employee,
    salts: SaltSet,
    *,
    nicknames: NicknameTable | None = None,
    required: Iterable[str] = (),
    today: date | None = None,
) -> EmployeeProfile:
    """Hash *employee* and drop every raw identifier, keeping a PII-free profile."""
    identifiers = hash_identifiers(
        employee, salts, nicknames=nicknames, required=required, today=today
    )
    return EmployeeProfile(
        employee_id=employee.employee_id,
        company_id=employee.company_id,
        version=employee.version,
        employee_type=employee.employee_type,
        start_date=employee.start_date,
        end_date=employee.end_date,
        identifiers=identifiers,
        updated_at=employee.updated_at,
    )
