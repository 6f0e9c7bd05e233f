"""Shared fixtures for matching engine tests."""

from __future__ import annotations

from datetime import date

import pytest

from dualwatch.identity.hashing import SaltSet, build_profile
from dualwatch.matching.configuration import MatchingConfiguration
from dualwatch.models import Employee, EmployeeProfile
from dualwatch.orchestration.runner import MatchingEngine

# Fixed "today" so ongoing employment and date-of-birth checks are stable.
AS_OF = date(2024, 6, 30)


def make_employee(employee_id: str, company_id: str, **overrides) -> Employee:
    """Build an Employee with only names and a start date unless overridden."""
    fields = {
        "first_name": "Robert",
        "last_name": "Smith",
        "start_date": date(2023, 1, 1),
    }
    fields.update(overrides)
    return Employee(employee_id=employee_id, company_id=company_id, **fields)


@pytest.fixture()
def salts() -> SaltSet:
    return SaltSet(global_salt="test-global-salt", company_salts={"acme": "acme-private"})


@pytest.fixture()
def config() -> MatchingConfiguration:
    return MatchingConfiguration()


@pytest.fixture()
def profile_for(salts):
    """Hash an Employee into a profile with the test salts."""

    def _build(employee: Employee) -> EmployeeProfile:
        return build_profile(employee, salts, today=AS_OF)

    return _build


@pytest.fixture()
def engine(config, salts):
    """Matching engine with an in-memory store and no retry backoff."""
    eng = MatchingEngine(
        config,
        salts,
        max_workers=2,
        batch_size=10,
        call_timeout=5.0,
        retry_attempts=2,
        retry_backoff=0.0,
        as_of=AS_OF,
    )
    yield eng
    eng.close()
