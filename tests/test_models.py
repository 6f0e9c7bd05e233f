"""Tests for core records."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from dualwatch.models import Employee, FieldScore, Match, as_utc, canonical_pair, risk_rank


class TestEmployeeFromRow:
    def test_snake_case_row(self):
        employee = Employee.from_row(
            {
                "employee_id": 12,
                "company_id": "acme",
                "first_name": "Ann",
                "last_name": "Lee",
                "start_date": date(2022, 1, 1),
                "end_date": None,
                "updated_at": datetime(2024, 5, 1, 9, 30),
                "version": 4,
            }
        )
        assert employee.key == ("acme", "12")
        assert employee.employee_type == "full_time"
        assert employee.version == 4
        assert employee.end_date is None

    def test_iso_strings_parsed(self):
        employee = Employee.from_row(
            {
                "employeeId": "7",
                "companyId": "globex",
                "firstName": "Bo",
                "lastName": "Kim",
                "startDate": "2023-02-01T00:00:00Z",
                "dateOfBirth": "1990-07-04",
                "updatedAt": "2024-05-01T12:00:00",
            }
        )
        assert employee.start_date == date(2023, 2, 1)
        assert employee.date_of_birth == date(1990, 7, 4)
        assert employee.updated_at == datetime(2024, 5, 1, 12, 0)

    def test_missing_start_date(self):
        with pytest.raises(ValueError):
            Employee.from_row({"employee_id": "1", "company_id": "acme", "first_name": "A"})

    def test_missing_ids(self):
        with pytest.raises(ValueError):
            Employee.from_row({"first_name": "A", "start_date": "2022-01-01"})

    def test_unknown_employee_type(self):
        with pytest.raises(ValueError):
            Employee.from_row(
                {"employee_id": "1", "company_id": "acme", "start_date": "2022-01-01",
                 "employee_type": "volunteer"}
            )


class TestMatch:
    def test_canonical_pair(self):
        assert canonical_pair(("globex", "1"), ("acme", "9")) == (("acme", "9"), ("globex", "1"))

    def test_to_dict(self):
        match = Match(
            employee1_id="9",
            company1_id="acme",
            employee2_id="1",
            company2_id="globex",
            confidence_score=0.96666,
            match_factors=[FieldScore("ssn", 1.0, "exact", weight=0.45)],
            temporal_overlap=True,
            overlap_days=45,
            risk_level="medium",
        )
        data = match.to_dict()
        assert data["confidence_score"] == 0.9667
        assert data["status"] == "pending"
        assert data["match_factors"][0] == {
            "identifier": "ssn",
            "similarity": 1.0,
            "weight": 0.45,
            "method": "exact",
            "low_confidence": False,
        }
        assert match.pair_key == (("acme", "9"), ("globex", "1"))

    def test_risk_rank_ordering(self):
        assert risk_rank("critical") > risk_rank("high") > risk_rank("informational")


class TestAsUtc:
    def test_naive_taken_as_utc(self):
        assert as_utc(datetime(2024, 1, 1, 9, 0)) == datetime(2024, 1, 1, 9, 0, tzinfo=UTC)

    def test_aware_converted(self):
        eastern = timezone(timedelta(hours=-5))
        converted = as_utc(datetime(2024, 1, 1, 9, 0, tzinfo=eastern))
        assert converted.tzinfo is UTC
        assert converted.hour == 14
