"""Connector for flat-file HR exports (one CSV per company)."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd
import structlog

from dualwatch.connectors.rest import parse_employee_records
from dualwatch.models import Employee, as_utc

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = {"employee_id", "first_name", "last_name", "start_date"}

_CAMEL_ALIASES = {
    "employeeId": "employee_id",
    "firstName": "first_name",
    "lastName": "last_name",
    "startDate": "start_date",
}


def validate_columns(df: pd.DataFrame) -> list[str]:
    """Return required columns missing from the export."""
    present = {_CAMEL_ALIASES.get(c, c) for c in df.columns}
    return sorted(REQUIRED_COLUMNS - present)


class CsvEmployeeConnector:
    """Read employees for one company from a CSV export."""

    provider = "csv"

    def __init__(self, company_id: str, path: Path) -> None:
        self.company_id = company_id
        self.path = Path(path)

    def authenticate(self) -> bool:
        return self.path.is_file()

    def _read(self) -> list[Employee]:
        # Everything as text: ids and phone numbers must not become floats.
        df = pd.read_csv(self.path, dtype=str, keep_default_na=False)
        missing = validate_columns(df)
        if missing:
            logger.error("csv_missing_columns", missing=missing, path=str(self.path))
            return []

        employees, skipped = parse_employee_records(df.to_dict(orient="records"), self.company_id)
        logger.info(
            "csv_import_complete",
            path=str(self.path),
            company_id=self.company_id,
            total_rows=len(df),
            employees=len(employees),
            skipped=skipped,
        )
        return employees

    def fetch_employees(self) -> list[Employee]:
        return self._read()

    def sync_incremental(self, since: datetime) -> list[Employee]:
        """Records whose ``updated_at`` is after *since*; undated rows are kept."""
        return [
            e for e in self._read()
            if e.updated_at is None or as_utc(e.updated_at) > as_utc(since)
        ]
