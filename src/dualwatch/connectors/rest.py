"""Generic REST connector for HR systems exposing a paginated employee API.

Expected endpoints:

- ``GET /auth/check``: 200 when the bearer token is valid.
- ``GET /employees?page=N&per_page=M[&updated_since=ISO]``: returns
  ``{"items": [...], "next_page": N | null}``.

Each item is a flat employee record in snake_case or camelCase; the company
id always comes from the connector, whatever the provider sends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog

from dualwatch.config import Settings
from dualwatch.models import Employee

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGES = 10_000


def _make_client(base_url: str, token: str, timeout: float = 10.0) -> httpx.Client:
    """Create an httpx client with bearer-token auth."""
    return httpx.Client(
        base_url=base_url,
        timeout=timeout,
        headers={
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
        },
    )


def parse_employee_records(
    records: list[dict[str, Any]],
    company_id: str,
) -> tuple[list[Employee], int]:
    """Map raw provider records to Employees.

    Returns ``(employees, skipped)``; unparseable records are logged.
    """
    employees: list[Employee] = []
    skipped = 0
    for record in records:
        row = {**record, "company_id": company_id}
        try:
            employees.append(Employee.from_row(row))
        except (KeyError, ValueError) as e:
            logger.warning(
                "connector_record_skip",
                company_id=company_id,
                employee_id=record.get("employee_id") or record.get("employeeId"),
                error=str(e),
            )
            skipped += 1
    return employees, skipped


class RestEmployeeConnector:
    """Pull employees for one company from a JSON REST API."""

    provider = "rest"

    def __init__(
        self,
        company_id: str,
        *,
        base_url: str,
        token: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.company_id = company_id
        self.page_size = page_size
        self.client = client or _make_client(base_url, token, timeout)

    @classmethod
    def from_settings(cls, settings: Settings, company_id: str) -> RestEmployeeConnector:
        return cls(
            company_id,
            base_url=settings.connector_base_url,
            token=settings.connector_token,
            timeout=settings.call_timeout_seconds,
        )

    def close(self) -> None:
        self.client.close()

    def authenticate(self) -> bool:
        try:
            resp = self.client.get("/auth/check")
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "connector_auth_failed",
                company_id=self.company_id,
                status=e.response.status_code,
            )
            return False
        return True

    def _fetch_pages(self, params: dict[str, Any]) -> list[Employee]:
        employees: list[Employee] = []
        skipped = 0
        page: int | None = 1
        pages = 0
        while page is not None and pages < MAX_PAGES:
            resp = self.client.get(
                "/employees",
                params={**params, "page": page, "per_page": self.page_size},
            )
            resp.raise_for_status()
            data = resp.json()
            parsed, bad = parse_employee_records(data.get("items", []), self.company_id)
            employees.extend(parsed)
            skipped += bad
            page = data.get("next_page")
            pages += 1

        logger.info(
            "connector_fetch_complete",
            provider=self.provider,
            company_id=self.company_id,
            pages=pages,
            employees=len(employees),
            skipped=skipped,
        )
        return employees

    def fetch_employees(self) -> list[Employee]:
        return self._fetch_pages({})

    def sync_incremental(self, since: datetime) -> list[Employee]:
        return self._fetch_pages({"updated_since": since.isoformat()})
