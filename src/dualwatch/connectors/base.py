"""Capability interface every HR/payroll provider connector implements.

Connectors hand the engine canonical :class:`~dualwatch.models.Employee`
records; the engine never talks to a provider directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from dualwatch.models import Employee


@runtime_checkable
class EmployeeConnector(Protocol):
    provider: str
    company_id: str

    def authenticate(self) -> bool:
        """Check the credentials; False means the provider refused them."""
        ...

    def fetch_employees(self) -> list[Employee]:
        """Return every employee record for the connected company."""
        ...

    def sync_incremental(self, since: datetime) -> list[Employee]:
        """Return the records changed after *since*."""
        ...
