"""Provider connectors that feed canonical employee records to the engine."""

from dualwatch.connectors.base import EmployeeConnector
from dualwatch.connectors.flatfile import CsvEmployeeConnector
from dualwatch.connectors.rest import RestEmployeeConnector, parse_employee_records

__all__ = [
    "CsvEmployeeConnector",
    "EmployeeConnector",
    "RestEmployeeConnector",
    "parse_employee_records",
]
