"""PostgreSQL access via psycopg3.

Every connection opened here carries a server-side ``statement_timeout`` so
that a stuck persistence call fails instead of stalling a matching run.
"""

from __future__ import annotations

import psycopg
from psycopg.rows import dict_row

from dualwatch.config import Settings


def get_connection(
    settings: Settings | None = None,
    *,
    statement_timeout_ms: int | None = None,
) -> psycopg.Connection:
    """Open a synchronous connection with dict rows and a statement timeout.

    The timeout defaults to ``settings.call_timeout_seconds``.
    """
    if settings is None:
        from dualwatch.config import get_settings
        settings = get_settings()

    if statement_timeout_ms is None:
        statement_timeout_ms = int(settings.call_timeout_seconds * 1000)

    return psycopg.connect(
        settings.database_url,
        row_factory=dict_row,
        options=f"-c statement_timeout={statement_timeout_ms}",
    )


def execute_query(conn: psycopg.Connection, query: str, params: tuple = ()) -> list[dict]:
    """Execute a query and return all rows as dicts."""
    with conn.cursor() as cur:
        cur.execute(query, params)
        if cur.description:
            return cur.fetchall()
        return []


def execute_many(conn: psycopg.Connection, query: str, params_list: list[tuple]) -> int:
    """Execute a parameterised query for each set of params. Returns row count."""
    if not params_list:
        return 0
    with conn.cursor() as cur:
        cur.executemany(query, params_list)
        return cur.rowcount
