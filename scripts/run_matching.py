#!/usr/bin/env python3
"""CLI script to run a cross-company matching job."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from pathlib import Path

import structlog
import typer

from dualwatch.config import get_settings
from dualwatch.db import get_connection
from dualwatch.matching.configuration import (
    fetch_configuration,
    load_company_configuration,
    load_configuration,
)
from dualwatch.orchestration import (
    RUN_MODES,
    InMemoryMatchStore,
    MatchingEngine,
    PostgresMatchStore,
    fetch_employees,
    generate_run_report,
    save_identifier_sets,
)

logger = structlog.get_logger(__name__)
app = typer.Typer()


def _parse_since(value: str | None) -> datetime | int | None:
    """A bare integer is a record version; anything else an ISO timestamp."""
    if value is None:
        return None
    if value.isdigit():
        return int(value)
    return datetime.fromisoformat(value)


@app.command()
def main(
    mode: str = typer.Option("incremental", help=f"Run mode: {' | '.join(RUN_MODES)}"),
    job_id: str | None = typer.Option(None, "--job-id", help="Job id (default: random)"),
    company: str | None = typer.Option(
        None, "--company", help="Only match employees of this company"
    ),
    since: str | None = typer.Option(
        None, help="Incremental scope: ISO timestamp or record version"
    ),
    config_path: Path | None = typer.Option(
        None, "--config", help="Matching configuration JSON (default: database)"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Score and report without writing matches"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
) -> None:
    """Hash, index and score employees, then upsert the resulting matches."""
    if mode not in RUN_MODES:
        raise typer.BadParameter(f"mode must be one of {RUN_MODES}")

    settings = get_settings()
    job_id = job_id or uuid.uuid4().hex[:12]
    conn = get_connection(settings)

    try:
        path = config_path or settings.matching_config_path
        if path and company:
            config = load_company_configuration(path, company)
        elif path:
            config = load_configuration(path)
        else:
            config = fetch_configuration(conn, company)

        # Everyone is indexed; --company only narrows who is matched.
        employees = fetch_employees(conn)
        logger.info("employees_loaded", count=len(employees), job_id=job_id)

        store = InMemoryMatchStore() if dry_run else PostgresMatchStore(conn)
        with MatchingEngine.from_settings(settings, config, store=store) as engine:
            summary = engine.run(
                job_id,
                mode,
                employees,
                company_id=company,
                since=_parse_since(since),
            )
            if not dry_run:
                written = save_identifier_sets(
                    conn, [p.identifiers for p in engine.profiles.values()]
                )
                conn.commit()
                logger.info("identifier_sets_saved", count=written, job_id=job_id)

        if as_json:
            typer.echo(json.dumps(summary.to_dict(), indent=2, default=str))
        else:
            typer.echo(generate_run_report(summary))

        if summary.aborted:
            raise typer.Exit(code=1)
    finally:
        conn.close()


if __name__ == "__main__":
    app()
