#!/usr/bin/env python3
"""CLI script to print the effective matching configuration."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from dualwatch.config import get_settings
from dualwatch.db import get_connection
from dualwatch.errors import ConfigurationError
from dualwatch.matching.configuration import (
    fetch_configuration,
    load_company_configuration,
    load_configuration,
)

app = typer.Typer()


@app.command()
def main(
    company: str | None = typer.Option(None, "--company", help="Apply this company's overrides"),
    config_path: Path | None = typer.Option(
        None, "--config", help="Configuration JSON file (default: database)"
    ),
) -> None:
    """Load, validate and print the configuration a run would use."""
    settings = get_settings()
    path = config_path or settings.matching_config_path

    try:
        if path:
            if company:
                config = load_company_configuration(path, company)
            else:
                config = load_configuration(path)
        else:
            conn = get_connection(settings)
            try:
                config = fetch_configuration(conn, company)
            finally:
                conn.close()
    except ConfigurationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(json.dumps(config.to_dict(), indent=2, sort_keys=True))


if __name__ == "__main__":
    app()
