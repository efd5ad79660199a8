"""Command-line interface for the charging ledger updater."""

from __future__ import annotations

import json
from contextlib import closing
from pathlib import Path
from typing import Optional

import typer

from .config import load_config
from .extractor import extract_spot_prices
from .errors import ExtractionFailed
from .logging import configure_logging
from .models import MonthKey
from .rates import rate_for
from .runtime import build_runtime, run_once
from .store import LedgerStore

app = typer.Typer(add_completion=False, help="Monthly charging cost ledger")


@app.command("update")
def update_command(
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit with code 1 when the run failed or an output could not be written",
    ),
) -> None:
    runtime = build_runtime()
    with closing(runtime):
        report = run_once(runtime)

    outcome = report.outcome
    if outcome.ok:
        typer.echo(f"Ledger updated, {len(outcome.snapshot.months)} month(s)")
    else:
        typer.echo(f"Run failed, ledger months unchanged: {outcome.error}", err=True)
    for target in report.failed_targets:
        typer.echo(f"Could not write {target}", err=True)
    if strict and (not outcome.ok or report.failed_targets):
        raise typer.Exit(code=1)


@app.command("month")
def month_command(
    month_value: str = typer.Option(..., "--month", help="Ledger month (YYYY-MM)"),
) -> None:
    key = _parse_month(month_value)
    record = _load_ledger().month(key)
    if record is None:
        raise typer.Exit(code=1)
    typer.echo(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))


@app.command("rate")
def rate_command(
    month_value: str = typer.Option(..., "--month", help="Month to look up (YYYY-MM)"),
) -> None:
    key = _parse_month(month_value)
    row = rate_for(_load_ledger().rates, key)
    typer.echo(json.dumps({"month": str(key), "effectiveFrom": str(row.effective_from), **row.applied()}))


@app.command("extract")
def extract_command(
    file: Path = typer.Option(..., "--file", exists=True, dir_okay=False, help="Saved price history page"),
) -> None:
    configure_logging("WARNING")
    try:
        table = extract_spot_prices(file.read_text(encoding="utf-8"))
    except ExtractionFailed as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps({str(year): months for year, months in sorted(table.items())}, indent=2))


def _load_ledger():
    cfg = load_config()
    configure_logging(cfg.log_level)
    return LedgerStore(cfg.ledger_path, cfg.output_paths).load()


def _parse_month(value: Optional[str]) -> MonthKey:
    try:
        return MonthKey.parse(value or "")
    except ValueError as exc:
        raise typer.BadParameter("Month must be in YYYY-MM format") from exc


def main():
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
