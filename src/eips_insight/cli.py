"""Click-based CLI for EIPsInsight analytics."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from eips_insight.config import EIPsInsightConfig, load_config
from eips_insight.exceptions import EIPsInsightError
from eips_insight.explore import activity_timeline, role_leaderboard
from eips_insight.filters import normalize_filters
from eips_insight.formatter import (
    format_json,
    format_leaderboard_cli,
    format_status_matrix_cli,
    format_timeline_cli,
)
from eips_insight.procedures import call_procedure, list_procedures
from eips_insight.standards import status_matrix
from eips_insight.store import EventStore


class _Session:
    """Config and store shared by every command of one invocation."""

    def __init__(self, config: EIPsInsightConfig) -> None:
        self.config = config
        self.store = EventStore(config.database.path, timeout=config.database.timeout_seconds)


def _fail(exc: EIPsInsightError) -> None:
    click.echo(f"Error ({exc.kind}): {exc}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(package_name="eips-insight")
@click.option("--db", "db_path", default=None, help="Event store SQLite file")
@click.option("--config", "config_path", default=None, help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Log queries and timings")
@click.pass_context
def main(ctx: click.Context, db_path: str | None, config_path: str | None, verbose: bool) -> None:
    """EIPsInsight - Ethereum proposal governance analytics."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(config_path)
    except EIPsInsightError as exc:
        _fail(exc)
    if db_path is not None:
        config = config.model_copy(
            update={"database": config.database.model_copy(update={"path": db_path})}
        )
    ctx.obj = _Session(config)


@main.command()
def procedures() -> None:
    """List available procedures."""
    for entry in list_procedures():
        name = click.style(entry["name"], bold=True)
        click.echo(f"{name}  {entry['description']}")


@main.command()
@click.argument("name")
@click.option("--input", "input_json", default=None, help="Procedure input as JSON")
@click.pass_obj
def call(session: _Session, name: str, input_json: str | None) -> None:
    """Run a procedure by NAME and print its JSON output."""
    try:
        payload = json.loads(input_json) if input_json else {}
    except json.JSONDecodeError as exc:
        click.echo(f"Error: --input is not valid JSON: {exc}", err=True)
        sys.exit(1)
    try:
        result = call_procedure(name, payload, store=session.store, config=session.config)
    except EIPsInsightError as exc:
        _fail(exc)
    click.echo(format_json(result))


@main.command()
@click.argument("kind", type=click.Choice(["standards", "rips"]))
@click.option("--repository", default=None, help="eips, ercs or rips")
@click.option("--status", "statuses", multiple=True, help="Status filter (repeatable)")
@click.option("--type", "types", multiple=True, help="Type filter (repeatable)")
@click.option("--category", "categories", multiple=True, help="Category filter (repeatable)")
@click.option("--year-from", type=int, default=None)
@click.option("--year-to", type=int, default=None)
@click.option("--search", default=None, help="Match number, title or author")
@click.option("--output", "-o", "output", default=None, help="Write CSV to this file")
@click.pass_obj
def export(
    session: _Session,
    kind: str,
    repository: str | None,
    statuses: tuple[str, ...],
    types: tuple[str, ...],
    categories: tuple[str, ...],
    year_from: int | None,
    year_to: int | None,
    search: str | None,
    output: str | None,
) -> None:
    """Export the full filtered KIND table as CSV."""
    payload = {
        "kind": kind,
        "repository": repository,
        "statuses": list(statuses),
        "types": list(types),
        "categories": list(categories),
        "yearFrom": year_from,
        "yearTo": year_to,
        "search": search,
    }
    try:
        result = call_procedure(
            "tables.export", payload, store=session.store, config=session.config
        )
    except EIPsInsightError as exc:
        _fail(exc)

    if output is None:
        click.echo(result["csv"], nl=False)
        return
    Path(output).write_text(result["csv"])
    click.echo(f"Wrote {result['rowCount']} rows to {output}", err=True)


@main.command()
@click.option("--repository", default=None, help="eips, ercs or rips")
@click.pass_obj
def matrix(session: _Session, repository: str | None) -> None:
    """Show proposal counts per status and repository."""
    try:
        result = status_matrix(session.store, normalize_filters(repository=repository))
    except EIPsInsightError as exc:
        _fail(exc)
    click.echo(format_status_matrix_cli(result))


@main.command()
@click.option("--role", default=None, help="EDITOR, REVIEWER or CONTRIBUTOR")
@click.option("--limit", type=int, default=None)
@click.option("--timeline", "show_timeline", is_flag=True, help="Show recent activity instead")
@click.pass_obj
def leaderboard(
    session: _Session, role: str | None, limit: int | None, show_timeline: bool
) -> None:
    """Show the contributor leaderboard or the recent activity timeline."""
    weights = session.config.leaderboard
    filters = normalize_filters()
    try:
        if show_timeline:
            events = activity_timeline(
                session.store, filters, role=role, limit=limit or weights.timeline_limit
            )
            click.echo(format_timeline_cli(events))
            return
        entries = role_leaderboard(
            session.store, filters, role=role,
            limit=limit or weights.default_limit, weights=weights,
        )
    except EIPsInsightError as exc:
        _fail(exc)
    click.echo(format_leaderboard_cli(entries))
