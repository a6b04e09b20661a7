"""Output formatting for EIPsInsight results."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import click

from eips_insight.models import ActorRole, CamelModel
from eips_insight.results import LeaderboardEntry, StatusMatrix, TimelineEvent

GITHUB_URL = "https://github.com"

_ROLE_COLORS: dict[str, str] = {
    ActorRole.EDITOR: "magenta",
    ActorRole.REVIEWER: "cyan",
    ActorRole.CONTRIBUTOR: "white",
}


def to_jsonable(result: Any) -> Any:
    """Convert a result model (or list of them) into JSON-ready data."""
    if isinstance(result, CamelModel):
        return result.to_json_dict()
    if isinstance(result, list | tuple):
        return [to_jsonable(item) for item in result]
    if isinstance(result, dict):
        return {key: to_jsonable(value) for key, value in result.items()}
    return result


def format_json(result: Any) -> str:
    """Format any procedure result as indented JSON."""
    return json.dumps(to_jsonable(result), indent=2)


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return value


def format_csv(columns: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> str:
    """Serialize export rows with a fixed header row.

    Missing values become empty cells; columns beyond *columns* are dropped.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_csv_cell(row.get(column)) for column in columns])
    return buffer.getvalue()


def pr_link(repo_name: str, pr_number: int, link_target: str = "pull",
            external_id: str | None = None) -> str:
    """Deep link to a pull request, its review or its comment."""
    url = f"{GITHUB_URL}/{repo_name}/pull/{pr_number}"
    if external_id and link_target == "review":
        return f"{url}#pullrequestreview-{external_id}"
    if external_id and link_target == "comment":
        return f"{url}#issuecomment-{external_id}"
    return url


def timeline_link(event: TimelineEvent) -> str:
    return pr_link(event.repo_name, event.pr_number, event.link_target, event.external_id)


def format_leaderboard_cli(entries: list[LeaderboardEntry]) -> str:
    """Format a leaderboard for terminal display with color."""
    if not entries:
        return "No activity."
    lines: list[str] = []
    for entry in entries:
        color = _ROLE_COLORS.get(entry.role or "", "white")
        actor = click.style(entry.actor, fg=color, bold=True)
        response = (
            f"{entry.avg_response_hours:.1f}h" if entry.avg_response_hours is not None else "n/a"
        )
        lines.append(
            f"{entry.rank:>3}. {actor}  score {entry.total_score}"
            f"  (reviewed {entry.prs_reviewed}, comments {entry.comments},"
            f" created {entry.prs_created}, merged {entry.prs_merged}, response {response})"
        )
    return "\n".join(lines)


def format_timeline_cli(events: list[TimelineEvent]) -> str:
    lines: list[str] = []
    for event in events:
        when = event.created_at.strftime("%Y-%m-%d %H:%M")
        kind = click.style(event.event_type, bold=True)
        lines.append(f"{when}  {event.actor} {kind} #{event.pr_number}  {timeline_link(event)}")
    return "\n".join(lines) if lines else "No activity."


def format_status_matrix_cli(matrix: StatusMatrix) -> str:
    """Render the status matrix as an aligned text table."""
    groups = matrix.groups
    header = f"{'Status':<12}" + "".join(f"{g:>8}" for g in groups) + f"{'Total':>8}"
    lines = [click.style(header, bold=True)]
    for row in matrix.rows:
        counts = "".join(f"{getattr(row, g):>8}" for g in groups)
        lines.append(f"{row.status:<12}{counts}{row.total:>8}")
    totals = "".join(f"{matrix.column_totals.get(g, 0):>8}" for g in groups)
    lines.append(click.style(f"{'Total':<12}{totals}{matrix.grand_total:>8}", bold=True))
    return "\n".join(lines)
