"""Sortable, paginated proposal tables and their CSV export row sets."""

from __future__ import annotations

import logging
import math
import sqlite3
from datetime import datetime
from enum import StrEnum
from typing import Any

from eips_insight.config import PaginationConfig
from eips_insight.exceptions import InvalidFilterError
from eips_insight.filters import FilterSet, proposal_conditions, where
from eips_insight.models import RepoGroup
from eips_insight.primitives import parse_timestamp, utcnow
from eips_insight.results import RIPRow, StandardsRow, TablePage
from eips_insight.store import EventStore

logger = logging.getLogger(__name__)


class TableKind(StrEnum):
    STANDARDS = "standards"
    RIPS = "rips"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


class StandardsSort(StrEnum):
    """Sortable columns of the EIP/ERC table."""
    NUMBER = "number"
    TITLE = "title"
    STATUS = "status"
    TYPE = "type"
    CATEGORY = "category"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    DAYS_IN_STATUS = "days_in_status"
    LINKED_PRS = "linked_prs"


class RIPSort(StrEnum):
    """Sortable columns of the RIP table."""
    NUMBER = "number"
    TITLE = "title"
    STATUS = "status"
    AUTHOR = "author"
    CREATED_AT = "created_at"
    LAST_COMMIT = "last_commit"
    COMMITS = "commits"


_SORTS: dict[TableKind, type[StandardsSort] | type[RIPSort]] = {
    TableKind.STANDARDS: StandardsSort,
    TableKind.RIPS: RIPSort,
}

# Fixed export columns; CSV headers never change between calls.
STANDARDS_COLUMNS: tuple[str, ...] = (
    "repo", "number", "title", "author", "status", "type", "category",
    "createdAt", "updatedAt", "daysInStatus", "linkedPRs",
)
RIP_COLUMNS: tuple[str, ...] = (
    "number", "title", "status", "author", "createdAt", "lastCommit", "commits",
)


def coerce_kind(value: str) -> TableKind:
    try:
        return TableKind(str(value).strip().lower())
    except ValueError:
        raise InvalidFilterError(
            "kind", f"{value!r} is not one of {', '.join(k.value for k in TableKind)}"
        ) from None


def coerce_sort(kind: TableKind | str, value: str | None) -> StandardsSort | RIPSort:
    """Map a requested sort column onto the kind's whitelist.

    Anything not on the whitelist falls back to ``number``, so a sort
    carried over from another table kind never fails.
    """
    enum = _SORTS[coerce_kind(kind)]
    if value:
        try:
            return enum(value.strip().lower())
        except ValueError:
            logger.debug("Unsupported sort column %r for %s; using number", value, kind)
    return enum.NUMBER


def coerce_direction(value: str | None) -> SortDirection:
    if value and value.strip().lower() == SortDirection.DESC:
        return SortDirection.DESC
    return SortDirection.ASC


def clamp_page_size(page_size: int | None, config: PaginationConfig | None = None) -> int:
    config = config or PaginationConfig()
    if page_size is None:
        return config.default_page_size
    return max(1, min(int(page_size), config.max_page_size))


# ---------------------------------------------------------------------------
# Row sources
# ---------------------------------------------------------------------------

def _standards_source(filters: FilterSet, now: datetime) -> tuple[str, list[Any]]:
    conditions, params = proposal_conditions(filters, "p")
    conditions.append("repo_group(p.repository) != ?")
    params.append(RepoGroup.RIPS.value)
    sql = f"""
        WITH last_change AS (
            SELECT repository, number, MAX(changed_at) AS changed_at
            FROM status_events
            GROUP BY repository, number
        ),
        linked AS (
            SELECT repository, proposal_number AS number, COUNT(*) AS n
            FROM pull_requests
            WHERE proposal_number IS NOT NULL
            GROUP BY repository, proposal_number
        )
        SELECT p.repository, repo_group(p.repository) AS repo, p.number, p.title,
               p.author, p.status, p.type, p.category, p.created_at, p.updated_at,
               COALESCE(CAST(
                   julianday(?) - julianday(COALESCE(lc.changed_at, p.created_at))
                   AS INTEGER), 0) AS days_in_status,
               COALESCE(l.n, 0) AS linked_prs
        FROM proposals p
        LEFT JOIN last_change lc ON lc.repository = p.repository AND lc.number = p.number
        LEFT JOIN linked l ON l.repository = p.repository AND l.number = p.number
        {where(conditions)}
    """
    return sql, [now.isoformat(), *params]


def _rips_source(filters: FilterSet) -> tuple[str, list[Any]]:
    conditions, params = proposal_conditions(filters.model_copy(update={"repository": None}), "p")
    conditions.append("repo_group(p.repository) = ?")
    params.append(RepoGroup.RIPS.value)
    sql = f"""
        WITH commits AS (
            SELECT repository, number, COUNT(*) AS n, MAX(committed_at) AS last_commit
            FROM proposal_commits
            GROUP BY repository, number
        )
        SELECT p.repository, p.number, p.title, p.status, p.author, p.created_at,
               c.last_commit, COALESCE(c.n, 0) AS commits
        FROM proposals p
        LEFT JOIN commits c ON c.repository = p.repository AND c.number = p.number
        {where(conditions)}
    """
    return sql, params


def _source(kind: TableKind, filters: FilterSet, now: datetime) -> tuple[str, list[Any]]:
    if kind == TableKind.RIPS:
        return _rips_source(filters)
    return _standards_source(filters, now)


def _to_row(kind: TableKind, r: sqlite3.Row) -> StandardsRow | RIPRow:
    if kind == TableKind.RIPS:
        return RIPRow(
            number=r["number"],
            title=r["title"],
            status=r["status"],
            author=r["author"],
            created_at=parse_timestamp(r["created_at"]),
            last_commit=parse_timestamp(r["last_commit"]),
            commits=r["commits"],
        )
    return StandardsRow(
        repo=r["repo"],
        number=r["number"],
        title=r["title"],
        author=r["author"],
        status=r["status"],
        type=r["type"],
        category=r["category"],
        created_at=parse_timestamp(r["created_at"]),
        updated_at=parse_timestamp(r["updated_at"]),
        days_in_status=r["days_in_status"],
        linked_prs=r["linked_prs"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def table_page(
    store: EventStore,
    kind: TableKind | str,
    filters: FilterSet,
    sort_by: str | None = None,
    sort_dir: str | None = None,
    page: int = 1,
    page_size: int | None = None,
    now: datetime | None = None,
    config: PaginationConfig | None = None,
) -> TablePage:
    """One page of the filtered table for *kind*.

    ``total`` and ``totalPages`` describe the whole filtered set. Rows
    with equal sort values are ordered by number so that consecutive
    pages never overlap or skip rows. A page past the end is empty.
    """
    kind = coerce_kind(kind)
    now = now or utcnow()
    column = coerce_sort(kind, sort_by)
    direction = coerce_direction(sort_dir)
    size = clamp_page_size(page_size, config)
    page = max(1, int(page or 1))

    source, params = _source(kind, filters, now)
    total = store.scalar(f"SELECT COUNT(*) FROM ({source})", params) or 0

    rows = store.query(
        f"""
        SELECT * FROM ({source})
        ORDER BY {column.value} {direction.value.upper()}, number ASC, repository ASC
        LIMIT ? OFFSET ?
        """,
        [*params, size, (page - 1) * size],
    )
    page_model = TablePage[RIPRow] if kind == TableKind.RIPS else TablePage[StandardsRow]
    return page_model(
        rows=[_to_row(kind, r) for r in rows],
        total=total,
        page=page,
        page_size=size,
        total_pages=math.ceil(total / size) if total else 0,
        sort_by=column.value,
        sort_dir=direction.value,
    )


def standards_table(
    store: EventStore, filters: FilterSet, **kwargs: Any
) -> TablePage[StandardsRow]:
    return table_page(store, TableKind.STANDARDS, filters, **kwargs)


def rips_table(store: EventStore, filters: FilterSet, **kwargs: Any) -> TablePage[RIPRow]:
    return table_page(store, TableKind.RIPS, filters, **kwargs)


def export_columns(kind: TableKind | str) -> tuple[str, ...]:
    return RIP_COLUMNS if coerce_kind(kind) == TableKind.RIPS else STANDARDS_COLUMNS


def export_rows(
    store: EventStore,
    kind: TableKind | str,
    filters: FilterSet,
    now: datetime | None = None,
) -> tuple[tuple[str, ...], list[dict[str, Any]]]:
    """The full filtered row set of a table, in default order, unpaginated.

    Returns the fixed column list and one JSON-ready dict per row with
    exactly those keys.
    """
    kind = coerce_kind(kind)
    now = now or utcnow()
    columns = export_columns(kind)
    source, params = _source(kind, filters, now)
    rows = store.query(f"SELECT * FROM ({source}) ORDER BY number ASC, repository ASC", params)

    records: list[dict[str, Any]] = []
    for r in rows:
        data = _to_row(kind, r).to_json_dict()
        records.append({column: data.get(column) for column in columns})
    logger.info("Exporting %d %s rows", len(records), kind.value)
    return columns, records
