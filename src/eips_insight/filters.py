"""Canonical filter set applied before any aggregator runs."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from eips_insight.exceptions import InvalidFilterError
from eips_insight.models import ActorRole, RepoGroup

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Keys a caller may pass as a repository selector.
REPOSITORY_KEYS: tuple[str, ...] = (RepoGroup.EIPS, RepoGroup.ERCS, RepoGroup.RIPS)


class FilterSet(BaseModel):
    """Filters in canonical form.

    Empty lists and ``None`` always mean "no restriction".
    """
    repository: str | None = None
    statuses: list[str] = []
    types: list[str] = []
    categories: list[str] = []
    year_from: int | None = None
    year_to: int | None = None
    month_from: str | None = None
    month_to: str | None = None
    search: str | None = None
    days: int | None = None

    model_config = {"frozen": True}


def _normalize_repository(value: str | None) -> str | None:
    if value is None:
        return None
    key = value.strip().lower()
    if key in ("", "all"):
        return None
    if key not in REPOSITORY_KEYS:
        raise InvalidFilterError(
            "repository", f"{value!r} is not one of all, {', '.join(REPOSITORY_KEYS)}"
        )
    return key


def _normalize_list(values: Iterable[str] | str | None) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    seen: list[str] = []
    for value in values:
        item = str(value).strip()
        if item and item not in seen:
            seen.append(item)
    return seen


def normalize_role(value: str | None) -> ActorRole | None:
    """Canonicalize an actor role filter; blank means every role.

    Raises:
        InvalidFilterError: If the value names no known role.
    """
    if value is None or not value.strip():
        return None
    key = value.strip().upper()
    try:
        return ActorRole(key)
    except ValueError:
        raise InvalidFilterError(
            "role", f"{value!r} is not one of {', '.join(ActorRole)}"
        ) from None


def _normalize_month(field: str, value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    value = value.strip()
    if not _MONTH_RE.match(value):
        raise InvalidFilterError(field, f"{value!r} is not a YYYY-MM month")
    return value


def normalize_filters(
    repository: str | None = None,
    statuses: Iterable[str] | str | None = None,
    types: Iterable[str] | str | None = None,
    categories: Iterable[str] | str | None = None,
    year_from: int | None = None,
    year_to: int | None = None,
    month_from: str | None = None,
    month_to: str | None = None,
    search: str | None = None,
    days: int | None = None,
) -> FilterSet:
    """Canonicalize raw filter values.

    Raises:
        InvalidFilterError: For an unknown repository key, an inverted
            year or month range, a malformed month or a negative day count.
    """
    if year_from is not None and year_to is not None and year_from > year_to:
        raise InvalidFilterError("year", f"year_from {year_from} is after year_to {year_to}")

    month_from = _normalize_month("month_from", month_from)
    month_to = _normalize_month("month_to", month_to)
    if month_from and month_to and month_from > month_to:
        raise InvalidFilterError("month", f"{month_from} is after {month_to}")

    if days is not None and days < 0:
        raise InvalidFilterError("days", "must not be negative")

    term = search.strip() if search else None

    return FilterSet(
        repository=_normalize_repository(repository),
        statuses=_normalize_list(statuses),
        types=_normalize_list(types),
        categories=_normalize_list(categories),
        year_from=year_from,
        year_to=year_to,
        month_from=month_from,
        month_to=month_to,
        search=term or None,
        days=days,
    )


def repo_condition(filters: FilterSet, column: str) -> tuple[list[str], list[Any]]:
    """SQL condition restricting *column* to the filter's repository group."""
    if filters.repository is None:
        return [], []
    return [f"repo_group({column}) = ?"], [filters.repository]


def _in_clause(column: str, values: list[str]) -> str:
    return f"{column} IN ({', '.join('?' for _ in values)})"


def proposal_conditions(filters: FilterSet, alias: str = "p") -> tuple[list[str], list[Any]]:
    """SQL conditions for the proposal filters.

    OR within a field, AND across fields.
    """
    conditions, params = repo_condition(filters, f"{alias}.repository")
    if filters.statuses:
        conditions.append(_in_clause(f"{alias}.status", filters.statuses))
        params.extend(filters.statuses)
    if filters.types:
        conditions.append(_in_clause(f"{alias}.type", filters.types))
        params.extend(filters.types)
    if filters.categories:
        conditions.append(_in_clause(f"{alias}.category", filters.categories))
        params.extend(filters.categories)
    if filters.year_from is not None:
        conditions.append(f"CAST(strftime('%Y', {alias}.created_at) AS INTEGER) >= ?")
        params.append(filters.year_from)
    if filters.year_to is not None:
        conditions.append(f"CAST(strftime('%Y', {alias}.created_at) AS INTEGER) <= ?")
        params.append(filters.year_to)
    if filters.search:
        like = f"%{filters.search}%"
        conditions.append(
            f"(CAST({alias}.number AS TEXT) LIKE ? OR {alias}.title LIKE ?"
            f" OR {alias}.author LIKE ?)"
        )
        params.extend([like, like, like])
    return conditions, params


def where(conditions: list[str]) -> str:
    """Render a WHERE clause, or nothing when there are no conditions."""
    if not conditions:
        return ""
    return "WHERE " + " AND ".join(conditions)
