"""Read-only SQLite accessor for the governance event store."""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from eips_insight.exceptions import UpstreamDataError
from eips_insight.filters import FilterSet, repo_condition, where
from eips_insight.models import (
    ActivityEvent,
    PREvent,
    Proposal,
    PullRequest,
    StatusEvent,
    repo_group,
)
from eips_insight.primitives import parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS proposals (
    repository TEXT NOT NULL,
    number INTEGER NOT NULL,
    title TEXT,
    author TEXT,
    status TEXT NOT NULL,
    type TEXT,
    category TEXT,
    created_at TEXT,
    updated_at TEXT,
    requires TEXT,
    deadline TEXT,
    PRIMARY KEY (repository, number)
);
CREATE TABLE IF NOT EXISTS status_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repository TEXT NOT NULL,
    number INTEGER NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    changed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_status_events_proposal
    ON status_events(repository, number, changed_at);
CREATE TABLE IF NOT EXISTS pull_requests (
    repository TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    title TEXT,
    author TEXT,
    state TEXT NOT NULL,
    created_at TEXT NOT NULL,
    merged_at TEXT,
    closed_at TEXT,
    proposal_number INTEGER,
    PRIMARY KEY (repository, pr_number)
);
CREATE TABLE IF NOT EXISTS activity_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor TEXT NOT NULL,
    role TEXT,
    event_type TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    repository TEXT NOT NULL,
    occurred_at TEXT NOT NULL,
    external_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_activity_pr ON activity_events(repository, pr_number);
CREATE TABLE IF NOT EXISTS pr_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repository TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    label TEXT,
    actor TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS governance_states (
    repository TEXT NOT NULL,
    pr_number INTEGER NOT NULL,
    current_state TEXT NOT NULL,
    days_since_last_action INTEGER,
    PRIMARY KEY (repository, pr_number)
);
CREATE TABLE IF NOT EXISTS proposal_commits (
    repository TEXT NOT NULL,
    number INTEGER NOT NULL,
    sha TEXT NOT NULL,
    committed_at TEXT NOT NULL,
    PRIMARY KEY (repository, sha)
);
"""


def create_schema(db_path: Path | str) -> None:
    """Create the event-store tables. Used by the ingestion side and fixtures."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


def _repo_group_sql(repository: str | None) -> str:
    return repo_group(repository).value


def _parse_requires(raw: str | None) -> list[int]:
    if not raw:
        return []
    return [int(part) for part in raw.replace(";", ",").split(",") if part.strip().isdigit()]


class EventStore:
    """Read-only access to proposals, status events, PRs and activity.

    Each query opens its own connection, so one store can serve
    concurrent callers from several threads.
    """

    def __init__(self, db_path: Path | str, timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self.db_path.is_file():
            logger.error("EventStore: %s does not exist", self.db_path)
            raise UpstreamDataError(f"Event store not found: {self.db_path}")
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            conn.execute("PRAGMA query_only = ON")
        except sqlite3.Error as exc:
            logger.error("EventStore: cannot open %s: %s", self.db_path, exc)
            raise UpstreamDataError(f"Event store unavailable: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.create_function("repo_group", 1, _repo_group_sql, deterministic=True)
        try:
            yield conn
        finally:
            conn.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a SELECT and return all rows.

        Raises:
            UpstreamDataError: If the store is unreachable or the query fails.
        """
        with self._connect() as conn:
            start = time.perf_counter()
            try:
                rows = conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as exc:
                logger.error("EventStore: query failed: %s", exc, exc_info=True)
                raise UpstreamDataError(f"Query failed: {exc}", query=sql) from exc
            elapsed = time.perf_counter() - start
            logger.debug("EventStore: %d rows in %.3fs", len(rows), elapsed)
            return rows

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.query_one(sql, params)
        return row[0] if row is not None else None

    # ------------------------------------------------------------------
    # Typed readers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_proposal(row: sqlite3.Row) -> Proposal:
        return Proposal(
            repository=row["repository"],
            number=row["number"],
            title=row["title"],
            author=row["author"],
            status=row["status"],
            type=row["type"],
            category=row["category"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            requires=_parse_requires(row["requires"]),
            deadline=parse_timestamp(row["deadline"]),
        )

    def proposals(self, filters: FilterSet | None = None) -> list[Proposal]:
        """All proposal snapshots, optionally restricted to one repository group."""
        conditions, params = repo_condition(filters or FilterSet(), "repository")
        rows = self.query(
            f"SELECT * FROM proposals {where(conditions)} ORDER BY number, repository",
            params,
        )
        return [self._to_proposal(r) for r in rows]

    def find_proposal(self, repository: str, number: int) -> Proposal | None:
        row = self.query_one(
            "SELECT * FROM proposals WHERE repo_group(repository) = ? AND number = ?",
            (repository, number),
        )
        return self._to_proposal(row) if row is not None else None

    def status_events(
        self,
        filters: FilterSet | None = None,
        repository: str | None = None,
        number: int | None = None,
    ) -> list[StatusEvent]:
        """Status events in ascending time order."""
        conditions, params = repo_condition(filters or FilterSet(), "repository")
        if repository is not None:
            conditions.append("repository = ?")
            params.append(repository)
        if number is not None:
            conditions.append("number = ?")
            params.append(number)
        rows = self.query(
            f"SELECT * FROM status_events {where(conditions)} ORDER BY changed_at, id",
            params,
        )
        return [
            StatusEvent(
                repository=r["repository"],
                number=r["number"],
                from_status=r["from_status"],
                to_status=r["to_status"],
                changed_at=parse_timestamp(r["changed_at"]),
            )
            for r in rows
        ]

    def pull_requests(
        self, filters: FilterSet | None = None, open_only: bool = False
    ) -> list[PullRequest]:
        conditions, params = repo_condition(filters or FilterSet(), "repository")
        if open_only:
            conditions.append("state = 'open'")
        rows = self.query(
            f"SELECT * FROM pull_requests {where(conditions)} ORDER BY created_at, pr_number",
            params,
        )
        return [
            PullRequest(
                repository=r["repository"],
                pr_number=r["pr_number"],
                title=r["title"],
                author=r["author"],
                state=r["state"],
                created_at=parse_timestamp(r["created_at"]),
                merged_at=parse_timestamp(r["merged_at"]),
                closed_at=parse_timestamp(r["closed_at"]),
                proposal_number=r["proposal_number"],
            )
            for r in rows
        ]

    def activity_events(
        self,
        filters: FilterSet | None = None,
        role: str | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[ActivityEvent]:
        conditions, params = repo_condition(filters or FilterSet(), "repository")
        if role is not None:
            conditions.append("role = ?")
            params.append(role)
        order = "DESC" if newest_first else "ASC"
        sql = (
            f"SELECT * FROM activity_events {where(conditions)} "
            f"ORDER BY occurred_at {order}, id {order}"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.query(sql, params)
        return [
            ActivityEvent(
                id=r["id"],
                actor=r["actor"],
                role=r["role"],
                event_type=r["event_type"],
                pr_number=r["pr_number"],
                repository=r["repository"],
                occurred_at=parse_timestamp(r["occurred_at"]),
                external_id=r["external_id"],
            )
            for r in rows
        ]

    def pr_events(self, filters: FilterSet | None = None) -> list[PREvent]:
        conditions, params = repo_condition(filters or FilterSet(), "repository")
        rows = self.query(
            f"SELECT * FROM pr_events {where(conditions)} ORDER BY created_at, id",
            params,
        )
        return [
            PREvent(
                repository=r["repository"],
                pr_number=r["pr_number"],
                event_type=r["event_type"],
                label=r["label"],
                actor=r["actor"],
                created_at=parse_timestamp(r["created_at"]),
            )
            for r in rows
        ]

    def governance_states(self, filters: FilterSet | None = None) -> dict[tuple[str, int], str]:
        """Materialized governance state keyed by ``(repository, pr_number)``."""
        conditions, params = repo_condition(filters or FilterSet(), "repository")
        rows = self.query(
            f"SELECT repository, pr_number, current_state FROM governance_states "
            f"{where(conditions)}",
            params,
        )
        return {(r["repository"], r["pr_number"]): r["current_state"] for r in rows}
