"""Shared test fixtures for EIPsInsight tests."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from eips_insight.config import EIPsInsightConfig
from eips_insight.filters import FilterSet
from eips_insight.store import EventStore, create_schema

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def ts(value: str | datetime | None) -> str | None:
    """Store-format timestamp from ``YYYY-MM-DD[THH:MM]`` or a datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if len(value) == 10:
        value += "T00:00:00"
    return datetime.fromisoformat(value).replace(tzinfo=UTC).isoformat()


class StoreBuilder:
    """Writes fixture rows into a fresh event store database."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        create_schema(db_path)
        self._conn = sqlite3.connect(str(db_path))

    def _insert(self, table: str, **values: object) -> None:
        columns = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        self._conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({marks})", tuple(values.values())
        )

    def proposal(
        self,
        number: int,
        status: str = "Draft",
        repository: str = "ethereum/EIPs",
        title: str | None = None,
        author: str | None = None,
        type: str | None = "Standards Track",
        category: str | None = "Core",
        created: str | None = "2023-01-01",
        updated: str | None = None,
        requires: str | None = None,
        deadline: str | None = None,
    ) -> StoreBuilder:
        self._insert(
            "proposals",
            repository=repository,
            number=number,
            title=title if title is not None else f"Proposal {number}",
            author=author,
            status=status,
            type=type,
            category=category,
            created_at=ts(created),
            updated_at=ts(updated),
            requires=requires,
            deadline=ts(deadline),
        )
        return self

    def status_event(
        self,
        number: int,
        from_status: str | None,
        to_status: str,
        at: str,
        repository: str = "ethereum/EIPs",
    ) -> StoreBuilder:
        self._insert(
            "status_events",
            repository=repository,
            number=number,
            from_status=from_status,
            to_status=to_status,
            changed_at=ts(at),
        )
        return self

    def pr(
        self,
        pr_number: int,
        created: str,
        state: str = "open",
        merged: str | None = None,
        closed: str | None = None,
        repository: str = "ethereum/EIPs",
        title: str | None = None,
        author: str | None = "author",
        proposal: int | None = None,
    ) -> StoreBuilder:
        self._insert(
            "pull_requests",
            repository=repository,
            pr_number=pr_number,
            title=title if title is not None else f"PR {pr_number}",
            author=author,
            state=state,
            created_at=ts(created),
            merged_at=ts(merged),
            closed_at=ts(closed),
            proposal_number=proposal,
        )
        return self

    def activity(
        self,
        actor: str,
        event_type: str,
        pr_number: int,
        at: str,
        role: str | None = "REVIEWER",
        repository: str = "ethereum/EIPs",
        external_id: str | None = None,
    ) -> StoreBuilder:
        self._insert(
            "activity_events",
            actor=actor,
            role=role,
            event_type=event_type,
            pr_number=pr_number,
            repository=repository,
            occurred_at=ts(at),
            external_id=external_id,
        )
        return self

    def pr_event(
        self,
        pr_number: int,
        event_type: str,
        at: str,
        label: str | None = None,
        repository: str = "ethereum/EIPs",
    ) -> StoreBuilder:
        self._insert(
            "pr_events",
            repository=repository,
            pr_number=pr_number,
            event_type=event_type,
            label=label,
            created_at=ts(at),
        )
        return self

    def governance(
        self, pr_number: int, state: str, repository: str = "ethereum/EIPs"
    ) -> StoreBuilder:
        self._insert(
            "governance_states",
            repository=repository,
            pr_number=pr_number,
            current_state=state,
        )
        return self

    def commit(
        self, number: int, sha: str, at: str, repository: str = "ethereum/RIPs"
    ) -> StoreBuilder:
        self._insert(
            "proposal_commits",
            repository=repository,
            number=number,
            sha=sha,
            committed_at=ts(at),
        )
        return self

    def build(self) -> EventStore:
        self._conn.commit()
        self._conn.close()
        return EventStore(self.db_path)


@pytest.fixture
def builder(tmp_path: Path) -> StoreBuilder:
    return StoreBuilder(tmp_path / "events.db")


@pytest.fixture
def empty_store(builder: StoreBuilder) -> EventStore:
    return builder.build()


@pytest.fixture
def no_filters() -> FilterSet:
    return FilterSet()


@pytest.fixture
def config() -> EIPsInsightConfig:
    return EIPsInsightConfig()


@pytest.fixture
def eips_store(builder: StoreBuilder) -> EventStore:
    """3 Draft, 2 Final and 1 Withdrawn EIPs plus one ERC and one RIP."""
    for number in (1, 2, 3):
        builder.proposal(number, "Draft", created="2023-03-01")
    builder.proposal(4, "Final", created="2022-05-01", category="Core")
    builder.proposal(5, "Final", created="2024-02-01", category="Networking")
    builder.proposal(6, "Withdrawn", created="2021-01-01", category=None, type="Meta")
    builder.proposal(
        20, "Review", repository="ethereum/ERCs", category="ERC",
        created="2024-01-10", author="Alice (@alice), Bob <bob@example.com>",
    )
    builder.proposal(
        7212, "Draft", repository="ethereum/RIPs", category=None,
        created="2023-09-01", author="Carol",
    )
    return builder.build()
