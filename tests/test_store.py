"""Tests for the event store accessor."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from eips_insight.exceptions import UpstreamDataError
from eips_insight.filters import FilterSet, normalize_filters
from eips_insight.models import RepoGroup, repo_group
from eips_insight.store import EventStore

from tests.conftest import StoreBuilder


class TestRepoGroup:
    def test_known_repositories(self) -> None:
        assert repo_group("ethereum/EIPs") == RepoGroup.EIPS
        assert repo_group("ethereum/ERCs") == RepoGroup.ERCS
        assert repo_group("ethereum/RIPs") == RepoGroup.RIPS

    def test_bare_key(self) -> None:
        assert repo_group("ercs") == RepoGroup.ERCS

    def test_unknown(self) -> None:
        assert repo_group("ethereum/consensus-specs") == RepoGroup.UNKNOWN
        assert repo_group(None) == RepoGroup.UNKNOWN


class TestEventStoreErrors:
    def test_missing_database(self, tmp_path: Path) -> None:
        store = EventStore(tmp_path / "missing.db")
        with pytest.raises(UpstreamDataError, match="not found"):
            store.proposals()
        assert not (tmp_path / "missing.db").exists()

    def test_failed_query_is_wrapped(self, empty_store: EventStore) -> None:
        with pytest.raises(UpstreamDataError) as exc_info:
            empty_store.query("SELECT * FROM no_such_table")
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
        assert exc_info.value.query == "SELECT * FROM no_such_table"
        assert exc_info.value.kind == "upstream_data"

    def test_store_is_read_only(self, empty_store: EventStore) -> None:
        with pytest.raises(UpstreamDataError):
            empty_store.query(
                "INSERT INTO proposals (repository, number, status) VALUES ('x', 1, 'Draft')"
            )


class TestTypedReaders:
    def test_proposals_parse_requires_and_timestamps(self, builder: StoreBuilder) -> None:
        store = builder.proposal(1559, "Final", requires="2718, 2930", created="2019-04-13").build()
        (proposal,) = store.proposals()
        assert proposal.requires == [2718, 2930]
        assert proposal.created_at == datetime(2019, 4, 13, tzinfo=UTC)
        assert proposal.repo == "eips"

    def test_repository_filter(self, eips_store: EventStore) -> None:
        ercs = eips_store.proposals(normalize_filters(repository="ercs"))
        assert [p.number for p in ercs] == [20]

    def test_find_proposal(self, eips_store: EventStore) -> None:
        assert eips_store.find_proposal("rips", 7212).title == "Proposal 7212"
        assert eips_store.find_proposal("eips", 7212) is None

    def test_status_events_ascending(self, builder: StoreBuilder) -> None:
        store = (
            builder.proposal(1)
            .status_event(1, "Draft", "Review", "2024-02-01")
            .status_event(1, None, "Draft", "2024-01-01")
            .build()
        )
        events = store.status_events(FilterSet(), number=1)
        assert [e.to_status for e in events] == ["Draft", "Review"]

    def test_open_only(self, builder: StoreBuilder) -> None:
        store = (
            builder.pr(1, "2024-01-01")
            .pr(2, "2024-01-02", state="closed", closed="2024-01-03")
            .build()
        )
        assert [pr.pr_number for pr in store.pull_requests(open_only=True)] == [1]

    def test_activity_newest_first_with_limit(self, builder: StoreBuilder) -> None:
        store = (
            builder.activity("a", "COMMENTED", 1, "2024-01-01")
            .activity("b", "COMMENTED", 1, "2024-01-03")
            .activity("c", "COMMENTED", 1, "2024-01-02", role="EDITOR")
            .build()
        )
        newest = store.activity_events(newest_first=True, limit=2)
        assert [e.actor for e in newest] == ["b", "c"]
        assert [e.actor for e in store.activity_events(role="EDITOR")] == ["c"]

    def test_governance_states_keyed_by_pr(self, builder: StoreBuilder) -> None:
        store = builder.governance(10, "STALLED").build()
        assert store.governance_states() == {("ethereum/EIPs", 10): "STALLED"}
