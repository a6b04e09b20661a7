"""Tests for the leaderboard, timeline, role summaries and trending views."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from eips_insight.config import LeaderboardWeights, TrendingConfig
from eips_insight.exceptions import InvalidFilterError
from eips_insight.explore import (
    activity_timeline,
    link_target,
    role_activity_sparkline,
    role_counts,
    role_leaderboard,
    trending_heatmap,
    trending_proposals,
    years_overview,
)
from eips_insight.filters import FilterSet, normalize_filters
from eips_insight.store import EventStore

from tests.conftest import NOW, StoreBuilder


@pytest.fixture
def activity_store(builder: StoreBuilder) -> EventStore:
    return (
        builder.pr(1, "2024-01-01")
        .pr(2, "2024-01-01")
        .pr(3, "2024-01-02", author="dave")
        .activity("alice", "APPROVED", 1, "2024-01-05", external_id="101")
        .activity("bob", "APPROVED", 2, "2024-01-10", external_id="102")
        .activity("carol", "COMMENTED", 1, "2024-01-03", role="EDITOR", external_id="201")
        .activity("carol", "COMMENTED", 2, "2024-01-04", role="EDITOR")
        .activity("dave", "OPENED", 3, "2024-01-02", role="CONTRIBUTOR")
        .activity("dave", "MERGED", 3, "2024-01-06", role="CONTRIBUTOR")
        .activity("bot", "COMMENTED", 3, "2024-01-07", role=None)
        .build()
    )


class TestRoleLeaderboard:
    def test_ranking_and_tie_break(self, activity_store: EventStore) -> None:
        board = role_leaderboard(activity_store, FilterSet())
        assert [(e.rank, e.actor, e.total_score) for e in board] == [
            (1, "dave", 6),
            (2, "bob", 3),
            (3, "alice", 3),
            (4, "carol", 2),
            (5, "bot", 1),
        ]

    def test_counts_and_dominant_role(self, activity_store: EventStore) -> None:
        board = {e.actor: e for e in role_leaderboard(activity_store, FilterSet())}
        dave = board["dave"]
        assert (dave.prs_created, dave.prs_merged, dave.role) == (1, 1, "CONTRIBUTOR")
        assert board["carol"].comments == 2
        assert board["carol"].role == "EDITOR"
        assert board["bot"].role is None

    def test_avg_response_hours(self, activity_store: EventStore) -> None:
        board = {e.actor: e for e in role_leaderboard(activity_store, FilterSet())}
        assert board["alice"].avg_response_hours == 96.0
        # carol: 2 days on PR 1 and 3 days on PR 2
        assert board["carol"].avg_response_hours == 60.0
        # dave only acted on his own PR
        assert board["dave"].avg_response_hours is None

    def test_equal_score_and_activity_sorts_by_name(self, builder: StoreBuilder) -> None:
        store = (
            builder.pr(1, "2024-01-01")
            .activity("zed", "COMMENTED", 1, "2024-01-05")
            .activity("amy", "COMMENTED", 1, "2024-01-05")
            .build()
        )
        board = role_leaderboard(store, FilterSet())
        assert [(e.rank, e.actor) for e in board] == [(1, "amy"), (2, "zed")]

    def test_role_filter(self, activity_store: EventStore) -> None:
        board = role_leaderboard(activity_store, FilterSet(), role="EDITOR")
        assert [(e.actor, e.role) for e in board] == [("carol", "EDITOR")]

    def test_role_filter_is_case_insensitive(self, activity_store: EventStore) -> None:
        board = role_leaderboard(activity_store, FilterSet(), role="  editor ")
        assert [(e.actor, e.role) for e in board] == [("carol", "EDITOR")]

    def test_blank_role_means_every_role(self, activity_store: EventStore) -> None:
        assert len(role_leaderboard(activity_store, FilterSet(), role=" ")) == 5

    def test_unknown_role_rejected(self, activity_store: EventStore) -> None:
        with pytest.raises(InvalidFilterError) as exc_info:
            role_leaderboard(activity_store, FilterSet(), role="nonsense")
        assert exc_info.value.field == "role"

    def test_limit_keeps_contiguous_ranks(self, activity_store: EventStore) -> None:
        board = role_leaderboard(activity_store, FilterSet(), limit=2)
        assert [e.rank for e in board] == [1, 2]

    def test_custom_weights(self, activity_store: EventStore) -> None:
        weights = LeaderboardWeights(reviewed=1, comment=10, created=1, merged=1)
        assert role_leaderboard(activity_store, FilterSet(), weights=weights)[0].actor == "carol"

    def test_json_shape(self, activity_store: EventStore) -> None:
        data = role_leaderboard(activity_store, FilterSet(), limit=1)[0].to_json_dict()
        assert data["totalScore"] == 6
        assert data["prsMerged"] == 1
        assert data["lastActivity"].startswith("2024-01-06")

    def test_empty(self, empty_store: EventStore) -> None:
        assert role_leaderboard(empty_store, FilterSet()) == []


class TestTimeline:
    def test_newest_first_with_links(self, activity_store: EventStore) -> None:
        timeline = activity_timeline(activity_store, FilterSet(), limit=3)
        assert [(e.actor, e.event_type, e.link_target) for e in timeline] == [
            ("bob", "APPROVED", "review"),
            ("bot", "COMMENTED", "pull"),
            ("dave", "MERGED", "pull"),
        ]
        assert timeline[0].repo_name == "ethereum/EIPs"

    def test_role_filter(self, activity_store: EventStore) -> None:
        timeline = activity_timeline(activity_store, FilterSet(), role="EDITOR")
        assert [e.pr_number for e in timeline] == [2, 1]
        assert [e.link_target for e in timeline] == ["pull", "comment"]

    def test_role_filter_normalized(self, activity_store: EventStore) -> None:
        timeline = activity_timeline(activity_store, FilterSet(), role="Editor")
        assert [e.pr_number for e in timeline] == [2, 1]
        with pytest.raises(InvalidFilterError):
            activity_timeline(activity_store, FilterSet(), role="maintainer")

    def test_link_target(self) -> None:
        assert link_target("APPROVED", "9") == "review"
        assert link_target("CHANGES_REQUESTED", "9") == "review"
        assert link_target("COMMENTED", "9") == "comment"
        assert link_target("COMMENTED", None) == "pull"
        assert link_target("MERGED", "9") == "pull"


class TestRoleSummaries:
    def test_role_counts(self, activity_store: EventStore) -> None:
        result = [(r.role, r.unique_actors, r.total_actions) for r in role_counts(
            activity_store, FilterSet()
        )]
        assert result == [("CONTRIBUTOR", 1, 2), ("EDITOR", 1, 2), ("REVIEWER", 2, 2)]

    def test_sparkline_gap_filled(self, builder: StoreBuilder) -> None:
        store = (
            builder.activity("a", "COMMENTED", 1, "2024-06-10")
            .activity("a", "COMMENTED", 1, "2024-06-11")
            .activity("a", "COMMENTED", 1, "2024-01-05", role="EDITOR")
            .activity("a", "COMMENTED", 1, "2023-06-30")
            .build()
        )
        series = role_activity_sparkline(store, FilterSet(), NOW)
        assert len(series) == 12
        assert series[0].month == "2023-07"
        assert series[-1].month == "2024-06"
        counts = {p.month: p.count for p in series}
        assert counts["2024-06"] == 2
        assert counts["2024-01"] == 1
        assert sum(counts.values()) == 3

        editor = role_activity_sparkline(store, FilterSet(), NOW, role="editor", months=6)
        assert [p.month for p in editor][0] == "2024-01"
        assert sum(p.count for p in editor) == 1
        with pytest.raises(InvalidFilterError):
            role_activity_sparkline(store, FilterSet(), NOW, role="nobody")

    def test_years_overview(self, eips_store: EventStore) -> None:
        years = years_overview(eips_store, FilterSet())
        assert [y.year for y in years] == [2024, 2023, 2022, 2021]
        assert years[1].new_proposals == 4
        assert years[0].prs_created == 0


class TestTrending:
    @pytest.fixture
    def trending_store(self, builder: StoreBuilder) -> EventStore:
        for number in (1, 2, 3, 4, 5):
            builder.proposal(number)
        return (
            builder.status_event(1, "Draft", "Review", "2024-06-14T12:00")
            .status_event(1, None, "Draft", "2024-05-20")
            .pr(50, "2024-06-15T00:00", proposal=2)
            .activity("ed", "COMMENTED", 50, "2024-06-15T06:00")
            .status_event(3, "Draft", "Review", "2024-06-01")
            .status_event(4, "Draft", "Review", "2024-06-10T12:00")
            .status_event(5, "Draft", "Review", "2024-06-10T12:00")
            .build()
        )

    def test_scores_and_reasons(self, trending_store: EventStore) -> None:
        trending = trending_proposals(trending_store, FilterSet(), NOW)
        assert [(t.number, t.score) for t in trending] == [
            (1, 9.29), (2, 8.0), (4, 6.43), (5, 6.43),
        ]
        reasons = {t.number: t.trending_reason for t in trending}
        assert reasons[1] == "1 status change this week"
        assert reasons[2] == "new PR activity"

    def test_outside_window_excluded(self, trending_store: EventStore) -> None:
        numbers = {t.number for t in trending_proposals(trending_store, FilterSet(), NOW)}
        assert 3 not in numbers

    def test_activity_reason(self, builder: StoreBuilder) -> None:
        store = (
            builder.proposal(9)
            .pr(90, "2024-01-01", proposal=9)
            .activity("ed", "COMMENTED", 90, "2024-06-14T12:00")
            .activity("ed", "APPROVED", 90, "2024-06-14T12:00")
            .activity("ed", "COMMENTED", 90, "2024-06-15T00:00")
            .activity("ed", "COMMENTED", 90, "2024-06-15T01:00")
            .build()
        )
        (item,) = trending_proposals(store, FilterSet(), NOW)
        assert item.trending_reason == "4 review/comment events this week"
        assert item.last_activity == datetime(2024, 6, 15, 1, 0, tzinfo=UTC)

    def test_custom_window_wording(self, trending_store: EventStore) -> None:
        config = TrendingConfig(window_days=30)
        trending = {t.number: t for t in trending_proposals(
            trending_store, FilterSet(), NOW, config
        )}
        assert 3 in trending
        assert trending[3].trending_reason == "1 status change in the last 30 days"

    def test_limit(self, trending_store: EventStore) -> None:
        assert len(trending_proposals(trending_store, FilterSet(), NOW, limit=2)) == 2

    def test_repository_filter(self, trending_store: EventStore) -> None:
        assert trending_proposals(trending_store, normalize_filters(repository="ercs"), NOW) == []


class TestTrendingHeatmap:
    def test_gap_filled_series(self, builder: StoreBuilder) -> None:
        store = (
            builder.proposal(1)
            .status_event(1, "Draft", "Review", "2024-06-14T12:00")
            .status_event(1, None, "Draft", "2024-05-20")
            .build()
        )
        (row,) = trending_heatmap(store, FilterSet(), NOW)
        assert row.eip_number == 1
        assert len(row.daily_activity) == 30
        assert row.daily_activity[0].date == "2024-05-17"
        assert row.daily_activity[-1].date == "2024-06-15"
        assert row.total_activity == 2
        values = {p.date: p.value for p in row.daily_activity}
        assert values["2024-05-20"] == 1
        assert values["2024-06-14"] == 1

    def test_top_n(self, builder: StoreBuilder) -> None:
        for number in (1, 2, 3):
            builder.proposal(number).status_event(number, "Draft", "Review", "2024-06-14")
        store = builder.build()
        assert [r.eip_number for r in trending_heatmap(store, FilterSet(), NOW, top_n=2)] == [1, 2]

    def test_empty(self, empty_store: EventStore) -> None:
        assert trending_heatmap(empty_store, FilterSet(), NOW) == []
