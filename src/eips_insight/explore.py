"""Contributor and proposal exploration views.

Role leaderboard, activity timeline, role summaries, trending proposals
and the trending heatmap.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from eips_insight.config import LeaderboardWeights, TrendingConfig
from eips_insight.filters import FilterSet, normalize_role, repo_condition, where
from eips_insight.models import REVIEW_TYPES, ActivityType, PullRequest
from eips_insight.primitives import (
    day_range,
    days_between,
    month_key,
    round_half_up,
    trailing_months,
    utcnow,
)
from eips_insight.results import (
    DailyCount,
    HeatmapRow,
    LeaderboardEntry,
    LinkTarget,
    MonthCount,
    RoleCount,
    TimelineEvent,
    TrendingProposal,
    YearOverview,
)
from eips_insight.store import EventStore

logger = logging.getLogger(__name__)

ProposalKey = tuple[str, int]


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

@dataclass
class _ActorTally:
    reviewed: set[tuple[str, int]] = field(default_factory=set)
    comments: int = 0
    created: set[tuple[str, int]] = field(default_factory=set)
    merged: set[tuple[str, int]] = field(default_factory=set)
    first_action: dict[tuple[str, int], datetime] = field(default_factory=dict)
    roles: Counter[str] = field(default_factory=Counter)
    last_activity: datetime | None = None

    def score(self, weights: LeaderboardWeights) -> int:
        return (
            len(self.reviewed) * weights.reviewed
            + self.comments * weights.comment
            + len(self.created) * weights.created
            + len(self.merged) * weights.merged
        )


def _dominant_role(roles: Counter[str]) -> str | None:
    if not roles:
        return None
    return min(roles.items(), key=lambda item: (-item[1], item[0]))[0]


def role_leaderboard(
    store: EventStore,
    filters: FilterSet,
    role: str | None = None,
    limit: int = 20,
    weights: LeaderboardWeights | None = None,
) -> list[LeaderboardEntry]:
    """Rank actors by weighted review, comment, creation and merge counts.

    Ties in score go to the more recently active actor, then to the
    alphabetically first name. Ranks are contiguous from 1.
    """
    role = normalize_role(role)
    weights = weights or LeaderboardWeights()
    pr_index = {(pr.repository, pr.pr_number): pr for pr in store.pull_requests(filters)}

    tallies: dict[str, _ActorTally] = defaultdict(_ActorTally)
    for event in store.activity_events(filters, role=role):
        tally = tallies[event.actor]
        key = (event.repository, event.pr_number)
        if event.event_type in REVIEW_TYPES:
            tally.reviewed.add(key)
        elif event.event_type == ActivityType.COMMENTED:
            tally.comments += 1
        elif event.event_type == ActivityType.OPENED:
            tally.created.add(key)
        elif event.event_type == ActivityType.MERGED:
            tally.merged.add(key)

        if event.event_type != ActivityType.OPENED:
            first = tally.first_action.get(key)
            if first is None or event.occurred_at < first:
                tally.first_action[key] = event.occurred_at
        if event.role:
            tally.roles[event.role] += 1
        if tally.last_activity is None or event.occurred_at > tally.last_activity:
            tally.last_activity = event.occurred_at

    entries: list[tuple[int, datetime, str, _ActorTally]] = []
    for actor, tally in tallies.items():
        entries.append((tally.score(weights), tally.last_activity, actor, tally))
    entries.sort(key=lambda e: (-e[0], -e[1].timestamp(), e[2]))

    board: list[LeaderboardEntry] = []
    for rank, (score, last_activity, actor, tally) in enumerate(entries[:limit], start=1):
        board.append(
            LeaderboardEntry(
                rank=rank,
                actor=actor,
                total_score=score,
                prs_reviewed=len(tally.reviewed),
                comments=tally.comments,
                prs_created=len(tally.created),
                prs_merged=len(tally.merged),
                avg_response_hours=_avg_response_hours(actor, tally, pr_index),
                last_activity=last_activity,
                role=role or _dominant_role(tally.roles),
            )
        )
    return board


def _avg_response_hours(
    actor: str, tally: _ActorTally, pr_index: dict[tuple[str, int], PullRequest]
) -> float | None:
    hours: list[float] = []
    for key, first in tally.first_action.items():
        pr = pr_index.get(key)
        if pr is None or pr.author == actor:
            continue
        hours.append(max((first - pr.created_at).total_seconds(), 0.0) / 3600)
    if not hours:
        return None
    return round_half_up(sum(hours) / len(hours) * 10) / 10


# ---------------------------------------------------------------------------
# Timeline and role summaries
# ---------------------------------------------------------------------------

def link_target(event_type: str, external_id: str | None) -> LinkTarget:
    """Choose which anchor of the pull request an activity event links to."""
    if not external_id:
        return "pull"
    if event_type in REVIEW_TYPES:
        return "review"
    if event_type == ActivityType.COMMENTED:
        return "comment"
    return "pull"


def activity_timeline(
    store: EventStore,
    filters: FilterSet,
    role: str | None = None,
    limit: int = 20,
) -> list[TimelineEvent]:
    """Most recent activity events, newest first."""
    role = normalize_role(role)
    events = store.activity_events(filters, role=role, newest_first=True, limit=limit)
    return [
        TimelineEvent(
            id=e.id,
            actor=e.actor,
            role=e.role,
            event_type=e.event_type,
            pr_number=e.pr_number,
            created_at=e.occurred_at,
            external_id=e.external_id,
            repo_name=e.repository,
            link_target=link_target(e.event_type, e.external_id),
        )
        for e in events
    ]


def role_counts(store: EventStore, filters: FilterSet) -> list[RoleCount]:
    conditions, params = repo_condition(filters, "repository")
    conditions.append("role IS NOT NULL")
    rows = store.query(
        f"""
        SELECT role, COUNT(DISTINCT actor) AS actors, COUNT(*) AS actions
        FROM activity_events
        {where(conditions)}
        GROUP BY role
        ORDER BY actions DESC, role ASC
        """,
        params,
    )
    return [
        RoleCount(role=r["role"], unique_actors=r["actors"], total_actions=r["actions"])
        for r in rows
    ]


def role_activity_sparkline(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    role: str | None = None,
    months: int = 12,
) -> list[MonthCount]:
    """Monthly action counts for the trailing *months*, zeros included."""
    role = normalize_role(role)
    now = now or utcnow()
    window = trailing_months(now, months)
    since = datetime(window[0].year, window[0].month, 1, tzinfo=UTC)

    counts = Counter(
        month_key(e.occurred_at)
        for e in store.activity_events(filters, role=role)
        if since <= e.occurred_at <= now
    )
    return [
        MonthCount(month=month_key(m), count=counts.get(month_key(m), 0))
        for m in window
    ]


def years_overview(store: EventStore, filters: FilterSet) -> list[YearOverview]:
    """Per-year proposal creations, status changes and PRs, newest year first."""
    new_proposals = Counter(
        p.created_at.year for p in store.proposals(filters) if p.created_at is not None
    )
    status_changes = Counter(e.changed_at.year for e in store.status_events(filters))
    prs_created = Counter(pr.created_at.year for pr in store.pull_requests(filters))

    years = sorted(set(new_proposals) | set(status_changes) | set(prs_created), reverse=True)
    return [
        YearOverview(
            year=year,
            new_proposals=new_proposals.get(year, 0),
            status_changes=status_changes.get(year, 0),
            prs_created=prs_created.get(year, 0),
        )
        for year in years
    ]


# ---------------------------------------------------------------------------
# Trending
# ---------------------------------------------------------------------------

_STATUS = "status"
_PR = "pr"
_ACTIVITY = "activity"

# Order used to break ties between equally weighted signals.
_SIGNAL_PRIORITY: tuple[str, ...] = (_STATUS, _PR, _ACTIVITY)


def _proposal_touches(
    store: EventStore, filters: FilterSet, since: datetime, until: datetime
) -> dict[ProposalKey, list[tuple[str, datetime]]]:
    """Every signal touching a proposal within ``[since, until]``.

    Signals are status changes, lifecycle moments of PRs linked to the
    proposal (created, merged, closed without merge) and contributor
    activity on those PRs.
    """
    touches: dict[ProposalKey, list[tuple[str, datetime]]] = defaultdict(list)

    def _add(key: ProposalKey, signal: str, at: datetime | None) -> None:
        if at is not None and since <= at <= until:
            touches[key].append((signal, at))

    for event in store.status_events(filters):
        _add((event.repository, event.number), _STATUS, event.changed_at)

    linked: dict[tuple[str, int], ProposalKey] = {}
    for pr in store.pull_requests(filters):
        if pr.proposal_number is None:
            continue
        key = (pr.repository, pr.proposal_number)
        linked[(pr.repository, pr.pr_number)] = key
        _add(key, _PR, pr.created_at)
        if pr.merged_at is not None:
            _add(key, _PR, pr.merged_at)
        elif pr.closed_at is not None:
            _add(key, _PR, pr.closed_at)

    for event in store.activity_events(filters):
        key = linked.get((event.repository, event.pr_number))
        if key is not None:
            _add(key, _ACTIVITY, event.occurred_at)
    return touches


def _period(window_days: int) -> str:
    if window_days == 7:
        return "this week"
    return f"in the last {window_days} days"


def _trending_reason(signal: str, count: int, window_days: int) -> str:
    if signal == _STATUS:
        noun = "status change" if count == 1 else "status changes"
        return f"{count} {noun} {_period(window_days)}"
    if signal == _PR:
        return "new PR activity"
    noun = "review/comment event" if count == 1 else "review/comment events"
    return f"{count} {noun} {_period(window_days)}"


def trending_proposals(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    config: TrendingConfig | None = None,
    limit: int | None = None,
) -> list[TrendingProposal]:
    """Rank proposals by recency-weighted activity over the trailing window.

    Each signal inside the window contributes
    ``weight * (1 + (window - age_days) / window)``, so newer events
    count up to twice as much as events at the edge of the window.
    """
    now = now or utcnow()
    config = config or TrendingConfig()
    limit = config.default_limit if limit is None else limit
    window = config.window_days
    weights = {
        _STATUS: config.status_change_weight,
        _PR: config.pr_weight,
        _ACTIVITY: config.activity_weight,
    }

    proposals = {(p.repository, p.number): p for p in store.proposals(filters)}
    touches = _proposal_touches(store, filters, now - timedelta(days=window), now)

    trending: list[TrendingProposal] = []
    for key, signals in touches.items():
        proposal = proposals.get(key)
        if proposal is None:
            continue
        contribution: dict[str, float] = defaultdict(float)
        counts: Counter[str] = Counter()
        for signal, at in signals:
            age = days_between(at, now)
            contribution[signal] += weights[signal] * (1 + (window - age) / window)
            counts[signal] += 1
        dominant = max(
            contribution,
            key=lambda s: (contribution[s], -_SIGNAL_PRIORITY.index(s)),
        )
        trending.append(
            TrendingProposal(
                repository=proposal.repository,
                number=proposal.number,
                title=proposal.title,
                status=proposal.status,
                score=round(sum(contribution.values()), 2),
                trending_reason=_trending_reason(dominant, counts[dominant], window),
                last_activity=max(at for _, at in signals),
            )
        )

    trending.sort(key=lambda t: (-t.score, t.number, t.repository))
    logger.debug("trending: %d proposals with activity in %d days", len(trending), window)
    return trending[:limit]


def trending_heatmap(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    config: TrendingConfig | None = None,
    top_n: int | None = None,
) -> list[HeatmapRow]:
    """Daily activity of the top trending proposals over the heatmap window."""
    now = now or utcnow()
    config = config or TrendingConfig()
    top = trending_proposals(
        store, filters, now, config,
        limit=config.heatmap_top_n if top_n is None else top_n,
    )
    if not top:
        return []

    days = day_range(now.date(), config.heatmap_days)
    since = datetime(days[0].year, days[0].month, days[0].day, tzinfo=UTC)
    touches = _proposal_touches(store, filters, since, now)

    rows: list[HeatmapRow] = []
    for item in top:
        per_day = Counter(at.date() for _, at in touches.get((item.repository, item.number), []))
        series = [DailyCount(date=d.isoformat(), value=per_day.get(d, 0)) for d in days]
        rows.append(
            HeatmapRow(
                repository=item.repository,
                eip_number=item.number,
                title=item.title,
                total_activity=sum(point.value for point in series),
                daily_activity=series,
            )
        )
    return rows
