"""Pull request aggregators: activity series, funnel, latency and staleness."""

from __future__ import annotations

import bisect
from collections import Counter
from datetime import date, datetime

from eips_insight.filters import FilterSet, repo_condition, where
from eips_insight.models import (
    GOVERNANCE_LABELS,
    REVIEW_TYPES,
    ActivityType,
    GovernanceState,
    PullRequest,
)
from eips_insight.primitives import (
    STALENESS_BUCKETS,
    days_between,
    month_boundary,
    month_key,
    month_range,
    month_start,
    parse_month,
    percentile_cont,
    round_half_up,
    staleness_bucket,
    utcnow,
)
from eips_insight.results import (
    FunnelStage,
    GovernanceStateCount,
    LabelCount,
    MonthlyPRActivity,
    OpenPRRef,
    OpenState,
    OutcomeLatency,
    RecentPR,
    StalenessBucket,
    StalePR,
)
from eips_insight.store import EventStore

FUNNEL_STAGES: tuple[str, ...] = ("created", "reviewed", "merged", "closed")

OUTCOME_METRICS: tuple[str, ...] = ("first_review", "first_comment", "merge", "close")

DEFAULT_HISTORY_START = date(2015, 1, 1)


def _percentage(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round_half_up(count * 1000 / total) / 10


def monthly_activity(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    history_start: date = DEFAULT_HISTORY_START,
) -> list[MonthlyPRActivity]:
    """Gap-filled monthly PR activity.

    One row per calendar month from the month of the first relevant PR
    (or ``month_from``) through the current month (or ``month_to``).
    ``openAtMonthEnd`` counts PRs created before the month boundary that
    were neither merged nor closed before it; the current month reports
    the live number of PRs in state ``open`` instead.
    """
    now = now or utcnow()
    prs = [pr for pr in store.pull_requests(filters) if pr.created_at.date() >= history_start]

    if filters.month_from is not None:
        first = parse_month(filters.month_from)
    elif prs:
        first = month_start(min(pr.created_at for pr in prs))
    else:
        return []
    last = parse_month(filters.month_to) if filters.month_to else month_start(now)
    if first > last:
        return []

    created = Counter(month_key(pr.created_at) for pr in prs)
    merged = Counter(month_key(pr.merged_at) for pr in prs if pr.merged_at)
    closed = Counter(
        month_key(pr.closed_at) for pr in prs if pr.closed_at and not pr.merged_at
    )

    # Sweep: open at a boundary = created before it minus finished before it.
    created_at = sorted(pr.created_at for pr in prs)
    finished_at = sorted(
        min(t for t in (pr.merged_at, pr.closed_at) if t is not None)
        for pr in prs
        if pr.merged_at or pr.closed_at
    )
    live_open = sum(1 for pr in prs if pr.is_open)
    current_month = month_key(now)

    rows: list[MonthlyPRActivity] = []
    for month in month_range(first, last):
        key = month_key(month)
        if key == current_month:
            open_count = live_open
        else:
            boundary = month_boundary(month)
            open_count = (
                bisect.bisect_left(created_at, boundary)
                - bisect.bisect_left(finished_at, boundary)
            )
        rows.append(
            MonthlyPRActivity(
                month=key,
                created=created.get(key, 0),
                merged=merged.get(key, 0),
                closed=closed.get(key, 0),
                open_at_month_end=open_count,
            )
        )
    return rows


def _reviewed_prs(store: EventStore, filters: FilterSet) -> set[tuple[str, int]]:
    return {
        (e.repository, e.pr_number)
        for e in store.activity_events(filters)
        if e.event_type in REVIEW_TYPES
    }


def lifecycle_funnel(store: EventStore, filters: FilterSet) -> list[FunnelStage]:
    """Assign every PR to exactly one stage.

    ``merged`` if merged, else ``closed`` if closed, else ``reviewed`` if
    any review activity exists, else ``created``. All four stages are
    returned in presentation order.
    """
    prs = store.pull_requests(filters)
    reviewed = _reviewed_prs(store, filters)

    stages: Counter[str] = Counter()
    for pr in prs:
        if pr.merged_at is not None:
            stages["merged"] += 1
        elif pr.closed_at is not None:
            stages["closed"] += 1
        elif (pr.repository, pr.pr_number) in reviewed:
            stages["reviewed"] += 1
        else:
            stages["created"] += 1

    total = len(prs)
    return [
        FunnelStage(stage=stage, count=stages[stage], percentage=_percentage(stages[stage], total))
        for stage in FUNNEL_STAGES
    ]


def time_to_outcome(
    store: EventStore,
    filters: FilterSet,
    history_start: date = DEFAULT_HISTORY_START,
) -> list[OutcomeLatency]:
    """P50/P75/P90 whole-day latency from PR creation to each outcome.

    Metrics without a single qualifying PR are left out.
    """
    prs = [pr for pr in store.pull_requests(filters) if pr.created_at.date() >= history_start]

    first_review: dict[tuple[str, int], datetime] = {}
    first_comment: dict[tuple[str, int], datetime] = {}
    for event in store.activity_events(filters):
        key = (event.repository, event.pr_number)
        if event.event_type in REVIEW_TYPES:
            target = first_review
        elif event.event_type == ActivityType.COMMENTED:
            target = first_comment
        else:
            continue
        if key not in target or event.occurred_at < target[key]:
            target[key] = event.occurred_at

    samples: dict[str, list[int]] = {metric: [] for metric in OUTCOME_METRICS}
    for pr in prs:
        key = (pr.repository, pr.pr_number)
        if key in first_review:
            samples["first_review"].append(days_between(pr.created_at, first_review[key]))
        if key in first_comment:
            samples["first_comment"].append(days_between(pr.created_at, first_comment[key]))
        if pr.merged_at is not None:
            samples["merge"].append(days_between(pr.created_at, pr.merged_at))
        elif pr.closed_at is not None:
            samples["close"].append(days_between(pr.created_at, pr.closed_at))

    result: list[OutcomeLatency] = []
    for metric in OUTCOME_METRICS:
        values = samples[metric]
        if not values:
            continue
        result.append(
            OutcomeLatency(
                metric=metric,
                median_days=round_half_up(percentile_cont(values, 0.5)),
                p75_days=round_half_up(percentile_cont(values, 0.75)),
                p90_days=round_half_up(percentile_cont(values, 0.9)),
                samples=len(values),
            )
        )
    return result


def staleness(
    store: EventStore, filters: FilterSet, now: datetime | None = None
) -> list[StalenessBucket]:
    """Open PRs by age bucket; all four buckets always present, in order."""
    now = now or utcnow()
    counts: Counter[str] = Counter(
        staleness_bucket(days_between(pr.created_at, now))
        for pr in store.pull_requests(filters, open_only=True)
    )
    return [StalenessBucket(bucket=b, count=counts.get(b, 0)) for b in STALENESS_BUCKETS]


def _last_activity(store: EventStore, filters: FilterSet) -> dict[tuple[str, int], datetime]:
    latest: dict[tuple[str, int], datetime] = {}
    touches = [(e.repository, e.pr_number, e.created_at) for e in store.pr_events(filters)]
    touches += [(e.repository, e.pr_number, e.occurred_at) for e in store.activity_events(filters)]
    for repository, pr_number, at in touches:
        key = (repository, pr_number)
        if key not in latest or at > latest[key]:
            latest[key] = at
    return latest


def stale_high_risk(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    days: int = 30,
    limit: int = 20,
) -> list[StalePR]:
    """Open PRs with a governance state and no activity in *days* days.

    A PR with no recorded activity at all is always included.
    """
    now = now or utcnow()
    states = store.governance_states(filters)
    last_seen = _last_activity(store, filters)

    at_risk: list[StalePR] = []
    for pr in store.pull_requests(filters, open_only=True):
        key = (pr.repository, pr.pr_number)
        if key not in states:
            continue
        last = last_seen.get(key)
        if last is not None and days_between(last, now) < days:
            continue
        at_risk.append(
            StalePR(
                pr_number=pr.pr_number,
                repo=pr.repository,
                title=pr.title,
                author=pr.author,
                age_days=days_between(pr.created_at, now),
                last_activity=last.strftime("%Y-%m-%d") if last else "Never",
            )
        )
    at_risk.sort(key=lambda p: (-p.age_days, p.pr_number))
    return at_risk[:limit]


def governance_states(store: EventStore, filters: FilterSet) -> list[GovernanceStateCount]:
    """Open PRs grouped by materialized governance state."""
    states = store.governance_states(filters)
    counts: Counter[str] = Counter(
        states.get((pr.repository, pr.pr_number), GovernanceState.NO_STATE)
        for pr in store.pull_requests(filters, open_only=True)
    )
    result = [
        GovernanceStateCount(state=state, label=GOVERNANCE_LABELS.get(state, state), count=count)
        for state, count in counts.items()
    ]
    result.sort(key=lambda r: (-r.count, r.state))
    return result


def current_labels(store: EventStore, filters: FilterSet) -> list[LabelCount]:
    """Count open PRs per label that is currently applied.

    The latest labeled/unlabeled event for each ``(pr, label)`` decides
    whether the label is still on the PR.
    """
    conditions, params = repo_condition(filters, "pr.repository")
    conditions += ["r.rn = 1", "r.event_type = 'labeled'", "pr.state = 'open'"]
    rows = store.query(
        f"""
        WITH ranked AS (
            SELECT e.repository, e.pr_number, e.label, e.event_type,
                   ROW_NUMBER() OVER (
                       PARTITION BY e.repository, e.pr_number, e.label
                       ORDER BY e.created_at DESC, e.id DESC
                   ) AS rn
            FROM pr_events e
            WHERE e.event_type IN ('labeled', 'unlabeled') AND e.label IS NOT NULL
        )
        SELECT r.label AS label, COUNT(DISTINCT r.repository || '#' || r.pr_number) AS n
        FROM ranked r
        JOIN pull_requests pr
          ON pr.repository = r.repository AND pr.pr_number = r.pr_number
        {where(conditions)}
        GROUP BY r.label
        ORDER BY n DESC, r.label ASC
        """,
        params,
    )
    return [LabelCount(label=r["label"], count=r["n"]) for r in rows]


def open_state(store: EventStore, filters: FilterSet, now: datetime | None = None) -> OpenState:
    """Open PR count, median age and the oldest open PR."""
    now = now or utcnow()
    open_prs = store.pull_requests(filters, open_only=True)
    if not open_prs:
        return OpenState()
    ages = [days_between(pr.created_at, now) for pr in open_prs]
    oldest = min(open_prs, key=lambda pr: (pr.created_at, pr.pr_number))
    return OpenState(
        total_open=len(open_prs),
        median_age=round_half_up(percentile_cont(ages, 0.5)),
        oldest_pr=OpenPRRef(
            pr_number=oldest.pr_number,
            repo=oldest.repository,
            title=oldest.title,
            author=oldest.author,
            age_days=days_between(oldest.created_at, now),
        ),
    )


def pr_outcome(pr: PullRequest) -> str:
    """``merged``, ``closed`` (without merge) or ``open``."""
    if pr.merged_at is not None:
        return "merged"
    if pr.closed_at is not None or pr.state == "closed":
        return "closed"
    return "open"


def recent_prs(
    store: EventStore, filters: FilterSet, now: datetime | None = None, limit: int = 5
) -> list[RecentPR]:
    """Most recently created PRs with their outcome and age in days."""
    now = now or utcnow()
    prs = sorted(
        store.pull_requests(filters), key=lambda pr: (pr.created_at, pr.pr_number), reverse=True
    )
    return [
        RecentPR(
            pr_number=pr.pr_number,
            repo=pr.repository,
            title=pr.title,
            author=pr.author,
            status=pr_outcome(pr),
            days=days_between(pr.created_at, now),
        )
        for pr in prs[:limit]
    ]
