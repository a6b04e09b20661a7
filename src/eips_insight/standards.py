"""Proposal-level aggregators: status matrix, categories, trends, velocity."""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import UTC, datetime, timedelta

from eips_insight.filters import FilterSet, proposal_conditions, repo_condition, where
from eips_insight.models import (
    ACTIVE_STATUSES,
    STATUS_ORDER,
    ProposalStatus,
    RepoGroup,
    repo_group,
)
from eips_insight.normalize import merge_category_counts
from eips_insight.primitives import (
    days_between,
    month_key,
    months_before,
    percentile_cont,
    round_half_up,
    trailing_months,
    utcnow,
)
from eips_insight.results import (
    ActiveProposals,
    CategoryCount,
    CreatedToFinalVelocity,
    CreationTrend,
    DecisionVelocity,
    FilterOptions,
    FinalizedProposal,
    KPIs,
    LastCallItem,
    MonthCount,
    MonthlyVelocity,
    RecentChange,
    StatusDistributionRow,
    StatusMatrix,
    StatusMatrixRow,
    TransitionVelocity,
    VelocitySummary,
)
from eips_insight.store import EventStore

_GROUP_ORDER: tuple[str, ...] = tuple(g.value for g in RepoGroup)

_TRANSITION_ORDER: tuple[str, ...] = (
    "Draft → Review",
    "Review → Last Call",
    "Last Call → Final",
    "Draft → Final",
)


def proposal_kind(repository: str, category: str | None) -> str:
    """Short proposal prefix used in listings: ``eip``, ``erc`` or ``rip``."""
    group = repo_group(repository)
    if group == RepoGroup.RIPS:
        return "rip"
    if group == RepoGroup.ERCS or (category or "").upper() == "ERC":
        return "erc"
    return "eip"


def _status_sort_key(status: str) -> tuple[int, str]:
    if status in STATUS_ORDER:
        return (STATUS_ORDER.index(status), status)
    return (len(STATUS_ORDER), status)


def status_matrix(store: EventStore, filters: FilterSet) -> StatusMatrix:
    """Count proposals per ``(status, repository group)`` with totals.

    Rows follow the fixed status order and rows whose total is zero are
    dropped. Statuses outside the known vocabulary are appended after the
    known ones rather than discarded.
    """
    conditions, params = proposal_conditions(filters)
    rows = store.query(
        f"""
        SELECT p.status AS status, repo_group(p.repository) AS grp, COUNT(*) AS n
        FROM proposals p
        {where(conditions)}
        GROUP BY p.status, repo_group(p.repository)
        """,
        params,
    )

    cells: dict[str, dict[str, int]] = defaultdict(lambda: dict.fromkeys(_GROUP_ORDER, 0))
    for row in rows:
        cells[row["status"]][row["grp"]] += row["n"]

    matrix_rows: list[StatusMatrixRow] = []
    column_totals = dict.fromkeys(_GROUP_ORDER, 0)
    for status in sorted(cells, key=_status_sort_key):
        counts = cells[status]
        total = sum(counts.values())
        if total == 0:
            continue
        for group, count in counts.items():
            column_totals[group] += count
        matrix_rows.append(StatusMatrixRow(status=status, total=total, **counts))

    groups = [g for g in _GROUP_ORDER if column_totals[g] > 0]
    return StatusMatrix(
        groups=groups,
        rows=matrix_rows,
        column_totals=column_totals,
        grand_total=sum(r.total for r in matrix_rows),
    )


def category_breakdown(store: EventStore, filters: FilterSet) -> list[CategoryCount]:
    """Proposal counts per normalized category.

    A blank or missing category counts as ``Other``; keys that collide
    after normalization are summed.
    """
    conditions, params = proposal_conditions(filters)
    rows = store.query(
        f"""
        SELECT p.category AS category, COUNT(*) AS n
        FROM proposals p
        {where(conditions)}
        GROUP BY p.category
        """,
        params,
    )
    merged = merge_category_counts((r["category"], r["n"]) for r in rows)
    ordered = sorted(merged.items(), key=lambda kv: (-kv[1], kv[0]))
    return [CategoryCount(category=k, count=v) for k, v in ordered]


def creation_trends(store: EventStore, filters: FilterSet) -> list[CreationTrend]:
    """Proposals created per calendar year and repository group."""
    conditions, params = proposal_conditions(filters)
    conditions.append("p.created_at IS NOT NULL")
    rows = store.query(
        f"""
        SELECT CAST(strftime('%Y', p.created_at) AS INTEGER) AS year,
               repo_group(p.repository) AS repo,
               COUNT(*) AS n
        FROM proposals p
        {where(conditions)}
        GROUP BY year, repo
        ORDER BY year ASC, repo ASC
        """,
        params,
    )
    return [CreationTrend(year=r["year"], repo=r["repo"], count=r["n"]) for r in rows]


def status_distribution(store: EventStore, filters: FilterSet) -> list[StatusDistributionRow]:
    conditions, params = proposal_conditions(filters)
    rows = store.query(
        f"""
        SELECT p.status AS status, repo_group(p.repository) AS repo, COUNT(*) AS n
        FROM proposals p
        {where(conditions)}
        GROUP BY p.status, repo
        """,
        params,
    )
    result = [StatusDistributionRow(status=r["status"], repo=r["repo"], count=r["n"]) for r in rows]
    result.sort(key=lambda r: (_status_sort_key(r.status), r.repo))
    return result


def kpis(store: EventStore, filters: FilterSet, now: datetime | None = None) -> KPIs:
    now = now or utcnow()
    conditions, params = proposal_conditions(filters)
    row = store.query_one(
        f"""
        SELECT COUNT(*) AS total,
               SUM(CASE WHEN p.status IN ('Review', 'Last Call') THEN 1 ELSE 0 END) AS in_review,
               SUM(CASE WHEN p.status = 'Final' THEN 1 ELSE 0 END) AS finalized,
               SUM(CASE WHEN CAST(strftime('%Y', p.created_at) AS INTEGER) = ?
                   THEN 1 ELSE 0 END) AS new_this_year
        FROM proposals p
        {where(conditions)}
        """,
        [now.year, *params],
    )
    if row is None:
        return KPIs()
    return KPIs(
        total=row["total"] or 0,
        in_review=row["in_review"] or 0,
        finalized=row["finalized"] or 0,
        new_this_year=row["new_this_year"] or 0,
    )


def filter_options(store: EventStore, filters: FilterSet) -> FilterOptions:
    """Distinct status, type and category values under the repository filter."""
    conditions, params = repo_condition(filters, "repository")
    options: dict[str, list[str]] = {}
    for column in ("status", "type", "category"):
        column_conditions = [*conditions, f"{column} IS NOT NULL", f"TRIM({column}) != ''"]
        rows = store.query(
            f"SELECT DISTINCT {column} AS value FROM proposals {where(column_conditions)}",
            params,
        )
        options[column] = sorted(r["value"] for r in rows)
    return FilterOptions(
        statuses=sorted(options["status"], key=_status_sort_key),
        types=options["type"],
        categories=options["category"],
    )


def active_proposals(store: EventStore, filters: FilterSet) -> ActiveProposals:
    conditions, params = repo_condition(filters, "p.repository")
    placeholders = ", ".join("?" for _ in ACTIVE_STATUSES)
    conditions.append(f"p.status IN ({placeholders})")
    rows = store.query(
        f"SELECT p.status AS status, COUNT(*) AS n FROM proposals p "
        f"{where(conditions)} GROUP BY p.status",
        [*params, *ACTIVE_STATUSES],
    )
    counts = {r["status"]: r["n"] for r in rows}
    return ActiveProposals(
        draft=counts.get(ProposalStatus.DRAFT, 0),
        review=counts.get(ProposalStatus.REVIEW, 0),
        last_call=counts.get(ProposalStatus.LAST_CALL, 0),
        total=sum(counts.values()),
    )


def recent_changes(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    limit: int = 5,
    window_days: int = 7,
) -> list[RecentChange]:
    """Status transitions within the trailing window, newest first."""
    now = now or utcnow()
    since = now - timedelta(days=window_days)
    proposals = {(p.repository, p.number): p for p in store.proposals(filters)}
    events = [e for e in store.status_events(filters) if since <= e.changed_at <= now]
    events.sort(key=lambda e: e.changed_at, reverse=True)

    changes: list[RecentChange] = []
    for event in events[:limit]:
        proposal = proposals.get((event.repository, event.number))
        changes.append(
            RecentChange(
                repository=event.repository,
                number=event.number,
                kind=proposal_kind(event.repository, proposal.category if proposal else None),
                title=proposal.title if proposal else None,
                from_status=event.from_status,
                to_status=event.to_status,
                days=days_between(event.changed_at, now),
                changed_at=event.changed_at,
            )
        )
    return changes


def _days_to_final(
    store: EventStore, filters: FilterSet, start: datetime, end: datetime
) -> list[int]:
    proposals = {(p.repository, p.number): p for p in store.proposals(filters)}
    first_draft: dict[tuple[str, int], datetime] = {}
    finals: list[tuple[tuple[str, int], datetime]] = []
    for event in store.status_events(filters):
        key = (event.repository, event.number)
        if event.to_status == ProposalStatus.DRAFT and key not in first_draft:
            first_draft[key] = event.changed_at
        if event.to_status == ProposalStatus.FINAL and start <= event.changed_at < end:
            finals.append((key, event.changed_at))

    durations: list[int] = []
    for key, final_at in finals:
        origin = first_draft.get(key)
        if origin is None and key in proposals:
            origin = proposals[key].created_at
        if origin is None:
            continue
        durations.append(days_between(origin, final_at))
    return durations


def decision_velocity(
    store: EventStore, filters: FilterSet, now: datetime | None = None
) -> DecisionVelocity:
    """Median days from first Draft to Final, trailing year vs. the year before."""
    now = now or utcnow()
    year = timedelta(days=365)
    current = _days_to_final(store, filters, now - year, now)
    previous = _days_to_final(store, filters, now - 2 * year, now - year)
    current_median = round_half_up(percentile_cont(current, 0.5) or 0)
    previous_median = round_half_up(percentile_cont(previous, 0.5) or 0)
    return DecisionVelocity(
        current=current_median,
        previous=previous_median,
        change=current_median - previous_median,
        samples=len(current),
    )


def _transition_sort_key(name: str) -> tuple[int, str]:
    if name in _TRANSITION_ORDER:
        return (_TRANSITION_ORDER.index(name), name)
    return (len(_TRANSITION_ORDER), name)


def _velocity(name: str, days: list[int]) -> TransitionVelocity:
    return TransitionVelocity(
        transition=name,
        median_days=round_half_up(percentile_cont(days, 0.5) or 0),
        p75_days=round_half_up(percentile_cont(days, 0.75) or 0),
        count=len(days),
    )


def transition_velocity(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    min_samples: int = 3,
) -> list[TransitionVelocity]:
    """Median and P75 days spent before each forward status transition.

    Only transitions out of Draft, Review or Last Call that happened in
    the last two years are measured; the time is counted from the most
    recent earlier event that entered the ``from`` status.
    """
    now = now or utcnow()
    since = now - timedelta(days=730)
    sources = set(ACTIVE_STATUSES)
    targets = {"Review", "Last Call", "Final", "Withdrawn", "Stagnant"}

    entered: dict[tuple[str, int, str], datetime] = {}
    durations: dict[str, list[int]] = defaultdict(list)
    first_draft: dict[tuple[str, int], datetime] = {}
    draft_to_final: list[int] = []

    for event in store.status_events(filters):
        key = (event.repository, event.number)
        if event.to_status == ProposalStatus.DRAFT:
            first_draft.setdefault(key, event.changed_at)
        if (
            event.from_status in sources
            and event.to_status in targets
            and since <= event.changed_at <= now
        ):
            started = entered.get((*key, event.from_status))
            if started is not None:
                days = days_between(started, event.changed_at)
                if days > 0:
                    durations[f"{event.from_status} → {event.to_status}"].append(days)
        if (
            event.to_status == ProposalStatus.FINAL
            and since <= event.changed_at <= now
            and key in first_draft
        ):
            days = days_between(first_draft[key], event.changed_at)
            if days > 0:
                draft_to_final.append(days)
        entered[(*key, event.to_status)] = event.changed_at

    result = [
        _velocity(name, days) for name, days in durations.items() if len(days) >= min_samples
    ]
    # Direct Draft → Final measured from first Draft, kept at any sample count.
    if draft_to_final and not any(t.transition == "Draft → Final" for t in result):
        result.append(_velocity("Draft → Final", draft_to_final))
    result.sort(key=lambda t: _transition_sort_key(t.transition))
    return result


def last_call_watchlist(
    store: EventStore, filters: FilterSet, now: datetime | None = None
) -> list[LastCallItem]:
    """Proposals in Last Call, nearest deadline first.

    ``daysRemaining`` is negative once a deadline has passed and ``None``
    when no deadline is recorded; undated proposals sort last.
    """
    now = now or utcnow()
    items = [
        LastCallItem(
            repository=p.repository,
            number=p.number,
            kind=proposal_kind(p.repository, p.category),
            title=p.title,
            category=p.category,
            deadline=p.deadline,
            days_remaining=days_between(now, p.deadline) if p.deadline else None,
        )
        for p in store.proposals(filters)
        if p.status == ProposalStatus.LAST_CALL
    ]
    items.sort(key=lambda i: (i.deadline is None, i.deadline or now, i.number))
    return items


def _mean_days(days: list[int]) -> int:
    return round_half_up(sum(days) / len(days)) if days else 0


def created_to_final_velocity(
    store: EventStore,
    filters: FilterSet,
    now: datetime | None = None,
    months: int = 24,
    limit: int = 50,
) -> CreatedToFinalVelocity:
    """Days from proposal creation to Final for the trailing *months*.

    Every Final transition in the window counts once; same-day or
    backdated finalizations are skipped. ``proposals`` lists the latest
    *limit* finalizations, newest first.
    """
    now = now or utcnow()
    since = months_before(now, months)
    proposals = {(p.repository, p.number): p for p in store.proposals(filters)}

    finalized: list[FinalizedProposal] = []
    for event in store.status_events(filters):
        if event.to_status != ProposalStatus.FINAL or not since <= event.changed_at <= now:
            continue
        proposal = proposals.get((event.repository, event.number))
        if proposal is None or proposal.created_at is None:
            continue
        days = days_between(proposal.created_at, event.changed_at)
        if days <= 0:
            continue
        finalized.append(
            FinalizedProposal(
                repository=event.repository,
                number=event.number,
                title=proposal.title,
                created_at=proposal.created_at,
                finalized_at=event.changed_at,
                days_to_final=days,
            )
        )
    finalized.sort(key=lambda f: (-f.finalized_at.timestamp(), f.number))

    samples = [f.days_to_final for f in finalized]
    by_month: dict[str, list[int]] = defaultdict(list)
    for item in finalized:
        by_month[month_key(item.finalized_at)].append(item.days_to_final)

    return CreatedToFinalVelocity(
        summary=VelocitySummary(
            total=len(samples),
            median_days=round_half_up(percentile_cont(samples, 0.5) or 0),
            p75_days=round_half_up(percentile_cont(samples, 0.75) or 0),
            p90_days=round_half_up(percentile_cont(samples, 0.9) or 0),
            average_days=_mean_days(samples),
        ),
        trends=[
            MonthlyVelocity(month=month, count=len(days), average_days=_mean_days(days))
            for month, days in sorted(by_month.items())
        ],
        proposals=finalized[:limit],
    )


def momentum(
    store: EventStore, filters: FilterSet, now: datetime | None = None, months: int = 12
) -> list[MonthCount]:
    """Status changes per month over the trailing *months*, zeros included."""
    now = now or utcnow()
    window = trailing_months(now, months)
    since = datetime(window[0].year, window[0].month, 1, tzinfo=UTC)
    counts = Counter(
        month_key(e.changed_at)
        for e in store.status_events(filters)
        if since <= e.changed_at <= now
    )
    return [MonthCount(month=month_key(m), count=counts.get(month_key(m), 0)) for m in window]
