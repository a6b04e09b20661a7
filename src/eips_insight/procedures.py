"""Named, input-validated procedures over the analytics core.

Every procedure takes a JSON-like payload, validates it against a
pydantic input model, normalizes filters and returns JSON-ready output
with camelCase keys.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from eips_insight import explore, pagination, pr_analytics, proposals, search, standards
from eips_insight.config import EIPsInsightConfig
from eips_insight.exceptions import (
    AuthorizationError,
    EIPsInsightError,
    InvalidFilterError,
    NotFoundError,
)
from eips_insight.filters import FilterSet, normalize_filters
from eips_insight.formatter import format_csv, to_jsonable
from eips_insight.models import CamelModel
from eips_insight.primitives import utcnow
from eips_insight.results import ExportResult
from eips_insight.store import EventStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------

class ProcedureInput(CamelModel):
    model_config = ConfigDict(extra="forbid")


class FilterInput(ProcedureInput):
    repository: str | None = None
    statuses: list[str] | None = None
    types: list[str] | None = None
    categories: list[str] | None = None
    year_from: int | None = None
    year_to: int | None = None
    month_from: str | None = None
    month_to: str | None = None
    search: str | None = None
    days: int | None = None

    def to_filters(self) -> FilterSet:
        return normalize_filters(
            repository=self.repository,
            statuses=self.statuses,
            types=self.types,
            categories=self.categories,
            year_from=self.year_from,
            year_to=self.year_to,
            month_from=self.month_from,
            month_to=self.month_to,
            search=self.search,
            days=self.days,
        )


class LimitInput(FilterInput):
    limit: int | None = Field(default=None, ge=1)


class MonthsInput(FilterInput):
    months: int | None = Field(default=None, ge=1, le=120)


class MonthsLimitInput(MonthsInput):
    limit: int | None = Field(default=None, ge=1)


class RoleInput(LimitInput):
    role: str | None = None


class SparklineInput(RoleInput):
    months: int | None = Field(default=None, ge=1, le=120)


class SearchInput(ProcedureInput):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1)
    repository: str | None = None

    def to_filters(self) -> FilterSet:
        return normalize_filters(repository=self.repository)


class TableInput(FilterInput):
    kind: str = pagination.TableKind.STANDARDS
    sort_by: str | None = None
    sort_dir: str | None = None
    page: int = 1
    page_size: int | None = None


class ExportInput(FilterInput):
    kind: str = pagination.TableKind.STANDARDS


class ProposalInput(ProcedureInput):
    repository: str
    number: int


class ProcedureContext(BaseModel):
    """Collaborators handed to every procedure handler."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    store: EventStore
    config: EIPsInsightConfig
    now: datetime


Handler = Callable[[Any, ProcedureContext], Any]


class Procedure(NamedTuple):
    name: str
    input_model: type[ProcedureInput]
    handler: Handler
    description: str


PROCEDURES: dict[str, Procedure] = {}


def procedure(name: str, input_model: type[ProcedureInput]) -> Callable[[Handler], Handler]:
    """Register a handler under *name*; its docstring becomes the description."""
    def decorator(fn: Handler) -> Handler:
        description = (fn.__doc__ or "").strip().split("\n", 1)[0]
        PROCEDURES[name] = Procedure(name, input_model, fn, description)
        return fn
    return decorator


# ---------------------------------------------------------------------------
# Standards
# ---------------------------------------------------------------------------

@procedure("standards.status_matrix", FilterInput)
def _status_matrix(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Proposal counts per status and repository group."""
    return standards.status_matrix(ctx.store, params.to_filters())


@procedure("standards.category_breakdown", FilterInput)
def _category_breakdown(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Proposal counts per normalized category."""
    return standards.category_breakdown(ctx.store, params.to_filters())


@procedure("standards.creation_trends", FilterInput)
def _creation_trends(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Proposals created per year and repository group."""
    return standards.creation_trends(ctx.store, params.to_filters())


@procedure("standards.status_distribution", FilterInput)
def _status_distribution(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Flat status by repository counts."""
    return standards.status_distribution(ctx.store, params.to_filters())


@procedure("standards.kpis", FilterInput)
def _kpis(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Headline totals: all, in review, final, new this year."""
    return standards.kpis(ctx.store, params.to_filters(), ctx.now)


@procedure("standards.filter_options", FilterInput)
def _filter_options(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Distinct statuses, types and categories available for filtering."""
    return standards.filter_options(ctx.store, params.to_filters())


@procedure("standards.active_proposals", FilterInput)
def _active_proposals(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Counts of Draft, Review and Last Call proposals."""
    return standards.active_proposals(ctx.store, params.to_filters())


@procedure("standards.recent_changes", LimitInput)
def _recent_changes(params: LimitInput, ctx: ProcedureContext) -> Any:
    """Status changes from the last seven days, newest first."""
    return standards.recent_changes(
        ctx.store, params.to_filters(), ctx.now, limit=params.limit or 5
    )


@procedure("standards.decision_velocity", FilterInput)
def _decision_velocity(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Median days to Final, this year against last year."""
    return standards.decision_velocity(ctx.store, params.to_filters(), ctx.now)


@procedure("standards.transition_velocity", FilterInput)
def _transition_velocity(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Median and P75 days per status transition."""
    return standards.transition_velocity(ctx.store, params.to_filters(), ctx.now)


@procedure("standards.last_call_watchlist", FilterInput)
def _last_call_watchlist(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Last Call proposals ordered by deadline."""
    return standards.last_call_watchlist(ctx.store, params.to_filters(), ctx.now)


@procedure("standards.created_to_final_velocity", MonthsLimitInput)
def _created_to_final_velocity(params: MonthsLimitInput, ctx: ProcedureContext) -> Any:
    """Days from creation to Final with monthly trends and latest proposals."""
    return standards.created_to_final_velocity(
        ctx.store,
        params.to_filters(),
        ctx.now,
        months=params.months or 24,
        limit=params.limit or 50,
    )


@procedure("standards.momentum", MonthsInput)
def _momentum(params: MonthsInput, ctx: ProcedureContext) -> Any:
    """Status changes per month for the trailing months."""
    return standards.momentum(
        ctx.store, params.to_filters(), ctx.now, months=params.months or 12
    )


# ---------------------------------------------------------------------------
# Pull requests
# ---------------------------------------------------------------------------

@procedure("prs.monthly_activity", FilterInput)
def _monthly_activity(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Gap-filled monthly created, merged, closed and open PR counts."""
    return pr_analytics.monthly_activity(
        ctx.store, params.to_filters(), ctx.now, ctx.config.history_start
    )


@procedure("prs.lifecycle_funnel", FilterInput)
def _lifecycle_funnel(params: FilterInput, ctx: ProcedureContext) -> Any:
    """PRs by furthest lifecycle stage."""
    return pr_analytics.lifecycle_funnel(ctx.store, params.to_filters())


@procedure("prs.time_to_outcome", FilterInput)
def _time_to_outcome(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Median, P75 and P90 days to first review, comment, merge and close."""
    return pr_analytics.time_to_outcome(
        ctx.store, params.to_filters(), ctx.config.history_start
    )


@procedure("prs.staleness", FilterInput)
def _staleness(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Open PRs per age bucket."""
    return pr_analytics.staleness(ctx.store, params.to_filters(), ctx.now)


@procedure("prs.stale_high_risk", LimitInput)
def _stale_high_risk(params: LimitInput, ctx: ProcedureContext) -> Any:
    """Governed open PRs without recent activity."""
    filters = params.to_filters()
    staleness_config = ctx.config.staleness
    return pr_analytics.stale_high_risk(
        ctx.store,
        filters,
        ctx.now,
        days=filters.days if filters.days is not None else staleness_config.high_risk_days,
        limit=params.limit or staleness_config.high_risk_limit,
    )


@procedure("prs.governance_states", FilterInput)
def _governance_states(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Open PRs per governance state."""
    return pr_analytics.governance_states(ctx.store, params.to_filters())


@procedure("prs.current_labels", FilterInput)
def _current_labels(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Open PRs per currently applied label."""
    return pr_analytics.current_labels(ctx.store, params.to_filters())


@procedure("prs.open_state", FilterInput)
def _open_state(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Open PR count, median age and oldest open PR."""
    return pr_analytics.open_state(ctx.store, params.to_filters(), ctx.now)


@procedure("prs.recent", LimitInput)
def _recent_prs(params: LimitInput, ctx: ProcedureContext) -> Any:
    """Latest PRs with outcome and age in days."""
    return pr_analytics.recent_prs(
        ctx.store, params.to_filters(), ctx.now, limit=params.limit or 5
    )


# ---------------------------------------------------------------------------
# Explore
# ---------------------------------------------------------------------------

@procedure("explore.leaderboard", RoleInput)
def _leaderboard(params: RoleInput, ctx: ProcedureContext) -> Any:
    """Contributors ranked by weighted activity."""
    weights = ctx.config.leaderboard
    return explore.role_leaderboard(
        ctx.store,
        params.to_filters(),
        role=params.role,
        limit=params.limit or weights.default_limit,
        weights=weights,
    )


@procedure("explore.timeline", RoleInput)
def _timeline(params: RoleInput, ctx: ProcedureContext) -> Any:
    """Most recent contributor activity with link targets."""
    return explore.activity_timeline(
        ctx.store,
        params.to_filters(),
        role=params.role,
        limit=params.limit or ctx.config.leaderboard.timeline_limit,
    )


@procedure("explore.role_counts", FilterInput)
def _role_counts(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Unique actors and total actions per role."""
    return explore.role_counts(ctx.store, params.to_filters())


@procedure("explore.role_sparkline", SparklineInput)
def _role_sparkline(params: SparklineInput, ctx: ProcedureContext) -> Any:
    """Monthly action counts for the trailing months."""
    return explore.role_activity_sparkline(
        ctx.store,
        params.to_filters(),
        ctx.now,
        role=params.role,
        months=params.months or ctx.config.leaderboard.sparkline_months,
    )


@procedure("explore.years", FilterInput)
def _years(params: FilterInput, ctx: ProcedureContext) -> Any:
    """Per-year proposal, status change and PR counts."""
    return explore.years_overview(ctx.store, params.to_filters())


@procedure("explore.trending", LimitInput)
def _trending(params: LimitInput, ctx: ProcedureContext) -> Any:
    """Proposals ranked by recency-weighted activity."""
    return explore.trending_proposals(
        ctx.store, params.to_filters(), ctx.now, ctx.config.trending, limit=params.limit
    )


@procedure("explore.trending_heatmap", LimitInput)
def _trending_heatmap(params: LimitInput, ctx: ProcedureContext) -> Any:
    """Daily activity of the top trending proposals."""
    return explore.trending_heatmap(
        ctx.store, params.to_filters(), ctx.now, ctx.config.trending, top_n=params.limit
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

@procedure("search.proposals", SearchInput)
def _search_proposals(params: SearchInput, ctx: ProcedureContext) -> Any:
    """Scored proposal search."""
    return search.search_proposals(
        ctx.store, params.query, limit=params.limit or 50,
        filters=params.to_filters(), weights=ctx.config.search,
    )


@procedure("search.authors", SearchInput)
def _search_authors(params: SearchInput, ctx: ProcedureContext) -> Any:
    """Authors by contribution count."""
    return search.search_authors(
        ctx.store, params.query, limit=params.limit or 20, filters=params.to_filters()
    )


@procedure("search.prs", SearchInput)
def _search_prs(params: SearchInput, ctx: ProcedureContext) -> Any:
    """Pull requests matching a number or PR reference."""
    return search.search_prs(
        ctx.store, params.query, limit=params.limit or 20, filters=params.to_filters()
    )


# ---------------------------------------------------------------------------
# Tables, export and detail
# ---------------------------------------------------------------------------

@procedure("tables.page", TableInput)
def _table_page(params: TableInput, ctx: ProcedureContext) -> Any:
    """One sorted page of the standards or RIP table."""
    return pagination.table_page(
        ctx.store,
        params.kind,
        params.to_filters(),
        sort_by=params.sort_by,
        sort_dir=params.sort_dir,
        page=params.page,
        page_size=params.page_size,
        now=ctx.now,
        config=ctx.config.pagination,
    )


@procedure("tables.export", ExportInput)
def _table_export(params: ExportInput, ctx: ProcedureContext) -> Any:
    """The full filtered table as CSV."""
    kind = pagination.coerce_kind(params.kind)
    columns, rows = pagination.export_rows(ctx.store, kind, params.to_filters(), ctx.now)
    return ExportResult(
        filename=f"{kind.value}-{ctx.now:%Y-%m-%d}.csv",
        columns=list(columns),
        row_count=len(rows),
        csv=format_csv(columns, rows),
    )


@procedure("proposals.get", ProposalInput)
def _get_proposal(params: ProposalInput, ctx: ProcedureContext) -> Any:
    """One proposal with its current metadata."""
    return proposals.get_proposal(ctx.store, params.repository, params.number)


@procedure("proposals.status_history", ProposalInput)
def _status_history(params: ProposalInput, ctx: ProcedureContext) -> Any:
    """Ordered status transitions of one proposal."""
    return proposals.status_history(ctx.store, params.repository, params.number)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def list_procedures() -> list[dict[str, str]]:
    """Names and one-line descriptions of all registered procedures."""
    return [
        {"name": p.name, "description": p.description}
        for p in sorted(PROCEDURES.values(), key=lambda p: p.name)
    ]


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(loc) for loc in error["loc"]) or "input"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def call_procedure(
    name: str,
    payload: dict[str, Any] | None = None,
    *,
    store: EventStore,
    config: EIPsInsightConfig | None = None,
    now: datetime | None = None,
) -> Any:
    """Validate *payload*, run procedure *name* and return JSON-ready output.

    Raises:
        NotFoundError: If no procedure is registered under *name*.
        InvalidFilterError: If the payload fails validation or normalization.
        UpstreamDataError: If the event store fails.
    """
    entry = PROCEDURES.get(name)
    if entry is None:
        raise NotFoundError("procedure", name)

    try:
        params = entry.input_model.model_validate(payload or {})
    except ValidationError as exc:
        raise InvalidFilterError("input", _validation_message(exc)) from exc

    ctx = ProcedureContext(store=store, config=config or EIPsInsightConfig(), now=now or utcnow())
    start = time.perf_counter()
    result = entry.handler(params, ctx)
    logger.debug("%s completed in %.3fs", name, time.perf_counter() - start)
    return to_jsonable(result)


class ProcedureOutcome(CamelModel):
    """Result of one call in a fan-out: either ``result`` or ``error``."""
    name: str
    ok: bool
    result: Any = None
    error: str | None = None
    kind: str | None = None


async def fan_out(
    calls: list[tuple[str, dict[str, Any] | None]],
    *,
    store: EventStore,
    config: EIPsInsightConfig | None = None,
    now: datetime | None = None,
) -> list[ProcedureOutcome]:
    """Run several procedures concurrently and wait for all of them.

    A failing call yields an outcome with ``ok=False`` and the error kind,
    never an empty result. Authorization failures are re-raised.
    """
    now = now or utcnow()
    tasks = [
        asyncio.to_thread(call_procedure, name, payload, store=store, config=config, now=now)
        for name, payload in calls
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    outcomes: list[ProcedureOutcome] = []
    for (name, _), result in zip(calls, results):
        if isinstance(result, AuthorizationError):
            raise result
        if isinstance(result, EIPsInsightError):
            logger.warning("%s failed: %s", name, result)
            outcomes.append(
                ProcedureOutcome(name=name, ok=False, error=str(result), kind=result.kind)
            )
        elif isinstance(result, BaseException):
            raise result
        else:
            outcomes.append(ProcedureOutcome(name=name, ok=True, result=result))
    return outcomes
