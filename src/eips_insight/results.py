"""Result shapes returned by aggregators, search and the table service."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Literal, TypeVar

from pydantic import Field

from eips_insight.models import CamelModel, StatusEvent


# ---- Standards ----

class StatusMatrixRow(CamelModel):
    status: str
    eips: int = 0
    ercs: int = 0
    rips: int = 0
    unknown: int = 0
    total: int = 0


class StatusMatrix(CamelModel):
    """Status by repository-group counts with row, column and grand totals."""
    groups: list[str] = []
    rows: list[StatusMatrixRow] = []
    column_totals: dict[str, int] = {}
    grand_total: int = 0


class CategoryCount(CamelModel):
    category: str
    count: int


class CreationTrend(CamelModel):
    year: int
    repo: str
    count: int


class StatusDistributionRow(CamelModel):
    status: str
    repo: str
    count: int


class KPIs(CamelModel):
    total: int = 0
    in_review: int = 0
    finalized: int = 0
    new_this_year: int = 0


class FilterOptions(CamelModel):
    statuses: list[str] = []
    types: list[str] = []
    categories: list[str] = []


class ActiveProposals(CamelModel):
    draft: int = 0
    review: int = 0
    last_call: int = 0
    total: int = 0


class RecentChange(CamelModel):
    repository: str
    number: int
    kind: str
    title: str | None = None
    from_status: str | None = Field(default=None, alias="from")
    to_status: str = Field(alias="to")
    days: int
    changed_at: datetime


class DecisionVelocity(CamelModel):
    """Median days to Final for the trailing year versus the year before."""
    current: int = 0
    previous: int = 0
    change: int = 0
    samples: int = 0


class TransitionVelocity(CamelModel):
    transition: str
    median_days: int
    p75_days: int
    count: int


class LastCallItem(CamelModel):
    """A proposal in Last Call and the time left before its deadline."""
    repository: str
    number: int
    kind: str
    title: str | None = None
    category: str | None = None
    deadline: datetime | None = None
    days_remaining: int | None = None


class VelocitySummary(CamelModel):
    total: int = 0
    median_days: int = 0
    p75_days: int = 0
    p90_days: int = 0
    average_days: int = 0


class MonthlyVelocity(CamelModel):
    month: str
    count: int
    average_days: int


class FinalizedProposal(CamelModel):
    repository: str
    number: int
    title: str | None = None
    created_at: datetime
    finalized_at: datetime
    days_to_final: int


class CreatedToFinalVelocity(CamelModel):
    """Days from creation to Final over a trailing window of months."""
    summary: VelocitySummary = Field(default_factory=VelocitySummary)
    trends: list[MonthlyVelocity] = []
    proposals: list[FinalizedProposal] = []


# ---- PR analytics ----

class MonthlyPRActivity(CamelModel):
    month: str
    created: int = 0
    merged: int = 0
    closed: int = 0
    open_at_month_end: int = 0


class FunnelStage(CamelModel):
    stage: str
    count: int
    percentage: float


class OutcomeLatency(CamelModel):
    metric: str
    median_days: int
    p75_days: int
    p90_days: int
    samples: int


class StalenessBucket(CamelModel):
    bucket: str
    count: int


class StalePR(CamelModel):
    pr_number: int
    repo: str
    title: str | None = None
    author: str | None = None
    age_days: int
    last_activity: str


class OpenPRRef(CamelModel):
    pr_number: int
    repo: str
    title: str | None = None
    author: str | None = None
    age_days: int


class RecentPR(CamelModel):
    pr_number: int
    repo: str
    title: str | None = None
    author: str | None = None
    status: str
    days: int


class OpenState(CamelModel):
    total_open: int = 0
    median_age: int = 0
    oldest_pr: OpenPRRef | None = Field(default=None, alias="oldestPR")


class GovernanceStateCount(CamelModel):
    state: str
    label: str
    count: int


class LabelCount(CamelModel):
    label: str
    count: int


# ---- Explore ----

class LeaderboardEntry(CamelModel):
    rank: int
    actor: str
    total_score: int
    prs_reviewed: int = 0
    comments: int = 0
    prs_created: int = 0
    prs_merged: int = 0
    avg_response_hours: float | None = None
    last_activity: datetime | None = None
    role: str | None = None


LinkTarget = Literal["review", "comment", "pull"]


class TimelineEvent(CamelModel):
    id: int
    actor: str
    role: str | None = None
    event_type: str
    pr_number: int
    created_at: datetime
    external_id: str | None = None
    repo_name: str
    link_target: LinkTarget = "pull"


class RoleCount(CamelModel):
    role: str
    unique_actors: int
    total_actions: int


class MonthCount(CamelModel):
    month: str
    count: int


class YearOverview(CamelModel):
    year: int
    new_proposals: int = 0
    status_changes: int = 0
    prs_created: int = 0


class TrendingProposal(CamelModel):
    repository: str
    number: int
    title: str | None = None
    status: str
    score: float
    trending_reason: str
    last_activity: datetime | None = None


class DailyCount(CamelModel):
    date: str
    value: int


class HeatmapRow(CamelModel):
    repository: str
    eip_number: int
    title: str | None = None
    total_activity: int
    daily_activity: list[DailyCount]


# ---- Search ----

class ProposalHit(CamelModel):
    kind: Literal["proposal"] = "proposal"
    number: int
    repo: str
    title: str
    status: str
    category: str | None = None
    type: str | None = None
    author: str | None = None
    score: int


class AuthorHit(CamelModel):
    kind: Literal["author"] = "author"
    name: str
    contribution_count: int


class PRHit(CamelModel):
    kind: Literal["pr"] = "pr"
    pr_number: int
    repo: str
    title: str | None = None
    state: str | None = None


# ---- Tables ----

class StandardsRow(CamelModel):
    repo: str
    number: int
    title: str | None = None
    author: str | None = None
    status: str
    type: str | None = None
    category: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    days_in_status: int = 0
    linked_prs: int = Field(default=0, alias="linkedPRs")


class RIPRow(CamelModel):
    number: int
    title: str | None = None
    status: str | None = None
    author: str | None = None
    created_at: datetime | None = None
    last_commit: datetime | None = None
    commits: int = 0


RowT = TypeVar("RowT", StandardsRow, RIPRow)


class TablePage(CamelModel, Generic[RowT]):
    rows: list[RowT] = []
    total: int = 0
    page: int = 1
    page_size: int = 0
    total_pages: int = 0
    sort_by: str = "number"
    sort_dir: str = "asc"


class ExportResult(CamelModel):
    filename: str
    columns: list[str]
    row_count: int
    csv: str


# ---- Proposal detail ----

class StatusHistory(CamelModel):
    repository: str
    number: int
    events: list[StatusEvent] = []
    chain_consistent: bool = True
