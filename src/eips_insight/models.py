"""Data models for the EIPsInsight event store."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, computed_field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model whose JSON form uses camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class RepoGroup(StrEnum):
    """Fixed vocabulary of repository groups."""
    EIPS = "eips"
    ERCS = "ercs"
    RIPS = "rips"
    UNKNOWN = "unknown"


class ProposalStatus(StrEnum):
    """Lifecycle status of a proposal."""
    DRAFT = "Draft"
    REVIEW = "Review"
    LAST_CALL = "Last Call"
    FINAL = "Final"
    LIVING = "Living"
    STAGNANT = "Stagnant"
    WITHDRAWN = "Withdrawn"


# Presentation order of statuses in matrices and distributions.
STATUS_ORDER: tuple[str, ...] = tuple(s.value for s in ProposalStatus)

ACTIVE_STATUSES: tuple[str, ...] = (
    ProposalStatus.DRAFT,
    ProposalStatus.REVIEW,
    ProposalStatus.LAST_CALL,
)


class ActorRole(StrEnum):
    """Role classification of an activity actor."""
    EDITOR = "EDITOR"
    REVIEWER = "REVIEWER"
    CONTRIBUTOR = "CONTRIBUTOR"


class ActivityType(StrEnum):
    """Per-actor PR action."""
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    REVIEWED = "REVIEWED"
    MERGED = "MERGED"
    OPENED = "OPENED"
    CLOSED = "CLOSED"


REVIEW_TYPES: frozenset[str] = frozenset({
    ActivityType.APPROVED,
    ActivityType.CHANGES_REQUESTED,
    ActivityType.REVIEWED,
})


class GovernanceState(StrEnum):
    """Materialized "who is blocking" state of an open PR."""
    WAITING_ON_EDITOR = "WAITING_ON_EDITOR"
    WAITING_ON_AUTHOR = "WAITING_ON_AUTHOR"
    STALLED = "STALLED"
    DRAFT = "DRAFT"
    NO_STATE = "NO_STATE"


GOVERNANCE_LABELS: dict[str, str] = {
    GovernanceState.WAITING_ON_EDITOR: "waiting for editors review",
    GovernanceState.WAITING_ON_AUTHOR: "author review",
    GovernanceState.STALLED: "stalled",
    GovernanceState.DRAFT: "draft",
    GovernanceState.NO_STATE: "uncategorized",
}


def repo_group(repository: str | None) -> RepoGroup:
    """Map a repository name such as ``ethereum/EIPs`` to its group key.

    Unrecognized names fall into :attr:`RepoGroup.UNKNOWN`.
    """
    if not repository:
        return RepoGroup.UNKNOWN
    name = repository.rsplit("/", 1)[-1].strip().lower()
    try:
        group = RepoGroup(name)
    except ValueError:
        return RepoGroup.UNKNOWN
    return group


class Proposal(CamelModel):
    """Current snapshot of a proposal."""
    repository: str
    number: int
    title: str | None = None
    author: str | None = None
    status: str
    type: str | None = None
    category: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    requires: list[int] = []
    deadline: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def repo(self) -> str:
        return repo_group(self.repository).value


class StatusEvent(CamelModel):
    """A recorded status transition of a proposal."""
    repository: str
    number: int
    from_status: str | None = None
    to_status: str
    changed_at: datetime


class PullRequest(CamelModel):
    """Lifecycle timestamps of a pull request."""
    repository: str
    pr_number: int
    title: str | None = None
    author: str | None = None
    state: str
    created_at: datetime
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    proposal_number: int | None = None

    @property
    def is_open(self) -> bool:
        return self.state == "open"


class ActivityEvent(CamelModel):
    """A single contributor action on a pull request."""
    id: int
    actor: str
    role: str | None = None
    event_type: str
    pr_number: int
    repository: str
    occurred_at: datetime
    external_id: str | None = None


class PREvent(CamelModel):
    """A pull request timeline event (labels, pushes, etc.)."""
    repository: str
    pr_number: int
    event_type: str
    label: str | None = None
    actor: str | None = None
    created_at: datetime
