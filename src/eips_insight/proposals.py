"""Single-proposal lookups."""

from __future__ import annotations

from eips_insight.exceptions import InvalidFilterError, NotFoundError
from eips_insight.models import Proposal, RepoGroup, StatusEvent, repo_group
from eips_insight.results import StatusHistory
from eips_insight.store import EventStore


def _group_key(repository: str) -> str:
    group = repo_group(repository)
    if group == RepoGroup.UNKNOWN:
        raise InvalidFilterError("repository", f"{repository!r} is not a known repository")
    return group.value


def get_proposal(store: EventStore, repository: str, number: int) -> Proposal:
    """Fetch one proposal by repository (``eips`` or ``ethereum/EIPs``) and number.

    Raises:
        NotFoundError: If no such proposal exists.
    """
    key = _group_key(repository)
    proposal = store.find_proposal(key, number)
    if proposal is None:
        raise NotFoundError("proposal", f"{key}/{number}")
    return proposal


def is_chain_consistent(events: list[StatusEvent]) -> bool:
    """True when every transition starts where the previous one ended.

    Only the first event may have an unknown ``from`` status.
    """
    for previous, current in zip(events, events[1:]):
        if current.from_status != previous.to_status:
            return False
    return True


def status_history(store: EventStore, repository: str, number: int) -> StatusHistory:
    proposal = get_proposal(store, repository, number)
    events = store.status_events(repository=proposal.repository, number=proposal.number)
    return StatusHistory(
        repository=proposal.repository,
        number=proposal.number,
        events=events,
        chain_consistent=is_chain_consistent(events),
    )
