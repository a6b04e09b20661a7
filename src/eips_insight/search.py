"""Free-text search over proposals, authors and pull requests."""

from __future__ import annotations

import logging
import re
from collections import Counter

from eips_insight.config import SearchWeights
from eips_insight.filters import FilterSet, repo_condition, where
from eips_insight.normalize import AUTHOR_SEPARATOR_RE, normalize_author
from eips_insight.results import AuthorHit, PRHit, ProposalHit
from eips_insight.standards import proposal_kind
from eips_insight.store import EventStore

logger = logging.getLogger(__name__)

_PR_REFERENCE_RE = re.compile(r"^(pr|#|pull)", re.IGNORECASE)


def query_digits(query: str) -> str:
    """All digits of *query* in order, e.g. ``"EIP-1559"`` -> ``"1559"``."""
    return re.sub(r"\D", "", query)


def score_proposal(
    query: str,
    number: int,
    title: str | None,
    author: str | None = None,
    status: str | None = None,
    category: str | None = None,
    type_: str | None = None,
    weights: SearchWeights | None = None,
) -> int:
    """Sum the scores of every way a proposal matches *query*.

    Number matches are exclusive (exact beats prefix), as are title
    matches (exact beats substring). Everything else adds up.
    """
    weights = weights or SearchWeights()
    term = query.strip().lower()
    if not term:
        return 0
    digits = query_digits(query)
    score = 0

    number_text = str(number)
    if digits and number == int(digits):
        score += weights.exact_number
    elif digits and number_text.startswith(digits):
        score += weights.number_prefix

    title_lower = (title or "").lower()
    if title_lower == term:
        score += weights.exact_title
    elif term in title_lower:
        score += weights.title_contains

    if author and term in author.lower():
        score += weights.author
    if status and term in status.lower():
        score += weights.status
    if category and term in category.lower():
        score += weights.category
    if type_ and term in type_.lower():
        score += weights.type
    return score


def search_proposals(
    store: EventStore,
    query: str,
    limit: int = 50,
    filters: FilterSet | None = None,
    weights: SearchWeights | None = None,
) -> list[ProposalHit]:
    """Score proposals against *query*; best first, ties by number.

    A wider candidate set than *limit* is fetched and ranked coarsely in
    SQL so that a plain ``LIMIT`` cannot cut off better matches.
    """
    weights = weights or SearchWeights()
    term = query.strip().lower()
    if not term or limit <= 0:
        return []
    digits = query_digits(query)
    like = f"%{term}%"

    matches = [
        "LOWER(p.title) LIKE ?",
        "LOWER(p.author) LIKE ?",
        "LOWER(p.status) LIKE ?",
        "LOWER(p.type) LIKE ?",
        "LOWER(p.category) LIKE ?",
    ]
    match_params: list = [like] * len(matches)
    if digits:
        matches.append("CAST(p.number AS TEXT) LIKE ?")
        match_params.append(f"{digits}%")

    conditions, params = repo_condition(filters or FilterSet(), "p.repository")
    conditions.append("(" + " OR ".join(matches) + ")")
    params.extend(match_params)

    rows = store.query(
        f"""
        SELECT p.repository, p.number, p.title, p.author, p.status, p.type, p.category
        FROM proposals p
        {where(conditions)}
        ORDER BY
            CASE WHEN p.number = ? THEN 0
                 WHEN LOWER(p.title) = ? THEN 1
                 ELSE 2 END,
            p.number ASC
        LIMIT ?
        """,
        [*params, int(digits) if digits else -1, term, limit * weights.candidate_multiplier],
    )

    hits: list[ProposalHit] = []
    for r in rows:
        score = score_proposal(
            query, r["number"], r["title"], r["author"], r["status"],
            r["category"], r["type"], weights,
        )
        if score <= 0:
            continue
        hits.append(
            ProposalHit(
                number=r["number"],
                repo=proposal_kind(r["repository"], None),
                title=r["title"] or "",
                status=r["status"],
                category=r["category"] or None,
                type=r["type"] or None,
                author=r["author"] or None,
                score=score,
            )
        )
    hits.sort(key=lambda h: (-h.score, h.number))
    logger.debug("search %r: %d candidates, %d hits", query, len(rows), len(hits))
    return hits[:limit]


def search_authors(
    store: EventStore,
    query: str,
    limit: int = 20,
    filters: FilterSet | None = None,
) -> list[AuthorHit]:
    """Authors whose normalized identity or raw entry contains *query*."""
    term = query.strip().lower()
    if not term:
        return []
    conditions, params = repo_condition(filters or FilterSet(), "repository")
    conditions.append("author IS NOT NULL AND author != ''")
    rows = store.query(f"SELECT author FROM proposals {where(conditions)}", params)

    contributions: Counter[str] = Counter()
    for row in rows:
        for raw in AUTHOR_SEPARATOR_RE.split(row["author"]):
            identity = normalize_author(raw)
            if identity is None:
                continue
            if term in identity.lower() or term in raw.lower():
                contributions[identity] += 1

    ranked = sorted(contributions.items(), key=lambda item: (-item[1], item[0]))
    return [AuthorHit(name=name, contribution_count=count) for name, count in ranked[:limit]]


def looks_like_pr_reference(query: str) -> bool:
    """True when *query* has a digit or starts with ``pr``, ``#`` or ``pull``."""
    return bool(query_digits(query)) or bool(_PR_REFERENCE_RE.match(query.strip()))


def search_prs(
    store: EventStore,
    query: str,
    limit: int = 20,
    filters: FilterSet | None = None,
) -> list[PRHit]:
    """Pull requests by number or title; newest PR numbers first.

    Returns nothing unless the query looks like a PR reference.
    """
    if not looks_like_pr_reference(query):
        return []
    digits = query_digits(query)
    like = f"%{digits}%" if digits else f"%{query.strip().lower()}%"

    conditions, params = repo_condition(filters or FilterSet(), "repository")
    conditions.append("(CAST(pr_number AS TEXT) LIKE ? OR LOWER(title) LIKE ?)")
    params.extend([like, like])
    rows = store.query(
        f"""
        SELECT pr_number, repository, title, state
        FROM pull_requests
        {where(conditions)}
        ORDER BY pr_number DESC
        LIMIT ?
        """,
        [*params, limit],
    )
    return [
        PRHit(
            pr_number=r["pr_number"],
            repo=r["repository"],
            title=r["title"] or None,
            state=r["state"] or None,
        )
        for r in rows
    ]
