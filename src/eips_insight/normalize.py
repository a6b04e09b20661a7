"""Normalization of free-form category and author strings."""

from __future__ import annotations

import re
from collections.abc import Iterable

_KNOWN_CATEGORIES: dict[str, str] = {
    "erc": "ERC",
    "ercs": "ERC",
    "eip": "EIP",
    "eips": "EIP",
    "core": "Core",
    "interface": "Interface",
    "networking": "Networking",
    "informational": "Informational",
    "meta": "Meta",
}

OTHER_CATEGORY = "Other"

_HANDLE_RE = re.compile(r"\(@([\w-]+)\)")
AUTHOR_SEPARATOR_RE = re.compile(r"[,;]")


def title_case(value: str) -> str:
    """Upper-case the first letter of each whitespace-separated word."""
    return " ".join(w[:1].upper() + w[1:].lower() for w in value.split())


def normalize_category(raw: str | None) -> str:
    """Map a raw category string to its canonical display key.

    ``"ercs"`` and ``"ERC"`` both become ``"ERC"``; blank values become
    ``"Other"``; anything unrecognized is title-cased.
    """
    value = (raw or "").strip()
    if not value:
        return OTHER_CATEGORY
    known = _KNOWN_CATEGORIES.get(value.lower())
    if known is not None:
        return known
    return title_case(value)


def merge_category_counts(rows: Iterable[tuple[str | None, int]]) -> dict[str, int]:
    """Normalize category keys and sum the counts of keys that collide."""
    merged: dict[str, int] = {}
    for raw, count in rows:
        key = normalize_category(raw)
        merged[key] = merged.get(key, 0) + int(count)
    return merged


def normalize_author(raw: str) -> str | None:
    """Reduce a single author entry to an identity string.

    Prefers a GitHub handle written as ``(@handle)``, then the name in
    front of an ``<email>``, then the trimmed entry itself.
    """
    entry = raw.strip()
    if not entry:
        return None
    match = _HANDLE_RE.search(entry)
    if match:
        return match.group(1)
    if "<" in entry:
        name = entry.split("<", 1)[0].strip()
        return name or None
    return entry


def split_authors(raw: str | None) -> list[str]:
    """Split a comma/semicolon separated author field into identities."""
    if not raw:
        return []
    authors: list[str] = []
    for part in AUTHOR_SEPARATOR_RE.split(raw):
        identity = normalize_author(part)
        if identity is not None:
            authors.append(identity)
    return authors
