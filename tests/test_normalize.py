"""Tests for category and author normalization."""

from __future__ import annotations

from eips_insight.normalize import (
    OTHER_CATEGORY,
    merge_category_counts,
    normalize_author,
    normalize_category,
    split_authors,
    title_case,
)


class TestNormalizeCategory:
    def test_erc_spellings_collapse(self) -> None:
        assert {normalize_category(v) for v in ("ERC", "erc", "ERCs", " ercs ")} == {"ERC"}

    def test_known_categories(self) -> None:
        assert normalize_category("core") == "Core"
        assert normalize_category("NETWORKING") == "Networking"
        assert normalize_category("eips") == "EIP"

    def test_blank_is_other(self) -> None:
        assert normalize_category(None) == OTHER_CATEGORY
        assert normalize_category("   ") == OTHER_CATEGORY

    def test_unknown_is_title_cased(self) -> None:
        assert normalize_category("standards track") == "Standards Track"

    def test_idempotent(self) -> None:
        for raw in ("erc", "Core", "standards track", "", "Meta"):
            once = normalize_category(raw)
            assert normalize_category(once) == once


class TestMergeCategoryCounts:
    def test_colliding_keys_are_summed(self) -> None:
        merged = merge_category_counts([("ERC", 3), ("erc", 2), ("ERCs", 1), ("Core", 4)])
        assert merged == {"ERC": 6, "Core": 4}

    def test_sum_matches_pre_aggregated_total(self) -> None:
        rows = [("ERC", 3), ("erc", 2), ("ERCs", 1)]
        merged = merge_category_counts(rows)
        assert merged["ERC"] == merge_category_counts([("ERC", 6)])["ERC"]


class TestTitleCase:
    def test_words(self) -> None:
        assert title_case("last CALL") == "Last Call"


class TestAuthors:
    def test_handle_preferred(self) -> None:
        assert normalize_author("Vitalik Buterin (@vbuterin)") == "vbuterin"

    def test_name_before_email(self) -> None:
        assert normalize_author("Bob Smith <bob@example.com>") == "Bob Smith"

    def test_raw_trimmed(self) -> None:
        assert normalize_author("  Carol  ") == "Carol"

    def test_blank_entry(self) -> None:
        assert normalize_author("   ") is None

    def test_split_mixed_list(self) -> None:
        raw = "Alice (@alice), Bob <bob@example.com>; Carol"
        assert split_authors(raw) == ["alice", "Bob", "Carol"]

    def test_split_empty(self) -> None:
        assert split_authors(None) == []
        assert split_authors("") == []
