"""Tests for the CLI module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from eips_insight.cli import main
from eips_insight.store import EventStore

from tests.conftest import StoreBuilder


@pytest.fixture
def db_args(eips_store: EventStore, tmp_path: Path) -> list[str]:
    return ["--db", str(eips_store.db_path), "--config", str(tmp_path / "none.yml")]


class TestProceduresCommand:
    def test_lists_names(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "procedures"])
        assert result.exit_code == 0
        assert "standards.status_matrix" in result.output
        assert "tables.export" in result.output


class TestCallCommand:
    def test_json_output(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(
            main, [*db_args, "call", "standards.kpis", "--input", '{"repository": "ercs"}']
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert (data["total"], data["inReview"], data["finalized"]) == (1, 1, 0)

    def test_bad_json_input(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "call", "standards.kpis", "--input", "{"])
        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_unknown_procedure(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "call", "nope"])
        assert result.exit_code == 1
        assert "not_found" in result.output

    def test_invalid_filter(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(
            main, [*db_args, "call", "standards.kpis", "--input", '{"repository": "btc"}']
        )
        assert result.exit_code == 1
        assert "invalid_filter" in result.output

    def test_missing_store(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main, ["--db", str(tmp_path / "missing.db"), "call", "standards.kpis"]
        )
        assert result.exit_code == 1
        assert "upstream_data" in result.output


class TestExportCommand:
    def test_csv_to_stdout(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "export", "standards", "--status", "Final"])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("repo,number,title")
        assert [line.split(",")[1] for line in lines[1:]] == ["4", "5"]

    def test_csv_to_file(self, db_args: list[str], tmp_path: Path) -> None:
        target = tmp_path / "rips.csv"
        result = CliRunner().invoke(main, [*db_args, "export", "rips", "-o", str(target)])
        assert result.exit_code == 0
        content = target.read_text().splitlines()
        assert content[0] == "number,title,status,author,createdAt,lastCommit,commits"
        assert content[1].startswith("7212,Proposal 7212,Draft,Carol,")
        assert "Wrote 1 rows" in result.output

    def test_rejects_unknown_kind(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "export", "issues"])
        assert result.exit_code != 0


class TestViewCommands:
    def test_matrix(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "matrix", "--repository", "eips"])
        assert result.exit_code == 0
        assert "Draft" in result.output
        assert "Withdrawn" in result.output

    def test_leaderboard_without_activity(self, db_args: list[str]) -> None:
        result = CliRunner().invoke(main, [*db_args, "leaderboard"])
        assert result.exit_code == 0
        assert "No activity." in result.output

    def test_timeline(self, builder: StoreBuilder) -> None:
        store = builder.pr(1, "2024-01-01").activity(
            "alice", "COMMENTED", 1, "2024-01-02", external_id="77"
        ).build()
        result = CliRunner().invoke(
            main, ["--db", str(store.db_path), "leaderboard", "--timeline"]
        )
        assert result.exit_code == 0
        assert "alice" in result.output
        assert "#issuecomment-77" in result.output
