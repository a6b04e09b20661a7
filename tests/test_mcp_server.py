"""Tests for the MCP server module."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from eips_insight.config import EIPsInsightConfig
from eips_insight.exceptions import AuthorizationError, NotFoundError, UpstreamDataError
from eips_insight.mcp_server import (
    _error_json,
    export_csv,
    list_procedures,
    main,
    run_procedure,
)
from eips_insight.store import EventStore


@pytest.fixture
def served_store(eips_store: EventStore):
    """Point the server's config loader at the fixture store."""
    config = EIPsInsightConfig(database={"path": str(eips_store.db_path)})
    with patch("eips_insight.mcp_server._get_config", return_value=config):
        yield eips_store


class TestErrorJson:
    def test_carries_kind(self) -> None:
        result = json.loads(_error_json(NotFoundError("procedure", "x")))
        assert result == {"error": "procedure not found: x", "kind": "not_found"}

    def test_upstream_kind(self) -> None:
        result = json.loads(_error_json(UpstreamDataError("store down")))
        assert result["kind"] == "upstream_data"


class TestMain:
    @patch("eips_insight.mcp_server.FastMCP")
    def test_main_calls_run(self, mock_fastmcp_cls: MagicMock) -> None:
        mock_server = MagicMock()
        mock_fastmcp_cls.return_value = mock_server
        main()
        mock_fastmcp_cls.assert_called_once_with("eips-insight")
        assert mock_server.tool.call_count == 3
        registered = [
            call.args[0]
            for call in mock_server.tool.return_value.call_args_list
        ]
        assert registered == [list_procedures, run_procedure, export_csv]
        mock_server.run.assert_called_once_with(transport="stdio")


class TestMcpNotInstalled:
    @patch("eips_insight.mcp_server.FastMCP", None)
    def test_exits_when_mcp_missing(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1


class TestListProcedures:
    @pytest.mark.asyncio
    async def test_lists_registered_names(self) -> None:
        parsed = json.loads(await list_procedures())
        names = [p["name"] for p in parsed]
        assert "explore.leaderboard" in names
        assert names == sorted(names)


class TestRunProcedure:
    @pytest.mark.asyncio
    async def test_success(self, served_store: EventStore) -> None:
        parsed = json.loads(
            await run_procedure("standards.status_matrix", {"repository": "eips"})
        )
        assert parsed["grandTotal"] == 6
        assert parsed["rows"][0]["status"] == "Draft"

    @pytest.mark.asyncio
    async def test_unknown_procedure(self, served_store: EventStore) -> None:
        parsed = json.loads(await run_procedure("standards.nope"))
        assert parsed["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_invalid_input(self, served_store: EventStore) -> None:
        parsed = json.loads(await run_procedure("standards.kpis", {"repository": "btc"}))
        assert parsed["kind"] == "invalid_filter"
        assert "btc" in parsed["error"]

    @pytest.mark.asyncio
    @patch("eips_insight.mcp_server._get_config")
    async def test_missing_store(self, mock_config: MagicMock, tmp_path: Path) -> None:
        mock_config.return_value = EIPsInsightConfig(
            database={"path": str(tmp_path / "missing.db")}
        )
        parsed = json.loads(await run_procedure("standards.kpis"))
        assert parsed["kind"] == "upstream_data"

    @pytest.mark.asyncio
    async def test_runs_off_event_loop_thread(self, served_store: EventStore) -> None:
        loop_thread = threading.get_ident()
        seen: list[int] = []

        def record(*args: object, **kwargs: object) -> dict[str, int]:
            seen.append(threading.get_ident())
            return {"total": 0}

        with patch("eips_insight.mcp_server.call_procedure", side_effect=record):
            parsed = json.loads(await run_procedure("standards.kpis"))
        assert parsed == {"total": 0}
        assert seen and seen[0] != loop_thread

    @pytest.mark.asyncio
    @patch("eips_insight.mcp_server.call_procedure")
    async def test_authorization_error_raised(
        self, mock_call: MagicMock, served_store: EventStore
    ) -> None:
        mock_call.side_effect = AuthorizationError("denied")
        with pytest.raises(AuthorizationError):
            await run_procedure("standards.kpis")


class TestExportCsv:
    @pytest.mark.asyncio
    async def test_export_with_filters(self, served_store: EventStore) -> None:
        parsed = json.loads(await export_csv("standards", {"statuses": ["Final"]}))
        assert parsed["rowCount"] == 2
        assert parsed["columns"][0] == "repo"
        assert parsed["filename"].startswith("standards-")
        assert parsed["csv"].splitlines()[0].startswith("repo,number,title")

    @pytest.mark.asyncio
    async def test_bad_kind(self, served_store: EventStore) -> None:
        parsed = json.loads(await export_csv("issues"))
        assert parsed["kind"] == "invalid_filter"
