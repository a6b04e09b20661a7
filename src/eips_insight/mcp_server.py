"""MCP server exposing EIPsInsight procedures to AI assistants."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

try:
    from mcp.server.fastmcp import FastMCP
except ImportError:
    FastMCP = None  # type: ignore[assignment,misc]

from eips_insight.config import EIPsInsightConfig, load_config
from eips_insight.exceptions import AuthorizationError, EIPsInsightError
from eips_insight.procedures import call_procedure
from eips_insight.procedures import list_procedures as registered_procedures
from eips_insight.store import EventStore


def _get_config() -> EIPsInsightConfig:
    """Load the EIPsInsight configuration."""
    return load_config()


def _get_store(config: EIPsInsightConfig) -> EventStore:
    return EventStore(config.database.path, timeout=config.database.timeout_seconds)


def _error_json(exc: EIPsInsightError) -> str:
    """Return a JSON error string carrying the error kind."""
    return json.dumps({"error": str(exc), "kind": exc.kind})


async def _call(name: str, payload: dict[str, Any] | None) -> Any:
    config = _get_config()
    return await asyncio.to_thread(
        call_procedure, name, payload, store=_get_store(config), config=config
    )


async def list_procedures() -> str:
    """List every analytics procedure with a one-line description."""
    return json.dumps(registered_procedures())


async def run_procedure(name: str, input: dict[str, Any] | None = None) -> str:
    """Run an analytics procedure by name.

    Returns the procedure output as JSON.

    Args:
        name: Procedure name, e.g. 'standards.status_matrix'.
        input: Optional procedure input such as {"repository": "eips"}.
    """
    try:
        return json.dumps(await _call(name, input))
    except AuthorizationError:
        raise
    except EIPsInsightError as exc:
        return _error_json(exc)


async def export_csv(kind: str = "standards", filters: dict[str, Any] | None = None) -> str:
    """Export a full filtered table as CSV.

    Returns JSON with filename, columns, rowCount and the csv text.

    Args:
        kind: Table kind, 'standards' or 'rips'.
        filters: Optional filters, e.g. {"statuses": ["Final"]}.
    """
    try:
        return json.dumps(await _call("tables.export", {**(filters or {}), "kind": kind}))
    except AuthorizationError:
        raise
    except EIPsInsightError as exc:
        return _error_json(exc)


def main() -> None:
    """Run the EIPsInsight MCP server."""
    if FastMCP is None:
        print(
            "The MCP server requires the 'mcp' extra.\n"
            "Install it with: pip install eips-insight[mcp]",
            file=sys.stderr,
        )
        sys.exit(1)
    server = FastMCP("eips-insight")
    server.tool()(list_procedures)
    server.tool(name="call_procedure")(run_procedure)
    server.tool()(export_csv)
    server.run(transport="stdio")


if __name__ == "__main__":
    main()
