"""Example: Query an EIPsInsight event store from Python."""

from __future__ import annotations

import asyncio
import os

from eips_insight import EventStore, load_config, normalize_filters
from eips_insight.procedures import fan_out
from eips_insight.standards import status_matrix


async def main() -> None:
    config = load_config()
    store = EventStore(os.environ.get("EIPS_INSIGHT_DB_PATH", config.database.path))

    matrix = status_matrix(store, normalize_filters(repository="eips"))
    for row in matrix.rows:
        print(f"{row.status:<12} {row.total}")
    print(f"Total: {matrix.grand_total}")

    outcomes = await fan_out(
        [
            ("standards.kpis", None),
            ("prs.open_state", {"repository": "ercs"}),
            ("explore.trending", {"limit": 5}),
        ],
        store=store,
        config=config,
    )
    for outcome in outcomes:
        if outcome.ok:
            print(f"{outcome.name}: {outcome.result}")
        else:
            print(f"{outcome.name} failed ({outcome.kind}) -- {outcome.error}")


if __name__ == "__main__":
    asyncio.run(main())
