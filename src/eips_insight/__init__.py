"""EIPsInsight - Ethereum proposal governance analytics."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from eips_insight.config import EIPsInsightConfig, load_config
from eips_insight.exceptions import EIPsInsightError
from eips_insight.filters import FilterSet, normalize_filters
from eips_insight.store import EventStore

try:
    __version__ = version("eips-insight")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "EIPsInsightConfig",
    "EIPsInsightError",
    "EventStore",
    "FilterSet",
    "__version__",
    "load_config",
    "normalize_filters",
]
