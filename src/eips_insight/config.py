"""Configuration models for EIPsInsight."""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from eips_insight.exceptions import ConfigError


class DatabaseConfig(BaseModel):
    """Location and connection parameters of the event store."""
    path: str = "eips-insight.db"
    timeout_seconds: float = 30.0


class SearchWeights(BaseModel):
    """Additive scores for each way a proposal can match a query."""
    exact_number: int = 1000
    number_prefix: int = 600
    exact_title: int = 800
    title_contains: int = 300
    author: int = 200
    status: int = 100
    category: int = 80
    type: int = 80
    candidate_multiplier: int = 2


class LeaderboardWeights(BaseModel):
    """Weights of the leaderboard composite score.

    All weights must stay positive so that more of any signal never
    lowers an actor's score.
    """
    reviewed: int = Field(default=3, gt=0)
    comment: int = Field(default=1, gt=0)
    created: int = Field(default=2, gt=0)
    merged: int = Field(default=4, gt=0)
    default_limit: int = 20
    timeline_limit: int = 20
    sparkline_months: int = 12


class TrendingConfig(BaseModel):
    """Trending score and heatmap parameters."""
    window_days: int = 7
    heatmap_days: int = 30
    status_change_weight: float = 5.0
    pr_weight: float = 3.0
    activity_weight: float = 1.0
    default_limit: int = 30
    heatmap_top_n: int = 10


class StalenessConfig(BaseModel):
    """Open-PR risk thresholds."""
    high_risk_days: int = 30
    high_risk_limit: int = 20


class PaginationConfig(BaseModel):
    """Table service page sizing."""
    default_page_size: int = 30
    max_page_size: int = 200


class EIPsInsightConfig(BaseModel):
    """Top-level configuration composing all sub-configs."""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    search: SearchWeights = Field(default_factory=SearchWeights)
    leaderboard: LeaderboardWeights = Field(default_factory=LeaderboardWeights)
    trending: TrendingConfig = Field(default_factory=TrendingConfig)
    staleness: StalenessConfig = Field(default_factory=StalenessConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    history_start: date = date(2015, 1, 1)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Could not parse {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_config(path: str | Path | None = None) -> EIPsInsightConfig:
    """Load configuration from YAML file, environment variables, and defaults.

    Priority (highest to lowest):
    1. Environment variables (EIPS_INSIGHT_*)
    2. YAML config file
    3. Defaults
    """
    config_data: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if config_path.is_file():
            config_data = _read_yaml(config_path)
    else:
        for default_path in [".eips-insight.yml", ".eips-insight.yaml"]:
            p = Path(default_path)
            if p.is_file():
                config_data = _read_yaml(p)
                break

    env_mapping = {
        "EIPS_INSIGHT_DB_PATH": ("database", "path", str),
        "EIPS_INSIGHT_DB_TIMEOUT": ("database", "timeout_seconds", float),
        "EIPS_INSIGHT_TRENDING_WINDOW_DAYS": ("trending", "window_days", int),
        "EIPS_INSIGHT_HEATMAP_DAYS": ("trending", "heatmap_days", int),
        "EIPS_INSIGHT_HIGH_RISK_DAYS": ("staleness", "high_risk_days", int),
        "EIPS_INSIGHT_MAX_PAGE_SIZE": ("pagination", "max_page_size", int),
    }

    for env_var, (section, key, type_fn) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            if section not in config_data:
                config_data[section] = {}
            try:
                config_data[section][key] = type_fn(value)
            except ValueError as exc:
                raise ConfigError(f"{env_var}={value!r} is not a valid {type_fn.__name__}") from exc

    try:
        return EIPsInsightConfig(**config_data)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
