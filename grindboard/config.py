"""Shared configuration loader and Pydantic settings.

Supports:
  - YAML file loading with env var overrides
  - Subsystem configs: remote client, batch pacing, leaderboard policy,
    storage, observability
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class ClientConfig(BaseModel):
    """Remote LeetCode GraphQL endpoint."""
    base_url: str = "https://leetcode.com/graphql"
    timeout_secs: float = 5.0
    max_retries: int = 2            # validation path only
    retry_backoff_secs: float = 0.5  # linear: attempt * backoff
    user_agent: str = "grindboard/0.1"


class BatchConfig(BaseModel):
    """Chunk size and pause between chunks for each kind of batch run."""
    fetch_concurrency: int = Field(default=5, ge=1)
    fetch_delay_secs: float = Field(default=1.0, ge=0)
    snapshot_concurrency: int = Field(default=3, ge=1)
    snapshot_delay_secs: float = Field(default=0.5, ge=0)
    validation_concurrency: int = Field(default=5, ge=1)
    validation_delay_secs: float = Field(default=0.5, ge=0)
    manual_refresh_concurrency: int = Field(default=1, ge=1)
    manual_refresh_delay_secs: float = Field(default=0.2, ge=0)


class LeaderboardConfig(BaseModel):
    gainers_window_days: int = Field(default=7, ge=1)
    min_group_members: int = Field(default=5, ge=1)
    history_days: int = Field(default=90, ge=1)
    snapshot_history_limit: int = Field(default=30, ge=1)


class StorageConfig(BaseModel):
    sqlite_path: str = "data/grindboard.db"


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str = ""


class TrackerConfig(BaseModel):
    client: ClientConfig = Field(default_factory=ClientConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    leaderboard: LeaderboardConfig = Field(default_factory=LeaderboardConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "GRINDBOARD_DB_PATH": ("storage", "sqlite_path"),
    "GRINDBOARD_LOG_LEVEL": ("observability", "log_level"),
    "GRINDBOARD_API_URL": ("client", "base_url"),
}


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            raw.setdefault(section, {})[key] = value
    return raw


def load_config(path: str | Path | None = None) -> TrackerConfig:
    """Load config from YAML file, falling back to defaults.

    Environment variables listed in ``_ENV_OVERRIDES`` win over the file.
    """
    if path is None:
        path = _PROJECT_ROOT / "config.yaml"
    path = Path(path)
    raw: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    return TrackerConfig(**_apply_env_overrides(raw))
