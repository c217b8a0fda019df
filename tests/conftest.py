"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

# Ensure grindboard is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from grindboard.config import BatchConfig, ClientConfig, StorageConfig, TrackerConfig  # noqa: E402
from grindboard.storage.database import Database  # noqa: E402


def leetcode_payload(
    username: str,
    total: int = 0,
    easy: int = 0,
    medium: int = 0,
    hard: int = 0,
    ranking: int | None = 100_000,
    rating: float | None = None,
    real_name: str = "",
) -> dict[str, Any]:
    """GraphQL response body for one existing user."""
    return {
        "data": {
            "matchedUser": {
                "username": username,
                "profile": {"realName": real_name, "ranking": ranking},
                "submitStatsGlobal": {
                    "acSubmissionNum": [
                        {"difficulty": "All", "count": total},
                        {"difficulty": "Easy", "count": easy},
                        {"difficulty": "Medium", "count": medium},
                        {"difficulty": "Hard", "count": hard},
                    ]
                },
            },
            "userContestRanking": {"rating": rating} if rating is not None else None,
        }
    }


NOT_FOUND_PAYLOAD: dict[str, Any] = {"data": {"matchedUser": None, "userContestRanking": None}}


def requested_username(request: httpx.Request) -> str:
    return json.loads(request.content)["variables"]["username"]


@pytest.fixture()
def config() -> TrackerConfig:
    """Tracker config with all pacing and backoff disabled."""
    return TrackerConfig(
        client=ClientConfig(
            base_url="https://leetcode.test/graphql",
            timeout_secs=2.0,
            retry_backoff_secs=0.0,
        ),
        batch=BatchConfig(
            fetch_delay_secs=0.0,
            snapshot_delay_secs=0.0,
            validation_delay_secs=0.0,
            manual_refresh_delay_secs=0.0,
        ),
        storage=StorageConfig(sqlite_path=":memory:"),
    )


@pytest.fixture()
def db() -> Database:
    database = Database(StorageConfig(sqlite_path=":memory:"))
    database.connect()
    yield database
    database.close()


@pytest.fixture()
def remote() -> Callable[[dict[str, dict[str, Any]]], httpx.MockTransport]:
    """Build a transport serving ``{username: payload}``; others are not found.

    Lookups match case-insensitively, like the real endpoint.
    """

    def _make(profiles: dict[str, dict[str, Any]]) -> httpx.MockTransport:
        by_lower = {name.lower(): body for name, body in profiles.items()}

        def handler(request: httpx.Request) -> httpx.Response:
            body = by_lower.get(requested_username(request).lower(), NOT_FOUND_PAYLOAD)
            return httpx.Response(200, json=body)

        return httpx.MockTransport(handler)

    return _make
