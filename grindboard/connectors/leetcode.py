"""LeetCode GraphQL connector.

One query per username returns solved counts by difficulty, the global
ranking and the contest rating. Two call paths:

  - ``fetch``: single attempt under a hard timeout, used by batch refreshes.
    Never raises; a missing user is a valid outcome (``stats is None``
    without an error).
  - ``validate_username``: used when registering profiles. Retries 5xx and
    transient transport errors with linear backoff before giving up with a
    human-readable message.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from grindboard.config import ClientConfig
from grindboard.leaderboard.scoring import UNRANKED_SENTINEL, round_half_up
from grindboard.observability.logger import get_logger
from grindboard.validation import normalize_username, validate_username_format

log = get_logger(__name__)

STATS_QUERY = """
query userPublicProfile($username: String!) {
  matchedUser(username: $username) {
    username
    profile {
      realName
      ranking
    }
    submitStatsGlobal {
      acSubmissionNum {
        difficulty
        count
      }
    }
  }
  userContestRanking(username: $username) {
    rating
  }
}
"""

LOOKUP_QUERY = """
query userPublicProfile($username: String!) {
  matchedUser(username: $username) {
    username
  }
}
"""

MSG_NOT_FOUND = "Username not found on LeetCode"
MSG_TIMEOUT = "LeetCode request timed out"
MSG_FAILED = "Failed to verify username"


# ── Data Models ──────────────────────────────────────────────────────

class ProfileStats(BaseModel):
    """Parsed public statistics for one profile."""
    username: str
    real_name: Optional[str] = None
    total_solved: int = 0
    easy_solved: int = 0
    medium_solved: int = 0
    hard_solved: int = 0
    ranking: int = UNRANKED_SENTINEL
    contest_rating: int = 0


@dataclass(frozen=True)
class FetchResult:
    """Outcome of ``fetch``: stats, not-found (no stats, no error), or an error."""
    username: str
    stats: Optional[ProfileStats] = None
    error: Optional[str] = None   # "timeout" | "http_<status>" | "network: ..." | "invalid_response"

    @property
    def found(self) -> bool:
        return self.stats is not None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    canonical_username: Optional[str] = None


class _TransientError(Exception):
    """Retryable failure on the validation path."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# ── Parsing ──────────────────────────────────────────────────────────

_DIFFICULTY_FIELDS = {
    "All": "total_solved",
    "Easy": "easy_solved",
    "Medium": "medium_solved",
    "Hard": "hard_solved",
}


def parse_profile(payload: dict[str, Any]) -> Optional[ProfileStats]:
    """Convert a raw GraphQL response into ProfileStats.

    Returns None when the response has no ``matchedUser``. Missing or zero
    ranking maps to UNRANKED_SENTINEL, missing contest rating to 0.
    """
    data = payload.get("data") or {}
    user = data.get("matchedUser")
    if not user:
        return None

    counts: dict[str, int] = {}
    submissions = (user.get("submitStatsGlobal") or {}).get("acSubmissionNum") or []
    for sub in submissions:
        field_name = _DIFFICULTY_FIELDS.get(sub.get("difficulty"))
        if field_name:
            counts[field_name] = max(0, int(sub.get("count") or 0))

    profile = user.get("profile") or {}
    ranking = int(profile.get("ranking") or 0) or UNRANKED_SENTINEL
    rating = (data.get("userContestRanking") or {}).get("rating") or 0

    return ProfileStats(
        username=user.get("username") or "",
        real_name=profile.get("realName") or None,
        ranking=max(0, ranking),
        contest_rating=max(0, round_half_up(float(rating))),
        **counts,
    )


# ── Client ───────────────────────────────────────────────────────────

def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "leetcode.validate_retry",
        attempt=state.attempt_number,
        reason=getattr(exc, "reason", str(exc)),
        wait_secs=state.next_action.sleep if state.next_action else 0,
    )


class LeetCodeClient:
    """Async client for the LeetCode GraphQL endpoint."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config or ClientConfig()
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout_secs),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": self._config.user_agent,
            },
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> LeetCodeClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _post(self, query: str, username: str) -> httpx.Response:
        # httpx timeouts are per phase; wait_for caps the whole exchange.
        return await asyncio.wait_for(
            self._client.post(
                self._config.base_url,
                json={"query": query, "variables": {"username": username}},
            ),
            timeout=self._config.timeout_secs,
        )

    async def fetch(self, username: str) -> FetchResult:
        """Fetch stats for one username in a single attempt."""
        try:
            resp = await self._post(STATS_QUERY, username)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            log.warning("leetcode.fetch_timeout", username=username)
            return FetchResult(username, error="timeout")
        except httpx.HTTPError as exc:
            log.warning("leetcode.fetch_network_error", username=username, error=str(exc))
            return FetchResult(username, error=f"network: {exc}")

        if not resp.is_success:
            log.warning("leetcode.fetch_http_error", username=username, status=resp.status_code)
            return FetchResult(username, error=f"http_{resp.status_code}")

        try:
            stats = parse_profile(resp.json())
        except (ValueError, TypeError, AttributeError) as exc:
            log.warning("leetcode.fetch_bad_payload", username=username, error=str(exc))
            return FetchResult(username, error="invalid_response")

        if stats is None:
            log.info("leetcode.fetch_not_found", username=username)
            return FetchResult(username)

        log.debug(
            "leetcode.fetched",
            username=username,
            total_solved=stats.total_solved,
            ranking=stats.ranking,
        )
        return FetchResult(username, stats=stats)

    async def _lookup(self, username: str) -> httpx.Response:
        try:
            resp = await self._post(LOOKUP_QUERY, username)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise _TransientError("timeout") from exc
        except httpx.TransportError as exc:
            raise _TransientError("network") from exc
        if resp.status_code >= 500:
            raise _TransientError(f"http_{resp.status_code}")
        return resp

    async def validate_username(self, username: str) -> ValidationResult:
        """Check that a username exists remotely and return its canonical form.

        Format is checked first; a malformed name never reaches the network.
        """
        username = normalize_username(username)
        fmt = validate_username_format(username)
        if not fmt.valid:
            return ValidationResult(False, fmt.error)

        backoff = self._config.retry_backoff_secs
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._config.max_retries + 1),
                wait=wait_incrementing(start=backoff, increment=backoff),
                retry=retry_if_exception_type(_TransientError),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    resp = await self._lookup(username)
        except _TransientError as exc:
            log.warning("leetcode.validate_gave_up", username=username, reason=exc.reason)
            return ValidationResult(False, MSG_TIMEOUT if exc.reason == "timeout" else MSG_FAILED)
        except httpx.HTTPError as exc:
            log.warning("leetcode.validate_error", username=username, error=str(exc))
            return ValidationResult(False, MSG_FAILED)

        if not resp.is_success:
            return ValidationResult(False, MSG_FAILED)

        try:
            data = resp.json().get("data") or {}
        except (ValueError, AttributeError):
            return ValidationResult(False, MSG_FAILED)

        canonical = (data.get("matchedUser") or {}).get("username")
        if canonical:
            return ValidationResult(True, canonical_username=canonical)
        return ValidationResult(False, MSG_NOT_FOUND)
