"""Storage models — Pydantic models for records and snapshot payloads."""

from __future__ import annotations

import datetime as dt
import json
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from grindboard.leaderboard.scoring import UNRANKED_SENTINEL

SNAPSHOT_VERSION = 1


def utc_today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class ProfileRecord(BaseModel):
    """Tracked remote identity."""
    id: int
    username: str
    real_name: Optional[str] = None
    created_at: str = Field(default_factory=_utc_now_iso)


class GroupRecord(BaseModel):
    id: int
    name: str = ""
    member_count: int = 0


class StatSample(BaseModel):
    """One day's statistics for a profile. Unique per (profile_id, date)."""
    profile_id: int
    date: dt.date
    total_solved: int = Field(default=0, ge=0)
    easy_solved: int = Field(default=0, ge=0)
    medium_solved: int = Field(default=0, ge=0)
    hard_solved: int = Field(default=0, ge=0)
    ranking: int = Field(default=UNRANKED_SENTINEL, ge=0)
    contest_rating: int = Field(default=0, ge=0)
    ranking_points: Optional[int] = Field(default=None, ge=0)
    fetched_at: str = Field(default_factory=_utc_now_iso)


class LeaderboardEntry(BaseModel):
    """A member's row in a leaderboard (derived, never stored alone)."""
    username: str = Field(min_length=1)
    ranking: int = Field(default=UNRANKED_SENTINEL, ge=0)
    total_solved: int = Field(default=0, ge=0)
    easy_solved: int = Field(default=0, ge=0)
    medium_solved: int = Field(default=0, ge=0)
    hard_solved: int = Field(default=0, ge=0)
    contest_rating: int = Field(default=0, ge=0)
    ranking_points: int = Field(default=0, ge=0)
    last_updated: Optional[dt.date] = None


class GainerEntry(BaseModel):
    """Solved-count and rank movement over a trailing window."""
    username: str = Field(min_length=1)
    problems_gained: int = Field(default=0, ge=0)
    rank_improved: int = 0  # negative when the rank got worse
    current_solved: int = Field(default=0, ge=0)
    current_rank: int = Field(default=UNRANKED_SENTINEL, ge=0)


class SnapshotPayload(BaseModel):
    """Serialized body of a snapshot row."""
    version: int = SNAPSHOT_VERSION
    leaderboard: list[LeaderboardEntry] = Field(min_length=1)
    gainers: Optional[list[GainerEntry]] = None


class SnapshotRecord(BaseModel):
    group_id: int
    date: dt.date
    version: int = SNAPSHOT_VERSION
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)
    gainers: Optional[list[GainerEntry]] = None
    updated_at: str = Field(default_factory=_utc_now_iso)


class SnapshotValidationError(ValueError):
    """Snapshot payload rejected before any write."""

    def __init__(self, group_id: int, errors: list[dict[str, Any]]):
        self.group_id = group_id
        self.errors = errors
        detail = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', '')}"
            for e in errors
        )
        super().__init__(f"snapshot for group {group_id} failed validation: {detail}")


def _as_plain(items: Iterable[Any]) -> list[Any]:
    # Dump models so constraints are checked again on the way in.
    return [i.model_dump() if isinstance(i, BaseModel) else i for i in items]


def validate_snapshot_payload(
    group_id: int,
    leaderboard: Iterable[Any],
    gainers: Iterable[Any] | None,
) -> SnapshotPayload:
    """Validate leaderboard/gainers before they are written.

    Raises SnapshotValidationError when the leaderboard is empty, a count or
    rank is negative, or a gainer has negative gained/current values.
    """
    try:
        return SnapshotPayload(
            leaderboard=_as_plain(leaderboard),
            gainers=None if gainers is None else _as_plain(gainers),
        )
    except ValidationError as exc:
        raise SnapshotValidationError(group_id, exc.errors()) from exc


def encode_entries(entries: Optional[list[BaseModel]]) -> Optional[str]:
    if entries is None:
        return None
    return json.dumps([e.model_dump(mode="json") for e in entries])


def decode_entries(raw: Optional[str], model: type[BaseModel]) -> Optional[list[Any]]:
    if raw is None:
        return None
    return [model(**item) for item in json.loads(raw)]
