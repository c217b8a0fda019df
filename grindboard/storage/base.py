"""Persistence collaborator the engine depends on.

The engine only talks to this protocol; ``Database`` is the SQLite
implementation. Writes are upserts keyed by ``(profile_id, date)`` and
``(group_id, date)``.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Optional, Protocol

from grindboard.storage.models import (
    GroupRecord,
    ProfileRecord,
    SnapshotRecord,
    StatSample,
)


class StatsStore(Protocol):
    # ── profiles ──
    def get_profile(self, username: str) -> Optional[ProfileRecord]: ...
    def find_profile_ignoring_case(self, username: str) -> Optional[ProfileRecord]: ...
    def get_or_create_profile(self, username: str, real_name: Optional[str] = None) -> ProfileRecord: ...
    def set_real_name(self, profile_id: int, real_name: Optional[str]) -> None: ...
    def list_profiles(self) -> list[ProfileRecord]: ...
    def profiles_missing_sample(self, date: dt.date) -> list[ProfileRecord]: ...

    # ── samples ──
    def latest_sample(self, profile_id: int, as_of: Optional[dt.date] = None) -> Optional[StatSample]: ...
    def samples_between(self, profile_id: int, start: dt.date, end: dt.date) -> list[StatSample]: ...
    def upsert_sample(self, sample: StatSample) -> None: ...

    # ── groups ──
    def get_group(self, group_id: int) -> Optional[GroupRecord]: ...
    def list_groups(self) -> list[GroupRecord]: ...
    def list_members(self, group_id: int) -> list[ProfileRecord]: ...

    # ── snapshots ──
    def upsert_snapshot(
        self,
        group_id: int,
        date: dt.date,
        leaderboard: Iterable[Any],
        gainers: Optional[Iterable[Any]],
    ) -> SnapshotRecord: ...
    def get_snapshot(self, group_id: int, date: dt.date) -> Optional[SnapshotRecord]: ...
    def list_snapshots(self, group_id: int, limit: int = 30) -> list[SnapshotRecord]: ...
