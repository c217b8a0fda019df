"""Database — SQLite persistence layer.

Manages the connection, runs migrations, and implements the StatsStore
operations the engine relies on, plus the small amount of group/profile
bookkeeping needed to feed it.
"""

from __future__ import annotations

import datetime as dt
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional

from grindboard.config import StorageConfig
from grindboard.leaderboard.scoring import calculate_ranking_points
from grindboard.observability.logger import get_logger
from grindboard.storage.migrations import run_migrations
from grindboard.storage.models import (
    GainerEntry,
    GroupRecord,
    LeaderboardEntry,
    ProfileRecord,
    SnapshotRecord,
    StatSample,
    decode_entries,
    encode_entries,
    validate_snapshot_payload,
)

log = get_logger(__name__)

_SAMPLE_COLUMNS = (
    "profile_id, date, total_solved, easy_solved, medium_solved, hard_solved, "
    "ranking, contest_rating, ranking_points, fetched_at"
)


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class Database:
    """SQLite store for profiles, daily samples, groups and snapshots."""

    def __init__(self, config: StorageConfig):
        self._config = config
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and run migrations."""
        path = self._config.sqlite_path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        run_migrations(self._conn)
        log.info("database.connected", path=path)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # ── Profiles ─────────────────────────────────────────────────────

    def get_profile(self, username: str) -> Optional[ProfileRecord]:
        row = self.conn.execute(
            "SELECT * FROM profiles WHERE username = ?", (username,)
        ).fetchone()
        return ProfileRecord(**dict(row)) if row else None

    def find_profile_ignoring_case(self, username: str) -> Optional[ProfileRecord]:
        row = self.conn.execute(
            "SELECT * FROM profiles WHERE username = ? COLLATE NOCASE ORDER BY id LIMIT 1",
            (username,),
        ).fetchone()
        return ProfileRecord(**dict(row)) if row else None

    def get_profile_by_id(self, profile_id: int) -> Optional[ProfileRecord]:
        row = self.conn.execute(
            "SELECT * FROM profiles WHERE id = ?", (profile_id,)
        ).fetchone()
        return ProfileRecord(**dict(row)) if row else None

    def get_or_create_profile(self, username: str, real_name: Optional[str] = None) -> ProfileRecord:
        self.conn.execute(
            "INSERT OR IGNORE INTO profiles (username, real_name, created_at) VALUES (?, ?, ?)",
            (username, real_name, _now_iso()),
        )
        self.conn.commit()
        profile = self.get_profile(username)
        if profile is None:
            raise RuntimeError(f"profile {username!r} missing after insert")
        return profile

    def set_real_name(self, profile_id: int, real_name: Optional[str]) -> None:
        self.conn.execute(
            "UPDATE profiles SET real_name = ? WHERE id = ?", (real_name, profile_id)
        )
        self.conn.commit()

    def list_profiles(self) -> list[ProfileRecord]:
        rows = self.conn.execute("SELECT * FROM profiles ORDER BY username").fetchall()
        return [ProfileRecord(**dict(r)) for r in rows]

    def profiles_missing_sample(self, date: dt.date) -> list[ProfileRecord]:
        """Profiles with no sample recorded for ``date``."""
        rows = self.conn.execute(
            """
            SELECT p.* FROM profiles p
            WHERE NOT EXISTS (
                SELECT 1 FROM stat_samples s
                WHERE s.profile_id = p.id AND s.date = ?
            )
            ORDER BY p.username
            """,
            (date.isoformat(),),
        ).fetchall()
        return [ProfileRecord(**dict(r)) for r in rows]

    def delete_unreferenced_profiles(self) -> int:
        """Remove profiles no group references. Their samples cascade."""
        cur = self.conn.execute(
            """
            DELETE FROM profiles
            WHERE id NOT IN (SELECT DISTINCT profile_id FROM group_members)
            """
        )
        self.conn.commit()
        if cur.rowcount:
            log.info("database.profiles_pruned", count=cur.rowcount)
        return cur.rowcount

    # ── Samples ──────────────────────────────────────────────────────

    def upsert_sample(self, sample: StatSample) -> None:
        """Insert or overwrite the sample for ``(profile_id, date)``."""
        points = sample.ranking_points
        if points is None:
            points = calculate_ranking_points(sample)
        self.conn.execute(
            f"""
            INSERT INTO stat_samples ({_SAMPLE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(profile_id, date) DO UPDATE SET
                total_solved = excluded.total_solved,
                easy_solved = excluded.easy_solved,
                medium_solved = excluded.medium_solved,
                hard_solved = excluded.hard_solved,
                ranking = excluded.ranking,
                contest_rating = excluded.contest_rating,
                ranking_points = excluded.ranking_points,
                fetched_at = excluded.fetched_at
            """,
            (
                sample.profile_id, sample.date.isoformat(),
                sample.total_solved, sample.easy_solved,
                sample.medium_solved, sample.hard_solved,
                sample.ranking, sample.contest_rating,
                points, sample.fetched_at,
            ),
        )
        self.conn.commit()

    def get_sample(self, profile_id: int, date: dt.date) -> Optional[StatSample]:
        row = self.conn.execute(
            f"SELECT {_SAMPLE_COLUMNS} FROM stat_samples WHERE profile_id = ? AND date = ?",
            (profile_id, date.isoformat()),
        ).fetchone()
        return StatSample(**dict(row)) if row else None

    def latest_sample(self, profile_id: int, as_of: Optional[dt.date] = None) -> Optional[StatSample]:
        """Newest sample, or newest on or before ``as_of`` when given."""
        bound = (as_of or dt.date.max).isoformat()
        row = self.conn.execute(
            f"""
            SELECT {_SAMPLE_COLUMNS} FROM stat_samples
            WHERE profile_id = ? AND date <= ? ORDER BY date DESC LIMIT 1
            """,
            (profile_id, bound),
        ).fetchone()
        return StatSample(**dict(row)) if row else None

    def samples_between(self, profile_id: int, start: dt.date, end: dt.date) -> list[StatSample]:
        """Samples with ``start <= date <= end``, oldest first."""
        rows = self.conn.execute(
            f"""
            SELECT {_SAMPLE_COLUMNS} FROM stat_samples
            WHERE profile_id = ? AND date >= ? AND date <= ?
            ORDER BY date ASC
            """,
            (profile_id, start.isoformat(), end.isoformat()),
        ).fetchall()
        return [StatSample(**dict(r)) for r in rows]

    # ── Groups ───────────────────────────────────────────────────────

    def create_group(self, name: str) -> GroupRecord:
        cur = self.conn.execute(
            "INSERT INTO tracked_groups (name, created_at) VALUES (?, ?)", (name, _now_iso())
        )
        self.conn.commit()
        return GroupRecord(id=cur.lastrowid, name=name, member_count=0)

    def add_member(self, group_id: int, profile_id: int) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO group_members (group_id, profile_id, joined_at) VALUES (?, ?, ?)",
            (group_id, profile_id, _now_iso()),
        )
        self.conn.commit()

    def remove_member(self, group_id: int, profile_id: int) -> None:
        self.conn.execute(
            "DELETE FROM group_members WHERE group_id = ? AND profile_id = ?",
            (group_id, profile_id),
        )
        self.conn.commit()

    def get_group(self, group_id: int) -> Optional[GroupRecord]:
        row = self.conn.execute(
            """
            SELECT g.id, g.name, COUNT(m.profile_id) AS member_count
            FROM tracked_groups g LEFT JOIN group_members m ON m.group_id = g.id
            WHERE g.id = ?
            GROUP BY g.id
            """,
            (group_id,),
        ).fetchone()
        return GroupRecord(**dict(row)) if row else None

    def list_groups(self) -> list[GroupRecord]:
        rows = self.conn.execute(
            """
            SELECT g.id, g.name, COUNT(m.profile_id) AS member_count
            FROM tracked_groups g LEFT JOIN group_members m ON m.group_id = g.id
            GROUP BY g.id ORDER BY g.id
            """
        ).fetchall()
        return [GroupRecord(**dict(r)) for r in rows]

    def list_members(self, group_id: int) -> list[ProfileRecord]:
        rows = self.conn.execute(
            """
            SELECT p.* FROM profiles p
            JOIN group_members m ON m.profile_id = p.id
            WHERE m.group_id = ?
            ORDER BY p.username
            """,
            (group_id,),
        ).fetchall()
        return [ProfileRecord(**dict(r)) for r in rows]

    # ── Snapshots ────────────────────────────────────────────────────

    def upsert_snapshot(
        self,
        group_id: int,
        date: dt.date,
        leaderboard: Iterable[Any],
        gainers: Optional[Iterable[Any]],
    ) -> SnapshotRecord:
        """Validate and write the snapshot for ``(group_id, date)``.

        A second call for the same key replaces the stored payload. Raises
        SnapshotValidationError without touching the table if the payload
        is invalid.
        """
        payload = validate_snapshot_payload(group_id, leaderboard, gainers)
        record = SnapshotRecord(
            group_id=group_id,
            date=date,
            version=payload.version,
            leaderboard=payload.leaderboard,
            gainers=payload.gainers,
        )
        self.conn.execute(
            """
            INSERT INTO snapshots
                (group_id, date, version, leaderboard_json, gainers_json, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(group_id, date) DO UPDATE SET
                version = excluded.version,
                leaderboard_json = excluded.leaderboard_json,
                gainers_json = excluded.gainers_json,
                updated_at = excluded.updated_at
            """,
            (
                group_id, date.isoformat(), record.version,
                encode_entries(record.leaderboard),
                encode_entries(record.gainers),
                record.updated_at,
            ),
        )
        self.conn.commit()
        return record

    def _snapshot_from_row(self, row: sqlite3.Row) -> SnapshotRecord:
        return SnapshotRecord(
            group_id=row["group_id"],
            date=row["date"],
            version=row["version"],
            leaderboard=decode_entries(row["leaderboard_json"], LeaderboardEntry) or [],
            gainers=decode_entries(row["gainers_json"], GainerEntry),
            updated_at=row["updated_at"] or "",
        )

    def get_snapshot(self, group_id: int, date: dt.date) -> Optional[SnapshotRecord]:
        row = self.conn.execute(
            "SELECT * FROM snapshots WHERE group_id = ? AND date = ?",
            (group_id, date.isoformat()),
        ).fetchone()
        return self._snapshot_from_row(row) if row else None

    def list_snapshots(self, group_id: int, limit: int = 30) -> list[SnapshotRecord]:
        rows = self.conn.execute(
            "SELECT * FROM snapshots WHERE group_id = ? ORDER BY date DESC LIMIT ?",
            (group_id, limit),
        ).fetchall()
        return [self._snapshot_from_row(r) for r in rows]

    def count_snapshots(self, group_id: int) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM snapshots WHERE group_id = ?", (group_id,)
        ).fetchone()
        return int(row[0]) if row else 0
