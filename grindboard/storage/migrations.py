"""Database migrations — create and upgrade schema."""

from __future__ import annotations

import sqlite3

from grindboard.observability.logger import get_logger

log = get_logger(__name__)

SCHEMA_VERSION = 2

_MIGRATIONS: dict[int, list[str]] = {
    1: [
        """
        CREATE TABLE IF NOT EXISTS profiles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            real_name TEXT,
            created_at TEXT
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS stat_samples (
            profile_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            total_solved INTEGER NOT NULL DEFAULT 0,
            easy_solved INTEGER NOT NULL DEFAULT 0,
            medium_solved INTEGER NOT NULL DEFAULT 0,
            hard_solved INTEGER NOT NULL DEFAULT 0,
            ranking INTEGER NOT NULL DEFAULT 5000000,
            contest_rating INTEGER NOT NULL DEFAULT 0,
            ranking_points INTEGER NOT NULL DEFAULT 0,
            fetched_at TEXT,
            PRIMARY KEY (profile_id, date),
            FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_samples_date ON stat_samples(date);
        """,
        """
        CREATE TABLE IF NOT EXISTS tracked_groups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            created_at TEXT
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS group_members (
            group_id INTEGER NOT NULL,
            profile_id INTEGER NOT NULL,
            joined_at TEXT,
            PRIMARY KEY (group_id, profile_id),
            FOREIGN KEY (group_id) REFERENCES tracked_groups(id) ON DELETE CASCADE,
            FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_members_profile ON group_members(profile_id);
        """,
    ],
    2: [
        # Daily leaderboard snapshots, one row per (group, day)
        """
        CREATE TABLE IF NOT EXISTS snapshots (
            group_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1,
            leaderboard_json TEXT NOT NULL,
            gainers_json TEXT,
            updated_at TEXT,
            PRIMARY KEY (group_id, date),
            FOREIGN KEY (group_id) REFERENCES tracked_groups(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_snapshots_date ON snapshots(date);
        """,
    ],
}


def _get_current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row and row[0] else 0


def pending_versions(conn: sqlite3.Connection) -> list[int]:
    current = _get_current_version(conn)
    return [v for v in sorted(_MIGRATIONS) if v > current]


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply pending migrations in order and return the resulting version.

    Each version runs in its own transaction, so a failing statement leaves
    the schema at the previous version.
    """
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_version "
        "(version INTEGER PRIMARY KEY, applied_at TEXT)"
    )
    conn.commit()

    for version in pending_versions(conn):
        conn.execute("BEGIN")
        with conn:
            for sql in _MIGRATIONS[version]:
                conn.execute(sql)
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, datetime('now'))",
                (version,),
            )
        log.info("migrations.applied", version=version)

    version = _get_current_version(conn)
    log.debug("migrations.complete", version=version)
    return version
