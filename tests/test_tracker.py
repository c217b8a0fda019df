"""Tests for the tracker entry points, end to end over in-memory SQLite."""

from __future__ import annotations

import asyncio
import datetime as dt
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import NOT_FOUND_PAYLOAD, leetcode_payload, requested_username
from grindboard.connectors.leetcode import LeetCodeClient
from grindboard.engine.results import ErrorKind, Failed, Skipped, Success
from grindboard.engine.tracker import (
    GroupNotFoundError,
    ProfileNotFoundError,
    StatsTracker,
    classify_fetch_error,
)
from grindboard.leaderboard.scoring import UNRANKED_SENTINEL
from grindboard.storage.models import StatSample

END = dt.date(2024, 6, 15)
START = END - dt.timedelta(days=7)


def _tracker(config, db, transport: httpx.MockTransport) -> StatsTracker:
    return StatsTracker(
        config, db, LeetCodeClient(config.client, transport=transport), today=lambda: END
    )


def _group(db, *usernames: str):
    group = db.create_group("study group")
    for name in usernames:
        db.add_member(group.id, db.get_or_create_profile(name).id)
    return db.get_group(group.id)


def _store_sample(db, username: str, date: dt.date, total: int, ranking: int = 200_000) -> None:
    profile = db.get_profile(username)
    db.upsert_sample(StatSample(profile_id=profile.id, date=date, total_solved=total, ranking=ranking))


class TestClassifyFetchError:
    @pytest.mark.parametrize("error, kind", [
        ("timeout", ErrorKind.TRANSIENT),
        ("network: connection reset", ErrorKind.TRANSIENT),
        ("http_503", ErrorKind.TRANSIENT),
        ("http_429", ErrorKind.TRANSIENT),
        ("http_400", ErrorKind.INTERNAL),
        ("invalid_response", ErrorKind.INTERNAL),
    ])
    def test_mapping(self, error, kind):
        assert classify_fetch_error(error) == kind


class TestRefreshProfiles:
    def test_mixed_outcomes(self, config, db):
        def handler(request: httpx.Request) -> httpx.Response:
            name = requested_username(request)
            if name == "alice":
                return httpx.Response(200, json=leetcode_payload(
                    "alice", total=100, easy=40, medium=40, hard=20, ranking=100_000, real_name="Alice L",
                ))
            if name == "flaky":
                return httpx.Response(503)
            return httpx.Response(200, json=NOT_FOUND_PAYLOAD)

        profiles = [db.get_or_create_profile(n) for n in ("alice", "ghost", "flaky")]
        tracker = _tracker(config, db, httpx.MockTransport(handler))

        results = asyncio.run(tracker.refresh_profiles(profiles, END))

        alice, ghost, flaky = results
        assert isinstance(alice, Success)
        assert isinstance(ghost, Failed) and ghost.kind == ErrorKind.NOT_FOUND and ghost.reason == "not_found"
        assert isinstance(flaky, Failed) and flaky.kind == ErrorKind.TRANSIENT and flaky.reason == "http_503"

        stored = db.get_sample(profiles[0].id, END)
        assert stored.ranking_points == 6160
        assert db.get_profile("alice").real_name == "Alice L"
        assert db.get_sample(profiles[1].id, END) is None

    def test_refetch_same_day_overwrites(self, config, db, remote):
        profile = db.get_or_create_profile("alice")
        first = _tracker(config, db, remote({"alice": leetcode_payload("alice", total=10)}))
        second = _tracker(config, db, remote({"alice": leetcode_payload("alice", total=14)}))

        asyncio.run(first.refresh_profiles([profile], END))
        asyncio.run(second.refresh_profiles([profile], END))

        assert db.get_sample(profile.id, END).total_solved == 14
        assert len(db.samples_between(profile.id, END, END)) == 1

    def test_worker_exception_isolated(self, config, db, remote):
        profiles = [db.get_or_create_profile(n) for n in ("alice", "bob")]
        tracker = _tracker(config, db, remote({
            "alice": leetcode_payload("alice", total=1),
            "bob": leetcode_payload("bob", total=2),
        }))
        original = db.upsert_sample

        def flaky_upsert(sample):
            if sample.profile_id == profiles[0].id:
                raise RuntimeError("disk full")
            return original(sample)

        with patch.object(db, "upsert_sample", side_effect=flaky_upsert):
            results = asyncio.run(tracker.refresh_profiles(profiles, END))

        assert isinstance(results[0], Failed) and results[0].kind == ErrorKind.INTERNAL
        assert isinstance(results[1], Success)

    def test_refresh_group_uses_manual_pacing(self, config, db, remote):
        group = _group(db, "alice", "bob", "carol")
        tracker = _tracker(config, db, remote({n: leetcode_payload(n) for n in ("alice", "bob", "carol")}))

        with patch.object(tracker._manual_scheduler, "_pause", AsyncMock()) as pause:
            results = asyncio.run(tracker.refresh_group(group.id, END))

        assert [r.status for r in results] == ["success"] * 3
        # one member per chunk
        assert pause.await_count == 2

    def test_refresh_unknown_group(self, config, db, remote):
        tracker = _tracker(config, db, remote({}))
        with pytest.raises(GroupNotFoundError):
            asyncio.run(tracker.refresh_group(42))

    def test_past_date_rejected_without_touching_stored_sample(self, config, db, remote):
        profile = db.get_or_create_profile("alice")
        _store_sample(db, "alice", START, 10)
        group = _group(db, "alice")
        tracker = _tracker(config, db, remote({"alice": leetcode_payload("alice", total=500)}))

        with pytest.raises(ValueError):
            asyncio.run(tracker.refresh_profiles([profile], START))
        with pytest.raises(ValueError):
            asyncio.run(tracker.refresh_group(group.id, START))

        assert db.get_sample(profile.id, START).total_solved == 10
        assert db.get_sample(profile.id, END) is None

    def test_default_date_is_tracker_today(self, config, db, remote):
        profile = db.get_or_create_profile("alice")
        tracker = _tracker(config, db, remote({"alice": leetcode_payload("alice", total=7)}))

        results = asyncio.run(tracker.refresh_profiles([profile]))

        assert results[0].data.date == END
        assert db.get_sample(profile.id, END).total_solved == 7


class TestBuildSnapshots:
    def test_small_group_skipped(self, config, db, remote):
        small = _group(db, "a1a", "b2b", "c3c", "d4d")
        tracker = _tracker(config, db, remote({}))

        results = asyncio.run(tracker.build_snapshots([small], END))

        assert isinstance(results[0], Skipped)
        assert "needs 5 members" in results[0].reason
        assert db.get_snapshot(small.id, END) is None

    def test_eligible_group_with_no_samples(self, config, db, remote):
        group = _group(db, "amy", "ben", "cat", "dan", "eve")
        tracker = _tracker(config, db, remote({}))

        results = asyncio.run(tracker.build_snapshots([group], END))

        assert isinstance(results[0], Success)
        snap = db.get_snapshot(group.id, END)
        assert len(snap.leaderboard) == 5
        assert all(e.ranking == UNRANKED_SENTINEL for e in snap.leaderboard)
        assert [e.username for e in snap.leaderboard] == ["amy", "ben", "cat", "dan", "eve"]
        assert snap.gainers is None

    def test_results_follow_input_order(self, config, db, remote):
        big = _group(db, "amy", "ben", "cat", "dan", "eve")
        small = _group(db, "amy")
        tracker = _tracker(config, db, remote({}))

        results = asyncio.run(tracker.build_snapshots([small, big], END))

        assert [r.key for r in results] == [str(small.id), str(big.id)]
        assert [r.status for r in results] == ["skipped", "success"]

    def test_five_member_scenario(self, config, db, remote):
        group = _group(db, "alice", "bob", "carol", "dave", "erin")
        _store_sample(db, "alice", START, 100)
        _store_sample(db, "alice", END, 105)
        _store_sample(db, "bob", START, 50, ranking=300_000)
        _store_sample(db, "bob", END, 62, ranking=290_000)
        _store_sample(db, "carol", START, 80, ranking=250_000)
        _store_sample(db, "carol", END, 80, ranking=250_000)
        tracker = _tracker(config, db, remote({}))

        asyncio.run(tracker.build_snapshots([group], END))
        snap = db.get_snapshot(group.id, END)

        assert len(snap.leaderboard) == 5
        ranked, unranked = snap.leaderboard[:3], snap.leaderboard[3:]
        assert {e.username for e in ranked} == {"alice", "bob", "carol"}
        assert [e.ranking_points for e in ranked] == sorted((e.ranking_points for e in ranked), reverse=True)
        assert [e.username for e in unranked] == ["dave", "erin"]
        assert all(e.ranking == UNRANKED_SENTINEL and e.last_updated is None for e in unranked)

        assert [(g.username, g.problems_gained) for g in snap.gainers] == [("bob", 12), ("alice", 5)]
        assert snap.gainers[0].rank_improved == 10_000

    def test_rebuild_same_day_replaces(self, config, db, remote):
        group = _group(db, "amy", "ben", "cat", "dan", "eve")
        tracker = _tracker(config, db, remote({}))
        asyncio.run(tracker.build_snapshots([group], END))

        _store_sample(db, "eve", END, 30)
        asyncio.run(tracker.build_snapshots([group], END))

        assert db.count_snapshots(group.id) == 1
        assert db.get_snapshot(group.id, END).leaderboard[0].username == "eve"

    def test_past_snapshot_ignores_later_samples(self, config, db, remote):
        group = _group(db, "amy", "ben", "cat", "dan", "eve")
        jan1, jan8, jan15 = dt.date(2024, 1, 1), dt.date(2024, 1, 8), dt.date(2024, 1, 15)
        _store_sample(db, "amy", jan1, 10)
        _store_sample(db, "amy", jan8, 20)
        _store_sample(db, "amy", jan15, 99)
        tracker = _tracker(config, db, remote({}))

        asyncio.run(tracker.build_snapshots([group], jan8))
        snap = db.get_snapshot(group.id, jan8)

        amy = snap.leaderboard[0]
        assert amy.username == "amy"
        assert amy.total_solved == 20
        assert amy.last_updated == jan8
        assert all(e.last_updated is None or e.last_updated <= jan8 for e in snap.leaderboard)
        assert snap.gainers[0].current_solved == amy.total_solved


class TestRunDaily:
    def test_refreshes_stale_and_snapshots(self, config, db, remote):
        names = ("alice", "bob", "carol", "dave", "erin")
        group = _group(db, *names)
        _store_sample(db, "alice", END, 100)
        tracker = _tracker(config, db, remote({
            n: leetcode_payload(n, total=10 * i) for i, n in enumerate(names) if n != "erin"
        }))

        report = asyncio.run(tracker.run_daily(END))

        by_key = {r.key: r for r in report.profiles}
        assert by_key["alice"] == Skipped("alice", "already_updated")
        assert by_key["erin"].kind == ErrorKind.NOT_FOUND
        assert report.profile_summary.succeeded == 3
        assert report.profile_summary.skipped == 1
        assert report.profile_summary.failed == 1

        assert report.snapshot_summary.succeeded == 1
        assert db.get_snapshot(group.id, END) is not None

        assert report.run_id
        assert report.metrics["counters"]["fetch.success"] == 3
        assert report.metrics["counters"]["fetch.failed"] == 1
        out = report.to_dict()
        assert out["date"] == "2024-06-15"
        assert out["profiles"]["failures"][0]["key"] == "erin"

    def test_second_run_fetches_nothing(self, config, db, remote):
        _group(db, "alice", "bob")
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=leetcode_payload(requested_username(request)))

        tracker = _tracker(config, db, httpx.MockTransport(handler))
        asyncio.run(tracker.run_daily(END))
        assert calls == 2

        report = asyncio.run(tracker.run_daily(END))
        assert calls == 2
        assert [r.status for r in report.profiles] == ["skipped", "skipped"]
        # group too small for a snapshot
        assert report.snapshot_summary.skipped == 1

    def test_past_day_rebuilds_snapshots_without_fetching(self, config, db):
        group = _group(db, "amy", "ben", "cat", "dan", "eve")
        _store_sample(db, "amy", START, 10)
        _store_sample(db, "amy", END, 40)
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=leetcode_payload(requested_username(request), total=999))

        tracker = _tracker(config, db, httpx.MockTransport(handler))
        report = asyncio.run(tracker.run_daily(START))

        assert calls == 0
        by_key = {r.key: r for r in report.profiles}
        assert by_key["amy"] == Skipped("amy", "already_updated")
        assert by_key["ben"] == Skipped("ben", "historical_date")
        assert report.profile_summary.skipped == 5

        assert report.snapshot_summary.succeeded == 1
        snap = db.get_snapshot(group.id, START)
        assert snap.leaderboard[0].total_solved == 10
        assert db.get_sample(db.get_profile("ben").id, START) is None


class TestRegisterProfiles:
    def test_register_mix(self, config, db, remote):
        tracker = _tracker(config, db, remote({
            "Alice": leetcode_payload("Alice"),
            "bob_99": leetcode_payload("bob_99"),
        }))

        results = asyncio.run(tracker.register_profiles(
            ["alice", "ALICE", "ab", "ghost", " bob_99 ", "   "]
        ))

        assert [(r.key, r.status) for r in results] == [
            ("alice", "success"),
            ("ALICE", "skipped"),
            ("ab", "failed"),
            ("ghost", "failed"),
            ("bob_99", "success"),
            ("   ", "failed"),
        ]
        assert results[0].data.username == "Alice"
        assert results[2].kind == ErrorKind.VALIDATION
        assert results[3].kind == ErrorKind.NOT_FOUND
        assert results[5].reason == "Username cannot be empty"
        assert results[5].kind == ErrorKind.VALIDATION
        assert db.get_profile("Alice") is not None
        assert db.get_profile("ghost") is None

    def test_already_registered(self, config, db, remote):
        db.get_or_create_profile("Alice")
        tracker = _tracker(config, db, remote({"Alice": leetcode_payload("Alice")}))
        results = asyncio.run(tracker.register_profiles(["Alice"]))
        assert results == [Skipped("Alice", "already registered")]

    def test_already_registered_in_other_case_skips_remote(self, config, db):
        db.get_or_create_profile("Alice")
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=leetcode_payload("Alice"))

        tracker = _tracker(config, db, httpx.MockTransport(handler))
        results = asyncio.run(tracker.register_profiles(["ALICE", "alice"]))

        assert results == [
            Skipped("ALICE", "already registered"),
            Skipped("alice", "duplicate in request"),
        ]
        assert calls == 0
        assert len(db.list_profiles()) == 1

    def test_blank_names_fail_validation(self, config, db, remote):
        tracker = _tracker(config, db, remote({}))
        results = asyncio.run(tracker.register_profiles(["", "  \t"]))
        assert results == [
            Failed("", "Username cannot be empty", ErrorKind.VALIDATION),
            Failed("  \t", "Username cannot be empty", ErrorKind.VALIDATION),
        ]

    def test_validation_batched(self, config, db, remote):
        names = [f"user{i:02d}" for i in range(7)]
        tracker = _tracker(config, db, remote({n: leetcode_payload(n) for n in names}))

        with patch.object(tracker._validation_scheduler, "_pause", AsyncMock()) as pause:
            results = asyncio.run(tracker.register_profiles(names))

        assert all(isinstance(r, Success) for r in results)
        # chunks of 5 → one pause
        assert pause.await_count == 1
        assert len(db.list_profiles()) == 7


class TestViews:
    def test_group_leaderboard(self, config, db, remote):
        group = _group(db, "alice", "bob")
        _store_sample(db, "bob", END, 10)
        tracker = _tracker(config, db, remote({}))

        board = tracker.group_leaderboard(group.id)
        assert [e.username for e in board] == ["bob", "alice"]

    def test_group_gainers_custom_window(self, config, db, remote):
        group = _group(db, "alice")
        _store_sample(db, "alice", END - dt.timedelta(days=30), 10)
        _store_sample(db, "alice", END - dt.timedelta(days=5), 20)
        _store_sample(db, "alice", END, 23)
        tracker = _tracker(config, db, remote({}))

        assert tracker.group_gainers(group.id, end=END).active[0].problems_gained == 3
        assert tracker.group_gainers(group.id, days=30, end=END).active[0].problems_gained == 13

    def test_unknown_group_views(self, config, db, remote):
        tracker = _tracker(config, db, remote({}))
        with pytest.raises(GroupNotFoundError):
            tracker.group_leaderboard(7)
        with pytest.raises(GroupNotFoundError):
            tracker.group_gainers(7)
        with pytest.raises(GroupNotFoundError):
            tracker.snapshot_history(7)

    def test_profile_history(self, config, db, remote):
        db.get_or_create_profile("alice")
        for offset in (0, 10, 100):
            _store_sample(db, "alice", END - dt.timedelta(days=offset), 50 - offset // 10)
        tracker = _tracker(config, db, remote({}))

        history = tracker.profile_history("alice", end=END)
        assert [s.date for s in history] == [END - dt.timedelta(days=10), END]

        with pytest.raises(ProfileNotFoundError):
            tracker.profile_history("nobody")

    def test_snapshot_history(self, config, db, remote):
        group = _group(db, "amy", "ben", "cat", "dan", "eve")
        tracker = _tracker(config, db, remote({}))
        for offset in range(3):
            asyncio.run(tracker.build_snapshots([group], END - dt.timedelta(days=offset)))

        history = tracker.snapshot_history(group.id, limit=2)
        assert [s.date for s in history] == [END, END - dt.timedelta(days=1)]
