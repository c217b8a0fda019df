"""Stats tracker — the engine's entry points.

  refresh_profiles   fetch remote stats for many profiles and upsert today's sample
  build_snapshots    write the leaderboard + gainers snapshot for eligible groups
  run_daily          both of the above for every stale profile and every group
  refresh_group      manual refresh of a single group's members
  register_profiles  validate usernames remotely and create their profiles

Read-side views (``group_leaderboard``, ``group_gainers``, ``profile_history``,
``snapshot_history``) are computed from stored samples on demand.

Every batch entry point returns per-item results; one bad profile or group
never fails the run.
"""

from __future__ import annotations

import datetime as dt
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence

from grindboard.config import TrackerConfig
from grindboard.connectors.leetcode import MSG_NOT_FOUND, LeetCodeClient
from grindboard.engine.batch import BatchScheduler
from grindboard.engine.results import (
    ErrorKind,
    Failed,
    ItemResult,
    RunSummary,
    Skipped,
    Success,
)
from grindboard.leaderboard.gainers import GainersReport, compute_gainer, gainers_window, rank_gainers
from grindboard.leaderboard.ranking import MemberStats, build_leaderboard
from grindboard.leaderboard.scoring import calculate_ranking_points
from grindboard.observability.logger import get_logger, run_context
from grindboard.observability.metrics import MetricsCollector
from grindboard.storage.base import StatsStore
from grindboard.storage.models import (
    GroupRecord,
    LeaderboardEntry,
    ProfileRecord,
    SnapshotRecord,
    SnapshotValidationError,
    StatSample,
    utc_today,
)
from grindboard.validation import normalize_username, validate_username_format

log = get_logger(__name__)


class GroupNotFoundError(LookupError):
    pass


class ProfileNotFoundError(LookupError):
    pass


def classify_fetch_error(error: str) -> ErrorKind:
    """Map a FetchResult error string onto the error taxonomy."""
    if error == "timeout" or error.startswith("network"):
        return ErrorKind.TRANSIENT
    if error.startswith("http_"):
        status = error[len("http_"):]
        if status.isdigit() and (int(status) >= 500 or int(status) == 429):
            return ErrorKind.TRANSIENT
    return ErrorKind.INTERNAL


@dataclass
class DailyRunReport:
    """Outcome of one daily job: stale-profile refresh, then group snapshots."""
    date: dt.date
    run_id: str = ""
    profiles: list[ItemResult] = field(default_factory=list)
    snapshots: list[ItemResult] = field(default_factory=list)
    duration_secs: float = 0.0
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def profile_summary(self) -> RunSummary:
        return RunSummary.from_results(self.profiles)

    @property
    def snapshot_summary(self) -> RunSummary:
        return RunSummary.from_results(self.snapshots)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "run_id": self.run_id,
            "profiles": self.profile_summary.to_dict(),
            "snapshots": self.snapshot_summary.to_dict(),
            "duration_secs": round(self.duration_secs, 3),
            "metrics": self.metrics,
        }


class StatsTracker:
    """Coordinates the remote client, the batch scheduler and the store."""

    def __init__(
        self,
        config: TrackerConfig,
        store: StatsStore,
        client: LeetCodeClient,
        metrics: MetricsCollector | None = None,
        today: Callable[[], dt.date] = utc_today,
    ):
        self._config = config
        self._store = store
        self._client = client
        self.metrics = metrics or MetricsCollector()
        self._today = today

        batch = config.batch
        self._fetch_scheduler = self._scheduler(batch.fetch_concurrency, batch.fetch_delay_secs, "fetch")
        self._snapshot_scheduler = self._scheduler(
            batch.snapshot_concurrency, batch.snapshot_delay_secs, "snapshot"
        )
        self._validation_scheduler = self._scheduler(
            batch.validation_concurrency, batch.validation_delay_secs, "validation"
        )
        self._manual_scheduler = self._scheduler(
            batch.manual_refresh_concurrency, batch.manual_refresh_delay_secs, "manual_refresh"
        )

    def _scheduler(self, concurrency: int, delay_secs: float, name: str) -> BatchScheduler:
        return BatchScheduler(concurrency, delay_secs, metrics=self.metrics, name=name)

    # ── Refresh ──────────────────────────────────────────────────────

    async def refresh_profiles(
        self,
        profiles: Sequence[ProfileRecord],
        date: Optional[dt.date] = None,
        *,
        scheduler: BatchScheduler | None = None,
    ) -> list[ItemResult]:
        """Fetch each profile's current stats and store them as today's sample.

        The remote only reports live numbers, so ``date`` may only name today;
        any other day raises ``ValueError`` before a request is made.
        """
        day = self._fetch_day(date)

        async def _refresh(profile: ProfileRecord) -> ItemResult:
            return await self._refresh_profile(profile, day)

        report = await (scheduler or self._fetch_scheduler).run(
            profiles, _refresh, key=lambda p: p.username
        )
        return report.results

    def _fetch_day(self, date: Optional[dt.date]) -> dt.date:
        today = self._today()
        if date is not None and date != today:
            raise ValueError(
                f"live stats can only be stored for today ({today.isoformat()}), "
                f"not {date.isoformat()}"
            )
        return today

    async def _refresh_profile(self, profile: ProfileRecord, day: dt.date) -> ItemResult:
        username = normalize_username(profile.username)
        if not username:
            return Failed(profile.username, "empty username", ErrorKind.VALIDATION)

        with self.metrics.timer("fetch.request"):
            result = await self._client.fetch(username)
        if result.error is not None:
            return Failed(username, result.error, classify_fetch_error(result.error))
        if result.stats is None:
            return Failed(username, "not_found", ErrorKind.NOT_FOUND)

        stats = result.stats
        sample = StatSample(
            profile_id=profile.id,
            date=day,
            total_solved=stats.total_solved,
            easy_solved=stats.easy_solved,
            medium_solved=stats.medium_solved,
            hard_solved=stats.hard_solved,
            ranking=stats.ranking,
            contest_rating=stats.contest_rating,
            ranking_points=calculate_ranking_points(stats),
        )
        self._store.upsert_sample(sample)
        if stats.real_name and stats.real_name != profile.real_name:
            self._store.set_real_name(profile.id, stats.real_name)
        return Success(username, sample)

    async def refresh_group(self, group_id: int, date: Optional[dt.date] = None) -> list[ItemResult]:
        """Refresh every member of one group with the lighter manual pacing."""
        self._require_group(group_id)
        self._fetch_day(date)
        members = self._store.list_members(group_id)
        log.info("tracker.refresh_group", group_id=group_id, members=len(members))
        return await self.refresh_profiles(members, date, scheduler=self._manual_scheduler)

    # ── Snapshots ────────────────────────────────────────────────────

    def is_eligible(self, group: GroupRecord) -> bool:
        return group.member_count >= self._config.leaderboard.min_group_members

    async def build_snapshots(
        self,
        groups: Sequence[GroupRecord],
        date: Optional[dt.date] = None,
    ) -> list[ItemResult]:
        """Write the ``date`` snapshot for every eligible group.

        Groups below ``leaderboard.min_group_members`` are reported as skipped
        and never reach the store. Leaderboards use each member's newest sample
        on or before ``date``.
        """
        day = date or self._today()
        minimum = self._config.leaderboard.min_group_members
        eligible = [g for g in groups if self.is_eligible(g)]
        outcomes: dict[str, ItemResult] = {
            str(g.id): Skipped(str(g.id), f"needs {minimum} members, has {g.member_count}")
            for g in groups
            if not self.is_eligible(g)
        }

        async def _snapshot(group: GroupRecord) -> ItemResult:
            return self._snapshot_group(group, day)

        report = await self._snapshot_scheduler.run(eligible, _snapshot, key=lambda g: str(g.id))
        outcomes.update(report.by_key())
        return [outcomes[str(g.id)] for g in groups]

    def _snapshot_group(self, group: GroupRecord, day: dt.date) -> ItemResult:
        key = str(group.id)
        members = self._store.list_members(group.id)
        leaderboard = self._leaderboard_for(members, as_of=day)
        gainers = self._gainers_for(members, end=day)
        try:
            record = self._store.upsert_snapshot(
                group.id, day, leaderboard, gainers.active or None
            )
        except SnapshotValidationError as exc:
            log.warning("tracker.snapshot_invalid", group_id=group.id, error=str(exc))
            return Failed(key, str(exc), ErrorKind.VALIDATION)

        log.info(
            "tracker.snapshot_written",
            group_id=group.id,
            date=day.isoformat(),
            members=len(leaderboard),
            gainers=len(gainers.active),
        )
        return Success(key, record)

    # ── Daily job ────────────────────────────────────────────────────

    async def run_daily(self, date: Optional[dt.date] = None) -> DailyRunReport:
        """Refresh profiles without a sample for the day, then snapshot all groups.

        For a day other than today nothing is fetched: stale profiles are
        reported as ``historical_date`` and snapshots are rebuilt from the
        samples stored up to that day.
        """
        today = self._today()
        day = date or today
        start = time.monotonic()
        with run_context("daily", date=day.isoformat()) as run_id:
            report = DailyRunReport(date=day, run_id=run_id)

            stale = self._store.profiles_missing_sample(day)
            stale_ids = {p.id for p in stale}
            report.profiles.extend(
                Skipped(p.username, "already_updated")
                for p in self._store.list_profiles()
                if p.id not in stale_ids
            )
            log.info(
                "tracker.daily_profiles",
                stale=len(stale),
                already_updated=len(report.profiles),
            )
            if day == today:
                report.profiles.extend(await self.refresh_profiles(stale, day))
            else:
                log.info("tracker.daily_historical", date=day.isoformat(), not_fetched=len(stale))
                report.profiles.extend(Skipped(p.username, "historical_date") for p in stale)

            report.snapshots = await self.build_snapshots(self._store.list_groups(), day)

            report.duration_secs = time.monotonic() - start
            report.metrics = self.metrics.snapshot()
            log.info(
                "tracker.daily_complete",
                profiles=report.profile_summary.to_dict(),
                snapshots=report.snapshot_summary.to_dict(),
                duration_secs=round(report.duration_secs, 3),
            )
        return report

    # ── Registration ─────────────────────────────────────────────────

    async def register_profiles(self, usernames: Iterable[str]) -> list[ItemResult]:
        """Validate usernames against the remote and create their profiles.

        Format errors fail without a network call; repeats within the request
        (compared case-insensitively) and already-registered names are skipped.
        A stored profile matches regardless of case, so ``ALICE`` is skipped
        when ``Alice`` exists. Profiles are stored under the canonical username
        the remote returns.
        """
        ordered: list[Optional[ItemResult]] = []
        pending: dict[str, int] = {}
        seen: set[str] = set()

        for raw in usernames:
            username = normalize_username(raw)
            fmt = validate_username_format(username)
            if not fmt.valid:
                ordered.append(Failed(raw, fmt.error or "invalid format", ErrorKind.VALIDATION))
                continue
            folded = username.lower()
            if folded in seen:
                ordered.append(Skipped(username, "duplicate in request"))
                continue
            seen.add(folded)
            if self._store.find_profile_ignoring_case(username) is not None:
                ordered.append(Skipped(username, "already registered"))
                continue
            pending[username] = len(ordered)
            ordered.append(None)

        async def _validate(username: str) -> ItemResult:
            result = await self._client.validate_username(username)
            if not result.valid or not result.canonical_username:
                error = result.error or "Validation failed"
                kind = ErrorKind.NOT_FOUND if error == MSG_NOT_FOUND else ErrorKind.TRANSIENT
                return Failed(username, error, kind)
            profile = self._store.get_or_create_profile(result.canonical_username)
            return Success(username, profile)

        report = await self._validation_scheduler.run(list(pending), _validate)
        for result in report.results:
            ordered[pending[result.key]] = result
        return [r for r in ordered if r is not None]

    # ── Read-side views ──────────────────────────────────────────────

    def _require_group(self, group_id: int) -> GroupRecord:
        group = self._store.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(f"group {group_id} not found")
        return group

    def _leaderboard_for(
        self,
        members: Sequence[ProfileRecord],
        as_of: Optional[dt.date] = None,
    ) -> list[LeaderboardEntry]:
        return build_leaderboard(
            MemberStats(m.username, self._store.latest_sample(m.id, as_of)) for m in members
        )

    def _gainers_for(
        self,
        members: Sequence[ProfileRecord],
        end: dt.date,
        days: Optional[int] = None,
    ) -> GainersReport:
        start, end = gainers_window(end, days or self._config.leaderboard.gainers_window_days)
        return rank_gainers(
            compute_gainer(m.username, self._store.samples_between(m.id, start, end))
            for m in members
        )

    def group_leaderboard(self, group_id: int) -> list[LeaderboardEntry]:
        self._require_group(group_id)
        return self._leaderboard_for(self._store.list_members(group_id))

    def group_gainers(
        self,
        group_id: int,
        days: Optional[int] = None,
        end: Optional[dt.date] = None,
    ) -> GainersReport:
        self._require_group(group_id)
        return self._gainers_for(self._store.list_members(group_id), end or self._today(), days)

    def profile_history(
        self,
        username: str,
        days: Optional[int] = None,
        end: Optional[dt.date] = None,
    ) -> list[StatSample]:
        profile = self._store.get_profile(normalize_username(username))
        if profile is None:
            raise ProfileNotFoundError(f"profile {username!r} not found")
        end = end or self._today()
        start = end - dt.timedelta(days=days or self._config.leaderboard.history_days)
        return self._store.samples_between(profile.id, start, end)

    def snapshot_history(self, group_id: int, limit: Optional[int] = None) -> list[SnapshotRecord]:
        self._require_group(group_id)
        return self._store.list_snapshots(
            group_id, limit or self._config.leaderboard.snapshot_history_limit
        )
