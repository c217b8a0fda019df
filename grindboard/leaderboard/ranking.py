"""Leaderboard builder — merges members with their latest sample and orders them.

Sort order (total, independent of input order):
  1. ranking_points descending
  2. ranking ascending (lower is better)
  3. username ascending, case-sensitive
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, TypeVar

from grindboard.leaderboard.scoring import UNRANKED_SENTINEL, calculate_ranking_points
from grindboard.storage.models import LeaderboardEntry, StatSample


@dataclass(frozen=True)
class MemberStats:
    """A group member paired with their most recent sample, if any."""
    username: str
    latest: Optional[StatSample] = None


E = TypeVar("E", bound=LeaderboardEntry)


def leaderboard_sort_key(entry: LeaderboardEntry) -> tuple[int, int, str]:
    return (-entry.ranking_points, entry.ranking, entry.username)


def sort_leaderboard(entries: Iterable[E]) -> list[E]:
    """Return a new list in leaderboard order."""
    return sorted(entries, key=leaderboard_sort_key)


def entry_from_sample(username: str, sample: Optional[StatSample]) -> LeaderboardEntry:
    if sample is None:
        return LeaderboardEntry(
            username=username,
            ranking=UNRANKED_SENTINEL,
            ranking_points=0,
            last_updated=None,
        )
    points = sample.ranking_points
    if points is None:
        points = calculate_ranking_points(sample)
    return LeaderboardEntry(
        username=username,
        ranking=sample.ranking,
        total_solved=sample.total_solved,
        easy_solved=sample.easy_solved,
        medium_solved=sample.medium_solved,
        hard_solved=sample.hard_solved,
        contest_rating=sample.contest_rating,
        ranking_points=points,
        last_updated=sample.date,
    )


def build_leaderboard(members: Iterable[MemberStats]) -> list[LeaderboardEntry]:
    """Project every member onto a leaderboard row and sort."""
    return sort_leaderboard(entry_from_sample(m.username, m.latest) for m in members)
