"""Gainers — solved-count and rank movement over a trailing window.

For each member, the oldest and newest samples inside the window are
compared strictly by date (not by min/max value):

  problems_gained = max(0, newest.total_solved - oldest.total_solved)
  rank_improved   = oldest.ranking - newest.ranking   (both ranked, else 0)

Fewer than two samples yields zero deltas.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from grindboard.leaderboard.scoring import UNRANKED_SENTINEL, is_ranked
from grindboard.storage.models import GainerEntry, StatSample

DEFAULT_WINDOW_DAYS = 7


@dataclass
class GainersReport:
    active: list[GainerEntry] = field(default_factory=list)       # problems_gained > 0
    all_members: list[GainerEntry] = field(default_factory=list)


def gainers_window(end: dt.date, days: int = DEFAULT_WINDOW_DAYS) -> tuple[dt.date, dt.date]:
    """Inclusive ``(start, end)`` window ending on ``end``."""
    if days < 1:
        raise ValueError("window must span at least one day")
    return end - dt.timedelta(days=days), end


def compute_gainer(username: str, samples: Sequence[StatSample]) -> GainerEntry:
    """Compute one member's movement from samples already inside the window."""
    if not samples:
        return GainerEntry(username=username, current_rank=UNRANKED_SENTINEL)

    ordered = sorted(samples, key=lambda s: s.date)
    oldest, newest = ordered[0], ordered[-1]

    if len(ordered) < 2:
        return GainerEntry(
            username=username,
            current_solved=newest.total_solved,
            current_rank=newest.ranking,
        )

    rank_improved = 0
    if is_ranked(oldest.ranking) and is_ranked(newest.ranking):
        rank_improved = oldest.ranking - newest.ranking

    return GainerEntry(
        username=username,
        problems_gained=max(0, newest.total_solved - oldest.total_solved),
        rank_improved=rank_improved,
        current_solved=newest.total_solved,
        current_rank=newest.ranking,
    )


def gainer_sort_key(entry: GainerEntry) -> tuple[int, int, str]:
    return (-entry.problems_gained, -entry.rank_improved, entry.username)


def rank_gainers(entries: Iterable[GainerEntry]) -> GainersReport:
    """Sort all members and derive the active-gainers view."""
    ordered = sorted(entries, key=gainer_sort_key)
    return GainersReport(
        active=[e for e in ordered if e.problems_gained > 0],
        all_members=ordered,
    )
