"""Ranking-points score — composite of solved counts and global rank.

points = max(0, total*10 + easy*1 + medium*3 + hard*5
                + max(0, UNRANKED_SENTINEL - ranking) / 1000)

A ranking at or beyond the sentinel contributes nothing to the rank bonus.
"""

from __future__ import annotations

import math
from typing import Protocol

# Reported when a profile has no global ranking; treated as the worst rank.
UNRANKED_SENTINEL = 5_000_000

TOTAL_WEIGHT = 10
EASY_WEIGHT = 1
MEDIUM_WEIGHT = 3
HARD_WEIGHT = 5
RANK_BONUS_DIVISOR = 1000


class SolvedStats(Protocol):
    total_solved: int
    easy_solved: int
    medium_solved: int
    hard_solved: int
    ranking: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_ranked(ranking: int) -> bool:
    return 0 <= ranking < UNRANKED_SENTINEL


def rank_bonus(ranking: int) -> float:
    return max(0, UNRANKED_SENTINEL - ranking) / RANK_BONUS_DIVISOR


def ranking_points(
    total_solved: int,
    easy_solved: int,
    medium_solved: int,
    hard_solved: int,
    ranking: int,
) -> float:
    """Unrounded score."""
    return max(
        0.0,
        total_solved * TOTAL_WEIGHT
        + easy_solved * EASY_WEIGHT
        + medium_solved * MEDIUM_WEIGHT
        + hard_solved * HARD_WEIGHT
        + rank_bonus(ranking),
    )


def calculate_ranking_points(stats: SolvedStats) -> int:
    """Score rounded half-up to the integer that gets persisted."""
    return round_half_up(
        ranking_points(
            stats.total_solved,
            stats.easy_solved,
            stats.medium_solved,
            stats.hard_solved,
            stats.ranking,
        )
    )
