from __future__ import annotations

from bisect import bisect_right
from typing import NamedTuple, Sequence


class Level(NamedTuple):
    name: str
    min_points: float


LEVELS: tuple[Level, ...] = (
    Level("Bronze", 0),
    Level("Silver", 5_000),
    Level("Gold", 25_000),
    Level("Platinum", 100_000),
    Level("Diamond", 1_000_000),
    Level("Epic", 2_000_000),
    Level("Legendary", 10_000_000),
    Level("Master", 50_000_000),
    Level("GrandMaster", 100_000_000),
    Level("Lord", 1_000_000_000),
)


def calculate_level_index(points: float, levels: Sequence[Level] = LEVELS) -> int:
    """Greatest index whose ``min_points`` does not exceed ``points``; ``levels`` must be sorted."""
    minimums = [lvl.min_points for lvl in levels]
    return max(bisect_right(minimums, points) - 1, 0)
