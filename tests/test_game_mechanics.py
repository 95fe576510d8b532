import pytest

from app.services.game_mechanics import LEVELS, Level, calculate_level_index


def test_levels_are_sorted():
    minimums = [lvl.min_points for lvl in LEVELS]
    assert minimums == sorted(minimums)
    assert minimums[0] == 0


@pytest.mark.parametrize(
    "points,expected",
    [
        (0, 0),
        (4_999, 0),
        (5_000, 1),
        (24_999.5, 1),
        (25_000, 2),
        (1_000_000, 4),
        (10**12, len(LEVELS) - 1),
    ],
)
def test_level_index_is_greatest_reached_minimum(points, expected):
    assert calculate_level_index(points) == expected


def test_custom_table():
    levels = [Level("a", 0), Level("b", 10), Level("c", 20)]
    assert calculate_level_index(9, levels) == 0
    assert calculate_level_index(10, levels) == 1
    assert calculate_level_index(100, levels) == 2
