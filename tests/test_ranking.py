"""Competition ranking and point table rules."""

import pytest

from achievement_bot.data_models.leaderboard import PointTable
from achievement_bot.database.models import AwardTier
from achievement_bot.utils.ranking import RankingUtility


@pytest.mark.parametrize("scores, expected", [
    ([10, 10, 8], [1, 1, 3]),
    ([5, 4, 4, 4, 1], [1, 2, 2, 2, 5]),
    ([3], [1]),
    ([], []),
])
def test_competition_ranks(scores, expected):
    assert RankingUtility.competition_ranks(scores) == expected


def test_competition_ranks_requires_descending_order():
    with pytest.raises(ValueError):
        RankingUtility.competition_ranks([1, 2])


def test_rank_items_uses_tie_breaker_for_order():
    items = [("carol", 8), ("Bob", 10), ("alice", 10)]
    ranked = RankingUtility.rank_items(items, score=lambda i: i[1], tie_breaker=lambda i: i[0].lower())
    assert ranked == [(1, ("alice", 10)), (1, ("Bob", 10)), (3, ("carol", 8))]


def test_partition():
    top, rest = RankingUtility.partition([1, 2, 3], 2)
    assert (top, rest) == ([1, 2], [3])
    assert RankingUtility.partition([1], 5) == ([1], [])
    with pytest.raises(ValueError):
        RankingUtility.partition([1], -1)


def test_point_table_lookup():
    table = PointTable(participation=1, beaten=4, mastered=7)
    assert table.points_for(AwardTier.NONE) == 0
    assert table.points_for(AwardTier.PARTICIPATION) == 1
    assert table.points_for(2) == 4
    assert table.points_for(AwardTier.MASTERED) == 7


@pytest.mark.parametrize("values", [(-1, 4, 7), (1, 8, 7), (5, 4, 7)])
def test_point_table_rejects_bad_values(values):
    with pytest.raises(ValueError):
        PointTable(*values)
