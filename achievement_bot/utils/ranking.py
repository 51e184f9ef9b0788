"""
Shared ranking utilities for the monthly and yearly leaderboards.

Both leaderboards use competition ranking: tied scores share a rank and the
next distinct score is ranked by its position, so ranks can skip
([10, 10, 8] -> [1, 1, 3]).
"""

from typing import Callable, List, Sequence, Tuple, TypeVar

T = TypeVar('T')


class RankingUtility:
    """Shared ranking logic for consistent leaderboard ordering."""

    @staticmethod
    def competition_ranks(scores: Sequence[float]) -> List[int]:
        """
        Assign competition ranks to scores already sorted in descending order.

        Raises:
            ValueError: If the scores are not sorted descending
        """
        ranks: List[int] = []
        previous = None
        current_rank = 0
        for position, score in enumerate(scores, start=1):
            if previous is not None and score > previous:
                raise ValueError("scores must be sorted in descending order")
            if previous is None or score != previous:
                current_rank = position
            ranks.append(current_rank)
            previous = score
        return ranks

    @staticmethod
    def rank_items(
        items: Sequence[T],
        score: Callable[[T], float],
        tie_breaker: Callable[[T], str] = None,
    ) -> List[Tuple[int, T]]:
        """Sort items by score (descending) and pair each with its competition rank."""
        if tie_breaker is not None:
            ordered = sorted(items, key=lambda item: (-score(item), tie_breaker(item)))
        else:
            ordered = sorted(items, key=score, reverse=True)
        ranks = RankingUtility.competition_ranks([score(item) for item in ordered])
        return list(zip(ranks, ordered))

    @staticmethod
    def partition(entries: Sequence[T], top_size: int) -> Tuple[List[T], List[T]]:
        """Split ranked entries into a bounded top slice and the remainder."""
        if top_size < 0:
            raise ValueError("top_size must not be negative")
        return list(entries[:top_size]), list(entries[top_size:])
