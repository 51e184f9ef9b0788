"""
Leaderboard data models.

Provides immutable data transfer objects for ranked leaderboards and the
point table used by the yearly ranking. Snapshots round-trip through JSON
via to_dict()/from_dict() for the leaderboard cache.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PointTable:
    """Points awarded per award tier on the yearly leaderboard."""
    participation: int
    beaten: int
    mastered: int

    def __post_init__(self):
        if min(self.participation, self.beaten, self.mastered) < 0:
            raise ValueError("Award points must not be negative")
        if not self.participation <= self.beaten <= self.mastered:
            raise ValueError("Award points must not decrease with tier")

    def points_for(self, tier) -> int:
        # Local import keeps data_models free of a hard ORM dependency
        from achievement_bot.database.models import AwardTier
        tier = AwardTier(tier)
        if tier == AwardTier.MASTERED:
            return self.mastered
        if tier == AwardTier.BEATEN:
            return self.beaten
        if tier == AwardTier.PARTICIPATION:
            return self.participation
        return 0


@dataclass(frozen=True)
class MonthlyEntry:
    """Single monthly leaderboard row."""
    rank: int
    username: str
    achievement_count: int
    total_achievements: int
    completion_percent: float
    tier: int


@dataclass(frozen=True)
class YearlyEntry:
    """Single yearly leaderboard row."""
    rank: int
    username: str
    total_points: int
    challenge_points: int
    manual_points: int
    mastered: int = 0
    beaten: int = 0
    participation: int = 0


@dataclass(frozen=True)
class MonthlyLeaderboard:
    game_id: Optional[str]
    game_title: Optional[str]
    month: int
    year: int
    top: List[MonthlyEntry] = field(default_factory=list)
    rest: List[MonthlyEntry] = field(default_factory=list)

    @property
    def entries(self) -> List[MonthlyEntry]:
        return list(self.top) + list(self.rest)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonthlyLeaderboard":
        return cls(
            game_id=data.get('game_id'),
            game_title=data.get('game_title'),
            month=data['month'],
            year=data['year'],
            top=[MonthlyEntry(**e) for e in data.get('top', [])],
            rest=[MonthlyEntry(**e) for e in data.get('rest', [])],
        )


@dataclass(frozen=True)
class YearlyLeaderboard:
    year: int
    entries: List[YearlyEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "YearlyLeaderboard":
        return cls(
            year=data['year'],
            entries=[YearlyEntry(**e) for e in data.get('entries', [])],
        )


@dataclass(frozen=True)
class CachedLeaderboard:
    """A leaderboard snapshot as read back from the cache."""
    scope: str
    data: Dict[str, Any]
    last_update: datetime
