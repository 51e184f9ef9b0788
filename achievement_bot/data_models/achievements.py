"""
Canonical achievement records produced by the RetroAchievements shape normalizers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Optional, Tuple


@dataclass(frozen=True)
class RecentAchievement:
    """One unlocked achievement from a user's recent feed."""
    achievement_id: str
    game_id: str
    unlocked_at: datetime
    title: str = ""
    description: str = ""
    points: int = 0
    game_title: str = ""
    console_name: str = ""
    badge_name: str = ""
    hardcore: bool = False

    @property
    def dedup_key(self) -> Tuple[str, str, datetime]:
        return (self.achievement_id, self.game_id, self.unlocked_at)


@dataclass(frozen=True)
class GameProgress:
    """A user's progress summary for a single game."""
    game_id: str
    earned_count: int
    total_count: int
    completion_percent: float
    earned_achievement_ids: FrozenSet[str] = field(default_factory=frozenset)
    title: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.total_count > 0 and self.completion_percent >= 100.0
