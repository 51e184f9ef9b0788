"""Shared test fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio

from achievement_bot.data_models.achievements import GameProgress, RecentAchievement
from achievement_bot.database.database import Database
from achievement_bot.database.models import ChallengeKind
from achievement_bot.services.announcements import AnnouncementSink
from achievement_bot.services.retro_api import AchievementSource
from achievement_bot.utils.exceptions import TransientFetchError

# Mid-month so the challenge period is unambiguous in every timezone
NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeAchievementSource(AchievementSource):
    """In-memory achievement source with switchable transient failures."""

    def __init__(self):
        self.recent: Dict[str, List[RecentAchievement]] = {}
        self.progress: Dict[Tuple[str, str], GameProgress] = {}
        self.failing_users: Set[str] = set()
        self.recent_calls: List[str] = []
        self.progress_calls: List[Tuple[str, str]] = []

    def add_unlock(self, username: str, achievement_id: str, game_id: str, unlocked_at: datetime,
                   title: str = "") -> RecentAchievement:
        achievement = RecentAchievement(
            achievement_id=str(achievement_id),
            game_id=str(game_id),
            unlocked_at=unlocked_at,
            title=title or f"Achievement {achievement_id}",
            points=5,
            game_title=f"Game {game_id}",
        )
        feed = self.recent.setdefault(username.lower(), [])
        feed.append(achievement)
        feed.sort(key=lambda a: a.unlocked_at)
        return achievement

    def set_progress(self, username: str, game_id: str, earned_ids, total: int,
                     completion: Optional[float] = None) -> GameProgress:
        earned_ids = frozenset(str(a) for a in earned_ids)
        if completion is None:
            completion = round(len(earned_ids) * 100.0 / total, 2) if total else 0.0
        progress = GameProgress(
            game_id=str(game_id),
            earned_count=len(earned_ids),
            total_count=total,
            completion_percent=completion,
            earned_achievement_ids=earned_ids,
        )
        self.progress[(username.lower(), str(game_id))] = progress
        return progress

    async def get_recent_achievements(self, username: str) -> List[RecentAchievement]:
        self.recent_calls.append(username)
        if username.lower() in self.failing_users:
            raise TransientFetchError('recent achievements', 'HTTP 503')
        return list(self.recent.get(username.lower(), []))

    async def get_game_progress(self, username: str, game_id: str) -> GameProgress:
        self.progress_calls.append((username, str(game_id)))
        if username.lower() in self.failing_users:
            raise TransientFetchError('game progress', 'HTTP 503')
        progress = self.progress.get((username.lower(), str(game_id)))
        if progress is None:
            return GameProgress(game_id=str(game_id), earned_count=0, total_count=0, completion_percent=0.0)
        return progress


class RecordingSink(AnnouncementSink):
    """Announcement sink that records every call."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.unlocked: List[Tuple[str, str]] = []
        self.tier_changes: List[Tuple[str, str, int]] = []
        self.manual: List[Tuple[str, int, str]] = []

    async def on_achievement_unlocked(self, username, achievement, game):
        self.unlocked.append((username, achievement.achievement_id))
        if self.fail:
            raise RuntimeError("channel unavailable")

    async def on_award_tier_changed(self, username, game, new_tier, earned_count, total_count):
        self.tier_changes.append((username, game.game_id, int(new_tier)))
        if self.fail:
            raise RuntimeError("channel unavailable")

    async def on_manual_points_awarded(self, username, points, reason):
        self.manual.append((username, points, reason))
        if self.fail:
            raise RuntimeError("channel unavailable")


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def session_factory(db):
    return db.session_factory


@pytest.fixture
def source():
    return FakeAchievementSource()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def now():
    return NOW


@pytest_asyncio.fixture
async def monthly_game(db):
    """June 2025 monthly challenge: 50 achievements, win condition 'w1', progression 'p1', 'p2'."""
    return await db.add_challenge_game(
        game_id="1001",
        title="Super Test World",
        month=NOW.month,
        year=NOW.year,
        kind=ChallengeKind.MONTHLY,
        total_achievements=50,
        win_condition_ids=["w1"],
        progression_ids=["p1", "p2"],
        require_all_win_conditions=False,
        mastery_enabled=True,
    )


def minutes_ago(minutes: int) -> datetime:
    return NOW - timedelta(minutes=minutes)
