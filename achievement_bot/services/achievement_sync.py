"""
Incremental achievement synchronization.

One cycle walks every active user in order, throttled by the rate limiter,
and for each user:
1. Fetches the recent unlock feed
2. Drops unlocks at or before the cycle's input watermark
3. Skips unlocks already recorded in the user's PlayerProgress
4. Announces each new unlock and re-evaluates the award for matching challenge games
5. Records the unlock id before moving to the next one

The watermark goes in as an argument and comes back in the result. It only
advances after a cycle that ran to the end without any failed user; the
scheduled entry point loads it from and saves it to the WatermarkStore.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select

from achievement_bot.config import Config
from achievement_bot.data_models.achievements import RecentAchievement
from achievement_bot.database.models import AwardTier, ChallengeGame, ChallengeKind, User
from achievement_bot.services.announcements import AnnouncementSink
from achievement_bot.services.award_engine import AwardEngine, AwardUpdateResult
from achievement_bot.services.base import BaseService
from achievement_bot.services.identity import IdentityResolver
from achievement_bot.services.progress_store import ProgressStore
from achievement_bot.services.rate_limiter import IntervalRateLimiter
from achievement_bot.services.retro_api import AchievementSource
from achievement_bot.services.watermark_store import WatermarkStore
from achievement_bot.utils.exceptions import (
    DataIntegrityError, MalformedPayloadError, TransientFetchError
)
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.time_utils import current_period, ensure_utc, utcnow

logger = setup_logger(__name__)


@dataclass
class UserSyncResult:
    username: str
    new_achievements: int = 0
    skipped_records: int = 0
    upgrades: List[AwardUpdateResult] = field(default_factory=list)


@dataclass
class SyncCycleResult:
    started_at: datetime
    input_watermark: Optional[datetime]
    watermark: Optional[datetime]
    users_total: int = 0
    users_processed: int = 0
    completed: bool = False
    transient_failures: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    user_results: List[UserSyncResult] = field(default_factory=list)

    @property
    def watermark_advanced(self) -> bool:
        return self.watermark != self.input_watermark

    @property
    def new_achievements(self) -> int:
        return sum(r.new_achievements for r in self.user_results)


class AchievementSyncService(BaseService):
    """Drives poll-based achievement synchronization for all registered users."""

    def __init__(self, session_factory, source: AchievementSource, sink: AnnouncementSink,
                 award_engine: AwardEngine, progress_store: ProgressStore,
                 identity: IdentityResolver, rate_limiter: IntervalRateLimiter,
                 watermark_store: WatermarkStore, timezone_name: str = None,
                 initial_lookback: timedelta = None):
        super().__init__(session_factory)
        self.source = source
        self.sink = sink
        self.award_engine = award_engine
        self.progress_store = progress_store
        self.identity = identity
        self.rate_limiter = rate_limiter
        self.watermark_store = watermark_store
        self.timezone_name = timezone_name or Config.CHALLENGE_TIMEZONE
        self.initial_lookback = initial_lookback or timedelta(hours=Config.INITIAL_LOOKBACK_HOURS)
        self._cycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    async def run_scheduled_cycle(self, stop_event: Optional[asyncio.Event] = None,
                                  now: Optional[datetime] = None) -> Optional[SyncCycleResult]:
        """
        Run one cycle from the stored watermark and persist the result.

        Returns None when another cycle is still in progress.
        """
        if self._cycle_lock.locked():
            logger.info("Achievement sync already in progress, skipping tick")
            return None

        async with self._cycle_lock:
            started = ensure_utc(now) or utcnow()
            watermark = await self.watermark_store.load()
            if watermark is None:
                watermark = started - self.initial_lookback
                logger.info(f"No stored watermark, starting from {watermark.isoformat()}")

            result = await self.run_cycle(watermark, stop_event=stop_event, now=started)

            if result.completed:
                await self.watermark_store.save(result.watermark, started_at=started, finished_at=utcnow())
            return result

    async def run_cycle(self, watermark: Optional[datetime], stop_event: Optional[asyncio.Event] = None,
                        now: Optional[datetime] = None) -> SyncCycleResult:
        """Process every active user once and return the next watermark."""
        started = ensure_utc(now) or utcnow()
        watermark = ensure_utc(watermark)
        month, year = current_period(self.timezone_name, started)

        users, games = await self._load_cycle_inputs(month, year)
        games_by_id: Dict[str, List[ChallengeGame]] = {}
        for game in games:
            games_by_id.setdefault(game.game_id, []).append(game)

        result = SyncCycleResult(started_at=started, input_watermark=watermark,
                                 watermark=watermark, users_total=len(users))
        logger.info(f"Checking achievements for {len(users)} users and {len(games)} challenge games "
                    f"({month}/{year})")

        stopped = False
        for user in users:
            if stop_event is not None and stop_event.is_set():
                logger.info(f"Sync cycle stopped after {result.users_processed}/{len(users)} users")
                stopped = True
                break

            await self.rate_limiter.acquire()

            try:
                user_result = await self.sync_user(user.username, games_by_id, watermark)
                result.user_results.append(user_result)
            except TransientFetchError as e:
                logger.warning(f"Skipping {user.username} this cycle: {e}")
                result.transient_failures.append(user.username)
            except Exception as e:
                logger.error(f"Error checking achievements for {user.username}: {e}", exc_info=True)
                result.failures.append(user.username)
            result.users_processed += 1

        result.completed = not stopped
        failed = len(result.transient_failures) + len(result.failures)
        if result.completed and not failed:
            result.watermark = started if watermark is None else max(started, watermark)
        elif failed:
            # Unrecorded unlocks of failed users must stay above the watermark
            logger.warning(f"Holding watermark; {failed} user(s) failed this cycle")

        logger.info(f"Achievement check finished: {result.new_achievements} new achievements, "
                    f"{len(result.failures) + len(result.transient_failures)} failed users")
        return result

    async def _load_cycle_inputs(self, month: int, year: int) -> Tuple[List[User], List[ChallengeGame]]:
        async with self.get_session() as session:
            users = await session.execute(
                select(User).where(User.is_active == True).order_by(User.username_key)
            )
            games = await session.execute(
                select(ChallengeGame).where(
                    ChallengeGame.month == month,
                    ChallengeGame.year == year,
                    ChallengeGame.kind.in_([ChallengeKind.MONTHLY, ChallengeKind.SHADOW]),
                )
            )
            return list(users.scalars().all()), list(games.scalars().all())

    async def sync_user(self, username: str, games_by_id: Dict[str, List[ChallengeGame]],
                        watermark: Optional[datetime]) -> UserSyncResult:
        """
        Process one user's recent unlocks.

        Raises:
            TransientFetchError: If the feed or a progress summary cannot be fetched
            DataIntegrityError: If the user is not registered
        """
        canonical = await self.identity.resolve(username)
        if canonical is None:
            raise DataIntegrityError('User', username)

        result = UserSyncResult(username=canonical)
        recent = await self.source.get_recent_achievements(canonical)

        seen = set()
        evaluated: Dict[int, AwardUpdateResult] = {}
        for achievement in recent:
            if watermark is not None and achievement.unlocked_at <= watermark:
                continue
            if achievement.dedup_key in seen:
                continue
            seen.add(achievement.dedup_key)

            try:
                if await self.progress_store.has_announced(canonical, achievement.game_id,
                                                           achievement.achievement_id):
                    continue

                challenge_games = games_by_id.get(achievement.game_id, [])
                await self._announce_achievement(canonical, achievement,
                                                 challenge_games[0] if challenge_games else None)

                best_tier: Optional[AwardTier] = None
                for game in challenge_games:
                    update_result = evaluated.get(game.id)
                    if update_result is None:
                        update_result = await self.award_engine.check_and_update(canonical, game)
                        evaluated[game.id] = update_result
                        if update_result.upgraded:
                            result.upgrades.append(update_result)
                    best_tier = update_result.tier if best_tier is None else max(best_tier, update_result.tier)

                await self.progress_store.record_announced(
                    canonical, achievement.game_id, achievement.achievement_id,
                    achievement.unlocked_at, best_tier
                )
                result.new_achievements += 1
            except (DataIntegrityError, MalformedPayloadError) as e:
                logger.warning(f"Skipping achievement {achievement.achievement_id} for {canonical}: {e}")
                result.skipped_records += 1

        return result

    async def _announce_achievement(self, username: str, achievement: RecentAchievement,
                                    game: Optional[ChallengeGame]):
        try:
            await self.sink.on_achievement_unlocked(username, achievement, game)
        except Exception as e:
            logger.error(f"Failed to announce achievement {achievement.achievement_id} for {username}: {e}",
                         exc_info=True)
