"""
Award tier state machine.

Converts a user's progress on a challenge game into an AwardTier and stores
it on the (username, game_id, month, year) award row. Tiers only move
forward: NONE -> PARTICIPATION -> BEATEN -> MASTERED.

Key behaviours:
- The candidate tier is a pure function of the game rules and the progress summary
- Upgrades go through write_tier, a compare-and-set on the observed tier that
  also refuses to lower it; a lost race is retried once against a fresh read
- The tier write is authoritative, the announcement after it is best effort
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from achievement_bot.data_models.achievements import GameProgress
from achievement_bot.database.models import Award, AwardTier, ChallengeGame
from achievement_bot.services.announcements import AnnouncementSink
from achievement_bot.services.base import BaseService
from achievement_bot.services.retro_api import AchievementSource
from achievement_bot.utils.exceptions import ConcurrentUpdateConflict, TierRegressionError
from achievement_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class AwardUpdateResult:
    username: str
    game_id: str
    previous_tier: AwardTier
    tier: AwardTier
    achievement_count: int
    total_achievements: int

    @property
    def upgraded(self) -> bool:
        return self.tier > self.previous_tier


def is_game_beaten(game: ChallengeGame, progress: GameProgress) -> bool:
    """Win condition (all-of or any-of) plus every progression achievement."""
    earned = progress.earned_achievement_ids
    win_conditions = game.win_conditions
    if win_conditions:
        if game.require_all_win_conditions:
            has_win = all(a in earned for a in win_conditions)
        else:
            has_win = any(a in earned for a in win_conditions)
        if not has_win:
            return False
    return all(a in earned for a in game.progression)


def evaluate_tier(game: ChallengeGame, progress: GameProgress) -> AwardTier:
    """Compute the tier a user qualifies for right now."""
    if progress.earned_count <= 0:
        return AwardTier.NONE
    if not is_game_beaten(game, progress):
        return AwardTier.PARTICIPATION
    if game.mastery_enabled and progress.completion_percent >= 100.0:
        return AwardTier.MASTERED
    return AwardTier.BEATEN


def ensure_upgrade(current: AwardTier, requested: AwardTier):
    """Reject any tier write that would lower the stored tier."""
    if AwardTier(requested) < AwardTier(current):
        raise TierRegressionError(AwardTier(current), AwardTier(requested))


async def write_tier(session, award: Award, new_tier: AwardTier, **counts):
    """
    Compare-and-set the tier of a loaded award row.

    The write only lands if the stored tier still equals the tier observed
    on award when it was loaded.

    Raises:
        TierRegressionError: If new_tier is below the observed tier
        ConcurrentUpdateConflict: If the stored tier changed since the read
    """
    observed = award.award_tier
    ensure_upgrade(observed, new_tier)
    result = await session.execute(
        update(Award)
        .where(Award.id == award.id, Award.tier == int(observed))
        .values(tier=int(new_tier), updated_at=func.now(), **counts)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConcurrentUpdateConflict(award.username, award.game_id)


class AwardEngine(BaseService):
    """Evaluates progress and applies forward-only award tier upgrades."""

    def __init__(self, session_factory, source: AchievementSource, sink: AnnouncementSink):
        super().__init__(session_factory)
        self.source = source
        self.sink = sink

    async def check_and_update(self, username: str, game: ChallengeGame) -> AwardUpdateResult:
        """
        Fetch the user's progress for a challenge game and apply it.

        Raises:
            TransientFetchError: If the progress summary cannot be fetched
            MalformedPayloadError: If the progress summary cannot be parsed
            ConcurrentUpdateConflict: If the upgrade lost two races in a row
        """
        progress = await self.source.get_game_progress(username, game.game_id)
        return await self.apply_progress(username, game, progress)

    async def apply_progress(self, username: str, game: ChallengeGame, progress: GameProgress) -> AwardUpdateResult:
        candidate = evaluate_tier(game, progress)

        try:
            result = await self._apply_once(username, game, progress, candidate)
        except ConcurrentUpdateConflict as e:
            logger.warning(f"{e}; retrying with a fresh read")
            try:
                result = await self._apply_once(username, game, progress, candidate)
            except ConcurrentUpdateConflict:
                raise ConcurrentUpdateConflict(username, game.game_id, attempts=2)

        if result.upgraded:
            logger.info(
                f"Award upgrade for {username} on {game.game_id} "
                f"({game.month}/{game.year}): {result.previous_tier.name} -> {result.tier.name}"
            )
            await self._announce_upgrade(username, game, result)
        return result

    async def _apply_once(self, username: str, game: ChallengeGame, progress: GameProgress,
                          candidate: AwardTier) -> AwardUpdateResult:
        total = progress.total_count or game.total_achievements or 0

        async with self.get_session() as session:
            award = await self._load_award(session, username, game)

            if award is None:
                if candidate == AwardTier.NONE:
                    # Awards are created on the first qualifying achievement
                    return AwardUpdateResult(username, game.game_id, AwardTier.NONE, AwardTier.NONE,
                                             progress.earned_count, total)
                session.add(Award(
                    username=username,
                    game_id=game.game_id,
                    month=game.month,
                    year=game.year,
                    tier=int(candidate),
                    achievement_count=progress.earned_count,
                    total_achievements=total,
                    completion_percent=progress.completion_percent,
                ))
                try:
                    await session.flush()
                except IntegrityError:
                    raise ConcurrentUpdateConflict(username, game.game_id)
                return AwardUpdateResult(username, game.game_id, AwardTier.NONE, candidate,
                                         progress.earned_count, total)

            current = award.award_tier
            counts = {
                'achievement_count': progress.earned_count,
                'total_achievements': total,
                'completion_percent': progress.completion_percent,
            }

            if candidate > current:
                await write_tier(session, award, candidate, **counts)
                return AwardUpdateResult(username, game.game_id, current, candidate,
                                         progress.earned_count, total)

            if (award.achievement_count, award.total_achievements, award.completion_percent) != (
                    progress.earned_count, total, progress.completion_percent):
                # Progress counts refresh; the tier column is left alone
                await session.execute(
                    update(Award)
                    .where(Award.id == award.id)
                    .values(updated_at=func.now(), **counts)
                    .execution_options(synchronize_session=False)
                )
            return AwardUpdateResult(username, game.game_id, current, current,
                                     progress.earned_count, total)

    @staticmethod
    async def _load_award(session, username: str, game: ChallengeGame) -> Optional[Award]:
        result = await session.execute(
            select(Award).where(
                Award.username == username,
                Award.game_id == game.game_id,
                Award.month == game.month,
                Award.year == game.year,
            )
        )
        return result.scalar_one_or_none()

    async def _announce_upgrade(self, username: str, game: ChallengeGame, result: AwardUpdateResult):
        try:
            await self.sink.on_award_tier_changed(
                username, game, result.tier, result.achievement_count, result.total_achievements
            )
        except Exception as e:
            logger.error(f"Failed to announce {result.tier.name} for {username} on {game.game_id}: {e}",
                         exc_info=True)
