"""
Per (user, game) sync progress.

PlayerProgress rows remember which achievement ids were already announced
and how far the user's feed has been processed. Rows are keyed by the
lower-cased username so case variants of one account share a history.
Nothing here ever removes an announced id or moves a timestamp backwards.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from achievement_bot.database.models import AwardTier, PlayerProgress
from achievement_bot.services.base import BaseService
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.time_utils import ensure_utc

logger = setup_logger(__name__)


class ProgressStore(BaseService):
    """Durable dedup and watermark state for each (user, game) pair."""

    @staticmethod
    def _key(username: str) -> str:
        return username.strip().lower()

    async def get(self, username: str, game_id: str) -> Optional[PlayerProgress]:
        async with self.get_session() as session:
            result = await session.execute(
                select(PlayerProgress).where(
                    PlayerProgress.username == self._key(username),
                    PlayerProgress.game_id == str(game_id),
                )
            )
            return result.scalar_one_or_none()

    async def has_announced(self, username: str, game_id: str, achievement_id: str) -> bool:
        progress = await self.get(username, game_id)
        return progress is not None and progress.has_announced(achievement_id)

    async def record_announced(self, username: str, game_id: str, achievement_id: str,
                               unlocked_at: datetime, award_tier: Optional[AwardTier] = None) -> PlayerProgress:
        """
        Append an achievement id and advance the pair's watermark.

        The row is created on first use; a concurrent create is retried once
        against the row that won.
        """
        async def _record():
            return await self._record_once(username, game_id, achievement_id, unlocked_at, award_tier)

        return await self.execute_with_retry(_record, max_retries=2, retry_on=(IntegrityError,))

    async def _record_once(self, username, game_id, achievement_id, unlocked_at, award_tier) -> PlayerProgress:
        async with self.get_session() as session:
            result = await session.execute(
                select(PlayerProgress).where(
                    PlayerProgress.username == self._key(username),
                    PlayerProgress.game_id == str(game_id),
                )
            )
            progress = result.scalar_one_or_none()
            if progress is None:
                progress = PlayerProgress(
                    username=self._key(username),
                    game_id=str(game_id),
                    announced_achievement_ids=[],
                    last_award_tier=int(AwardTier.NONE),
                )
                session.add(progress)

            announced = list(progress.announced_achievement_ids or [])
            if str(achievement_id) not in announced:
                announced.append(str(achievement_id))
                # Reassign so the JSON column is flagged dirty
                progress.announced_achievement_ids = announced

            unlocked_at = ensure_utc(unlocked_at)
            current = ensure_utc(progress.last_processed_at)
            if current is None or unlocked_at > current:
                progress.last_processed_at = unlocked_at

            if award_tier is not None and int(award_tier) > (progress.last_award_tier or 0):
                progress.last_award_tier = int(award_tier)

            await session.flush()
            logger.debug(f"Recorded achievement {achievement_id} for {username} in game {game_id}")
            return progress
