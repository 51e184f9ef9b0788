"""
Manual point grants.

Manual awards live in the awards table under the MANUAL_GAME_ID sentinel and
count toward the yearly leaderboard by their point value. A user may hold
any number of them in a period.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select

from achievement_bot.config import Config
from achievement_bot.database.models import Award, AwardTier, MANUAL_GAME_ID
from achievement_bot.services.announcements import AnnouncementSink
from achievement_bot.services.base import BaseService
from achievement_bot.services.identity import IdentityResolver
from achievement_bot.utils.exceptions import DataIntegrityError
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.time_utils import current_period, ensure_utc, utcnow

logger = setup_logger(__name__)


class ManualAwardService(BaseService):
    """Grants and lists manual point awards."""

    def __init__(self, session_factory, identity: IdentityResolver,
                 sink: Optional[AnnouncementSink] = None, timezone_name: str = None):
        super().__init__(session_factory)
        self.identity = identity
        self.sink = sink
        self.timezone_name = timezone_name or Config.CHALLENGE_TIMEZONE

    async def grant(self, username: str, points: int, reason: str, awarded_by: str,
                    now: Optional[datetime] = None) -> Award:
        """
        Grant manual points to a registered user for the current period.

        Raises:
            ValueError: If points is not positive or reason is blank
            DataIntegrityError: If the user is not registered
        """
        if points is None or int(points) <= 0:
            raise ValueError("Manual award points must be positive")
        if not reason or not reason.strip():
            raise ValueError("Manual award reason is required")

        canonical = await self.identity.resolve(username)
        if canonical is None:
            raise DataIntegrityError('User', username)

        month, year = current_period(self.timezone_name, ensure_utc(now) or utcnow())

        async with self.get_session() as session:
            award = Award(
                username=canonical,
                game_id=MANUAL_GAME_ID,
                month=month,
                year=year,
                tier=int(AwardTier.NONE),
                points=int(points),
                reason=reason.strip(),
                awarded_by=awarded_by,
            )
            session.add(award)
            await session.flush()
            await session.refresh(award)

        logger.info(f"Manual award: {points} points to {canonical} by {awarded_by} ({reason.strip()})")

        if self.sink is not None:
            try:
                await self.sink.on_manual_points_awarded(canonical, int(points), reason.strip())
            except Exception as e:
                logger.error(f"Failed to announce manual award for {canonical}: {e}", exc_info=True)
        return award

    async def list_for_year(self, username: str, year: int) -> List[Award]:
        canonical = await self.identity.resolve(username)
        if canonical is None:
            return []
        async with self.get_session() as session:
            result = await session.execute(
                select(Award)
                .where(
                    Award.username == canonical,
                    Award.game_id == MANUAL_GAME_ID,
                    Award.year == year,
                )
                .order_by(Award.id)
            )
            return list(result.scalars().all())
