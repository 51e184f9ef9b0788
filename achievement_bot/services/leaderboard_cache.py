"""
Durable leaderboard snapshots, one per scope.

Each write replaces the whole snapshot and its timestamp in one
transaction, so readers only ever see a complete leaderboard.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from achievement_bot.data_models.leaderboard import CachedLeaderboard
from achievement_bot.database.models import LeaderboardScope, LeaderboardSnapshot
from achievement_bot.services.base import BaseService
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.time_utils import ensure_utc, utcnow

logger = setup_logger(__name__)


class LeaderboardCache(BaseService):
    """Snapshot store for the last computed leaderboard of each scope."""

    async def write(self, scope: LeaderboardScope, data: Dict[str, Any],
                    last_update: Optional[datetime] = None) -> CachedLeaderboard:
        """Upsert the snapshot for a scope, overwriting any previous one."""
        scope = LeaderboardScope(scope)
        timestamp = ensure_utc(last_update) or utcnow()

        async def _write():
            async with self.get_session() as session:
                snapshot = await session.get(LeaderboardSnapshot, scope)
                if snapshot is None:
                    session.add(LeaderboardSnapshot(scope=scope, data=data, last_update=timestamp))
                else:
                    snapshot.data = data
                    snapshot.last_update = timestamp

        # A concurrent first write for the same scope loses the insert race; retry as an update
        await self.execute_with_retry(_write, max_retries=2, retry_on=(IntegrityError,))
        logger.info(f"Stored {scope.value} leaderboard snapshot at {timestamp.isoformat()}")
        return CachedLeaderboard(scope=scope.value, data=data, last_update=timestamp)

    async def read(self, scope: LeaderboardScope) -> Optional[CachedLeaderboard]:
        """Return the stored snapshot for a scope, or None if never computed."""
        scope = LeaderboardScope(scope)
        async with self.get_session() as session:
            snapshot = await session.get(LeaderboardSnapshot, scope)
            if snapshot is None:
                return None
            return CachedLeaderboard(
                scope=scope.value,
                data=snapshot.data,
                last_update=ensure_utc(snapshot.last_update),
            )
