"""
Durable storage for the global sync watermark.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from achievement_bot.database.models import SyncState
from achievement_bot.services.base import BaseService
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.time_utils import ensure_utc

logger = setup_logger(__name__)

ACHIEVEMENT_SYNC = 'achievement_sync'


class WatermarkStore(BaseService):
    """Loads and saves the watermark of the last completed sync cycle."""

    async def load(self, name: str = ACHIEVEMENT_SYNC) -> Optional[datetime]:
        async with self.get_session() as session:
            state = await session.get(SyncState, name)
            return ensure_utc(state.watermark) if state else None

    async def save(self, watermark: datetime, started_at: datetime = None,
                   finished_at: datetime = None, name: str = ACHIEVEMENT_SYNC) -> datetime:
        """Persist a watermark; an older value never replaces a newer one."""
        async def _save():
            async with self.get_session() as session:
                state = await session.get(SyncState, name)
                if state is None:
                    state = SyncState(name=name)
                    session.add(state)

                current = ensure_utc(state.watermark)
                new_value = ensure_utc(watermark)
                if current is not None and new_value < current:
                    logger.warning(f"Ignoring watermark {new_value} older than stored {current}")
                    new_value = current
                state.watermark = new_value
                if started_at is not None:
                    state.last_cycle_started_at = ensure_utc(started_at)
                if finished_at is not None:
                    state.last_cycle_finished_at = ensure_utc(finished_at)
                return new_value

        return await self.execute_with_retry(_save, max_retries=2, retry_on=(IntegrityError,))
