"""
Username identity resolution.

Maps raw, possibly case-variant usernames (as they come back from the
achievement source or from old award rows) onto the single canonical
registered username, with a TTL cache in front of the users table. Only
successful lookups are cached so a newly registered user resolves at once.
"""

import time
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import select

from achievement_bot.database.models import User
from achievement_bot.services.base import BaseService
from achievement_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class IdentityResolver(BaseService):
    """Resolve raw usernames to canonical registered usernames."""

    def __init__(self, session_factory, cache_ttl: float = 3600, cache_max_size: int = 5000):
        super().__init__(session_factory)
        self._cache: Dict[str, Tuple[float, str]] = {}  # key -> (timestamp, canonical)
        self._cache_ttl = cache_ttl
        self._cache_max_size = cache_max_size

    @staticmethod
    def normalize(raw_username: Optional[str]) -> Optional[str]:
        if raw_username is None:
            return None
        key = str(raw_username).strip().lower()
        return key or None

    def _cached(self, key: str):
        entry = self._cache.get(key)
        if entry is None:
            return False, None
        timestamp, canonical = entry
        if time.time() - timestamp >= self._cache_ttl:
            self._cache.pop(key, None)
            return False, None
        return True, canonical

    def _store(self, key: str, canonical: str):
        self._cache[key] = (time.time(), canonical)
        if len(self._cache) > self._cache_max_size:
            # Drop the oldest half
            ordered = sorted(self._cache.items(), key=lambda item: item[1][0])
            for stale_key, _ in ordered[:len(ordered) // 2]:
                self._cache.pop(stale_key, None)

    async def resolve(self, raw_username: Optional[str]) -> Optional[str]:
        """Return the canonical username for raw_username, or None if unregistered."""
        key = self.normalize(raw_username)
        if key is None:
            return None

        hit, canonical = self._cached(key)
        if hit:
            return canonical

        async with self.get_session() as session:
            result = await session.execute(
                select(User.username).where(User.username_key == key)
            )
            canonical = result.scalar_one_or_none()

        if canonical is None:
            logger.debug(f"No registered user for '{raw_username}'")
        else:
            self._store(key, canonical)
        return canonical

    async def resolve_many(self, raw_usernames: Iterable[Optional[str]]) -> Dict[str, Optional[str]]:
        """Resolve a batch of usernames with at most one query."""
        raw_list = [r for r in raw_usernames if r is not None]
        resolved: Dict[str, Optional[str]] = {}
        missing = {}
        for raw in raw_list:
            key = self.normalize(raw)
            if key is None:
                resolved[raw] = None
                continue
            hit, canonical = self._cached(key)
            if hit:
                resolved[raw] = canonical
            else:
                missing.setdefault(key, []).append(raw)

        if missing:
            async with self.get_session() as session:
                result = await session.execute(
                    select(User.username_key, User.username).where(User.username_key.in_(list(missing)))
                )
                found = dict(result.all())
            for key, raws in missing.items():
                canonical = found.get(key)
                if canonical is not None:
                    self._store(key, canonical)
                for raw in raws:
                    resolved[raw] = canonical

        return resolved

    def invalidate(self, raw_username: Optional[str] = None):
        """Invalidate one cached username, or the whole cache."""
        if raw_username is None:
            logger.info("Clearing identity cache")
            self._cache.clear()
            return
        key = self.normalize(raw_username)
        if key is not None:
            self._cache.pop(key, None)
