"""
RetroAchievements achievement source.

AchievementSource is the boundary the sync driver consumes. The concrete
RetroAchievementsClient talks to the public web API over httpx and turns
every response into canonical records through a fixed, ordered list of
named response shapes. A payload that matches none of them is a
MalformedPayloadError, never a guess.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx

from achievement_bot.config import Config
from achievement_bot.data_models.achievements import GameProgress, RecentAchievement
from achievement_bot.utils.exceptions import (
    DataIntegrityError, MalformedPayloadError, TransientFetchError
)
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.time_utils import parse_ra_timestamp

logger = setup_logger(__name__)


class AchievementSource(ABC):
    """Supplies recent unlocks and per-game progress for a user."""

    @abstractmethod
    async def get_recent_achievements(self, username: str) -> List[RecentAchievement]:
        """Return the user's recent unlocks, oldest first."""
        pass

    @abstractmethod
    async def get_game_progress(self, username: str, game_id: str) -> GameProgress:
        """Return the user's progress summary for one game."""
        pass


@dataclass(frozen=True)
class RecentItemShape:
    """Field layout of one recent-achievement item."""
    name: str
    achievement_id: str
    game_id: str
    unlocked_at: str
    title: str
    description: str
    points: str
    game_title: str
    console_name: str
    badge_name: str
    hardcore: str

    def matches(self, item: Dict[str, Any]) -> bool:
        return all(item.get(f) not in (None, '') for f in (self.achievement_id, self.game_id, self.unlocked_at))


@dataclass(frozen=True)
class ProgressShape:
    """Field layout of a game-progress response."""
    name: str
    game_id: str
    title: str
    earned_count: str
    total_count: str
    completion: str
    achievements: str
    date_earned: str

    def matches(self, payload: Dict[str, Any]) -> bool:
        return all(f in payload for f in (self.earned_count, self.total_count, self.achievements))


# Ordered: the first matching shape wins
RECENT_ITEM_SHAPES: Tuple[RecentItemShape, ...] = (
    RecentItemShape(
        name='WEB_API', achievement_id='AchievementID', game_id='GameID', unlocked_at='Date',
        title='Title', description='Description', points='Points', game_title='GameTitle',
        console_name='ConsoleName', badge_name='BadgeName', hardcore='HardcoreMode',
    ),
    RecentItemShape(
        name='CLIENT', achievement_id='achievementId', game_id='gameId', unlocked_at='date',
        title='title', description='description', points='points', game_title='gameTitle',
        console_name='consoleName', badge_name='badgeName', hardcore='hardcoreMode',
    ),
)

PROGRESS_SHAPES: Tuple[ProgressShape, ...] = (
    ProgressShape(
        name='WEB_API_PROGRESS', game_id='ID', title='Title', earned_count='NumAwardedToUser',
        total_count='NumAchievements', completion='UserCompletion', achievements='Achievements',
        date_earned='DateEarned',
    ),
    ProgressShape(
        name='CLIENT_PROGRESS', game_id='id', title='title', earned_count='numAwardedToUser',
        total_count='numAchievements', completion='userCompletion', achievements='achievements',
        date_earned='dateEarned',
    ),
)

RECENT_CONTAINER_KEY = 'results'


def _unwrap_recent(payload: Any) -> Tuple[str, List[Any]]:
    if isinstance(payload, list):
        return 'LIST', payload
    if isinstance(payload, dict) and isinstance(payload.get(RECENT_CONTAINER_KEY), list):
        return 'WRAPPED_RESULTS', payload[RECENT_CONTAINER_KEY]
    raise MalformedPayloadError('recent achievements', f"unsupported top-level type {type(payload).__name__}")


def normalize_recent_item(item: Any) -> RecentAchievement:
    """Map one recent-achievement item onto RecentAchievement."""
    if not isinstance(item, dict):
        raise MalformedPayloadError('recent achievement', f"expected object, got {type(item).__name__}")

    shape = next((s for s in RECENT_ITEM_SHAPES if s.matches(item)), None)
    if shape is None:
        raise MalformedPayloadError('recent achievement', f"no known shape for keys {sorted(item)}")

    try:
        unlocked_at = parse_ra_timestamp(item[shape.unlocked_at])
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError('recent achievement', f"bad timestamp: {e}")

    try:
        points = int(item.get(shape.points) or 0)
    except (TypeError, ValueError):
        points = 0

    return RecentAchievement(
        achievement_id=str(item[shape.achievement_id]),
        game_id=str(item[shape.game_id]),
        unlocked_at=unlocked_at,
        title=str(item.get(shape.title) or ''),
        description=str(item.get(shape.description) or ''),
        points=points,
        game_title=str(item.get(shape.game_title) or ''),
        console_name=str(item.get(shape.console_name) or ''),
        badge_name=str(item.get(shape.badge_name) or ''),
        hardcore=bool(item.get(shape.hardcore)),
    )


def normalize_recent_achievements(payload: Any) -> List[RecentAchievement]:
    """
    Normalize a recent-achievements response, oldest first.

    Malformed items are skipped with a warning; an unsupported top-level
    payload raises MalformedPayloadError.
    """
    container, items = _unwrap_recent(payload)
    achievements = []
    for item in items:
        try:
            achievements.append(normalize_recent_item(item))
        except MalformedPayloadError as e:
            logger.warning(f"Skipping recent achievement ({container}): {e}")
    achievements.sort(key=lambda a: a.unlocked_at)
    return achievements


def _parse_completion(raw: Any, earned: int, total: int) -> float:
    if isinstance(raw, (int, float)):
        return round(float(raw), 2)
    if isinstance(raw, str) and raw.strip():
        try:
            return round(float(raw.strip().rstrip('%')), 2)
        except ValueError:
            raise MalformedPayloadError('game progress', f"bad completion value {raw!r}")
    if total <= 0:
        return 0.0
    return round(earned * 100.0 / total, 2)


def normalize_game_progress(payload: Any, game_id: Optional[str] = None) -> GameProgress:
    """Normalize a game-progress response into GameProgress."""
    if not isinstance(payload, dict):
        raise MalformedPayloadError('game progress', f"expected object, got {type(payload).__name__}")

    shape = next((s for s in PROGRESS_SHAPES if s.matches(payload)), None)
    if shape is None:
        raise MalformedPayloadError('game progress', f"no known shape for keys {sorted(payload)}")

    try:
        earned = int(payload[shape.earned_count] or 0)
        total = int(payload[shape.total_count] or 0)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError('game progress', f"bad achievement counts: {e}")

    achievements = payload[shape.achievements] or {}
    # The web API sends [] instead of {} for games without achievements
    if isinstance(achievements, list):
        entries = [(a.get('ID', a.get('id')), a) for a in achievements if isinstance(a, dict)]
    elif isinstance(achievements, dict):
        entries = list(achievements.items())
    else:
        raise MalformedPayloadError('game progress', "achievements must be an object or list")

    earned_ids = frozenset(
        str(achievement_id)
        for achievement_id, data in entries
        if achievement_id is not None and isinstance(data, dict) and data.get(shape.date_earned)
    )

    resolved_game_id = payload.get(shape.game_id, game_id)
    if resolved_game_id is None:
        raise MalformedPayloadError('game progress', "missing game id")

    return GameProgress(
        game_id=str(resolved_game_id),
        earned_count=earned,
        total_count=total,
        completion_percent=_parse_completion(payload.get(shape.completion), earned, total),
        earned_achievement_ids=earned_ids,
        title=payload.get(shape.title),
    )


class RetroAchievementsClient(AchievementSource):
    """Async client for the RetroAchievements web API."""

    RECENT_ENDPOINT = 'API_GetUserRecentAchievements.php'
    PROGRESS_ENDPOINT = 'API_GetGameInfoAndUserProgress.php'

    def __init__(self, api_key: str, api_username: str = '',
                 base_url: str = None, timeout: float = None,
                 recent_count: int = None, recent_minutes: int = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.api_username = api_username
        self.recent_count = recent_count or Config.RECENT_ACHIEVEMENT_COUNT
        self.recent_minutes = recent_minutes or Config.RECENT_ACHIEVEMENT_MINUTES
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or Config.RA_BASE_URL,
            timeout=httpx.Timeout(timeout or Config.RA_TIMEOUT_SECONDS, connect=10.0),
        )

    async def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        query = dict(params)
        query['y'] = self.api_key
        if self.api_username:
            query['z'] = self.api_username

        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.HTTPError as e:
            raise TransientFetchError(endpoint, str(e) or type(e).__name__)

        if response.status_code == 404:
            raise DataIntegrityError('RetroAchievements resource', f"{endpoint}?{params}")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientFetchError(endpoint, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise TransientFetchError(endpoint, f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise MalformedPayloadError(endpoint, f"invalid JSON: {e}")

    async def get_recent_achievements(self, username: str) -> List[RecentAchievement]:
        payload = await self._get(self.RECENT_ENDPOINT, {'u': username, 'm': self.recent_minutes})
        achievements = normalize_recent_achievements(payload)
        # Keep the newest `recent_count` unlocks
        return achievements[-self.recent_count:]

    async def get_game_progress(self, username: str, game_id: str) -> GameProgress:
        payload = await self._get(self.PROGRESS_ENDPOINT, {'u': username, 'g': game_id})
        return normalize_game_progress(payload, game_id=str(game_id))

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
