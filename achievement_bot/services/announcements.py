"""
Announcement sinks.

The core calls an AnnouncementSink whenever a new achievement is seen, an
award tier goes up, or manual points are granted. Announcements are best
effort: callers log and swallow sink failures, the stored state is what
counts.
"""

from abc import ABC, abstractmethod
from typing import Optional

import discord

from achievement_bot.data_models.achievements import RecentAchievement
from achievement_bot.database.models import AwardTier, ChallengeGame, ChallengeKind
from achievement_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class AnnouncementSink(ABC):
    """Receives notifications from the sync core for display elsewhere."""

    @abstractmethod
    async def on_achievement_unlocked(self, username: str, achievement: RecentAchievement,
                                      game: Optional[ChallengeGame]):
        pass

    @abstractmethod
    async def on_award_tier_changed(self, username: str, game: ChallengeGame, new_tier: AwardTier,
                                    earned_count: int, total_count: int):
        pass

    @abstractmethod
    async def on_manual_points_awarded(self, username: str, points: int, reason: str):
        pass


def format_achievement(username: str, achievement: RecentAchievement, game: Optional[ChallengeGame]) -> str:
    title = achievement.title or f"Achievement {achievement.achievement_id}"
    game_title = achievement.game_title or f"Game {achievement.game_id}"
    line = f"{username} unlocked {title} ({achievement.points} pts) in {game_title}"
    if game is not None:
        label = "shadow challenge" if game.kind == ChallengeKind.SHADOW else "monthly challenge"
        line += f" [{label}]"
    return line


def format_tier_change(username: str, game: ChallengeGame, new_tier: AwardTier,
                       earned_count: int, total_count: int) -> str:
    return (f"{username} earned {AwardTier(new_tier).label} on {game.title} "
            f"({earned_count}/{total_count})")


def format_manual_points(username: str, points: int, reason: str) -> str:
    noun = "point" if points == 1 else "points"
    return f"{username} was awarded {points} {noun}: {reason}"


class LoggingAnnouncementSink(AnnouncementSink):
    """Writes announcements to the application log."""

    async def on_achievement_unlocked(self, username, achievement, game):
        logger.info(format_achievement(username, achievement, game))

    async def on_award_tier_changed(self, username, game, new_tier, earned_count, total_count):
        logger.info(format_tier_change(username, game, new_tier, earned_count, total_count))

    async def on_manual_points_awarded(self, username, points, reason):
        logger.info(format_manual_points(username, points, reason))


class DiscordAnnouncementSink(AnnouncementSink):
    """Posts plain-text announcements to a Discord channel."""

    def __init__(self, bot: discord.Client, channel_id: int):
        self.bot = bot
        self.channel_id = channel_id

    async def _send(self, content: str):
        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(self.channel_id)
        await channel.send(content, allowed_mentions=discord.AllowedMentions.none())

    async def on_achievement_unlocked(self, username, achievement, game):
        await self._send(format_achievement(username, achievement, game))

    async def on_award_tier_changed(self, username, game, new_tier, earned_count, total_count):
        await self._send(format_tier_change(username, game, new_tier, earned_count, total_count))

    async def on_manual_points_awarded(self, username, points, reason):
        await self._send(format_manual_points(username, points, reason))
