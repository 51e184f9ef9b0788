import asyncio
import logging
import traceback
from datetime import timedelta
from typing import Optional

import discord
from discord.ext import commands

from achievement_bot.config import Config
from achievement_bot.cogs.tracking import AchievementTrackingCog
from achievement_bot.database.database import Database
from achievement_bot.services.achievement_sync import AchievementSyncService
from achievement_bot.services.announcements import (
    AnnouncementSink, DiscordAnnouncementSink, LoggingAnnouncementSink
)
from achievement_bot.services.award_engine import AwardEngine
from achievement_bot.services.identity import IdentityResolver
from achievement_bot.services.leaderboard import LeaderboardService
from achievement_bot.services.leaderboard_cache import LeaderboardCache
from achievement_bot.services.manual_awards import ManualAwardService
from achievement_bot.services.progress_store import ProgressStore
from achievement_bot.services.rate_limiter import IntervalRateLimiter
from achievement_bot.services.retro_api import RetroAchievementsClient
from achievement_bot.services.watermark_store import WatermarkStore
from achievement_bot.utils.logger import reset_handlers, setup_logger

class AchievementBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            owner_id=Config.OWNER_DISCORD_ID or None,
            help_command=None
        )

        self.db: Optional[Database] = None
        self.source: Optional[RetroAchievementsClient] = None
        self.sink: Optional[AnnouncementSink] = None
        self.identity: Optional[IdentityResolver] = None
        self.sync_service: Optional[AchievementSyncService] = None
        self.leaderboard_service: Optional[LeaderboardService] = None
        self.manual_awards: Optional[ManualAwardService] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Achievement Bot...")

        # Initialize database
        self.db = Database()
        await self.db.initialize()
        session_factory = self.db.session_factory

        self.source = RetroAchievementsClient(
            api_key=Config.RA_API_KEY,
            api_username=Config.RA_API_USERNAME,
        )

        if Config.ANNOUNCEMENT_CHANNEL_ID:
            self.sink = DiscordAnnouncementSink(self, Config.ANNOUNCEMENT_CHANNEL_ID)
        else:
            self.logger.warning("ANNOUNCEMENT_CHANNEL_ID not set, announcements go to the log only")
            self.sink = LoggingAnnouncementSink()

        self.identity = IdentityResolver(session_factory)
        award_engine = AwardEngine(session_factory, self.source, self.sink)
        self.sync_service = AchievementSyncService(
            session_factory,
            source=self.source,
            sink=self.sink,
            award_engine=award_engine,
            progress_store=ProgressStore(session_factory),
            identity=self.identity,
            rate_limiter=IntervalRateLimiter(Config.USER_DELAY_SECONDS),
            watermark_store=WatermarkStore(session_factory),
            timezone_name=Config.CHALLENGE_TIMEZONE,
            initial_lookback=timedelta(hours=Config.INITIAL_LOOKBACK_HOURS),
        )
        self.leaderboard_service = LeaderboardService(
            session_factory,
            identity=self.identity,
            cache=LeaderboardCache(session_factory),
            point_table=Config.point_table(),
            top_size=Config.LEADERBOARD_TOP_SIZE,
            timezone_name=Config.CHALLENGE_TIMEZONE,
        )
        self.manual_awards = ManualAwardService(session_factory, self.identity, self.sink)

        await self.add_cog(AchievementTrackingCog(self, self.sync_service, self.leaderboard_service))
        self.logger.info("Achievement Bot setup complete!")

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

    async def on_command_error(self, ctx: commands.Context, error: Exception):
        """Global error handler for commands"""
        if isinstance(error, commands.CommandNotFound):
            return

        if isinstance(error, commands.CheckFailure):
            # Log permission denial without full traceback
            self.logger.info(f"Permission denied for command '{ctx.command.name if ctx.command else 'Unknown'}' by user {ctx.author}")
            await ctx.send("❌ This command is restricted to the bot owner.")
            return

        self.logger.error(f"Unexpected error in command {ctx.command}: {error}")
        self.logger.error(traceback.format_exc())
        await ctx.send("❌ An unexpected error occurred while processing your command.")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Achievement Bot...")

        if self.source:
            await self.source.close()

        if self.db:
            await self.db.close()

        await super().close()

async def main():
    """Main entry point"""
    Config.validate()

    bot = AchievementBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except KeyboardInterrupt:
        await bot.close()
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
    finally:
        await bot.close()
        reset_handlers()

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
