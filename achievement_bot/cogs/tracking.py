"""
Achievement Tracking Cog - Background Sync & Leaderboard Refresh

Hosts the two periodic loops of the achievement core: the incremental
achievement sync and the leaderboard recompute. Also provides an owner
command to recompute leaderboards on demand.
"""

import asyncio

from discord.ext import commands, tasks

from achievement_bot.config import Config
from achievement_bot.services.achievement_sync import AchievementSyncService
from achievement_bot.services.leaderboard import LeaderboardService
from achievement_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class AchievementTrackingCog(commands.Cog):
    """Periodic achievement sync and leaderboard refresh"""

    def __init__(self, bot, sync_service: AchievementSyncService, leaderboard_service: LeaderboardService):
        self.bot = bot
        self.sync_service = sync_service
        self.leaderboard_service = leaderboard_service
        self.stop_event = asyncio.Event()
        self.logger = logger

        self.sync_achievements.change_interval(minutes=Config.SYNC_INTERVAL_MINUTES)
        self.refresh_leaderboards_task.change_interval(minutes=Config.LEADERBOARD_REFRESH_MINUTES)

    async def cog_load(self):
        """Start background tasks once the cog is registered"""
        self.stop_event.clear()
        self.sync_achievements.start()
        self.refresh_leaderboards_task.start()
        self.logger.info("AchievementTrackingCog: Background tasks started")

    def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        # An in-flight cycle stops before its next user and keeps the old watermark
        self.stop_event.set()
        self.sync_achievements.cancel()
        self.refresh_leaderboards_task.cancel()
        self.logger.info("AchievementTrackingCog: Background tasks stopped")

    @tasks.loop(minutes=15)
    async def sync_achievements(self):
        """Run one incremental achievement sync cycle"""
        try:
            result = await self.sync_service.run_scheduled_cycle(stop_event=self.stop_event)
            if result is not None and result.new_achievements > 0:
                self.logger.info(f"Sync cycle found {result.new_achievements} new achievements")
        except Exception as e:
            self.logger.error(f"Error in achievement sync task: {e}", exc_info=True)

    @sync_achievements.before_loop
    async def before_sync_task(self):
        """Wait for bot to be ready before starting sync task"""
        await self.bot.wait_until_ready()

    @tasks.loop(minutes=10)
    async def refresh_leaderboards_task(self):
        """Recompute the monthly and yearly leaderboards"""
        try:
            await self.leaderboard_service.refresh_all()
        except Exception as e:
            self.logger.error(f"Error in leaderboard refresh task: {e}", exc_info=True)

    @refresh_leaderboards_task.before_loop
    async def before_refresh_task(self):
        """Wait for bot to be ready before starting refresh task"""
        await self.bot.wait_until_ready()

    @commands.command(name="refresh_leaderboards")
    @commands.is_owner()
    async def manual_refresh(self, ctx):
        """Manual command to recompute leaderboards (owner only)"""
        try:
            monthly, yearly = await self.leaderboard_service.refresh_all()
            await ctx.send(
                f"✅ Leaderboards refreshed: {len(monthly.entries)} monthly, "
                f"{len(yearly.entries)} yearly entries."
            )
        except Exception as e:
            self.logger.error(f"Manual leaderboard refresh error: {e}", exc_info=True)
            await ctx.send(f"❌ Refresh failed: {str(e)}")
