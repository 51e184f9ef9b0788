import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))
    ANNOUNCEMENT_CHANNEL_ID = int(os.getenv('ANNOUNCEMENT_CHANNEL_ID', 0))
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///achievements.db')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # RetroAchievements API
    RA_API_USERNAME = os.getenv('RA_API_USERNAME', '')
    RA_API_KEY = os.getenv('RA_API_KEY', '')
    RA_BASE_URL = os.getenv('RA_BASE_URL', 'https://retroachievements.org/API/')
    RA_TIMEOUT_SECONDS = float(os.getenv('RA_TIMEOUT_SECONDS', 30))
    RECENT_ACHIEVEMENT_COUNT = int(os.getenv('RECENT_ACHIEVEMENT_COUNT', 50))
    RECENT_ACHIEVEMENT_MINUTES = int(os.getenv('RECENT_ACHIEVEMENT_MINUTES', 1440))

    # Sync cycle settings
    SYNC_INTERVAL_MINUTES = float(os.getenv('SYNC_INTERVAL_MINUTES', 15))
    USER_DELAY_SECONDS = float(os.getenv('USER_DELAY_SECONDS', 2))
    INITIAL_LOOKBACK_HOURS = int(os.getenv('INITIAL_LOOKBACK_HOURS', 24))
    CHALLENGE_TIMEZONE = os.getenv('CHALLENGE_TIMEZONE', 'UTC')

    # Leaderboard settings
    LEADERBOARD_REFRESH_MINUTES = float(os.getenv('LEADERBOARD_REFRESH_MINUTES', 10))
    LEADERBOARD_TOP_SIZE = int(os.getenv('LEADERBOARD_TOP_SIZE', 10))

    # Points per award tier (yearly leaderboard)
    POINTS_PARTICIPATION = int(os.getenv('POINTS_PARTICIPATION', 1))
    POINTS_BEATEN = int(os.getenv('POINTS_BEATEN', 4))
    POINTS_MASTERED = int(os.getenv('POINTS_MASTERED', 7))

    @classmethod
    def point_table(cls):
        """Build the tier point table from the configured values"""
        from achievement_bot.data_models.leaderboard import PointTable
        return PointTable(
            participation=cls.POINTS_PARTICIPATION,
            beaten=cls.POINTS_BEATEN,
            mastered=cls.POINTS_MASTERED,
        )

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.RA_API_KEY:
            raise ValueError("RA_API_KEY is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
        if cls.USER_DELAY_SECONDS < 0:
            raise ValueError("USER_DELAY_SECONDS must not be negative")
        cls.point_table()
