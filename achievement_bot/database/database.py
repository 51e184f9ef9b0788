from typing import Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select
from contextlib import asynccontextmanager

from achievement_bot.config import Config
from achievement_bot.database.models import Base, User, ChallengeGame, Award
from achievement_bot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    @property
    def session_factory(self):
        return self.async_session

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Registration and challenge setup live outside the sync core
    async def create_user(self, username: str, discord_id: int = None, is_active: bool = True) -> User:
        """Register a user"""
        async with self.transaction() as session:
            user = User(username=username, discord_id=discord_id, is_active=is_active)
            session.add(user)
            await session.flush()
            await session.refresh(user)
            return user

    async def add_challenge_game(self, **fields) -> ChallengeGame:
        """Store a challenge game for a period"""
        async with self.transaction() as session:
            game = ChallengeGame(**fields)
            session.add(game)
            await session.flush()
            await session.refresh(game)
            return game

    async def get_award(self, username: str, game_id: str, month: int, year: int) -> Optional[Award]:
        """Get a single challenge award by its key"""
        async with self.transaction() as session:
            result = await session.execute(
                select(Award).where(
                    Award.username == username,
                    Award.game_id == game_id,
                    Award.month == month,
                    Award.year == year,
                )
            )
            return result.scalar_one_or_none()
