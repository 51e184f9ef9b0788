from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float, BigInteger, JSON,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index, text
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from enum import Enum, IntEnum
from typing import List

Base = declarative_base()

MANUAL_GAME_ID = "manual"

class AwardTier(IntEnum):
    """Ordered award levels; a stored tier may only ever move up."""
    NONE = 0
    PARTICIPATION = 1
    BEATEN = 2
    MASTERED = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

class ChallengeKind(Enum):
    MONTHLY = "monthly"
    SHADOW = "shadow"

class LeaderboardScope(Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False)
    # Lower-cased copy of username; enforces case-insensitive uniqueness
    username_key = Column(String(100), nullable=False, unique=True, index=True)
    discord_id = Column(BigInteger, nullable=True, unique=True)

    # Metadata
    registered_at = Column(DateTime, default=func.now())
    is_active = Column(Boolean, default=True)

    def __init__(self, **kwargs):
        if 'username' in kwargs and 'username_key' not in kwargs:
            kwargs['username_key'] = kwargs['username'].lower()
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<User(username='{self.username}', active={self.is_active})>"

class ChallengeGame(Base):
    __tablename__ = 'challenge_games'

    id = Column(Integer, primary_key=True)
    game_id = Column(String(20), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    kind = Column(SQLEnum(ChallengeKind), nullable=False, default=ChallengeKind.MONTHLY)

    # Completion rules
    total_achievements = Column(Integer, nullable=False, default=0)
    win_condition_ids = Column(JSON, nullable=False, default=list)
    progression_ids = Column(JSON, nullable=False, default=list)
    require_all_win_conditions = Column(Boolean, default=False)
    mastery_enabled = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('game_id', 'month', 'year', 'kind', name='uq_challenge_game_period'),
        CheckConstraint('month >= 1 AND month <= 12', name='ck_challenge_game_month'),
    )

    @property
    def win_conditions(self) -> List[str]:
        return [str(a) for a in (self.win_condition_ids or [])]

    @property
    def progression(self) -> List[str]:
        return [str(a) for a in (self.progression_ids or [])]

    def __repr__(self):
        return f"<ChallengeGame(game_id='{self.game_id}', {self.month}/{self.year}, kind={self.kind.value})>"

class Award(Base):
    """
    Per-user award for a challenge game in a period.

    Challenge awards are unique per (username, game_id, month, year). Manual
    point grants share the table under the MANUAL_GAME_ID sentinel and are
    exempt from that key so a user can receive several in one month.
    """
    __tablename__ = 'awards'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, index=True)
    game_id = Column(String(20), nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False, index=True)

    tier = Column(Integer, nullable=False, default=int(AwardTier.NONE))
    achievement_count = Column(Integer, nullable=False, default=0)
    total_achievements = Column(Integer, nullable=False, default=0)
    completion_percent = Column(Float, nullable=False, default=0.0)

    # Manual award metadata
    reason = Column(Text, nullable=True)
    awarded_by = Column(String(100), nullable=True)
    points = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index(
            'uq_award_key', 'username', 'game_id', 'month', 'year',
            unique=True,
            sqlite_where=text(f"game_id != '{MANUAL_GAME_ID}'"),
            postgresql_where=text(f"game_id != '{MANUAL_GAME_ID}'"),
        ),
        CheckConstraint('tier >= 0 AND tier <= 3', name='ck_award_tier'),
    )

    @property
    def award_tier(self) -> AwardTier:
        return AwardTier(self.tier or 0)

    @property
    def is_manual(self) -> bool:
        return self.game_id == MANUAL_GAME_ID

    def __repr__(self):
        return (f"<Award(username='{self.username}', game_id='{self.game_id}', "
                f"{self.month}/{self.year}, tier={self.award_tier.name})>")

class PlayerProgress(Base):
    __tablename__ = 'player_progress'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False)
    game_id = Column(String(20), nullable=False)

    last_processed_at = Column(DateTime, nullable=True)
    announced_achievement_ids = Column(JSON, nullable=False, default=list)
    last_award_tier = Column(Integer, nullable=False, default=int(AwardTier.NONE))

    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('username', 'game_id', name='uq_player_progress'),
    )

    def has_announced(self, achievement_id: str) -> bool:
        return str(achievement_id) in (self.announced_achievement_ids or [])

    def __repr__(self):
        announced = len(self.announced_achievement_ids or [])
        return f"<PlayerProgress(username='{self.username}', game_id='{self.game_id}', announced={announced})>"

class LeaderboardSnapshot(Base):
    __tablename__ = 'leaderboard_snapshots'

    scope = Column(SQLEnum(LeaderboardScope), primary_key=True)
    data = Column(JSON, nullable=False)
    last_update = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<LeaderboardSnapshot(scope={self.scope.value}, last_update={self.last_update})>"

class SyncState(Base):
    __tablename__ = 'sync_state'

    name = Column(String(50), primary_key=True)
    watermark = Column(DateTime, nullable=True)
    last_cycle_started_at = Column(DateTime, nullable=True)
    last_cycle_finished_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SyncState(name='{self.name}', watermark={self.watermark})>"
