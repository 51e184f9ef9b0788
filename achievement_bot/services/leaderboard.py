"""
Leaderboard aggregation for the monthly challenge and the yearly points race.

build_monthly_leaderboard() and build_yearly_leaderboard() are pure
functions of award rows and a username -> canonical username map;
LeaderboardService loads the rows, runs them, and replaces the cached
snapshot for the scope. Re-running a refresh is always safe.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select

from achievement_bot.config import Config
from achievement_bot.data_models.leaderboard import (
    MonthlyEntry, MonthlyLeaderboard, PointTable, YearlyEntry, YearlyLeaderboard
)
from achievement_bot.database.models import (
    Award, AwardTier, ChallengeGame, ChallengeKind, LeaderboardScope, User
)
from achievement_bot.services.base import BaseService
from achievement_bot.services.identity import IdentityResolver
from achievement_bot.services.leaderboard_cache import LeaderboardCache
from achievement_bot.utils.logger import setup_logger
from achievement_bot.utils.ranking import RankingUtility
from achievement_bot.utils.time_utils import current_period, ensure_utc, utcnow

logger = setup_logger(__name__)


def build_monthly_leaderboard(awards: Iterable[Award], canonical: Dict[str, Optional[str]],
                              game: Optional[ChallengeGame], month: int, year: int,
                              top_size: int) -> MonthlyLeaderboard:
    """
    Rank the current monthly challenge by achievement count.

    Rows for case variants of one user collapse into a single entry under the
    canonical name, keeping the row with the higher achievement count.
    Unregistered names and zero-progress rows are dropped.
    """
    if game is None:
        return MonthlyLeaderboard(game_id=None, game_title=None, month=month, year=year)

    best: Dict[str, Award] = {}
    for award in awards:
        if award.game_id != game.game_id or award.is_manual:
            continue
        name = canonical.get(award.username)
        if name is None:
            logger.debug(f"Dropping unregistered award holder '{award.username}'")
            continue
        current = best.get(name)
        if current is None or (award.achievement_count, award.tier) > (current.achievement_count, current.tier):
            best[name] = award

    candidates = [(name, award) for name, award in best.items() if award.achievement_count > 0]
    ranked = RankingUtility.rank_items(
        candidates,
        score=lambda item: item[1].achievement_count,
        tie_breaker=lambda item: item[0].lower(),
    )

    entries = [
        MonthlyEntry(
            rank=rank,
            username=name,
            achievement_count=award.achievement_count,
            total_achievements=award.total_achievements or game.total_achievements,
            completion_percent=award.completion_percent,
            tier=int(award.tier),
        )
        for rank, (name, award) in ranked
    ]
    top, rest = RankingUtility.partition(entries, top_size)
    return MonthlyLeaderboard(game_id=game.game_id, game_title=game.title, month=month, year=year,
                              top=top, rest=rest)


def build_yearly_leaderboard(awards: Iterable[Award], canonical: Dict[str, Optional[str]],
                             active_users: Iterable[str], point_table: PointTable,
                             year: int) -> YearlyLeaderboard:
    """
    Rank active users by points earned during the year.

    Each (game_id, month, year) contributes at most once per user, using the
    highest tier among that user's rows for it; manual awards add their point
    value on top.
    """
    active = set(active_users)
    rows_by_user: Dict[str, List[Award]] = {}
    for award in awards:
        if award.year != year:
            continue
        name = canonical.get(award.username)
        if name is None or name not in active:
            continue
        rows_by_user.setdefault(name, []).append(award)

    totals = []
    for name, rows in rows_by_user.items():
        processed: Set[Tuple[str, int, int]] = set()
        challenge_points = manual_points = 0
        tier_counts = {AwardTier.MASTERED: 0, AwardTier.BEATEN: 0, AwardTier.PARTICIPATION: 0}

        for award in sorted(rows, key=lambda a: a.tier or 0, reverse=True):
            if award.is_manual:
                manual_points += award.points or 0
                continue
            pair = (award.game_id, award.month, award.year)
            if pair in processed:
                continue
            processed.add(pair)
            tier = award.award_tier
            challenge_points += point_table.points_for(tier)
            if tier in tier_counts:
                tier_counts[tier] += 1

        total = challenge_points + manual_points
        if total > 0:
            totals.append((name, total, challenge_points, manual_points, tier_counts))

    ranked = RankingUtility.rank_items(totals, score=lambda t: t[1], tie_breaker=lambda t: t[0].lower())
    entries = [
        YearlyEntry(
            rank=rank,
            username=name,
            total_points=total,
            challenge_points=challenge_points,
            manual_points=manual_points,
            mastered=counts[AwardTier.MASTERED],
            beaten=counts[AwardTier.BEATEN],
            participation=counts[AwardTier.PARTICIPATION],
        )
        for rank, (name, total, challenge_points, manual_points, counts) in ranked
    ]
    return YearlyLeaderboard(year=year, entries=entries)


class LeaderboardService(BaseService):
    """Recomputes leaderboards from award rows and writes them through the cache."""

    def __init__(self, session_factory, identity: IdentityResolver, cache: LeaderboardCache,
                 point_table: PointTable = None, top_size: int = None, timezone_name: str = None):
        super().__init__(session_factory)
        self.identity = identity
        self.cache = cache
        self.point_table = point_table or Config.point_table()
        self.top_size = Config.LEADERBOARD_TOP_SIZE if top_size is None else top_size
        self.timezone_name = timezone_name or Config.CHALLENGE_TIMEZONE

    async def refresh_monthly(self, now: Optional[datetime] = None) -> MonthlyLeaderboard:
        moment = ensure_utc(now) or utcnow()
        month, year = current_period(self.timezone_name, moment)

        async with self.get_session() as session:
            game = (await session.execute(
                select(ChallengeGame).where(
                    ChallengeGame.month == month,
                    ChallengeGame.year == year,
                    ChallengeGame.kind == ChallengeKind.MONTHLY,
                )
            )).scalars().first()
            awards = []
            if game is not None:
                awards = list((await session.execute(
                    select(Award).where(
                        Award.game_id == game.game_id,
                        Award.month == month,
                        Award.year == year,
                    )
                )).scalars().all())

        if game is None:
            logger.warning(f"No monthly challenge configured for {month}/{year}")

        canonical = await self.identity.resolve_many(a.username for a in awards)
        leaderboard = build_monthly_leaderboard(awards, canonical, game, month, year, self.top_size)
        await self.cache.write(LeaderboardScope.MONTHLY, leaderboard.to_dict(), last_update=moment)
        logger.info(f"Monthly leaderboard refreshed: {len(leaderboard.entries)} entries")
        return leaderboard

    async def refresh_yearly(self, now: Optional[datetime] = None) -> YearlyLeaderboard:
        moment = ensure_utc(now) or utcnow()
        _, year = current_period(self.timezone_name, moment)

        async with self.get_session() as session:
            active_users = list((await session.execute(
                select(User.username).where(User.is_active == True)
            )).scalars().all())
            awards = list((await session.execute(
                select(Award).where(Award.year == year).order_by(Award.id)
            )).scalars().all())

        canonical = await self.identity.resolve_many(a.username for a in awards)
        leaderboard = build_yearly_leaderboard(awards, canonical, active_users, self.point_table, year)
        await self.cache.write(LeaderboardScope.YEARLY, leaderboard.to_dict(), last_update=moment)
        logger.info(f"Yearly leaderboard refreshed: {len(leaderboard.entries)} entries")
        return leaderboard

    async def refresh_all(self, now: Optional[datetime] = None) -> Tuple[MonthlyLeaderboard, YearlyLeaderboard]:
        moment = ensure_utc(now) or utcnow()
        monthly = await self.refresh_monthly(moment)
        yearly = await self.refresh_yearly(moment)
        return monthly, yearly

    async def get_monthly(self) -> Optional[MonthlyLeaderboard]:
        cached = await self.cache.read(LeaderboardScope.MONTHLY)
        return MonthlyLeaderboard.from_dict(cached.data) if cached else None

    async def get_yearly(self) -> Optional[YearlyLeaderboard]:
        cached = await self.cache.read(LeaderboardScope.YEARLY)
        return YearlyLeaderboard.from_dict(cached.data) if cached else None
