"""Progress, watermark and leaderboard snapshot persistence."""

from datetime import timedelta

from achievement_bot.database.models import AwardTier, LeaderboardScope
from achievement_bot.services.leaderboard_cache import LeaderboardCache
from achievement_bot.services.progress_store import ProgressStore
from achievement_bot.services.watermark_store import WatermarkStore

from conftest import NOW, minutes_ago


class TestProgressStore:
    async def test_record_creates_row_and_appends(self, db):
        store = ProgressStore(db.session_factory)
        assert await store.get("Alice", "1001") is None

        await store.record_announced("Alice", "1001", "a1", minutes_ago(30), AwardTier.PARTICIPATION)
        await store.record_announced("alice", "1001", "a2", minutes_ago(20))

        progress = await store.get("ALICE", "1001")
        assert progress.username == "alice"
        assert progress.announced_achievement_ids == ["a1", "a2"]
        assert progress.last_award_tier == int(AwardTier.PARTICIPATION)
        assert await store.has_announced("Alice", "1001", "a2")
        assert not await store.has_announced("Alice", "1001", "a3")
        assert not await store.has_announced("Alice", "2002", "a1")

    async def test_record_is_idempotent_and_never_moves_back(self, db):
        store = ProgressStore(db.session_factory)
        await store.record_announced("Alice", "1001", "a2", minutes_ago(10), AwardTier.BEATEN)
        await store.record_announced("Alice", "1001", "a1", minutes_ago(50), AwardTier.PARTICIPATION)
        await store.record_announced("Alice", "1001", "a2", minutes_ago(10))

        progress = await store.get("Alice", "1001")
        assert progress.announced_achievement_ids == ["a2", "a1"]
        assert progress.last_processed_at.replace(tzinfo=None) == minutes_ago(10).replace(tzinfo=None)
        assert progress.last_award_tier == int(AwardTier.BEATEN)


class TestWatermarkStore:
    async def test_load_empty(self, db):
        assert await WatermarkStore(db.session_factory).load() is None

    async def test_save_and_load(self, db):
        store = WatermarkStore(db.session_factory)
        stored = await store.save(NOW, started_at=NOW, finished_at=NOW + timedelta(minutes=1))
        assert stored == NOW
        assert await store.load() == NOW

    async def test_never_moves_backwards(self, db):
        store = WatermarkStore(db.session_factory)
        await store.save(NOW)
        assert await store.save(minutes_ago(30)) == NOW
        assert await store.load() == NOW

    async def test_named_watermarks_are_independent(self, db):
        store = WatermarkStore(db.session_factory)
        await store.save(NOW, name="other")
        assert await store.load() is None
        assert await store.load("other") == NOW


class TestLeaderboardCache:
    async def test_read_missing(self, db):
        assert await LeaderboardCache(db.session_factory).read(LeaderboardScope.MONTHLY) is None

    async def test_write_replaces_snapshot(self, db):
        cache = LeaderboardCache(db.session_factory)
        await cache.write(LeaderboardScope.YEARLY, {"year": 2025, "entries": [{"username": "A"}]}, NOW)
        later = NOW + timedelta(minutes=10)
        await cache.write(LeaderboardScope.YEARLY, {"year": 2025, "entries": []}, later)

        snapshot = await cache.read(LeaderboardScope.YEARLY)
        assert snapshot.scope == "yearly"
        assert snapshot.data == {"year": 2025, "entries": []}
        assert snapshot.last_update == later
        assert await cache.read(LeaderboardScope.MONTHLY) is None
