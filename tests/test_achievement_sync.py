"""Incremental sync: watermark filtering, dedup, failure policy and cancellation."""

import asyncio
from datetime import timedelta

import pytest_asyncio

from achievement_bot.database.models import AwardTier, ChallengeKind
from achievement_bot.services.achievement_sync import AchievementSyncService
from achievement_bot.services.award_engine import AwardEngine
from achievement_bot.services.identity import IdentityResolver
from achievement_bot.services.progress_store import ProgressStore
from achievement_bot.services.rate_limiter import IntervalRateLimiter
from achievement_bot.services.watermark_store import WatermarkStore
from achievement_bot.utils.exceptions import ConcurrentUpdateConflict

from conftest import NOW, RecordingSink, minutes_ago


def build_service(db, source, sink):
    factory = db.session_factory
    return AchievementSyncService(
        factory,
        source=source,
        sink=sink,
        award_engine=AwardEngine(factory, source, sink),
        progress_store=ProgressStore(factory),
        identity=IdentityResolver(factory),
        rate_limiter=IntervalRateLimiter(0),
        watermark_store=WatermarkStore(factory),
        timezone_name='UTC',
        initial_lookback=timedelta(hours=24),
    )


@pytest_asyncio.fixture
async def users(db):
    alice = await db.create_user("Alice")
    bob = await db.create_user("Bob")
    return alice, bob


async def test_new_unlock_is_announced_and_upgrades_award(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "w1", "1001", minutes_ago(30))
    source.set_progress("Alice", "1001", ["w1", "p1", "p2"], total=50)

    result = await service.run_cycle(minutes_ago(60), now=NOW)

    assert result.completed
    assert result.new_achievements == 1
    assert result.watermark == NOW
    assert sink.unlocked == [("Alice", "w1")]
    assert sink.tier_changes == [("Alice", "1001", int(AwardTier.BEATEN))]

    progress = await ProgressStore(db.session_factory).get("Alice", "1001")
    assert progress.announced_achievement_ids == ["w1"]
    assert progress.last_award_tier == int(AwardTier.BEATEN)


async def test_rerun_over_same_window_is_idempotent(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "w1", "1001", minutes_ago(30))
    source.add_unlock("Alice", "p1", "1001", minutes_ago(20))
    source.set_progress("Alice", "1001", ["w1", "p1", "p2"], total=50)

    first = await service.run_cycle(minutes_ago(60), now=NOW)
    second = await service.run_cycle(minutes_ago(60), now=NOW)

    assert first.new_achievements == 2
    assert second.new_achievements == 0
    assert len(sink.unlocked) == 2
    assert len(sink.tier_changes) == 1

    award = await db.get_award("Alice", "1001", 6, 2025)
    assert award.award_tier == AwardTier.BEATEN


async def test_unlocks_at_or_before_watermark_are_ignored(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "old", "1001", minutes_ago(120))
    source.add_unlock("Alice", "edge", "1001", minutes_ago(60))
    source.add_unlock("Alice", "new", "1001", minutes_ago(10))

    result = await service.run_cycle(minutes_ago(60), now=NOW)

    assert result.new_achievements == 1
    assert sink.unlocked == [("Alice", "new")]


async def test_award_evaluated_once_per_game_per_user(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    for i, minutes in enumerate((40, 30, 20)):
        source.add_unlock("Alice", f"a{i}", "1001", minutes_ago(minutes))
    source.set_progress("Alice", "1001", ["a0", "a1", "a2"], total=50)

    await service.run_cycle(minutes_ago(60), now=NOW)

    assert source.progress_calls == [("Alice", "1001")]
    assert sink.tier_changes == [("Alice", "1001", int(AwardTier.PARTICIPATION))]


async def test_non_challenge_unlock_is_announced_without_award(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "x1", "9999", minutes_ago(5))

    result = await service.run_cycle(minutes_ago(60), now=NOW)

    assert result.new_achievements == 1
    assert sink.unlocked == [("Alice", "x1")]
    assert source.progress_calls == []
    assert await db.get_award("Alice", "9999", 6, 2025) is None


async def test_shadow_game_is_tracked(db, source, sink, users, monthly_game):
    await db.add_challenge_game(
        game_id="2002", title="Shadow Quest", month=6, year=2025, kind=ChallengeKind.SHADOW,
        total_achievements=10, win_condition_ids=[], progression_ids=["s1"],
    )
    service = build_service(db, source, sink)
    source.add_unlock("Bob", "s1", "2002", minutes_ago(5))
    source.set_progress("Bob", "2002", ["s1"], total=10)

    await service.run_cycle(minutes_ago(60), now=NOW)

    assert sink.tier_changes == [("Bob", "2002", int(AwardTier.BEATEN))]


async def test_transient_failure_holds_watermark(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "a1", "9999", minutes_ago(5))
    source.failing_users.add("bob")

    result = await service.run_cycle(minutes_ago(60), now=NOW)

    assert result.completed
    assert result.transient_failures == ["Bob"]
    assert result.users_processed == 2
    assert result.watermark == minutes_ago(60)
    assert not result.watermark_advanced
    # Other users are still processed
    assert sink.unlocked == [("Alice", "a1")]


async def test_failed_user_window_is_retried_next_cycle(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    store = WatermarkStore(db.session_factory)
    source.add_unlock("Bob", "b1", "9999", minutes_ago(30))
    source.failing_users.add("bob")

    await service.run_scheduled_cycle(now=NOW)
    assert await store.load() == NOW - timedelta(hours=24)
    assert sink.unlocked == []

    source.failing_users.clear()
    later = NOW + timedelta(minutes=15)
    result = await service.run_scheduled_cycle(now=later)

    assert sink.unlocked == [("Bob", "b1")]
    assert result.watermark == later
    assert await store.load() == later


async def test_award_conflict_holds_watermark_until_recorded(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    store = WatermarkStore(db.session_factory)
    source.add_unlock("Alice", "w1", "1001", minutes_ago(30))
    source.set_progress("Alice", "1001", ["w1", "p1", "p2"], total=50)

    check_and_update = service.award_engine.check_and_update
    calls = []

    async def conflict_once(username, game):
        calls.append(username)
        if len(calls) == 1:
            raise ConcurrentUpdateConflict(username, game.game_id, attempts=2)
        return await check_and_update(username, game)

    service.award_engine.check_and_update = conflict_once

    first = await service.run_scheduled_cycle(now=NOW)

    assert first.completed
    assert first.failures == ["Alice"]
    assert not first.watermark_advanced
    assert await store.load() == NOW - timedelta(hours=24)
    assert await db.get_award("Alice", "1001", 6, 2025) is None
    assert not await ProgressStore(db.session_factory).has_announced("Alice", "1001", "w1")

    later = NOW + timedelta(minutes=15)
    second = await service.run_scheduled_cycle(now=later)

    assert second.failures == []
    assert second.new_achievements == 1
    assert await store.load() == later
    award = await db.get_award("Alice", "1001", 6, 2025)
    assert award.award_tier == AwardTier.BEATEN
    assert sink.tier_changes == [("Alice", "1001", int(AwardTier.BEATEN))]


async def test_scheduled_cycle_persists_watermark(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    store = WatermarkStore(db.session_factory)

    result = await service.run_scheduled_cycle(now=NOW)

    assert result.input_watermark == NOW - timedelta(hours=24)
    assert await store.load() == NOW


async def test_stopped_cycle_does_not_advance_watermark(db, source, sink, users, monthly_game):
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "a1", "9999", minutes_ago(5))
    stop_event = asyncio.Event()
    stop_event.set()

    result = await service.run_scheduled_cycle(stop_event=stop_event, now=NOW)

    assert not result.completed
    assert result.users_processed == 0
    assert sink.unlocked == []
    assert await WatermarkStore(db.session_factory).load() is None


async def test_overlapping_scheduled_cycle_is_skipped(db, source, sink, users):
    service = build_service(db, source, sink)
    async with service._cycle_lock:
        assert service.is_running
        assert await service.run_scheduled_cycle(now=NOW) is None


async def test_sink_failure_does_not_block_recording(db, source, users, monthly_game):
    sink = RecordingSink(fail=True)
    service = build_service(db, source, sink)
    source.add_unlock("Alice", "w1", "1001", minutes_ago(30))
    source.set_progress("Alice", "1001", ["w1", "p1", "p2"], total=50)

    result = await service.run_cycle(minutes_ago(60), now=NOW)

    assert result.new_achievements == 1
    assert result.failures == []
    assert await ProgressStore(db.session_factory).has_announced("alice", "1001", "w1")
    award = await db.get_award("Alice", "1001", 6, 2025)
    assert award.award_tier == AwardTier.BEATEN
