"""Username identity resolution."""

from sqlalchemy import update

from achievement_bot.database.models import User
from achievement_bot.services.identity import IdentityResolver


async def rename(db, key, username):
    async with db.transaction() as session:
        await session.execute(update(User).where(User.username_key == key).values(username=username))


async def test_resolve_is_case_insensitive(db):
    await db.create_user("PlayerOne")
    resolver = IdentityResolver(db.session_factory)

    assert await resolver.resolve("playerone") == "PlayerOne"
    assert await resolver.resolve("  PLAYERONE ") == "PlayerOne"
    assert await resolver.resolve("PlayerOne") == "PlayerOne"


async def test_unknown_and_blank_resolve_to_none(db):
    resolver = IdentityResolver(db.session_factory)
    assert await resolver.resolve("nobody") is None
    assert await resolver.resolve("   ") is None
    assert await resolver.resolve(None) is None


async def test_late_registration_resolves_immediately(db):
    resolver = IdentityResolver(db.session_factory)
    assert await resolver.resolve("bob") is None

    await db.create_user("Bob")

    assert await resolver.resolve("Bob") == "Bob"


async def test_late_registration_resolves_in_batch(db):
    resolver = IdentityResolver(db.session_factory)
    assert await resolver.resolve_many(["carol"]) == {"carol": None}

    await db.create_user("Carol")

    assert await resolver.resolve_many(["carol"]) == {"carol": "Carol"}


async def test_cached_name_until_invalidated(db):
    await db.create_user("LateComer")
    resolver = IdentityResolver(db.session_factory)
    assert await resolver.resolve("latecomer") == "LateComer"

    await rename(db, "latecomer", "Latecomer")
    assert await resolver.resolve("latecomer") == "LateComer"

    resolver.invalidate("LATECOMER")
    assert await resolver.resolve("latecomer") == "Latecomer"


async def test_expired_entries_are_reloaded(db):
    await db.create_user("LateComer")
    resolver = IdentityResolver(db.session_factory, cache_ttl=0)
    assert await resolver.resolve("latecomer") == "LateComer"

    await rename(db, "latecomer", "Latecomer")

    assert await resolver.resolve("latecomer") == "Latecomer"


async def test_resolve_many(db):
    await db.create_user("Alice")
    await db.create_user("Bob")
    resolver = IdentityResolver(db.session_factory)
    await resolver.resolve("alice")

    resolved = await resolver.resolve_many(["ALICE", "alice", "bob", "ghost", None])

    assert resolved == {"ALICE": "Alice", "alice": "Alice", "bob": "Bob", "ghost": None}


async def test_invalidate_all(db):
    await db.create_user("A")
    await db.create_user("B")
    resolver = IdentityResolver(db.session_factory)
    await resolver.resolve("a")
    await resolver.resolve("b")
    await rename(db, "a", "a")

    resolver.invalidate()

    assert await resolver.resolve("a") == "a"
    assert await resolver.resolve("b") == "B"
