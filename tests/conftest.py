"""
Shared fixtures.

Async code is driven with asyncio.run() from plain synchronous tests.
Storage fixtures are parametrized so every storage test runs against
both the in-memory fake and SQLite.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from finledger.config import get_settings
from finledger.orchestrator import create_app_components
from finledger.services.cache import MemoryKeyValueCache
from finledger.services.storage import MemoryObjectStorage, SQLiteObjectStorage


class MutableClock:
    """A clock tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch, tmp_path):
    """Cheap password hashing and no stray files outside tmp_path."""
    monkeypatch.setenv("FINLEDGER_SECURITY_HASH_ROUNDS", "1000")
    monkeypatch.setenv("FINLEDGER_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("FINLEDGER_SESSION_CACHE_DIR", str(tmp_path / "cache"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return MutableClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """An initialized, empty store of each implementation."""
    if request.param == "memory":
        store = MemoryObjectStorage()
    else:
        store = SQLiteObjectStorage("sqlite:///:memory:")
    asyncio.run(store.init())
    yield store
    asyncio.run(store.close())


@pytest.fixture
def cache():
    return MemoryKeyValueCache()


@pytest.fixture
def app(clock, cache):
    """Fully wired components over an in-memory store, already started."""
    components = create_app_components(
        storage=MemoryObjectStorage(),
        cache=cache,
        clock=clock,
    )
    asyncio.run(components.start())
    return components


@pytest.fixture
def sqlite_app(clock, cache):
    """Same as app, but over SQLite."""
    components = create_app_components(
        storage=SQLiteObjectStorage("sqlite:///:memory:"),
        cache=cache,
        clock=clock,
    )
    asyncio.run(components.start())
    yield components
    asyncio.run(components.shutdown())


async def sign_in(components, username: str = "alice", password: str = "Password1!"):
    """Register and log in a user; returns the public user."""
    await components.identity.register({
        "username": username,
        "password": password,
        "email": f"{username}@example.com",
    })
    result = await components.identity.login(username, password)
    return result.user


async def category_named(components, name: str):
    for category in await components.categories.list_categories():
        if category.name == name:
            return category
    raise LookupError(name)
