"""Global test configuration and fixtures for rate-window.

Unit tests run against FakeRedis, an in-process stand-in for a
redis.asyncio client that reproduces what the Redis engine relies on:
WATCH/MULTI/EXEC with per-key versions, SET NX PX, INCRBY, PTTL, PEXPIRE,
lazy key expiry on a controllable clock, and injected conflicts.
"""

from __future__ import annotations

import asyncio
import os

import pytest
from redis.exceptions import ResponseError, WatchError

from ratewindow.engines.redis import RedisCounterStore
from ratewindow.schemas import StoreOptions

START_TIME = 1_700_000_000.0


# =============================================================================
# REDIS TEST DOUBLE
# =============================================================================


class FakePipeline:
    """Subset of redis.asyncio.client.Pipeline used by the Redis engine."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._watched: dict[str, int] = {}
        self._commands: list[tuple[str, tuple]] = []
        self._in_multi = False
        self.reset_calls = 0

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.reset()

    async def watch(self, *keys: str) -> bool:
        await asyncio.sleep(0)
        self._redis.watch_calls += 1
        for key in keys:
            self._watched[key] = self._redis.version(key)
        if self._redis.conflicts_on_watch > 0:
            # Another client writes the watched keys right after WATCH
            self._redis.conflicts_on_watch -= 1
            for key in keys:
                self._redis.touch(key)
        return True

    async def set(self, key: str, value, px: int | None = None, nx: bool = False):
        # Only used in immediate (watching) mode by the engine
        return self._redis.do_set(key, value, px=px, nx=nx)

    def multi(self) -> None:
        self._in_multi = True

    def incrby(self, key: str, amount: int) -> FakePipeline:
        self._commands.append(("incrby", (key, amount)))
        return self

    def pttl(self, key: str) -> FakePipeline:
        self._commands.append(("pttl", (key,)))
        return self

    def get(self, key: str) -> FakePipeline:
        self._commands.append(("get", (key,)))
        return self

    async def execute(self) -> list:
        await asyncio.sleep(0)
        self._redis.exec_calls += 1
        try:
            if any(self._redis.version(k) != v for k, v in self._watched.items()):
                raise WatchError("Watched variable changed.")
            results = []
            for name, args in self._commands:
                results.append(getattr(self._redis, f"do_{name}")(*args))
            return results
        finally:
            self._clear()

    async def reset(self) -> None:
        # UNWATCH and give the connection back
        self.reset_calls += 1
        self._clear()

    def _clear(self) -> None:
        self._watched = {}
        self._commands = []
        self._in_multi = False


class FakeRedis:
    """In-process Redis double with a manual clock (seconds)."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now
        self._data: dict[str, bytes] = {}
        self._expires: dict[str, float] = {}
        self._versions: dict[str, int] = {}
        self.watch_calls = 0
        self.exec_calls = 0
        self.conflicts_on_watch = 0
        self.closed = False
        self.pipelines: list[FakePipeline] = []

    # -- test controls --------------------------------------------------------

    def clock(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def version(self, key: str) -> int:
        return self._versions.get(key, 0)

    def touch(self, key: str) -> None:
        self._versions[key] = self.version(key) + 1

    def set_raw(self, key: str, value: bytes, ttl: float | None = None) -> None:
        self._data[key] = value
        self._expires.pop(key, None)
        if ttl is not None:
            self._expires[key] = self.now + ttl
        self.touch(key)

    def exists(self, key: str) -> bool:
        self._purge(key)
        return key in self._data

    def _purge(self, key: str) -> None:
        expire_at = self._expires.get(key)
        if expire_at is not None and expire_at <= self.now:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    # -- commands -------------------------------------------------------------

    def do_set(self, key: str, value, px: int | None = None, nx: bool = False):
        self._purge(key)
        if nx and key in self._data:
            return None
        self._data[key] = str(value).encode()
        self._expires.pop(key, None)
        if px is not None:
            self._expires[key] = self.now + px / 1000.0
        self.touch(key)
        return True

    def do_incrby(self, key: str, amount: int) -> int:
        self._purge(key)
        raw = self._data.get(key, b"0")
        try:
            value = int(raw) + amount
        except ValueError as e:
            raise ResponseError("value is not an integer or out of range") from e
        self._data[key] = str(value).encode()
        self.touch(key)
        return value

    def do_pttl(self, key: str) -> int:
        self._purge(key)
        if key not in self._data:
            return -2
        expire_at = self._expires.get(key)
        if expire_at is None:
            return -1
        return int(round((expire_at - self.now) * 1000))

    def do_get(self, key: str) -> bytes | None:
        self._purge(key)
        return self._data.get(key)

    # -- redis.asyncio.Redis API ---------------------------------------------

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        pipe = FakePipeline(self)
        self.pipelines.append(pipe)
        return pipe

    async def ping(self) -> bool:
        return True

    async def pexpire(self, key: str, ms: int) -> bool:
        self._purge(key)
        if key not in self._data:
            return False
        self._expires[key] = self.now + ms / 1000.0
        self.touch(key)
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            self._purge(key)
            if key in self._data:
                del self._data[key]
                self._expires.pop(key, None)
                self.touch(key)
                deleted += 1
        return deleted

    async def scan(self, cursor: int = 0, match: str | None = None, count: int | None = None):
        prefix = match[:-1] if match and match.endswith("*") else (match or "")
        keys = [k for k in list(self._data) if k.startswith(prefix) and self.exists(k)]
        return 0, keys

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Fresh Redis double per test."""
    return FakeRedis()


@pytest.fixture
def make_store(fake_redis: FakeRedis):
    """Factory for initialized RedisCounterStore instances sharing fake_redis."""

    async def factory(prefix: str = "limiter", max_retry: int = 1) -> RedisCounterStore:
        store = RedisCounterStore(
            fake_redis,
            options=StoreOptions(prefix=prefix, max_retry=max_retry),
            clock=fake_redis.clock,
        )
        await store.initialize()
        return store

    return factory


@pytest.fixture
async def store(make_store) -> RedisCounterStore:
    """Initialized store with default options (prefix "limiter", no retry)."""
    return await make_store()


@pytest.fixture
def redis_url() -> str:
    """Redis URL for integration tests.

    Reads from REDIS_URL environment variable, with fallback to localhost.
    Supports REDIS_PASSWORD for authenticated connections.
    """
    url = os.environ.get("REDIS_URL", "")
    if url:
        return url

    password = os.getenv("REDIS_PASSWORD", "").strip()
    host = os.getenv("REDIS_HOST", "localhost")
    port = os.getenv("REDIS_PORT", "6379")
    db = os.getenv("REDIS_DB", "0")

    if password:
        return f"redis://:{password}@{host}:{port}/{db}"
    return f"redis://{host}:{port}/{db}"
