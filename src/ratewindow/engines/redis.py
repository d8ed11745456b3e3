"""Redis-based distributed fixed-window counter engine.

Counters are plain integer keys with a TTL equal to the window. Every
operation runs inside a WATCH on the counter key:

    WATCH key
    SET key amount PX window NX          -> created, done
    MULTI / INCRBY key amount / PTTL key / EXEC
    PEXPIRE key window                   -> only if PTTL was not positive

EXEC aborts with a WatchError when another client touched the key after
WATCH; the store retries the whole attempt up to its attempt budget.

Requirements:
    pip install redis
"""

import logging
import time
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager, contextmanager

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, ResponseError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ratewindow.core import CounterStore, CounterTransaction
from ratewindow.exceptions import (
    MalformedValueError,
    StoreCommandError,
    StoreNotInitializedError,
    StoreUnreachableError,
    TransactionConflictError,
)
from ratewindow.protocol import TTL_MISSING, TTL_NO_EXPIRY
from ratewindow.schemas import RedisStoreConfig, StoreOptions

logger = logging.getLogger(__name__)

# Fragments of Redis error replies for values INCRBY cannot work with
_MALFORMED_MARKERS = ("not an integer", "WRONGTYPE")


def _to_millis(seconds: float) -> int:
    """Convert a window to a Redis PX/PEXPIRE argument (at least 1 ms)."""
    return max(1, int(round(seconds * 1000)))


def _ttl_seconds(ttl_ms: int | None) -> float:
    """Convert a PTTL reply to seconds, keeping the -1/-2 sentinels."""
    if ttl_ms is None or ttl_ms < -1:
        return TTL_MISSING
    if ttl_ms == -1:
        return TTL_NO_EXPIRY
    return ttl_ms / 1000.0


def _is_pong(reply: object) -> bool:
    # redis-py maps PONG to True; raw connections return the status string
    return reply is True or reply in (b"PONG", "PONG")


@contextmanager
def _translate_errors(key: str, operation: str) -> Iterator[None]:
    """Turn redis-py exceptions into ratewindow exceptions."""
    try:
        yield
    except WatchError as e:
        raise TransactionConflictError(
            f"Key '{key}' changed during {operation}", key=key, operation=operation
        ) from e
    except (RedisConnectionError, RedisTimeoutError, OSError) as e:
        raise StoreUnreachableError(
            f"Cannot reach Redis during {operation} on '{key}': {e}",
            key=key,
            operation=operation,
        ) from e
    except ResponseError as e:
        if any(marker in str(e) for marker in _MALFORMED_MARKERS):
            raise MalformedValueError(key, operation=operation) from e
        raise StoreCommandError(
            f"Redis rejected {operation} on '{key}': {e}", key=key, operation=operation
        ) from e
    except RedisError as e:
        raise StoreCommandError(
            f"Redis error during {operation} on '{key}': {e}", key=key, operation=operation
        ) from e


class RedisCounterTransaction(CounterTransaction):
    """CounterTransaction over a redis-py pipeline that is WATCHing a key.

    While the pipeline is watching, commands run immediately on its
    connection. increment_with_ttl() and read_with_ttl() switch it to MULTI
    and commit with EXEC, which resets the pipeline afterwards.
    """

    def __init__(self, client: Redis, pipe: Pipeline, operation: str) -> None:
        self._client = client
        self._pipe = pipe
        self.operation = operation

    async def set_if_absent(self, key: str, value: int, window: float) -> bool:
        with _translate_errors(key, self.operation):
            created = await self._pipe.set(key, value, px=_to_millis(window), nx=True)
        return bool(created)

    async def increment_with_ttl(self, key: str, amount: int) -> tuple[int, float]:
        with _translate_errors(key, self.operation):
            self._pipe.multi()
            self._pipe.incrby(key, amount)
            self._pipe.pttl(key)
            count, ttl_ms = await self._pipe.execute()
        return int(count), _ttl_seconds(ttl_ms)

    async def read_with_ttl(self, key: str) -> tuple[int | None, float]:
        with _translate_errors(key, self.operation):
            self._pipe.multi()
            self._pipe.get(key)
            self._pipe.pttl(key)
            value, ttl_ms = await self._pipe.execute()

        if value is None:
            return None, _ttl_seconds(ttl_ms)

        try:
            return int(value), _ttl_seconds(ttl_ms)
        except (TypeError, ValueError) as e:
            raise MalformedValueError(key, value, operation=self.operation) from e

    async def expire(self, key: str, window: float) -> bool:
        # The pipeline is no longer watching after EXEC: use the client
        with _translate_errors(key, self.operation):
            ok = await self._client.pexpire(key, _to_millis(window))
        return bool(ok)


class RedisCounterStore(CounterStore):
    """Redis-backed fixed-window counter store.

    Accepts either a ready redis.asyncio client (left open on disconnect) or
    connection parameters, in which case the store builds and owns its own
    connection pool.

    Example:
        >>> from ratewindow.engines.redis import RedisCounterStore
        >>> store = RedisCounterStore(
        ...     url="redis://localhost:6379/0",
        ...     options=StoreOptions(prefix="api", max_retry=3),
        ... )
        >>> await store.initialize()
        >>> state = await store.get_and_increment("user:42", window=60)
        >>> await store.disconnect()
    """

    engine = "redis"

    def __init__(
        self,
        client: Redis | None = None,
        *,
        url: str | None = None,
        options: StoreOptions | None = None,
        db: int = 0,
        password: str | None = None,
        pool_max_size: int = 10,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize Redis counter store.

        Args:
            client: Existing redis.asyncio client to use
            url: Redis connection URL, used when no client is given
            options: Key prefix and attempt budget
            db: Redis database number (0-15)
            password: Optional Redis password
            pool_max_size: Maximum connections in pool
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            clock: Source of Unix time in seconds

        Raises:
            ValueError: If neither client nor url is given
        """
        if client is None and not url:
            raise ValueError("Either client or url must be provided")

        super().__init__(options=options, clock=clock)

        self._url = url
        self._db = db
        self._password = password
        self._pool_max_size = pool_max_size
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout

        self._client = client
        self._owns_client = client is None
        self._pool = None
        self._initialized = False

    async def initialize(self) -> None:
        """Create the connection pool if needed and PING the server.

        This operation is idempotent - can be called multiple times.

        Raises:
            StoreUnreachableError: If Redis does not answer PING
        """
        if self._initialized:
            return

        if self._client is None:
            self._pool = ConnectionPool.from_url(
                self._url,
                db=self._db,
                password=self._password,
                max_connections=self._pool_max_size,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                decode_responses=False,
            )
            self._client = Redis(connection_pool=self._pool)

        try:
            alive = await self.ping()
        except StoreUnreachableError as e:
            logger.error("Failed to initialize Redis counter store (prefix=%s): %s", self.prefix, e)
            await self.disconnect()
            raise

        if not alive:
            await self.disconnect()
            raise StoreUnreachableError("Redis server did not answer PING with PONG")

        self._initialized = True
        logger.info(
            "Redis counter store initialized (prefix=%s, max_retry=%d, url=%s)",
            self.prefix,
            self.max_retry,
            self._url or "<client>",
        )

    async def ping(self) -> bool:
        """Send PING and return True if the server answered PONG.

        Raises:
            StoreNotInitializedError: If there is no client yet
            StoreUnreachableError: If the server cannot be reached
        """
        if self._client is None:
            raise StoreNotInitializedError()

        try:
            reply = await self._client.ping()
        except (RedisError, OSError) as e:
            raise StoreUnreachableError(f"Cannot ping Redis server: {e}", operation="ping") from e

        return _is_pong(reply)

    @asynccontextmanager
    async def transaction(self, key: str, operation: str) -> AsyncIterator[CounterTransaction]:
        """WATCH ``key`` on a fresh pipeline for one attempt of ``operation``.

        Leaving the block resets the pipeline (UNWATCH, connection returned to
        the pool) whether the attempt committed, conflicted or failed.
        """
        if self._client is None:
            raise StoreNotInitializedError()

        async with self._client.pipeline(transaction=True) as pipe:
            with _translate_errors(key, operation):
                await pipe.watch(key)
            yield RedisCounterTransaction(self._client, pipe, operation)

    async def disconnect(self) -> None:
        """Close the connection pool if this store created it."""
        if not self._owns_client:
            self._initialized = False
            return

        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("Closed Redis client for counter store (prefix=%s)", self.prefix)
            except (OSError, RedisError, RuntimeError) as e:
                logger.warning("Error closing Redis client (prefix=%s): %s", self.prefix, e)
            finally:
                self._client = None

        if self._pool is not None:
            try:
                await self._pool.disconnect()
            except (OSError, RedisError, RuntimeError) as e:
                logger.warning("Error closing Redis pool (prefix=%s): %s", self.prefix, e)
            finally:
                self._pool = None

        self._initialized = False

    async def reset(self, key: str) -> None:
        """Delete the counter for ``key`` (for testing)."""
        if not self._initialized or self._client is None:
            raise StoreNotInitializedError()

        store_key = self.namespaced_key(key)
        with _translate_errors(store_key, "reset"):
            await self._client.delete(store_key)
        logger.debug("Reset counter '%s'", store_key)

    async def reset_all(self) -> int:
        """Delete every counter under this store's prefix (for testing).

        WARNING: affects every process sharing the prefix.

        Returns:
            Number of keys deleted.
        """
        if not self._initialized or self._client is None:
            raise StoreNotInitializedError()

        pattern = f"{self.prefix}:*"
        cursor = 0
        deleted_count = 0

        with _translate_errors(pattern, "reset_all"):
            while True:
                cursor, keys = await self._client.scan(cursor, match=pattern, count=1000)
                if keys:
                    deleted_count += await self._client.delete(*keys)
                if cursor == 0:
                    break

        logger.info("Reset %d counters with pattern '%s'", deleted_count, pattern)
        return deleted_count

    @property
    def is_initialized(self) -> bool:
        """Check if the store was initialized."""
        return self._initialized

    @classmethod
    def from_config(
        cls, config: RedisStoreConfig, **kwargs
    ) -> "RedisCounterStore":
        """Create a Redis counter store from configuration.

        Args:
            config: Redis store configuration
            **kwargs: Extra constructor arguments (e.g. clock)

        Raises:
            ValueError: If config is not a RedisStoreConfig

        Example:
            >>> config = RedisStoreConfig(url="redis://localhost:6379/0", max_retry=3)
            >>> store = RedisCounterStore.from_config(config)
            >>> await store.initialize()
        """
        if not isinstance(config, RedisStoreConfig):
            raise ValueError(f"Expected RedisStoreConfig, got {type(config)}")

        return cls(
            url=config.url,
            options=config.options,
            db=config.db,
            password=config.password,
            pool_max_size=config.pool_max_size,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
            **kwargs,
        )
