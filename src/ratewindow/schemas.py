"""
Configuration schemas and result types for counter stores.

This module defines the configuration structures using dataclasses for type safety
and clear documentation, plus the immutable CounterState returned by every
store operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

DEFAULT_PREFIX = "limiter"
DEFAULT_MAX_RETRY = 1


@dataclass(frozen=True, slots=True)
class StoreOptions:
    """Fixed configuration carried by a counter store.

    Attributes:
        prefix: Namespace prepended to every key ("{prefix}:{key}")
        max_retry: Attempt budget per operation under transaction conflicts.
                   Values <= 0 are normalized to 1 (no retry).

    Example:
        >>> StoreOptions(prefix="api", max_retry=3)
    """

    prefix: str = DEFAULT_PREFIX
    max_retry: int = DEFAULT_MAX_RETRY

    def __post_init__(self) -> None:
        """Normalize the attempt budget and reject empty prefixes."""
        if not self.prefix or not self.prefix.strip():
            raise ValueError("prefix cannot be empty")
        if self.max_retry <= 0:
            # frozen dataclass: bypass __setattr__ for normalization
            object.__setattr__(self, "max_retry", DEFAULT_MAX_RETRY)


@dataclass
class RedisStoreConfig:
    """Configuration for the Redis counter store.

    Attributes:
        url: Redis connection URL (supports env var expansion via ${VAR})
             Format: redis://[:password@]host[:port][/database]
        engine: Engine identifier (always "redis")
        db: Redis database number (0-15)
        password: Optional Redis password (can also be in URL)
        pool_max_size: Maximum number of connections in pool
        key_prefix: Prefix for Redis keys to namespace counters
        max_retry: Attempt budget under optimistic-lock conflicts
        socket_timeout: Socket timeout in seconds for Redis operations
        socket_connect_timeout: Connection timeout in seconds
    """

    url: str
    engine: Literal["redis"] = "redis"
    db: int = 0
    password: str | None = None
    pool_max_size: int = 10
    key_prefix: str = DEFAULT_PREFIX
    max_retry: int = DEFAULT_MAX_RETRY
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0

    @property
    def options(self) -> StoreOptions:
        """Return the store options described by this config."""
        return StoreOptions(prefix=self.key_prefix, max_retry=self.max_retry)


# Registry mapping engine names to their config classes
ENGINE_SCHEMAS: dict[str, type] = {
    "redis": RedisStoreConfig,
}


@dataclass(frozen=True, slots=True)
class CounterState:
    """Snapshot of a fixed-window counter.

    Produced fresh by every store call. Deciding whether ``count`` violates a
    rate is left to the caller.

    Attributes:
        timestamp: Unix time (seconds) when the call started
        window: Window length in seconds used for the call
        count: Counter value after the call (0 for a peek on an absent key)
        expiration: Unix time (seconds) when the counter expires

    Example:
        >>> state = await store.get_and_increment("user:42", window=60)
        >>> if state.count > 100:
        ...     retry_after = state.ttl
    """

    timestamp: float
    window: float
    count: int
    expiration: float

    @property
    def ttl(self) -> float:
        """Seconds from ``timestamp`` to ``expiration`` (never negative).

        Derived from this snapshot, not the TTL Redis reported. When no
        positive TTL was observed (a peek on an absent key, a fresh or
        re-armed counter) ``expiration`` is ``timestamp + window``, so this
        returns the full window where the raw store TTL would be 0 or negative.
        """
        return max(0.0, self.expiration - self.timestamp)

    @property
    def reset_at(self) -> int:
        """Unix timestamp (seconds) when the window resets."""
        return int(self.expiration)
