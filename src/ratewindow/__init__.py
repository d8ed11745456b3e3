"""rate-window: distributed fixed-window counters on Redis.

Many processes share one counter per rate-limit key without central
coordination. The first hit in a window creates the counter with a TTL equal
to the window, later hits increment it, and Redis drops the key when the
window ends. Creation, increment and expiration repair run inside an
optimistic Redis transaction (WATCH/MULTI/EXEC) with a bounded retry loop.

Features:
- Race-safe create-or-increment on a single key
- Read-only peek that never creates or extends a counter
- TTL repair for counters left without an expiration
- Explicit, immutable store options (prefix, attempt budget)
- TOML configuration with env var expansion
- In-process metrics and optional Prometheus export

Basic example:
    >>> from ratewindow import RedisCounterStore, StoreOptions
    >>>
    >>> store = RedisCounterStore(
    ...     url="redis://localhost:6379/0",
    ...     options=StoreOptions(prefix="api", max_retry=3),
    ... )
    >>> await store.initialize()
    >>>
    >>> state = await store.get_and_increment("user:42", window=60)
    >>> if state.count > 100:
    ...     retry_after = state.ttl
    >>>
    >>> # Inspect without counting a hit
    >>> state = await store.peek("user:42", window=60)

Configuration file example:
    >>> from ratewindow import create_store, load_config
    >>>
    >>> configs = load_config("rate-window.toml")
    >>> store = create_store(configs["main"])
    >>> await store.initialize()
"""

from ratewindow.config import load_config
from ratewindow.core import CounterStore, CounterTransaction, StoreMetrics
from ratewindow.engines import RedisCounterStore, create_store
from ratewindow.exceptions import (
    CannotSetExpirationError,
    ConfigValidationError,
    MalformedValueError,
    RateWindowError,
    RetryExhaustedError,
    StoreCommandError,
    StoreNotInitializedError,
    StoreUnreachableError,
    TransactionConflictError,
)
from ratewindow.keys import build_key, combine_identifiers, hash_identifier
from ratewindow.protocol import CounterReading, CounterStep
from ratewindow.retry import ErrorKind, RetryDecision
from ratewindow.schemas import CounterState, RedisStoreConfig, StoreOptions

# Testing utilities
from ratewindow import testing

__version__ = "1.0.0"

__all__ = [
    # Version
    "__version__",
    # Core abstractions
    "CounterStore",
    "CounterTransaction",
    "StoreMetrics",
    # Engines
    "RedisCounterStore",
    "create_store",
    # Protocol and retry policy
    "CounterReading",
    "CounterStep",
    "ErrorKind",
    "RetryDecision",
    # Data types
    "CounterState",
    "StoreOptions",
    "RedisStoreConfig",
    # Configuration
    "load_config",
    # Key helpers
    "build_key",
    "hash_identifier",
    "combine_identifiers",
    # Testing utilities
    "testing",
    # Exceptions
    "RateWindowError",
    "StoreNotInitializedError",
    "StoreUnreachableError",
    "StoreCommandError",
    "TransactionConflictError",
    "RetryExhaustedError",
    "CannotSetExpirationError",
    "MalformedValueError",
    "ConfigValidationError",
]
