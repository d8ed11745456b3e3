"""Engine implementations for counter stores.

Available engines:
- Redis: fixed-window counters coordinated with WATCH/MULTI/EXEC
"""

from __future__ import annotations

from ratewindow.core import CounterStore
from ratewindow.engines.redis import RedisCounterStore, RedisCounterTransaction
from ratewindow.exceptions import ConfigValidationError

# Registry mapping engine names to their store classes
ENGINES: dict[str, type[CounterStore]] = {
    "redis": RedisCounterStore,
}


def create_store(config: object, **kwargs) -> CounterStore:
    """Build an uninitialized store from an engine config dataclass.

    Args:
        config: Engine configuration (e.g. RedisStoreConfig)
        **kwargs: Extra constructor arguments passed to the engine

    Raises:
        ConfigValidationError: If the config names an unknown engine

    Example:
        >>> stores = load_config("rate-window.toml")
        >>> store = create_store(stores["main"])
        >>> await store.initialize()
    """
    engine = getattr(config, "engine", None)
    store_cls = ENGINES.get(engine)
    if store_cls is None:
        raise ConfigValidationError(
            f"Unknown engine '{engine}'",
            field="engine",
            expected=", ".join(ENGINES),
            received=str(engine),
        )
    return store_cls.from_config(config, **kwargs)


__all__ = ["ENGINES", "RedisCounterStore", "RedisCounterTransaction", "create_store"]
