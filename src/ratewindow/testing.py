"""Testing utilities for rate-window.

Helpers to give tests a clean counter state.

Example:
    >>> from ratewindow.testing import reset_counter, reset_store
    >>>
    >>> # Reset a single counter
    >>> await reset_counter(store, "user:42")
    >>>
    >>> # Reset every counter under the store prefix (destructive)
    >>> await reset_store(store)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ratewindow.core import CounterStore

logger = logging.getLogger(__name__)


async def reset_counter(store: CounterStore, key: str) -> None:
    """Delete one counter so the next hit starts a new window.

    Args:
        store: An initialized store
        key: Caller key (without prefix)
    """
    if not hasattr(store, "reset"):
        logger.warning(
            "Store %s doesn't support reset(). State may persist.",
            store.__class__.__name__,
        )
        return

    await store.reset(key)
    logger.debug("Counter '%s' reset successfully", store.namespaced_key(key))


async def reset_store(store: CounterStore) -> int:
    """Delete every counter under the store's prefix.

    WARNING: This is destructive and should only be used in tests. Every
    process sharing the prefix loses its counters.

    Returns:
        Number of counters deleted (0 if the store cannot reset).

    Example:
        >>> @pytest.fixture(autouse=True)
        >>> async def clean_counters(store):
        ...     await reset_store(store)
        ...     yield
    """
    if not hasattr(store, "reset_all"):
        logger.warning(
            "Store %s doesn't support reset_all().",
            store.__class__.__name__,
        )
        return 0

    deleted = await store.reset_all()
    logger.info("Store with prefix '%s' reset (%d counters)", store.prefix, deleted)
    return deleted


__all__ = [
    "reset_counter",
    "reset_store",
]
