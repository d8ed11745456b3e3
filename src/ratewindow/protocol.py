"""Fixed-window counter protocol.

Algorithms for creating, incrementing and peeking a single counter key inside
one optimistic transaction. Every function receives a CounterTransaction bound
to a watched key; conflicts surface as TransactionConflictError and are retried
by the store, never here.

A logical "hit" is a two-step state machine:

    CREATED         SET key amount PX window NX succeeded, nothing else to do
    MUST_INCREMENT  the key already existed, INCRBY + PTTL in one batch and
                    re-arm the expiration if no positive TTL came back
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ratewindow.exceptions import CannotSetExpirationError

if TYPE_CHECKING:
    from ratewindow.core import CounterTransaction

logger = logging.getLogger(__name__)

# TTL sentinels in seconds, same meaning as Redis PTTL -1 / -2
TTL_NO_EXPIRY = -1.0
TTL_MISSING = -2.0


class CounterStep(Enum):
    """Outcome of the create step of a hit."""

    CREATED = "created"
    MUST_INCREMENT = "must_increment"


@dataclass(frozen=True, slots=True)
class CounterReading:
    """Raw result of a protocol run, before it becomes a CounterState.

    Attributes:
        count: Counter value after the step
        ttl: Remaining time-to-live in seconds, or a non-positive sentinel
        step: Which branch of the hit state machine ran (None for peeks)
        repaired: True if the expiration had to be re-armed
    """

    count: int
    ttl: float
    step: CounterStep | None = None
    repaired: bool = False


async def create_if_absent(
    tx: CounterTransaction, key: str, window: float, amount: int
) -> bool:
    """Initialize the counter at ``amount`` with a TTL of ``window`` if absent.

    Returns:
        True if this call created the key, False if it already existed.
    """
    return await tx.set_if_absent(key, amount, window)


async def increment(
    tx: CounterTransaction, key: str, window: float, amount: int
) -> tuple[int, float, bool]:
    """Add ``amount`` to an existing counter and read back its TTL.

    The increment and the TTL query are committed together. A non-positive TTL
    means the key carries no expiration (or the creator's expiration is not
    visible yet); the expiration is then re-armed to ``window``.

    Returns:
        Tuple of (count, ttl, repaired). ``ttl`` is the value observed before
        any repair.

    Raises:
        CannotSetExpirationError: If the key vanished before it could be re-armed
        TransactionConflictError: If the watched key changed before commit
    """
    count, ttl = await tx.increment_with_ttl(key, amount)

    if ttl > 0:
        return count, ttl, False

    if not await tx.expire(key, window):
        raise CannotSetExpirationError(key, operation=tx.operation)

    logger.warning(
        "Counter '%s' had no usable TTL after increment (ttl=%.3fs), expiration re-armed to %.3fs",
        key,
        ttl,
        window,
    )
    return count, ttl, True


async def peek(tx: CounterTransaction, key: str) -> tuple[int, float]:
    """Read the counter and its TTL without modifying either.

    An absent key reads as (0, 0.0).
    """
    count, ttl = await tx.read_with_ttl(key)
    if count is None:
        return 0, 0.0
    return count, ttl


async def get_and_increment(
    tx: CounterTransaction, key: str, window: float, amount: int
) -> CounterReading:
    """Run one hit: create the counter, or fall through to incrementing it."""
    created = await create_if_absent(tx, key, window, amount)
    step = CounterStep.CREATED if created else CounterStep.MUST_INCREMENT

    if step is CounterStep.CREATED:
        return CounterReading(count=amount, ttl=window, step=step)

    count, ttl, repaired = await increment(tx, key, window, amount)
    return CounterReading(count=count, ttl=ttl, step=step, repaired=repaired)


async def read(tx: CounterTransaction, key: str) -> CounterReading:
    """Run one peek and wrap it as a CounterReading."""
    count, ttl = await peek(tx, key)
    return CounterReading(count=count, ttl=ttl)
