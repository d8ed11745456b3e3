"""Core abstractions for distributed fixed-window counters.

This module defines the capability interface the counter protocol runs
against (CounterTransaction) and the store base class that orchestrates
transactions and retries (CounterStore). Concrete engines only provide the
transaction, the liveness probe and connection management.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from ratewindow import protocol
from ratewindow.contrib.prometheus import metrics as prometheus_metrics
from ratewindow.exceptions import (
    RateWindowError,
    RetryExhaustedError,
    StoreNotInitializedError,
)
from ratewindow.keys import build_key
from ratewindow.protocol import CounterReading
from ratewindow.retry import RetryDecision, classify, decide
from ratewindow.schemas import CounterState, StoreOptions

logger = logging.getLogger(__name__)


@dataclass
class StoreMetrics:
    """Observability metrics for a counter store.

    Attributes:
        total_operations: Operations that returned a CounterState
        total_attempts: Transaction attempts, including retried ones
        conflicts: Attempts aborted by a transaction conflict
        retries_exhausted: Operations that ran out of attempts
        expiration_repairs: Counters whose TTL had to be re-armed
        aborted: Operations that failed without being retried
        total_latency_ms: Accumulated latency of successful operations (ms)
        avg_latency_ms: Average latency per successful operation (ms)
        max_latency_ms: Maximum latency recorded (ms)
        last_operation_at: Timestamp of last successful operation
    """

    total_operations: int = 0
    total_attempts: int = 0
    conflicts: int = 0
    retries_exhausted: int = 0
    expiration_repairs: int = 0
    aborted: int = 0
    total_latency_ms: float = 0.0
    avg_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    last_operation_at: float | None = None

    def record_operation(self, latency_ms: float) -> None:
        """Record a successful operation."""
        self.total_operations += 1
        self.total_latency_ms += latency_ms
        self.avg_latency_ms = self.total_latency_ms / self.total_operations
        self.max_latency_ms = max(self.max_latency_ms, latency_ms)
        self.last_operation_at = time.time()

    def record_attempt(self) -> None:
        """Record a transaction attempt."""
        self.total_attempts += 1

    def record_conflict(self) -> None:
        """Record a transaction conflict."""
        self.conflicts += 1

    def record_retry_exhausted(self) -> None:
        """Record an operation that ran out of attempts."""
        self.retries_exhausted += 1

    def record_expiration_repair(self) -> None:
        """Record a re-armed expiration."""
        self.expiration_repairs += 1

    def record_abort(self) -> None:
        """Record an operation that failed without retry."""
        self.aborted += 1


class CounterTransaction(ABC):
    """Commands available to the counter protocol within one watched transaction.

    An instance is bound to a single attempt of a single operation. Engines
    translate their own failures into ratewindow exceptions; in particular a
    commit rejected because the watched key changed must raise
    TransactionConflictError.

    TTLs are seconds. Non-positive values follow the protocol sentinels:
    TTL_NO_EXPIRY when the key has no expiration, TTL_MISSING when it is absent.
    """

    operation: str

    @abstractmethod
    async def set_if_absent(self, key: str, value: int, window: float) -> bool:
        """Set key to value with a TTL of window, only if key does not exist."""

    @abstractmethod
    async def increment_with_ttl(self, key: str, amount: int) -> tuple[int, float]:
        """Atomically add amount to key and read its TTL in the same commit."""

    @abstractmethod
    async def read_with_ttl(self, key: str) -> tuple[int | None, float]:
        """Read the counter (None if absent) and its TTL in the same commit."""

    @abstractmethod
    async def expire(self, key: str, window: float) -> bool:
        """Set key's TTL to window. Returns False if the key no longer exists."""


Step = Callable[[CounterTransaction], Awaitable[CounterReading]]


class CounterStore(ABC):
    """Distributed fixed-window counter store.

    Runs the counter protocol inside a transaction watched on the target key
    and retries it up to ``options.max_retry`` times when the transaction
    conflicts. Holds no counter state itself: everything lives in the backing
    store and expires with it.

    Example usage:
        >>> store = SomeCounterStore(options=StoreOptions(prefix="api", max_retry=3))
        >>> await store.initialize()
        >>>
        >>> state = await store.get_and_increment("user:42", window=60)
        >>> print(state.count, state.expiration)
        >>>
        >>> # Read-only
        >>> state = await store.peek("user:42", window=60)
        >>>
        >>> # Observability
        >>> metrics = store.get_metrics()
        >>> print(f"Conflicts: {metrics.conflicts}")
    """

    engine: str = "abstract"

    def __init__(
        self,
        options: StoreOptions | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            options: Key prefix and attempt budget (defaults: "limiter", 1)
            clock: Source of Unix time in seconds for CounterState timestamps
        """
        self._options = options or StoreOptions()
        self._clock = clock
        self._metrics = StoreMetrics()

    @abstractmethod
    async def initialize(self) -> None:
        """Connect and probe the backing store.

        It is idempotent - can be called multiple times without side effects.

        Raises:
            StoreUnreachableError: If the liveness probe fails
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backing store answered the liveness probe."""

    @abstractmethod
    def transaction(
        self, key: str, operation: str
    ) -> AbstractAsyncContextManager[CounterTransaction]:
        """Open a transaction watching ``key`` for one attempt of ``operation``.

        The context manager must release every resource it holds on exit,
        including when the body raises.
        """

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        """Check if the store was initialized."""

    @classmethod
    @abstractmethod
    def from_config(cls, config: object, **kwargs) -> "CounterStore":
        """Create a store instance from an engine configuration dataclass.

        Raises:
            ValueError: If config does not belong to this engine
        """

    @property
    def options(self) -> StoreOptions:
        """Return the store options."""
        return self._options

    @property
    def prefix(self) -> str:
        """Return the key prefix."""
        return self._options.prefix

    @property
    def max_retry(self) -> int:
        """Return the attempt budget per operation."""
        return self._options.max_retry

    def get_metrics(self) -> StoreMetrics:
        """Return store observability metrics."""
        return self._metrics

    def namespaced_key(self, key: str) -> str:
        """Return the backing-store key for a caller key."""
        return build_key(self._options.prefix, key)

    async def get_and_increment(self, key: str, window: float, amount: int = 1) -> CounterState:
        """Increment the counter for ``key`` and return its state.

        The first call in a window creates the counter with a TTL of
        ``window``; later calls increment it.

        Args:
            key: Caller key (namespaced with the store prefix)
            window: Window length in seconds
            amount: Value added to the counter

        Returns:
            CounterState after the increment.

        Raises:
            ValueError: If key is empty, window <= 0 or amount <= 0
            StoreNotInitializedError: If initialize() was not called
            RetryExhaustedError: If every attempt conflicted
            CannotSetExpirationError: If the TTL repair found the key gone
            MalformedValueError: If the stored value is not an integer
            StoreUnreachableError: If the backing store cannot be reached
        """
        _validate_window(window)
        if amount <= 0:
            raise ValueError(f"amount must be > 0, got: {amount}")

        store_key = self.namespaced_key(key)
        now = self._clock()

        async def step(tx: CounterTransaction) -> CounterReading:
            return await protocol.get_and_increment(tx, store_key, window, amount)

        reading = await self._run("get_and_increment", store_key, step)
        if reading.repaired:
            self._metrics.record_expiration_repair()
            prometheus_metrics.record_expiration_repair()

        state = _state_from_reading(now, window, reading)
        logger.debug(
            "Counter '%s': count=%d, expires in %.3fs (%s)",
            store_key,
            state.count,
            state.ttl,
            reading.step.value if reading.step else "-",
        )
        return state

    async def get(self, key: str, window: float) -> CounterState:
        """Increment the counter for ``key`` by one and return its state."""
        return await self.get_and_increment(key, window, 1)

    async def peek(self, key: str, window: float) -> CounterState:
        """Return the counter state for ``key`` without modifying it.

        An absent key reads as count 0 expiring one window from now; the key
        is not created.

        Raises:
            ValueError: If key is empty or window <= 0
            StoreNotInitializedError: If initialize() was not called
            RetryExhaustedError: If every attempt conflicted
            MalformedValueError: If the stored value is not an integer
            StoreUnreachableError: If the backing store cannot be reached
        """
        _validate_window(window)

        store_key = self.namespaced_key(key)
        now = self._clock()

        async def step(tx: CounterTransaction) -> CounterReading:
            return await protocol.read(tx, store_key)

        reading = await self._run("peek", store_key, step)
        return _state_from_reading(now, window, reading)

    async def _run(self, operation: str, key: str, step: Step) -> CounterReading:
        """Run ``step`` in a watched transaction, retrying on conflicts."""
        if not self.is_initialized:
            raise StoreNotInitializedError()

        start = time.perf_counter()
        attempt = 0

        while True:
            attempt += 1
            self._metrics.record_attempt()

            try:
                async with self.transaction(key, operation) as tx:
                    reading = await step(tx)
            except RateWindowError as e:
                decision = decide(attempt, self._options.max_retry, classify(e))

                if decision is RetryDecision.ABORT:
                    self._metrics.record_abort()
                    logger.debug(
                        "%s on '%s' aborted on attempt %d: %s", operation, key, attempt, e
                    )
                    raise

                self._metrics.record_conflict()
                prometheus_metrics.record_conflict(operation)

                if decision is RetryDecision.RETRY:
                    logger.debug(
                        "%s on '%s' conflicted (attempt %d/%d), retrying",
                        operation,
                        key,
                        attempt,
                        self._options.max_retry,
                    )
                    continue

                self._metrics.record_retry_exhausted()
                prometheus_metrics.record_retry_exhausted(operation)
                logger.warning(
                    "%s on '%s' gave up after %d conflicting attempt(s)",
                    operation,
                    key,
                    attempt,
                )
                raise RetryExhaustedError(key, operation, attempt) from e

            duration = time.perf_counter() - start
            self._metrics.record_operation(duration * 1000)
            prometheus_metrics.record_operation(operation, duration)
            return reading


def _validate_window(window: float) -> None:
    if window <= 0:
        raise ValueError(f"window must be > 0, got: {window}")


def _state_from_reading(now: float, window: float, reading: CounterReading) -> CounterState:
    # No positive TTL observed: the counter was just created or just re-armed
    ttl = reading.ttl if reading.ttl > 0 else window
    return CounterState(
        timestamp=now,
        window=window,
        count=reading.count,
        expiration=now + ttl,
    )
