"""Prometheus metrics definitions for rate-window.

This module defines the Prometheus metrics used by rate-window and the
functions stores call to record them. Metrics are created lazily by
enable_metrics(); until then every record_* function is a no-op, and they
stay no-ops when prometheus-client is not installed.

Metrics:
    ratewindow_operations_total: Counter of successful store operations
    ratewindow_operation_duration_seconds: Histogram of operation latency, retries included
    ratewindow_conflicts_total: Counter of attempts aborted by a transaction conflict
    ratewindow_retry_exhausted_total: Counter of operations that ran out of attempts
    ratewindow_expiration_repairs_total: Counter of counters whose TTL was re-armed
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

try:
    from prometheus_client import Counter as _Counter
    from prometheus_client import Histogram as _Histogram

    _PROMETHEUS_CLASSES: dict[str, Any] | None = {
        "Counter": _Counter,
        "Histogram": _Histogram,
    }
except ImportError:
    _PROMETHEUS_CLASSES = None


NAMESPACE = "ratewindow"

# Operations are one or a few Redis round-trips
OPERATION_LATENCY_BUCKETS = (
    0.001,
    0.0025,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
)


class _MetricsState:
    """Encapsulates metrics state to avoid global variables."""

    def __init__(self) -> None:
        self.initialized: bool = False
        self.operations_total: Counter | None = None
        self.operation_duration: Histogram | None = None
        self.conflicts_total: Counter | None = None
        self.retry_exhausted_total: Counter | None = None
        self.expiration_repairs_total: Counter | None = None


_state = _MetricsState()


def is_available() -> bool:
    """Return True if prometheus-client can be imported."""
    return _PROMETHEUS_CLASSES is not None


def is_enabled() -> bool:
    """Return True once metrics have been initialized and are being recorded."""
    return _state.initialized


def _init_metrics() -> None:
    """Initialize Prometheus metrics (lazy, idempotent)."""
    if _state.initialized:
        return

    if _PROMETHEUS_CLASSES is None:
        logger.debug("prometheus-client not installed, metrics disabled")
        return

    counter_cls = _PROMETHEUS_CLASSES["Counter"]
    histogram_cls = _PROMETHEUS_CLASSES["Histogram"]

    _state.operations_total = counter_cls(
        f"{NAMESPACE}_operations_total",
        "Total number of successful counter store operations",
        ["operation"],
    )

    _state.operation_duration = histogram_cls(
        f"{NAMESPACE}_operation_duration_seconds",
        "Counter store operation latency, retries included",
        ["operation"],
        buckets=OPERATION_LATENCY_BUCKETS,
    )

    _state.conflicts_total = counter_cls(
        f"{NAMESPACE}_conflicts_total",
        "Transaction attempts aborted because the watched key changed",
        ["operation"],
    )

    _state.retry_exhausted_total = counter_cls(
        f"{NAMESPACE}_retry_exhausted_total",
        "Operations that failed after using their whole attempt budget",
        ["operation"],
    )

    _state.expiration_repairs_total = counter_cls(
        f"{NAMESPACE}_expiration_repairs_total",
        "Counters found without a TTL and re-armed",
    )

    _state.initialized = True
    logger.info("Prometheus metrics initialized for rate-window")


def record_operation(operation: str, duration_seconds: float) -> None:
    """Record a successful store operation.

    Args:
        operation: Store operation name ("get_and_increment", "peek")
        duration_seconds: Latency including retries
    """
    if not _state.initialized:
        return
    if _state.operations_total is not None:
        _state.operations_total.labels(operation=operation).inc()
    if _state.operation_duration is not None:
        _state.operation_duration.labels(operation=operation).observe(duration_seconds)


def record_conflict(operation: str) -> None:
    """Record an attempt aborted by a transaction conflict."""
    if not _state.initialized:
        return
    if _state.conflicts_total is not None:
        _state.conflicts_total.labels(operation=operation).inc()


def record_retry_exhausted(operation: str) -> None:
    """Record an operation that ran out of attempts."""
    if not _state.initialized:
        return
    if _state.retry_exhausted_total is not None:
        _state.retry_exhausted_total.labels(operation=operation).inc()


def record_expiration_repair() -> None:
    """Record a counter whose TTL had to be re-armed."""
    if not _state.initialized:
        return
    if _state.expiration_repairs_total is not None:
        _state.expiration_repairs_total.inc()
