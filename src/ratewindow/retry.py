"""Retry policy for optimistic counter transactions.

The policy is a pure function of the attempt number, the attempt budget and
the kind of failure, so it does not depend on any store's transaction API.
"""

from __future__ import annotations

from enum import Enum

from ratewindow.exceptions import (
    CannotSetExpirationError,
    TransactionConflictError,
)


class ErrorKind(Enum):
    """Failure classes returned by a protocol step."""

    CONFLICT = "conflict"  # watched key changed, safe to re-run
    STRUCTURAL = "structural"  # negative TTL and the repair command failed
    FATAL = "fatal"  # connectivity, malformed values, anything else


class RetryDecision(Enum):
    """What the orchestrator does after a failed attempt."""

    RETRY = "retry"
    EXHAUSTED = "exhausted"
    ABORT = "abort"


def classify(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a protocol step to its ErrorKind."""
    if isinstance(exc, TransactionConflictError):
        return ErrorKind.CONFLICT
    if isinstance(exc, CannotSetExpirationError):
        return ErrorKind.STRUCTURAL
    return ErrorKind.FATAL


def decide(attempt: int, max_attempts: int, kind: ErrorKind) -> RetryDecision:
    """Decide whether a failed attempt should be re-run.

    Args:
        attempt: 1-based number of the attempt that just failed
        max_attempts: Attempt budget for the operation
        kind: Failure class of the attempt

    Returns:
        RETRY if the attempt conflicted and budget remains, EXHAUSTED if it
        conflicted on the last allowed attempt, ABORT for any other failure.

    Example:
        >>> decide(1, 3, ErrorKind.CONFLICT)
        <RetryDecision.RETRY: 'retry'>
        >>> decide(3, 3, ErrorKind.CONFLICT)
        <RetryDecision.EXHAUSTED: 'exhausted'>
        >>> decide(1, 3, ErrorKind.STRUCTURAL)
        <RetryDecision.ABORT: 'abort'>
    """
    if kind is not ErrorKind.CONFLICT:
        return RetryDecision.ABORT
    if attempt < max_attempts:
        return RetryDecision.RETRY
    return RetryDecision.EXHAUSTED

