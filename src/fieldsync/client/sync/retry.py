"""Retry logic and failed-item policy.

This module provides:
- retry_with_backoff: Bounded exponential backoff for a single request
- TRANSIENT_EXCEPTIONS: Errors worth retrying within a request
- is_suspended / blocked_entries: Attempt ceiling for queued operations

The engine never schedules retries of queued items on its own. Items that
failed are re-sent by the next sync() call (while below the attempt ceiling)
or by an explicit retry_failed().
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import TypeVar

from fieldsync.client.api import NetworkError, ServerError
from fieldsync.client.state import QueuedOperation

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration (matches the bootstrap request policy)
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Errors that indicate the request may succeed if sent again
TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    NetworkError,
    ServerError,
)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute a function with exponential backoff retry.

    Args:
        func: Function to execute.
        max_attempts: Total number of attempts (first call included).
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        retryable_exceptions: Tuple of exception types to retry on.
        sleep: Sleep function (injected by tests).

    Returns:
        Result of the function.

    Raises:
        The last exception if all attempts fail, or any non-retryable one.
    """
    backoff = initial_backoff
    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_attempts:
                logger.error(f"All {max_attempts} attempts failed: {e}")
                raise

            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")


def is_suspended(entry: QueuedOperation, max_attempts: int) -> bool:
    """Check if a queue entry reached the attempt ceiling."""
    return entry.attempt_count >= max_attempts


def blocked_entries(
    entries: Iterable[QueuedOperation],
    is_excluded: Callable[[QueuedOperation], bool],
) -> tuple[list[QueuedOperation], list[QueuedOperation]]:
    """Split FIFO entries into sendable and held-back lists.

    Once an entry of an entity is excluded, every later entry of the same
    entity is held back too, so an update never overtakes its create.

    Args:
        entries: Queue entries in FIFO order.
        is_excluded: Predicate for entries that must not be sent.

    Returns:
        Tuple of (sendable, held_back), both in FIFO order.
    """
    sendable: list[QueuedOperation] = []
    held_back: list[QueuedOperation] = []
    blocked: set[tuple[str, str]] = set()

    for entry in entries:
        key = (entry.entity_type.value, entry.entity_id)
        if key in blocked or is_excluded(entry):
            blocked.add(key)
            held_back.append(entry)
        else:
            sendable.append(entry)

    return sendable, held_back
