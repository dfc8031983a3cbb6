"""Observer plumbing for sync notifications.

Callbacks are invoked in registration order (fan-out). A failing callback is
logged and does not prevent the others from running or affect the cycle.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=Callable[..., Any])


class Subscribers(Generic[C]):
    """Ordered, thread-safe list of callbacks for one event kind."""

    def __init__(self, name: str) -> None:
        """Initialize an empty subscriber list.

        Args:
            name: Event name, used in log messages.
        """
        self._name = name
        self._callbacks: list[C] = []
        self._lock = threading.Lock()

    def add(self, callback: C) -> Callable[[], None]:
        """Register a callback.

        Returns:
            A function that removes this registration.
        """
        with self._lock:
            self._callbacks.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return remove

    def emit(self, *args: Any) -> None:
        """Invoke every callback with the given arguments."""
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                logger.exception("%s callback failed", self._name)

    def __len__(self) -> int:
        """Number of registered callbacks."""
        with self._lock:
            return len(self._callbacks)
