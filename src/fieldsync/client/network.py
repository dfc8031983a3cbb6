"""Network status monitoring.

This module provides:
- NetworkMonitor: Tracks connectivity and reports offline -> online transitions

The monitor polls a probe (by default the server health endpoint). Callers
either poll `is_online` / `check()` or subscribe to transitions.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Seconds between connectivity polls
NETWORK_CHECK_INTERVAL = 5.0

ConnectivityCallback = Callable[[bool], None]


class NetworkMonitor:
    """Tracks connectivity transitions.

    Usage:
        monitor = NetworkMonitor(client.health_check)
        monitor.subscribe(lambda online: print("online" if online else "offline"))
        monitor.start()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        check_interval: float = NETWORK_CHECK_INTERVAL,
        initially_online: bool = False,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Returns True when the backend is reachable.
            check_interval: Seconds between polls when started.
            initially_online: Assumed state before the first check.
        """
        self._probe = probe
        self._check_interval = check_interval
        self._online = initially_online
        self._was_offline = False
        self._lock = threading.Lock()
        self._subscribers: list[ConnectivityCallback] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_online(self) -> bool:
        """Last known connectivity."""
        return self._online

    @property
    def was_offline(self) -> bool:
        """True after an offline -> online transition, until cleared."""
        return self._was_offline

    def clear_was_offline(self) -> None:
        """Acknowledge the last reconnection."""
        self._was_offline = False

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register a callback for connectivity changes.

        Callbacks run in registration order with the new state.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def check(self) -> bool:
        """Probe connectivity now and notify subscribers on change.

        Returns:
            True if online.
        """
        try:
            online = bool(self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        self.set_online(online)
        return online

    def set_online(self, online: bool) -> None:
        """Record a connectivity state (from the probe or a platform event)."""
        with self._lock:
            changed = online != self._online
            if changed and online:
                self._was_offline = True
            self._online = online
            subscribers = list(self._subscribers)

        if not changed:
            return

        if online:
            logger.info("Network restored")
        else:
            logger.info("Network lost")

        for callback in subscribers:
            try:
                callback(online)
            except Exception:
                logger.exception("Connectivity subscriber failed")

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("NetworkMonitor already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="NetworkMonitor",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop polling."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._check_interval + 1.0)
            self._thread = None

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.check()
            self._stop_event.wait(self._check_interval)
