"""Background sync trigger.

This module provides:
- BackgroundSync: Periodic wake-up that runs SyncEngine.sync()
- BackgroundRun: One entry of the in-memory run log

The trigger calls the engine exactly like a foreground caller, so the
single-flight rule also covers background runs. When a NetworkMonitor is
attached, an offline -> online transition triggers a run as well.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fieldsync.core.config import MIN_BACKGROUND_INTERVAL
from fieldsync.core.timeutil import utc_now

if TYPE_CHECKING:
    from fieldsync.client.network import NetworkMonitor
    from fieldsync.client.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

# Number of runs kept in the log
LOG_SIZE = 50

JOB_ID = "fieldsync_background_sync"


class BackgroundStatus(str, Enum):
    """Whether the platform lets the trigger run."""

    AVAILABLE = "available"
    RESTRICTED = "restricted"
    DENIED = "denied"


class RunResult(str, Enum):
    """Outcome of one background run."""

    SUCCESS = "success"
    FAILED = "failed"
    NO_DATA = "no_data"


@dataclass
class BackgroundRun:
    """One entry of the run log."""

    timestamp: str
    result: RunResult
    message: str


class BackgroundSync:
    """Runs sync cycles on an interval while registered.

    Usage:
        background = BackgroundSync(engine, interval=30 * 60)
        background.register()
        ...
        background.unregister()
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval: float = MIN_BACKGROUND_INTERVAL,
        status_probe: Callable[[], BackgroundStatus] | None = None,
    ) -> None:
        """Initialize the trigger.

        Args:
            engine: Engine whose sync() is called on each run.
            interval: Seconds between runs (raised to the 15 minute minimum).
            status_probe: Reports whether the platform allows background
                work. Defaults to always available.
        """
        if interval < MIN_BACKGROUND_INTERVAL:
            logger.warning(
                "Background interval %.0fs below minimum, using %ds",
                interval,
                MIN_BACKGROUND_INTERVAL,
            )
            interval = MIN_BACKGROUND_INTERVAL

        self._engine = engine
        self._interval = interval
        self._status_probe = status_probe or (lambda: BackgroundStatus.AVAILABLE)
        self._scheduler: BackgroundScheduler | None = None
        self._log: deque[BackgroundRun] = deque(maxlen=LOG_SIZE)
        self._lock = threading.Lock()
        self._unsubscribe_network: Callable[[], None] | None = None
        self._last_run_at: str | None = None
        self._last_result: RunResult | None = None

    # === Status ===

    @property
    def is_registered(self) -> bool:
        """True while the interval job is scheduled."""
        return self._scheduler is not None

    @property
    def interval(self) -> float:
        """Seconds between runs."""
        return self._interval

    @property
    def status(self) -> BackgroundStatus:
        """Platform permission for background work."""
        return self._status_probe()

    @property
    def last_run_at(self) -> str | None:
        """Timestamp of the last run."""
        return self._last_run_at

    @property
    def last_result(self) -> RunResult | None:
        """Outcome of the last run."""
        return self._last_result

    @property
    def log(self) -> list[BackgroundRun]:
        """Recent runs, oldest first."""
        with self._lock:
            return list(self._log)

    # === Registration ===

    def register(self) -> bool:
        """Schedule the interval job.

        Returns:
            True if registered, False if the platform denies background work.
        """
        if self._scheduler is not None:
            return True

        status = self.status
        if status is not BackgroundStatus.AVAILABLE:
            logger.warning("Background sync not available: %s", status.value)
            return False

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self.trigger,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Background sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Background sync registered (every %.0fs)", self._interval)
        return True

    def unregister(self) -> None:
        """Remove the interval job and any network subscription."""
        self.detach_network()
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Background sync unregistered")

    def attach_network(self, monitor: NetworkMonitor) -> None:
        """Run a sync whenever the monitor reports a reconnection."""
        self.detach_network()

        def on_change(online: bool) -> None:
            if not online:
                return
            monitor.clear_was_offline()
            # The engine notices reconnections itself while checking the network
            if self._engine.is_syncing:
                logger.debug("Network restored during a running sync")
                return
            logger.info("Network restored, triggering sync")
            self.trigger()

        self._unsubscribe_network = monitor.subscribe(on_change)

    def detach_network(self) -> None:
        """Stop reacting to network transitions."""
        if self._unsubscribe_network is not None:
            self._unsubscribe_network()
            self._unsubscribe_network = None

    # === Runs ===

    def trigger(self) -> RunResult:
        """Run one sync cycle now (also the scheduled job function).

        Returns:
            success, failed, or no_data when offline or when no report
            moved in either direction.
        """
        try:
            result = self._engine.sync()
        except Exception as e:
            logger.exception("Background sync failed")
            return self._record(RunResult.FAILED, str(e))

        if not result.success:
            message = result.errors[0].message if result.errors else "Sync failed"
            return self._record(RunResult.FAILED, message)
        if not self._engine.network.is_online:
            return self._record(RunResult.NO_DATA, "Offline")
        # Reference data is downloaded on every cycle and does not count
        if result.uploaded.total == 0 and result.downloaded.reports == 0:
            return self._record(RunResult.NO_DATA, "Nothing to sync")
        return self._record(
            RunResult.SUCCESS,
            f"Uploaded {result.uploaded.total}, downloaded {result.downloaded.reports} reports",
        )

    def _record(self, outcome: RunResult, message: str) -> RunResult:
        run = BackgroundRun(timestamp=utc_now(), result=outcome, message=message)
        with self._lock:
            self._log.append(run)
            self._last_run_at = run.timestamp
            self._last_result = outcome
        logger.info("Background sync %s: %s", outcome.value, message)
        return outcome
