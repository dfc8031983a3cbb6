"""Sync engine coordinating the upload and download phases.

This module provides:
- SyncEngine: Runs sync cycles between the local store and the backend

Cycle:
    1. Check connectivity (offline: nothing to do, cached data stays usable)
    2. Upload queued mutations in one batch, FIFO per entity
    3. Send photo binaries the server asked for
    4. Download checklists, templates and recent reports
    5. Persist last_sync_at / last_error

At most one cycle runs at a time. A call made while a cycle is running
returns immediately with a SYNC_IN_PROGRESS error.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fieldsync.client.api import APIError, AuthenticationError
from fieldsync.client.network import NetworkMonitor
from fieldsync.client.state import StoreError
from fieldsync.client.sync.conflict import ConflictResolver
from fieldsync.client.sync.download import BootstrapDownloader
from fieldsync.client.sync.events import Subscribers
from fieldsync.client.sync.queue import UploadBatch, plan_batch
from fieldsync.client.sync.retry import is_suspended
from fieldsync.client.sync.types import (
    AUTH_ERROR,
    BOOTSTRAP_FAILED,
    STORE_ERROR,
    SYNC_IN_PROGRESS,
    ConflictCallback,
    ErrorCallback,
    ProgressCallback,
    SyncConflict,
    SyncErrorInfo,
    SyncResult,
    SyncStateSnapshot,
)
from fieldsync.client.sync.upload import BatchNotDeliveredError, BatchUploader, PhotoUploader
from fieldsync.core.config import SyncConfig
from fieldsync.core.timeutil import utc_now
from fieldsync.core.types import ConflictResolution, SyncStatus

if TYPE_CHECKING:
    from fieldsync.client.api import SyncClient
    from fieldsync.client.state import LocalSyncState

logger = logging.getLogger(__name__)


class SyncEngine:
    """Runs sync cycles between the local store and the backend.

    Usage:
        engine = SyncEngine(client, state)
        engine.on_progress(lambda message, percent: print(percent, message))
        result = engine.sync()
        if result.has_conflicts:
            engine.resolve(result.conflicts[0].entity_id, "keep_server")
    """

    def __init__(
        self,
        client: SyncClient,
        state: LocalSyncState,
        network: NetworkMonitor | None = None,
        config: SyncConfig | None = None,
        photo_uploader: PhotoUploader | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the sync engine.

        Args:
            client: HTTP client for server communication.
            state: Local state database.
            network: Connectivity monitor (defaults to probing the server
                health endpoint).
            config: Sync tuning (attempt ceiling, retries, conflict policy).
            photo_uploader: Sends photo binaries to their upload URL.
            sleep: Sleep function used between bootstrap retries.
        """
        self._client = client
        self._state = state
        self._config = config or SyncConfig()
        self._network = network or NetworkMonitor(
            client.health_check, self._config.network_check_interval
        )

        self._uploader = BatchUploader(
            client, state, self._config.max_attempts, photo_uploader
        )
        self._downloader = BootstrapDownloader(
            client,
            state,
            max_attempts=self._config.bootstrap_retries,
            initial_backoff=self._config.bootstrap_backoff,
            sleep=sleep,
        )
        self._resolver = ConflictResolver(state, self._config.conflict_policy)

        self._sync_lock = threading.Lock()
        self._is_syncing = False

        self._progress: Subscribers[ProgressCallback] = Subscribers("progress")
        self._errors: Subscribers[ErrorCallback] = Subscribers("error")
        self._conflicts: Subscribers[ConflictCallback] = Subscribers("conflict")

    # === Subscriptions ===

    def on_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        """Subscribe to (message, percent) updates. Returns an unsubscribe function."""
        return self._progress.add(callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        """Subscribe to phase errors. Returns an unsubscribe function."""
        return self._errors.add(callback)

    def on_conflict(self, callback: ConflictCallback) -> Callable[[], None]:
        """Subscribe to conflicts awaiting a decision. Returns an unsubscribe function."""
        return self._conflicts.add(callback)

    # === State ===

    @property
    def is_syncing(self) -> bool:
        """True while a cycle is running."""
        return self._is_syncing

    @property
    def config(self) -> SyncConfig:
        """Engine configuration."""
        return self._config

    @property
    def network(self) -> NetworkMonitor:
        """Connectivity monitor used by the engine."""
        return self._network

    @property
    def conflicts(self) -> list[SyncConflict]:
        """Conflicts awaiting a decision."""
        return self._resolver.conflicts

    def get_sync_state(self) -> SyncStateSnapshot:
        """Read-only view of the sync state."""
        last_error = self._state.get_last_error()
        return SyncStateSnapshot(
            is_online=self._network.is_online,
            is_syncing=self._is_syncing,
            last_sync_at=self._state.get_last_sync_at(),
            pending_uploads=self._state.get_pending_count(),
            pending_downloads=self._state.get_pending_downloads(),
            failed_uploads=self._state.get_failed_count(),
            last_error=SyncErrorInfo.from_dict(last_error) if last_error else None,
        )

    def get_failed_count(self) -> int:
        """Number of queue entries whose last send was rejected."""
        return self._state.get_failed_count()

    def get_local_checklist(self, standard: str) -> dict[str, Any] | None:
        """Cached checklist for a standard (available offline)."""
        return self._state.get_checklist_by_standard(standard)

    def get_local_template(self, inspection_type: str) -> dict[str, Any] | None:
        """Cached report template for an inspection type (available offline)."""
        return self._state.get_template_by_inspection_type(inspection_type)

    # === Cycles ===

    def sync(self) -> SyncResult:
        """Run a full sync cycle (upload, then download).

        Returns:
            SyncResult. success is False when any error was recorded;
            conflicts alone do not make a cycle fail.

        Raises:
            StoreError: If the local database fails. The cycle is aborted.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return self._in_progress_result()

        self._is_syncing = True
        try:
            return self._guarded(self._run_full_cycle)
        finally:
            self._is_syncing = False
            self._sync_lock.release()

    def retry_failed(self) -> SyncResult:
        """Reset and re-send every queue entry whose last send was rejected.

        Only the previously failed entries are uploaded; nothing is
        downloaded.

        Raises:
            StoreError: If the local database fails.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping retry")
            return self._in_progress_result()

        self._is_syncing = True
        try:
            return self._guarded(self._run_retry_cycle)
        finally:
            self._is_syncing = False
            self._sync_lock.release()

    def resolve(self, entity_id: str, resolution: ConflictResolution | str) -> bool:
        """Resolve a conflict awaiting a decision.

        Waits for a running cycle to finish first.

        Returns:
            True if resolved, False if the entity had no unresolved conflict.

        Raises:
            UnsupportedResolutionError: For merge.
            ConflictResolutionError: If the resolution cannot be applied.
        """
        with self._sync_lock:
            return self._resolver.resolve(entity_id, resolution)

    def discard(self, queue_id: int) -> bool:
        """Abandon a queued change for good.

        Once no other change of the entity is queued, a server copy held
        back by an earlier download replaces the mirror row. Without one,
        the row keeps its data and becomes a draft.

        Returns:
            True if the entry existed.
        """
        with self._sync_lock:
            entry = self._state.get_queue_entry(queue_id)
            if entry is None:
                return False
            self._state.mark_synced(queue_id)
            if not self._state.list_queued_for_entity(entry.entity_type, entry.entity_id):
                if not self._state.apply_held_copy(entry.entity_type, entry.entity_id):
                    self._state.set_entity_status(
                        entry.entity_type, entry.entity_id, SyncStatus.DRAFT
                    )
            logger.info(
                "Discarded queued %s of %s %s",
                entry.operation.value,
                entry.entity_type.value,
                entry.entity_id,
            )
            return True

    # === Internals ===

    def _guarded(self, cycle: Callable[[SyncResult], None]) -> SyncResult:
        """Run a cycle body, reporting local store failures before re-raising."""
        start = time.monotonic()
        result = SyncResult(success=False, timestamp=utc_now())
        try:
            cycle(result)
        except StoreError as e:
            logger.exception("Local store failure, aborting sync")
            self._errors.emit(SyncErrorInfo(STORE_ERROR, str(e), retryable=False))
            raise
        result.duration = int((time.monotonic() - start) * 1000)
        return result

    def _run_full_cycle(self, result: SyncResult) -> None:
        if not self._check_connection(result):
            return

        batch = plan_batch(
            self._state.list_pending(),
            exclude=lambda e: is_suspended(e, self._config.max_attempts),
        )
        if batch.held_back:
            logger.info(f"{len(batch.held_back)} queued changes suspended after repeated failures")
        if batch.deferred:
            logger.info(
                f"{len(batch.deferred)} queued changes deferred, id shared by another entity"
            )

        if not self._upload(batch, result):
            self._finish(result, full=False)
            return

        self._download(result)
        self._finish(result, full=True)

    def _run_retry_cycle(self, result: SyncResult) -> None:
        if not self._check_connection(result):
            return

        failed = self._state.list_failed()
        failed_ids = {entry.id for entry in failed}
        for entry in failed:
            self._state.reset_failed(entry.id)
        logger.info(f"Retrying {len(failed_ids)} failed queue entries")

        batch = plan_batch(self._state.list_pending(), exclude=lambda e: e.id not in failed_ids)
        self._upload(batch, result)
        self._finish(result, full=False)

    def _check_connection(self, result: SyncResult) -> bool:
        self._emit_progress("Checking connection...", 5)
        if self._network.check():
            return True
        logger.info("Offline, using cached data")
        result.success = True
        self._emit_progress("Offline - using cached data", 100)
        return False

    def _upload(self, batch: UploadBatch, result: SyncResult) -> bool:
        """Run the upload phase.

        Returns:
            False if the batch could not be delivered and the cycle should stop.
        """
        if not batch:
            return True

        self._emit_progress(f"Uploading {len(batch)} changes...", 20)
        try:
            photos = self._uploader.upload(batch, result)
        except BatchNotDeliveredError as e:
            self._report(result, e.error)
            return False

        if result.conflicts:
            unresolved = self._resolver.ingest(result.conflicts)
            if unresolved:
                self._conflicts.emit(unresolved)

        if photos:
            self._emit_progress("Uploading photos...", 40)
            self._uploader.upload_photos(photos, result)
        return True

    def _download(self, result: SyncResult) -> None:
        self._emit_progress("Downloading checklists...", 55)
        try:
            data = self._downloader.fetch()
        except AuthenticationError as e:
            self._report(result, SyncErrorInfo(AUTH_ERROR, str(e), retryable=False))
            return
        except APIError as e:
            self._report(
                result,
                SyncErrorInfo(BOOTSTRAP_FAILED, f"Download failed: {e}", retryable=True),
            )
            return

        self._downloader.save_checklists(data.checklists, result)
        self._emit_progress("Downloading templates...", 65)
        self._downloader.save_templates(data.templates, result)
        self._emit_progress("Downloading reports...", 75)
        withheld = self._downloader.merge_reports(data.reports, result)
        if withheld:
            logger.info(f"{withheld} server reports withheld because of local changes")
        self._downloader.advance_watermark(data)

    def _finish(self, result: SyncResult, full: bool) -> None:
        """Settle success and persist the outcome of the cycle."""
        self._emit_progress("Finalizing sync...", 95)
        result.success = not result.errors
        if result.success:
            if full:
                self._state.set_last_sync_at(result.timestamp)
            self._state.set_last_error(None)
        else:
            self._state.set_last_error(result.errors[-1].to_dict())

        logger.info(
            "Sync %s: %d uploaded, %d downloaded, %d errors, %d conflicts",
            "succeeded" if result.success else "finished with errors",
            result.uploaded.total,
            result.downloaded.total,
            len(result.errors),
            len(result.conflicts),
        )
        self._emit_progress("Sync complete", 100)

    def _report(self, result: SyncResult, error: SyncErrorInfo) -> None:
        result.errors.append(error)
        self._errors.emit(error)

    def _emit_progress(self, message: str, percent: int) -> None:
        self._progress.emit(message, percent)

    @staticmethod
    def _in_progress_result() -> SyncResult:
        return SyncResult(
            success=False,
            errors=[SyncErrorInfo(SYNC_IN_PROGRESS, "Sync already in progress", retryable=False)],
            timestamp=utc_now(),
        )
