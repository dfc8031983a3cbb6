"""Upload phase of a sync cycle.

This module provides:
- BatchUploader: Sends an UploadBatch and applies per-item outcomes
- BatchNotDeliveredError: The whole batch failed

Per-entity outcome (all queue entries of an entity share it):
| Server result | Queue entries             | Mirror status          |
|---------------|---------------------------|------------------------|
| synced        | deleted                   | synced (row removed    |
|               |                           | for a confirmed delete)|
| failed        | attempt_count + 1         | error                  |
| conflict      | untouched                 | pending                |
| missing       | untouched                 | restored               |

If the request itself fails, every entry is left untouched and every mirror
row gets its previous status back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fieldsync.client.api import (
    APIError,
    AuthenticationError,
    PhotoUploadTarget,
    SyncClient,
    UploadResponse,
)
from fieldsync.client.state import LocalSyncState, QueuedOperation
from fieldsync.client.sync.queue import EntityKey, UploadBatch
from fieldsync.client.sync.retry import TRANSIENT_EXCEPTIONS
from fieldsync.client.sync.types import (
    AUTH_ERROR,
    PHOTO_UPLOAD_FAILED,
    SYNC_ERROR,
    UPLOAD_REJECTED,
    UPLOAD_UNACKNOWLEDGED,
    SyncConflict,
    SyncErrorInfo,
    SyncResult,
)
from fieldsync.core.timeutil import utc_now
from fieldsync.core.types import EntityType, Operation, SyncStatus

logger = logging.getLogger(__name__)

# Sends the binary of a photo to the URL the server handed out
PhotoUploader = Callable[[PhotoUploadTarget], None]

_PreviousStatus = dict[EntityKey, tuple[SyncStatus, str | None]]


class BatchNotDeliveredError(Exception):
    """The server did not process the batch; every entry is left as it was."""

    def __init__(self, error: SyncErrorInfo) -> None:
        super().__init__(error.message)
        self.error = error


class BatchUploader:
    """Sends queued mutations and records what the server made of them."""

    def __init__(
        self,
        client: SyncClient,
        state: LocalSyncState,
        max_attempts: int = 3,
        photo_uploader: PhotoUploader | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            client: HTTP client for server communication.
            state: Local state database.
            max_attempts: Attempt ceiling for rejected entries.
            photo_uploader: Sends photo binaries; without one the targets
                are only reported in SyncResult.photo_uploads.
        """
        self._client = client
        self._state = state
        self._max_attempts = max_attempts
        self._photo_uploader = photo_uploader

    def upload(self, batch: UploadBatch, result: SyncResult) -> list[PhotoUploadTarget]:
        """Send a batch and apply the per-item outcome to the local store.

        Item-level errors, confirmed counts and conflicts are added to result.

        Args:
            batch: Entries to send.
            result: Result of the running cycle.

        Returns:
            Photo binaries the server asked for.

        Raises:
            BatchNotDeliveredError: If the server did not process the batch.
        """
        previous = self._lock_entities(batch)
        try:
            response = self._client.upload(
                batch.items, self._state.get_device_id(), utc_now()
            )
        except AuthenticationError as e:
            self._restore(batch, previous)
            raise BatchNotDeliveredError(SyncErrorInfo(AUTH_ERROR, str(e), retryable=False)) from e
        except APIError as e:
            self._restore(batch, previous)
            logger.warning(f"Upload of {len(batch)} entries failed: {e}")
            raise BatchNotDeliveredError(
                SyncErrorInfo(
                    SYNC_ERROR,
                    f"Upload failed: {e}",
                    retryable=isinstance(e, TRANSIENT_EXCEPTIONS),
                )
            ) from e
        except Exception:
            self._restore(batch, previous)
            raise

        self._apply(batch, response, previous, result)
        return response.pending_photo_uploads

    def upload_photos(self, targets: list[PhotoUploadTarget], result: SyncResult) -> None:
        """Send photo binaries the server asked for.

        A photo whose binary could not be sent is queued again so the next
        cycle asks the server for a fresh upload URL.
        """
        result.photo_uploads.extend(targets)
        if self._photo_uploader is None:
            logger.info("%d photo binaries awaiting upload", len(targets))
            return

        for target in targets:
            try:
                self._photo_uploader(target)
            except Exception as e:
                message = f"Photo upload failed: {e}"
                logger.warning(f"{message} ({target.entity_id})")
                record = self._state.get_entity(EntityType.PHOTO, target.entity_id)
                if record is not None:
                    self._state.enqueue(
                        EntityType.PHOTO, target.entity_id, Operation.UPDATE, record.payload
                    )
                    self._state.set_entity_status(
                        EntityType.PHOTO, target.entity_id, SyncStatus.ERROR, message
                    )
                result.errors.append(
                    SyncErrorInfo(
                        PHOTO_UPLOAD_FAILED,
                        message,
                        retryable=True,
                        entity_type=EntityType.PHOTO.value,
                        entity_id=target.entity_id,
                    )
                )

    # === Internals ===

    def _lock_entities(self, batch: UploadBatch) -> _PreviousStatus:
        """Mark every entity of the batch PROCESSING, remembering its status."""
        previous: _PreviousStatus = {}
        for (entity_type, entity_id), _entries in batch.by_entity():
            record = self._state.get_entity(entity_type, entity_id)
            if record is None:
                continue
            previous[(entity_type, entity_id)] = (record.sync_status, record.last_sync_error)
            self._state.set_entity_status(entity_type, entity_id, SyncStatus.PROCESSING)
        return previous

    def _restore(self, batch: UploadBatch, previous: _PreviousStatus) -> None:
        for key, entries in batch.by_entity():
            if key in previous:
                status, error = previous[key]
                self._release(key, entries, status, error)

    def _release(
        self,
        key: EntityKey,
        entries: list[QueuedOperation],
        status: SyncStatus,
        error: str | None = None,
    ) -> None:
        """Give up the PROCESSING lock of a mirror row.

        Local writes queued while the row was locked win over the outcome of
        this batch: the row takes their payload and stays pending.
        """
        entity_type, entity_id = key
        last_sent = entries[-1].id
        newer = [
            e for e in self._state.list_queued_for_entity(entity_type, entity_id)
            if e.id > last_sent
        ]
        if newer:
            self._state.apply_queued_payload(entity_type, entity_id)
            if status is SyncStatus.SYNCED:
                return
        elif status is SyncStatus.SYNCED and entries[-1].operation is Operation.DELETE:
            self._state.remove_entity(entity_type, entity_id)
            return
        self._state.set_entity_status(entity_type, entity_id, status, error)

    def _apply(
        self,
        batch: UploadBatch,
        response: UploadResponse,
        previous: _PreviousStatus,
        result: SyncResult,
    ) -> None:
        synced = set(response.synced_ids)
        conflicts = {c.entity_id: c for c in response.conflicts}

        for key, entries in batch.by_entity():
            entity_type, entity_id = key

            if entity_id in synced:
                for entry in entries:
                    self._state.mark_synced(entry.id)
                # A held server copy predates what the server just accepted
                self._state.drop_held_copy(entity_type, entity_id)
                self._release(key, entries, SyncStatus.SYNCED)
                result.uploaded.add(entity_type)

            elif entity_id in response.failed:
                message = response.failed[entity_id]
                for entry in entries:
                    self._state.mark_failed(entry.id, message)
                self._release(key, entries, SyncStatus.ERROR, message)
                attempts = entries[0].attempt_count + 1
                logger.warning(
                    "Server rejected %s %s (attempt %d/%d): %s",
                    entity_type.value,
                    entity_id,
                    attempts,
                    self._max_attempts,
                    message,
                )
                result.errors.append(
                    SyncErrorInfo(
                        UPLOAD_REJECTED,
                        message,
                        retryable=attempts < self._max_attempts,
                        entity_type=entity_type.value,
                        entity_id=entity_id,
                    )
                )

            elif entity_id in conflicts:
                server = conflicts[entity_id]
                self._release(
                    key,
                    entries,
                    SyncStatus.PENDING,
                    f"Conflicts with server version of {server.server_updated_at}",
                )
                result.conflicts.append(
                    SyncConflict(
                        entity_type=server.entity_type or entity_type,
                        entity_id=entity_id,
                        local_version=entries[-1].payload,
                        server_version=server.server_version,
                        local_updated_at=server.client_updated_at
                        or entries[-1].client_updated_at,
                        server_updated_at=server.server_updated_at,
                    )
                )

            else:
                status, error = previous.get(key, (SyncStatus.PENDING, None))
                self._release(key, entries, status, error)
                logger.warning(f"Server did not report on {entity_type.value} {entity_id}")
                result.errors.append(
                    SyncErrorInfo(
                        UPLOAD_UNACKNOWLEDGED,
                        "Server did not report a result for this item",
                        retryable=True,
                        entity_type=entity_type.value,
                        entity_id=entity_id,
                    )
                )

        logger.info(
            "Upload finished: %d synced, %d failed, %d conflicts",
            len(synced),
            len(response.failed),
            len(conflicts),
        )
