"""Conflict tracking and resolution.

A conflict is reported by the server when a queued local change was made
against an older version of the entity than the one the server holds.
Nothing is overwritten on detection: the queue entry stays as it is, the
local mirror keeps the local version, and the conflict waits here until it
is resolved (by an operator or by the configured policy).

Resolutions:
| Resolution  | Queue                              | Local mirror          |
|-------------|------------------------------------|-----------------------|
| KEEP_LOCAL  | replaced by one fresh update       | unchanged (pending)   |
| KEEP_SERVER | entries of the entity removed      | server version, synced|
| MERGE       | not supported                      | -                     |

Active conflicts live in memory only. After a restart the queued change is
sent again and the server reports the conflict anew.
"""

from __future__ import annotations

import logging
import threading

from fieldsync.client.state import LocalSyncState
from fieldsync.client.sync.types import (
    ConflictResolutionError,
    SyncConflict,
    UnsupportedResolutionError,
)
from fieldsync.core.timeutil import is_newer, utc_now
from fieldsync.core.types import (
    ConflictPolicy,
    ConflictResolution,
    EntityType,
    Operation,
    SyncStatus,
)

logger = logging.getLogger(__name__)


def choose_resolution(
    policy: ConflictPolicy, conflict: SyncConflict
) -> ConflictResolution | None:
    """Pick the automatic resolution for a conflict.

    Returns:
        The resolution to apply, or None when an operator must decide.
    """
    if policy is ConflictPolicy.KEEP_LOCAL:
        return ConflictResolution.KEEP_LOCAL
    if policy is ConflictPolicy.KEEP_SERVER:
        return ConflictResolution.KEEP_SERVER
    if policy is ConflictPolicy.LAST_WRITER_WINS:
        # Ties go to the server
        if is_newer(conflict.local_updated_at, conflict.server_updated_at):
            return ConflictResolution.KEEP_LOCAL
        return ConflictResolution.KEEP_SERVER
    return None


class ConflictResolver:
    """Holds unresolved conflicts and applies resolutions to the local store."""

    def __init__(
        self,
        state: LocalSyncState,
        policy: ConflictPolicy = ConflictPolicy.MANUAL,
    ) -> None:
        self._state = state
        self._policy = policy
        self._active: dict[str, SyncConflict] = {}
        self._lock = threading.Lock()

    @property
    def policy(self) -> ConflictPolicy:
        """Automatic resolution policy."""
        return self._policy

    @property
    def conflicts(self) -> list[SyncConflict]:
        """Unresolved conflicts, in detection order."""
        with self._lock:
            return list(self._active.values())

    def get(self, entity_id: str) -> SyncConflict | None:
        """Get the unresolved conflict of an entity."""
        with self._lock:
            return self._active.get(entity_id)

    def ingest(self, conflicts: list[SyncConflict]) -> list[SyncConflict]:
        """Record conflicts reported by an upload and apply the policy.

        A conflict for an entity that already has one replaces it.

        Returns:
            Conflicts left for an operator to resolve.
        """
        unresolved: list[SyncConflict] = []
        for conflict in conflicts:
            with self._lock:
                self._active[conflict.entity_id] = conflict

            resolution = choose_resolution(self._policy, conflict)
            if resolution is None:
                logger.warning(
                    "Conflict on %s %s (local %s, server %s)",
                    conflict.entity_type.value,
                    conflict.entity_id,
                    conflict.local_updated_at,
                    conflict.server_updated_at,
                )
                unresolved.append(conflict)
                continue

            try:
                self.resolve(conflict.entity_id, resolution)
            except ConflictResolutionError as e:
                logger.warning(f"Automatic resolution of {conflict.entity_id} failed: {e}")
                unresolved.append(conflict)

        return unresolved

    def resolve(self, entity_id: str, resolution: ConflictResolution | str) -> bool:
        """Apply a resolution to an unresolved conflict.

        Args:
            entity_id: Entity whose conflict to resolve.
            resolution: keep_local, keep_server or merge.

        Returns:
            True if the conflict was resolved, False if there was no
            unresolved conflict for this entity.

        Raises:
            UnsupportedResolutionError: For merge.
            ConflictResolutionError: If the resolution cannot be applied.
            ValueError: If the resolution name is unknown.
        """
        resolution = ConflictResolution(resolution)
        if resolution is ConflictResolution.MERGE:
            raise UnsupportedResolutionError("Merge resolution is not supported")

        conflict = self.get(entity_id)
        if conflict is None:
            logger.debug(f"No unresolved conflict for {entity_id}")
            return False

        if resolution is ConflictResolution.KEEP_LOCAL:
            self._keep_local(conflict)
        else:
            self._keep_server(conflict)

        with self._lock:
            self._active.pop(entity_id, None)
        logger.info(
            "Resolved conflict on %s %s: %s",
            conflict.entity_type.value,
            entity_id,
            resolution.value,
        )
        return True

    def clear(self) -> None:
        """Forget every unresolved conflict."""
        with self._lock:
            self._active.clear()

    def _keep_local(self, conflict: SyncConflict) -> None:
        """Replace the queued changes with one update stamped now.

        The new clientUpdatedAt is later than the server version, so the
        next upload overwrites it.
        """
        entries = self._state.list_queued_for_entity(conflict.entity_type, conflict.entity_id)
        record = self._state.get_entity(conflict.entity_type, conflict.entity_id)

        if record is not None:
            payload = dict(record.payload)
            deleted = record.deleted
        else:
            payload = dict(conflict.local_version)
            deleted = bool(entries) and entries[-1].operation is Operation.DELETE
        payload["updatedAt"] = utc_now()
        operation = Operation.DELETE if deleted else Operation.UPDATE

        self._state.remove_queued_for_entity(conflict.entity_type, conflict.entity_id)
        self._state.enqueue(
            conflict.entity_type,
            conflict.entity_id,
            operation,
            payload,
            update_mirror=False,
        )

    def _keep_server(self, conflict: SyncConflict) -> None:
        """Drop the queued changes and adopt the server version.

        Endpoints may report a conflict without the server version. The
        version is then taken from a held download, or the row is marked
        synced and downloads restart from scratch so the next cycle
        overwrites it.
        """
        entity_type, entity_id = conflict.entity_type, conflict.entity_id
        self._state.remove_queued_for_entity(entity_type, entity_id)

        if conflict.server_version:
            server_version = dict(conflict.server_version)
            server_version.setdefault("id", entity_id)
            self._state.upsert_entity_mirror(entity_type, server_version)
            self._state.drop_held_copy(entity_type, entity_id)
            return

        if self._state.apply_held_copy(entity_type, entity_id):
            return

        logger.info(f"Server version of {entity_id} unknown, fetching it on the next sync")
        self._state.set_entity_status(entity_type, entity_id, SyncStatus.SYNCED)
        if entity_type is EntityType.REPORT:
            self._state.set_watermark(EntityType.REPORT, None)
