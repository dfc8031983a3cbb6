"""Local state management for the sync client.

This module provides:
- LocalSyncState: SQLite-backed durable queue, entity mirror and sync state
- QueuedOperation: One pending local mutation
- EntityRecord: A mirrored entity row
- StoreError: Raised on local database failures

Architecture:
    The sync queue is append-only. A row changes in place only to bump
    attempt_count / last_error, and is deleted once the server confirmed the
    entity or the operator explicitly abandoned it.

    Mirror rows hold the latest known snapshot of each entity with its
    sync_status. PROCESSING is a lock held for one sync cycle; rows left in
    that state by a crash are released back to PENDING on open.

    A downloaded server copy that would overwrite local work is kept in
    held_downloads instead, and applied once the local change is settled.
"""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fieldsync.core.timeutil import utc_now
from fieldsync.core.types import EntityType, Operation, SyncStatus

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Local database read or write failed."""


@dataclass
class QueuedOperation:
    """One pending local mutation.

    Attributes:
        id: Monotonically increasing queue id (FIFO order).
        entity_type: Kind of entity.
        entity_id: Client-generated entity id.
        operation: create, update or delete.
        payload: Entity snapshot at enqueue time.
        attempt_count: Number of server rejections so far.
        last_error: Last rejection message (None when not failed).
        created_at: Enqueue timestamp (ISO-8601).
    """

    id: int
    entity_type: EntityType
    entity_id: str
    operation: Operation
    payload: dict[str, Any]
    attempt_count: int
    last_error: str | None
    created_at: str

    @property
    def is_failed(self) -> bool:
        """Check if the last send was rejected."""
        return self.last_error is not None

    @property
    def client_updated_at(self) -> str:
        """Timestamp the server compares against for conflict detection."""
        return str(self.payload.get("updatedAt") or self.created_at)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> QueuedOperation:
        """Create QueuedOperation from database row."""
        return cls(
            id=row["id"],
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            operation=Operation(row["operation"]),
            payload=json.loads(row["payload_json"]),
            attempt_count=row["attempt_count"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )


@dataclass
class EntityRecord:
    """A mirrored entity row.

    Attributes:
        entity_type: Kind of entity.
        entity_id: Entity id.
        payload: Latest known snapshot.
        sync_status: Where the row is in the sync lifecycle.
        updated_at: Entity modification timestamp.
        synced_at: When the server last confirmed this row.
        last_sync_error: Last rejection message.
        deleted: Local delete waiting for confirmation.
    """

    entity_type: EntityType
    entity_id: str
    payload: dict[str, Any]
    sync_status: SyncStatus
    updated_at: str | None
    synced_at: str | None
    last_sync_error: str | None
    deleted: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> EntityRecord:
        """Create EntityRecord from database row."""
        return cls(
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            payload=json.loads(row["payload_json"]),
            sync_status=SyncStatus(row["sync_status"]),
            updated_at=row["updated_at"],
            synced_at=row["synced_at"],
            last_sync_error=row["last_sync_error"],
            deleted=bool(row["deleted"]),
        )


class LocalSyncState:
    """SQLite-based durable queue and local mirror for the sync client."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests).
        """
        self._db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self._db_path, Path):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        try:
            self._conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode, explicit transactions
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open local database {db_path}: {e}") from e

        released = self.release_processing()
        if released:
            logger.info("Released %d entities left in processing state", released)

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_sync_queue_entity
                ON sync_queue (entity_type, entity_id);

            CREATE TABLE IF NOT EXISTS entities (
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                sync_status TEXT NOT NULL,
                updated_at TEXT,
                synced_at TEXT,
                last_sync_error TEXT,
                deleted INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (entity_type, entity_id)
            );

            -- Server copies kept out of the mirror while local changes are queued
            CREATE TABLE IF NOT EXISTS held_downloads (
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                held_at TEXT NOT NULL,
                PRIMARY KEY (entity_type, entity_id)
            );

            -- Download-only reference data
            CREATE TABLE IF NOT EXISTS checklists (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                version TEXT NOT NULL,
                category TEXT,
                standard TEXT,
                definition_json TEXT NOT NULL,
                downloaded_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS templates (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                inspection_type TEXT,
                definition_json TEXT NOT NULL,
                is_default INTEGER NOT NULL DEFAULT 0,
                downloaded_at TEXT NOT NULL
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically, mapping sqlite errors to StoreError."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            try:
                row: sqlite3.Row | None = self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(str(e)) from e
        return row

    # === Queue operations ===

    def enqueue(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        operation: Operation | str,
        payload: dict[str, Any],
        *,
        update_mirror: bool = True,
    ) -> int:
        """Append a local mutation to the queue and mark the mirror row pending.

        A mirror row currently PROCESSING is left untouched; the engine picks
        up the newest queued payload when it releases the row.

        Args:
            entity_type: Kind of entity.
            entity_id: Client-generated entity id.
            operation: create, update or delete.
            payload: Entity snapshot.
            update_mirror: Write the payload to the mirror row. When False,
                only the status of an existing row moves to PENDING.

        Returns:
            The new queue id.

        Raises:
            ValueError: If entity_type or operation is unknown.
        """
        entity_type = EntityType(entity_type)
        operation = Operation(operation)
        now = utc_now()

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (
                    entity_type, entity_id, operation, payload_json, created_at, attempt_count
                ) VALUES (?, ?, ?, ?, ?, 0)
                """,
                (entity_type.value, entity_id, operation.value, json.dumps(payload), now),
            )
            queue_id = int(cursor.lastrowid or 0)

            row = conn.execute(
                "SELECT sync_status FROM entities WHERE entity_type = ? AND entity_id = ?",
                (entity_type.value, entity_id),
            ).fetchone()
            processing = row is not None and row["sync_status"] == SyncStatus.PROCESSING.value
            if not processing and update_mirror:
                self._write_mirror(
                    conn,
                    entity_type,
                    entity_id,
                    payload,
                    SyncStatus.PENDING,
                    deleted=operation is Operation.DELETE,
                )
            elif not processing:
                conn.execute(
                    "UPDATE entities SET sync_status = ? WHERE entity_type = ? AND entity_id = ?",
                    (SyncStatus.PENDING.value, entity_type.value, entity_id),
                )

        logger.debug(
            "Queued %s %s %s (queue id %d)", operation.value, entity_type.value, entity_id, queue_id
        )
        return queue_id

    def list_pending(self) -> list[QueuedOperation]:
        """List all queue entries in FIFO order."""
        rows = self._fetchall("SELECT * FROM sync_queue ORDER BY id")
        return [QueuedOperation.from_row(row) for row in rows]

    def list_failed(self) -> list[QueuedOperation]:
        """List queue entries whose last send was rejected, in FIFO order."""
        rows = self._fetchall(
            "SELECT * FROM sync_queue WHERE last_error IS NOT NULL ORDER BY id"
        )
        return [QueuedOperation.from_row(row) for row in rows]

    def get_queue_entry(self, queue_id: int) -> QueuedOperation | None:
        """Get a queue entry by id."""
        row = self._fetchone("SELECT * FROM sync_queue WHERE id = ?", (queue_id,))
        return QueuedOperation.from_row(row) if row else None

    def list_queued_for_entity(
        self, entity_type: EntityType | str, entity_id: str
    ) -> list[QueuedOperation]:
        """List queue entries of one entity in FIFO order."""
        rows = self._fetchall(
            "SELECT * FROM sync_queue WHERE entity_type = ? AND entity_id = ? ORDER BY id",
            (EntityType(entity_type).value, entity_id),
        )
        return [QueuedOperation.from_row(row) for row in rows]

    def mark_synced(self, queue_id: int) -> None:
        """Delete a queue entry the server confirmed."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (queue_id,))

    def mark_failed(self, queue_id: int, error: str) -> None:
        """Record a server rejection for a queue entry."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE sync_queue
                SET attempt_count = attempt_count + 1, last_error = ?
                WHERE id = ?
                """,
                (error, queue_id),
            )

    def reset_failed(self, queue_id: int) -> None:
        """Clear attempt_count and last_error of a queue entry."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE sync_queue SET attempt_count = 0, last_error = NULL WHERE id = ?",
                (queue_id,),
            )

    def remove_queued_for_entity(self, entity_type: EntityType | str, entity_id: str) -> int:
        """Delete every queue entry of one entity.

        Returns:
            Number of entries removed.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            )
            return cursor.rowcount

    def get_failed_count(self) -> int:
        """Number of queue entries whose last send was rejected."""
        row = self._fetchone(
            "SELECT COUNT(*) AS count FROM sync_queue WHERE last_error IS NOT NULL"
        )
        return int(row["count"]) if row else 0

    def get_pending_count(self) -> int:
        """Number of queue entries (pending uploads)."""
        row = self._fetchone("SELECT COUNT(*) AS count FROM sync_queue")
        return int(row["count"]) if row else 0

    # === Entity mirror operations ===

    def _write_mirror(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        entity_id: str,
        payload: dict[str, Any],
        status: SyncStatus,
        *,
        deleted: bool = False,
    ) -> None:
        synced_at = utc_now() if status is SyncStatus.SYNCED else None
        conn.execute(
            """
            INSERT INTO entities (
                entity_type, entity_id, payload_json, sync_status, updated_at,
                synced_at, last_sync_error, deleted
            ) VALUES (?, ?, ?, ?, ?, ?, NULL, ?)
            ON CONFLICT (entity_type, entity_id) DO UPDATE SET
                payload_json = excluded.payload_json,
                sync_status = excluded.sync_status,
                updated_at = excluded.updated_at,
                synced_at = COALESCE(excluded.synced_at, entities.synced_at),
                last_sync_error = NULL,
                deleted = excluded.deleted
            """,
            (
                entity_type.value,
                entity_id,
                json.dumps(payload),
                status.value,
                payload.get("updatedAt"),
                synced_at,
                int(deleted),
            ),
        )

    def upsert_entity_mirror(
        self,
        entity_type: EntityType | str,
        entity: dict[str, Any],
        status: SyncStatus = SyncStatus.SYNCED,
    ) -> None:
        """Insert or replace a mirror row from an entity snapshot.

        Args:
            entity_type: Kind of entity.
            entity: Snapshot; must carry an "id" key.
            status: Sync status to store (SYNCED for server copies).

        Raises:
            ValueError: If the entity has no id.
        """
        entity_id = entity.get("id")
        if not entity_id:
            raise ValueError("Entity snapshot has no id")
        with self._transaction() as conn:
            self._write_mirror(conn, EntityType(entity_type), str(entity_id), entity, status)

    def save_draft(self, entity_type: EntityType | str, entity: dict[str, Any]) -> None:
        """Store local edits that are not queued yet (DRAFT)."""
        self.upsert_entity_mirror(entity_type, entity, SyncStatus.DRAFT)

    def get_entity(self, entity_type: EntityType | str, entity_id: str) -> EntityRecord | None:
        """Get a mirror row."""
        row = self._fetchone(
            "SELECT * FROM entities WHERE entity_type = ? AND entity_id = ?",
            (EntityType(entity_type).value, entity_id),
        )
        return EntityRecord.from_row(row) if row else None

    def list_entities(
        self,
        entity_type: EntityType | str | None = None,
        status: SyncStatus | None = None,
    ) -> list[EntityRecord]:
        """List mirror rows, optionally filtered by type and status."""
        clauses: list[str] = []
        params: list[Any] = []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(EntityType(entity_type).value)
        if status is not None:
            clauses.append("sync_status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT * FROM entities {where} ORDER BY entity_type, entity_id", tuple(params)
        )
        return [EntityRecord.from_row(row) for row in rows]

    def set_entity_status(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        status: SyncStatus,
        error: str | None = None,
    ) -> None:
        """Update sync_status (and last_sync_error) of a mirror row."""
        synced_at = utc_now() if status is SyncStatus.SYNCED else None
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE entities
                SET sync_status = ?, last_sync_error = ?,
                    synced_at = COALESCE(?, synced_at)
                WHERE entity_type = ? AND entity_id = ?
                """,
                (status.value, error, synced_at, EntityType(entity_type).value, entity_id),
            )

    def apply_queued_payload(self, entity_type: EntityType | str, entity_id: str) -> None:
        """Refresh a mirror row from the newest queued entry and mark it PENDING.

        Used when the engine releases a row that received local writes while
        it was PROCESSING.
        """
        entries = self.list_queued_for_entity(entity_type, entity_id)
        if not entries:
            return
        latest = entries[-1]
        with self._transaction() as conn:
            self._write_mirror(
                conn,
                latest.entity_type,
                latest.entity_id,
                latest.payload,
                SyncStatus.PENDING,
                deleted=latest.operation is Operation.DELETE,
            )

    def remove_entity(self, entity_type: EntityType | str, entity_id: str) -> None:
        """Delete a mirror row (after a confirmed delete)."""
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM entities WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            )

    def release_processing(self) -> int:
        """Move every PROCESSING row back to PENDING.

        Returns:
            Number of rows released.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE entities SET sync_status = ? WHERE sync_status = ?",
                (SyncStatus.PENDING.value, SyncStatus.PROCESSING.value),
            )
            return cursor.rowcount

    # === Held server copies ===

    def hold_server_copy(self, entity_type: EntityType | str, entity: dict[str, Any]) -> None:
        """Keep a downloaded server copy aside until local changes are settled.

        A newer download of the same entity replaces the held copy.
        """
        entity_id = entity.get("id")
        if not entity_id:
            raise ValueError("Entity snapshot has no id")
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO held_downloads (
                    entity_type, entity_id, payload_json, held_at
                ) VALUES (?, ?, ?, ?)
                """,
                (EntityType(entity_type).value, str(entity_id), json.dumps(entity), utc_now()),
            )

    def get_held_copy(
        self, entity_type: EntityType | str, entity_id: str
    ) -> dict[str, Any] | None:
        """Get the held server copy of an entity."""
        row = self._fetchone(
            "SELECT payload_json FROM held_downloads WHERE entity_type = ? AND entity_id = ?",
            (EntityType(entity_type).value, entity_id),
        )
        return dict(json.loads(row["payload_json"])) if row else None

    def list_held_copies(self, entity_type: EntityType | str) -> list[dict[str, Any]]:
        """List held server copies of one entity type, oldest first."""
        rows = self._fetchall(
            "SELECT payload_json FROM held_downloads WHERE entity_type = ? ORDER BY held_at",
            (EntityType(entity_type).value,),
        )
        return [dict(json.loads(row["payload_json"])) for row in rows]

    def drop_held_copy(self, entity_type: EntityType | str, entity_id: str) -> None:
        """Forget the held server copy of an entity (the server has ours now)."""
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM held_downloads WHERE entity_type = ? AND entity_id = ?",
                (EntityType(entity_type).value, entity_id),
            )

    def apply_held_copy(self, entity_type: EntityType | str, entity_id: str) -> bool:
        """Replace a mirror row with its held server copy.

        A held tombstone removes the row. The held copy is forgotten.

        Returns:
            True if a held copy existed.
        """
        kind = EntityType(entity_type)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT payload_json FROM held_downloads WHERE entity_type = ? AND entity_id = ?",
                (kind.value, entity_id),
            ).fetchone()
            if row is None:
                return False
            payload = json.loads(row["payload_json"])
            if payload.get("deleted"):
                conn.execute(
                    "DELETE FROM entities WHERE entity_type = ? AND entity_id = ?",
                    (kind.value, entity_id),
                )
            else:
                self._write_mirror(conn, kind, entity_id, payload, SyncStatus.SYNCED)
            conn.execute(
                "DELETE FROM held_downloads WHERE entity_type = ? AND entity_id = ?",
                (kind.value, entity_id),
            )
        return True

    # === Reference data ===

    def save_checklist(self, checklist: dict[str, Any]) -> None:
        """Cache a checklist definition."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO checklists (
                    id, name, version, category, standard, definition_json, downloaded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    checklist["id"],
                    checklist["name"],
                    checklist.get("version") or "1.0",
                    checklist.get("category"),
                    checklist.get("standard"),
                    json.dumps(checklist),
                    utc_now(),
                ),
            )

    def save_template(self, template: dict[str, Any]) -> None:
        """Cache a report template definition."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO templates (
                    id, name, description, inspection_type, definition_json,
                    is_default, downloaded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    template["id"],
                    template["name"],
                    template.get("description"),
                    template.get("inspectionType"),
                    json.dumps(template),
                    int(bool(template.get("isDefault"))),
                    utc_now(),
                ),
            )

    def get_checklist_by_standard(self, standard: str) -> dict[str, Any] | None:
        """Get a cached checklist definition by its standard."""
        row = self._fetchone(
            "SELECT definition_json FROM checklists WHERE standard = ? ORDER BY downloaded_at DESC",
            (standard,),
        )
        return json.loads(row["definition_json"]) if row else None

    def get_template_by_inspection_type(self, inspection_type: str) -> dict[str, Any] | None:
        """Get a cached template definition by inspection type.

        Prefers the default template when several share the type.
        """
        row = self._fetchone(
            """
            SELECT definition_json FROM templates WHERE inspection_type = ?
            ORDER BY is_default DESC, downloaded_at DESC
            """,
            (inspection_type,),
        )
        return json.loads(row["definition_json"]) if row else None

    def count_reference_data(self) -> dict[str, int]:
        """Number of cached checklists and templates."""
        checklists = self._fetchone("SELECT COUNT(*) AS count FROM checklists")
        templates = self._fetchone("SELECT COUNT(*) AS count FROM templates")
        return {
            "checklists": int(checklists["count"]) if checklists else 0,
            "templates": int(templates["count"]) if templates else 0,
        }

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        row = self._fetchone("SELECT value FROM sync_state WHERE key = ?", (key,))
        return row["value"] if row else None

    def set_state(self, key: str, value: str | None) -> None:
        """Set a sync state value (None deletes it)."""
        with self._transaction() as conn:
            if value is None:
                conn.execute("DELETE FROM sync_state WHERE key = ?", (key,))
            else:
                conn.execute(
                    "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                    (key, value),
                )

    def get_last_sync_at(self) -> str | None:
        """Get timestamp of last successful sync."""
        return self.get_state("last_sync_at")

    def set_last_sync_at(self, timestamp: str) -> None:
        """Set timestamp of last successful sync."""
        self.set_state("last_sync_at", timestamp)

    def get_watermark(self, entity_type: EntityType | str) -> str | None:
        """Get the server timestamp up to which entities were downloaded."""
        return self.get_state(f"watermark:{EntityType(entity_type).value}")

    def set_watermark(self, entity_type: EntityType | str, timestamp: str | None) -> None:
        """Advance the download watermark for an entity type (None restarts from scratch)."""
        self.set_state(f"watermark:{EntityType(entity_type).value}", timestamp)

    def get_last_error(self) -> dict[str, Any] | None:
        """Get the most recent unrecovered sync error."""
        value = self.get_state("last_error")
        return dict(json.loads(value)) if value else None

    def set_last_error(self, error: dict[str, Any] | None) -> None:
        """Store (or clear) the most recent unrecovered sync error."""
        self.set_state("last_error", json.dumps(error) if error else None)

    def get_pending_downloads(self) -> int:
        """Server copies held back because of local changes."""
        row = self._fetchone("SELECT COUNT(*) AS count FROM held_downloads")
        return int(row["count"]) if row else 0

    def get_device_id(self) -> str:
        """Get this device's id, minting it on first use."""
        with self._lock:
            device_id = self.get_state("device_id")
            if device_id is None:
                device_id = secrets.token_hex(16)
                self.set_state("device_id", device_id)
                logger.info("Created device id %s", device_id)
            return device_id
