"""Shared types for fieldsync.

This module defines enums used by the client, the CLI and the reference server.
"""

from __future__ import annotations

from enum import Enum


class EntityType(str, Enum):
    """Kinds of locally mutated entities that are uploaded.

    The set is closed: the queue rejects any other value.
    """

    REPORT = "report"
    PHOTO = "photo"
    DEFECT = "defect"
    ELEMENT = "element"
    COMPLIANCE = "compliance"


class Operation(str, Enum):
    """Mutation kind carried by a queue entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    """Sync status of an entity mirror row.

    Lifecycle: DRAFT -> PENDING -> PROCESSING -> SYNCED | ERROR.
    """

    DRAFT = "draft"  # Local edits, not queued yet
    PENDING = "pending"  # Queued, not sent
    PROCESSING = "processing"  # Part of an in-flight batch
    SYNCED = "synced"  # Confirmed by the server
    ERROR = "error"  # Rejected, eligible for retry


class ConflictResolution(str, Enum):
    """Operator choice for a conflict."""

    KEEP_LOCAL = "keep_local"
    KEEP_SERVER = "keep_server"
    MERGE = "merge"


class ConflictPolicy(str, Enum):
    """How the engine handles conflicts reported during a cycle."""

    MANUAL = "manual"
    KEEP_LOCAL = "keep_local"
    KEEP_SERVER = "keep_server"
    LAST_WRITER_WINS = "last_writer_wins"
