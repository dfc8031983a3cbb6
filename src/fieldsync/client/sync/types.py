"""Shared types and dataclasses for sync operations.

This module provides:
- SyncEngineError, ConflictResolutionError, UnsupportedResolutionError: Exceptions
- SyncErrorInfo: One error reported in a SyncResult
- UploadCounts, DownloadCounts: Per-type counters
- SyncConflict: A diverging local/server pair awaiting resolution
- SyncResult: Overall sync cycle result
- SyncStateSnapshot: Read-only view of the engine state
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from fieldsync.client.api import PhotoUploadTarget
from fieldsync.core.types import EntityType

# Error codes reported in SyncResult.errors
SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"
SYNC_ERROR = "SYNC_ERROR"
AUTH_ERROR = "AUTH_ERROR"
UPLOAD_REJECTED = "UPLOAD_REJECTED"
UPLOAD_UNACKNOWLEDGED = "UPLOAD_UNACKNOWLEDGED"
PHOTO_UPLOAD_FAILED = "PHOTO_UPLOAD_FAILED"
BOOTSTRAP_FAILED = "BOOTSTRAP_FAILED"
CHECKLIST_DOWNLOAD_FAILED = "CHECKLIST_DOWNLOAD_FAILED"
TEMPLATE_DOWNLOAD_FAILED = "TEMPLATE_DOWNLOAD_FAILED"
REPORT_DOWNLOAD_FAILED = "REPORT_DOWNLOAD_FAILED"
STORE_ERROR = "STORE_ERROR"


class SyncEngineError(Exception):
    """Base exception for sync engine errors."""


class ConflictResolutionError(SyncEngineError):
    """A conflict could not be resolved."""


class UnsupportedResolutionError(ConflictResolutionError):
    """The requested resolution strategy is not implemented."""


@dataclass
class SyncErrorInfo:
    """One error reported by a sync cycle.

    Attributes:
        code: Machine-readable error code (see module constants).
        message: Human-readable description.
        retryable: Whether re-running sync may succeed.
        entity_type: Entity concerned, for item-level errors.
        entity_id: Entity concerned, for item-level errors.
    """

    code: str
    message: str
    retryable: bool
    entity_type: str | None = None
    entity_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncErrorInfo:
        """Create from a dict produced by to_dict()."""
        return cls(
            code=data["code"],
            message=data["message"],
            retryable=bool(data["retryable"]),
            entity_type=data.get("entity_type"),
            entity_id=data.get("entity_id"),
        )


@dataclass
class UploadCounts:
    """Entities confirmed by the server, per type."""

    reports: int = 0
    photos: int = 0
    defects: int = 0
    elements: int = 0
    compliance: int = 0

    _FIELDS = {
        EntityType.REPORT: "reports",
        EntityType.PHOTO: "photos",
        EntityType.DEFECT: "defects",
        EntityType.ELEMENT: "elements",
        EntityType.COMPLIANCE: "compliance",
    }

    def add(self, entity_type: EntityType, count: int = 1) -> None:
        """Increment the counter of an entity type."""
        name = self._FIELDS[entity_type]
        setattr(self, name, getattr(self, name) + count)

    @property
    def total(self) -> int:
        """Sum over all types."""
        return self.reports + self.photos + self.defects + self.elements + self.compliance


@dataclass
class DownloadCounts:
    """Items written to the local store by the download phase."""

    checklists: int = 0
    templates: int = 0
    reports: int = 0

    @property
    def total(self) -> int:
        """Sum over all kinds."""
        return self.checklists + self.templates + self.reports


@dataclass
class SyncConflict:
    """A local pending mutation and a server change that diverge.

    Attributes:
        entity_type: Kind of entity.
        entity_id: Entity id.
        local_version: Local snapshot (queued payload).
        server_version: Server snapshot.
        local_updated_at: Timestamp sent with the local change.
        server_updated_at: Timestamp of the server change.
    """

    entity_type: EntityType
    entity_id: str
    local_version: dict[str, Any]
    server_version: dict[str, Any]
    local_updated_at: str
    server_updated_at: str


@dataclass
class SyncResult:
    """Result of a sync cycle.

    A partially successful cycle is not an exception: success is False and
    the failures are listed in errors. Conflicts are not errors.
    """

    success: bool
    downloaded: DownloadCounts = field(default_factory=DownloadCounts)
    uploaded: UploadCounts = field(default_factory=UploadCounts)
    errors: list[SyncErrorInfo] = field(default_factory=list)
    conflicts: list[SyncConflict] = field(default_factory=list)
    photo_uploads: list[PhotoUploadTarget] = field(default_factory=list)
    duration: int = 0  # milliseconds
    timestamp: str = ""

    @property
    def has_conflicts(self) -> bool:
        """Check if there are any conflicts."""
        return len(self.conflicts) > 0

    @property
    def retryable(self) -> bool:
        """Check if every reported error may go away on a later cycle."""
        return all(error.retryable for error in self.errors)


@dataclass
class SyncStateSnapshot:
    """Read-only view of the sync state."""

    is_online: bool
    is_syncing: bool
    last_sync_at: str | None
    pending_uploads: int
    pending_downloads: int
    failed_uploads: int
    last_error: SyncErrorInfo | None


# Callback type aliases
ProgressCallback = Callable[[str, int], None]
ErrorCallback = Callable[[SyncErrorInfo], None]
ConflictCallback = Callable[[list[SyncConflict]], None]
