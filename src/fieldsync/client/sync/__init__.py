"""Offline-first synchronization of inspection data.

Architecture:
    LocalSyncState (queue + mirror) → SyncEngine → SyncClient → backend

Components:
- **SyncEngine**: Single-flight sync cycles, progress/error/conflict events
- **BatchUploader**: Upload phase, applies per-item server outcomes
- **BootstrapDownloader**: Download phase, merges server data without
  overwriting local work
- **ConflictResolver**: Holds conflicts until resolved (keep_local / keep_server)
- **plan_batch**: FIFO-per-entity batch selection with the attempt ceiling

All public symbols are re-exported here.
"""

from fieldsync.client.sync.conflict import ConflictResolver, choose_resolution
from fieldsync.client.sync.download import BootstrapDownloader
from fieldsync.client.sync.engine import SyncEngine
from fieldsync.client.sync.events import Subscribers
from fieldsync.client.sync.queue import UploadBatch, plan_batch
from fieldsync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
    TRANSIENT_EXCEPTIONS,
    blocked_entries,
    is_suspended,
    retry_with_backoff,
)
from fieldsync.client.sync.types import (
    AUTH_ERROR,
    BOOTSTRAP_FAILED,
    CHECKLIST_DOWNLOAD_FAILED,
    PHOTO_UPLOAD_FAILED,
    REPORT_DOWNLOAD_FAILED,
    STORE_ERROR,
    SYNC_ERROR,
    SYNC_IN_PROGRESS,
    TEMPLATE_DOWNLOAD_FAILED,
    UPLOAD_REJECTED,
    UPLOAD_UNACKNOWLEDGED,
    ConflictCallback,
    ConflictResolutionError,
    DownloadCounts,
    ErrorCallback,
    ProgressCallback,
    SyncConflict,
    SyncEngineError,
    SyncErrorInfo,
    SyncResult,
    SyncStateSnapshot,
    UnsupportedResolutionError,
    UploadCounts,
)
from fieldsync.client.sync.upload import BatchNotDeliveredError, BatchUploader, PhotoUploader

__all__ = [
    # Engine
    "SyncEngine",
    "Subscribers",
    # Phases
    "BatchNotDeliveredError",
    "BatchUploader",
    "BootstrapDownloader",
    "PhotoUploader",
    # Queue
    "UploadBatch",
    "plan_batch",
    # Conflicts
    "ConflictResolver",
    "choose_resolution",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_BACKOFF",
    "TRANSIENT_EXCEPTIONS",
    "blocked_entries",
    "is_suspended",
    "retry_with_backoff",
    # Error codes
    "AUTH_ERROR",
    "BOOTSTRAP_FAILED",
    "CHECKLIST_DOWNLOAD_FAILED",
    "PHOTO_UPLOAD_FAILED",
    "REPORT_DOWNLOAD_FAILED",
    "STORE_ERROR",
    "SYNC_ERROR",
    "SYNC_IN_PROGRESS",
    "TEMPLATE_DOWNLOAD_FAILED",
    "UPLOAD_REJECTED",
    "UPLOAD_UNACKNOWLEDGED",
    # Types
    "ConflictCallback",
    "ConflictResolutionError",
    "DownloadCounts",
    "ErrorCallback",
    "ProgressCallback",
    "SyncConflict",
    "SyncEngineError",
    "SyncErrorInfo",
    "SyncResult",
    "SyncStateSnapshot",
    "UnsupportedResolutionError",
    "UploadCounts",
]
