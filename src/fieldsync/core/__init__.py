"""Core module - Shared config and enums."""

from fieldsync.core.config import MIN_BACKGROUND_INTERVAL, ServerConfig, SyncConfig
from fieldsync.core.types import (
    ConflictPolicy,
    ConflictResolution,
    EntityType,
    Operation,
    SyncStatus,
)

__all__ = [
    # Config
    "MIN_BACKGROUND_INTERVAL",
    "ServerConfig",
    "SyncConfig",
    # Types
    "ConflictPolicy",
    "ConflictResolution",
    "EntityType",
    "Operation",
    "SyncStatus",
]
