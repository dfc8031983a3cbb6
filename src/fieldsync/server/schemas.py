"""Pydantic schemas for API request/response models.

Field names follow the JSON wire format (camelCase) of the sync endpoint.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Upload schemas ===


class UploadItem(BaseModel):
    """One queued mutation sent by a device."""

    entityType: str
    entityId: str
    operation: str
    payload: dict[str, Any] = Field(default_factory=dict)
    clientUpdatedAt: str | None = None


class UploadRequest(BaseModel):
    """Request body for a batch upload."""

    items: list[UploadItem]
    deviceId: str
    syncTimestamp: str | None = None


class UploadStats(BaseModel):
    """Counters of an upload response."""

    total: int
    succeeded: int
    failed: int
    conflicts: int


class FailedItem(BaseModel):
    """An entity the server rejected."""

    id: str
    error: str


class ConflictItem(BaseModel):
    """An entity whose server version is newer than the device's."""

    entityId: str
    entityType: str
    serverUpdatedAt: str
    clientUpdatedAt: str
    serverVersion: dict[str, Any]


class PhotoUploadItem(BaseModel):
    """A photo binary the device must upload."""

    entityId: str
    uploadUrl: str


class UploadResponse(BaseModel):
    """Per-entity outcome of a batch upload."""

    stats: UploadStats
    syncedIds: list[str]
    failed: list[FailedItem]
    conflicts: list[ConflictItem]
    pendingPhotoUploads: list[PhotoUploadItem]


# === Bootstrap schemas ===


class InspectorInfo(BaseModel):
    """The inspector owning the token."""

    id: int
    name: str
    email: str | None = None


class BootstrapData(BaseModel):
    """Reference data and reports changed since the device's watermark."""

    checklists: list[dict[str, Any]]
    templates: list[dict[str, Any]]
    reports: list[dict[str, Any]]
    lastSyncAt: str
    user: InspectorInfo | None = None


class BootstrapResponse(BaseModel):
    """Bootstrap response envelope."""

    success: bool
    data: BootstrapData
