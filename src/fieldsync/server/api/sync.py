"""Sync API routes.

- POST /api/sync/upload: Apply a batch of device changes
- GET /api/sync/bootstrap: Reference data and reports changed since a watermark

Items of the same entity are applied in request order. Once an item of an
entity is rejected or conflicts, the later items of that entity in the same
batch are not applied and share its outcome. An entity is its type and id,
so a report and a photo sharing an id have separate outcomes.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from fieldsync.server.api.deps import get_current_inspector, get_db
from fieldsync.server.database import (
    Database,
    EntityConflictError,
    EntityRejectedError,
    entity_snapshot,
    isoformat,
)
from fieldsync.server.models import Inspector, SyncEntity
from fieldsync.server.schemas import (
    BootstrapData,
    BootstrapResponse,
    ConflictItem,
    FailedItem,
    InspectorInfo,
    PhotoUploadItem,
    UploadItem,
    UploadRequest,
    UploadResponse,
    UploadStats,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

# Entity type and id of an upload item
EntityKey = tuple[str, str]


def parse_client_time(value: str | None) -> datetime:
    """Parse a device timestamp; missing or invalid values count as now."""
    if value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Invalid clientUpdatedAt %r", value)
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(UTC)


def photo_upload_url(entity_id: str) -> str:
    """Where a device uploads the binary of a photo."""
    return f"/api/photos/{entity_id}/content"


@router.post("/upload", response_model=UploadResponse)
def upload(
    request: UploadRequest,
    db: Database = Depends(get_db),
    inspector: Inspector = Depends(get_current_inspector),
) -> UploadResponse:
    """Apply a batch of queued device changes."""
    synced: dict[EntityKey, None] = {}  # ordered set
    failed: dict[EntityKey, FailedItem] = {}
    conflicts: dict[EntityKey, ConflictItem] = {}
    photos: dict[str, PhotoUploadItem] = {}

    for item in request.items:
        entity_id = item.entityId
        key = (item.entityType, entity_id)
        if key in failed or key in conflicts:
            continue
        try:
            entity = _apply_item(db, item, request.deviceId)
        except EntityRejectedError as e:
            synced.pop(key, None)
            failed[key] = FailedItem(id=entity_id, error=str(e))
            continue
        except EntityConflictError as e:
            synced.pop(key, None)
            conflicts[key] = ConflictItem(
                entityId=entity_id,
                entityType=e.entity.entity_type,
                serverUpdatedAt=isoformat(e.entity.updated_at),
                clientUpdatedAt=item.clientUpdatedAt or "",
                serverVersion=entity_snapshot(e.entity),
            )
            continue

        synced[key] = None
        if entity.entity_type != "photo":
            continue
        if not entity.deleted and not db.has_photo(entity_id):
            photos[entity_id] = PhotoUploadItem(
                entityId=entity_id, uploadUrl=photo_upload_url(entity_id)
            )
        else:
            photos.pop(entity_id, None)

    db.record_sync(inspector.id)
    logger.info(
        "Upload from %s (%s): %d synced, %d failed, %d conflicts",
        inspector.name,
        request.deviceId,
        len(synced),
        len(failed),
        len(conflicts),
    )

    total = len(synced) + len(failed) + len(conflicts)
    return UploadResponse(
        stats=UploadStats(
            total=total,
            succeeded=len(synced),
            failed=len(failed),
            conflicts=len(conflicts),
        ),
        syncedIds=[entity_id for _, entity_id in synced],
        failed=list(failed.values()),
        conflicts=list(conflicts.values()),
        pendingPhotoUploads=list(photos.values()),
    )


def _apply_item(db: Database, item: UploadItem, device_id: str) -> SyncEntity:
    return db.apply_change(
        entity_type=item.entityType,
        entity_id=item.entityId,
        operation=item.operation,
        payload=item.payload,
        client_updated_at=parse_client_time(item.clientUpdatedAt),
        device_id=device_id,
    )


@router.get("/bootstrap", response_model=BootstrapResponse)
def bootstrap(
    lastSyncAt: str | None = None,  # noqa: N803
    db: Database = Depends(get_db),
    inspector: Inspector = Depends(get_current_inspector),
) -> BootstrapResponse:
    """Reference data plus reports received since lastSyncAt."""
    since: datetime | None = None
    if lastSyncAt:
        try:
            since = datetime.fromisoformat(lastSyncAt.replace("Z", "+00:00"))
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid lastSyncAt: {lastSyncAt}",
            ) from e

    # Watermark is taken before the read
    now = datetime.now(UTC)
    reports = [entity_snapshot(e) for e in db.list_entities_since("report", since)]
    return BootstrapResponse(
        success=True,
        data=BootstrapData(
            checklists=db.list_checklists(),
            templates=db.list_templates(),
            reports=reports,
            lastSyncAt=isoformat(now),
            user=InspectorInfo(id=inspector.id, name=inspector.name, email=inspector.email),
        ),
    )
