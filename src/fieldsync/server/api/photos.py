"""Photo binary API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from fieldsync.server.api.deps import get_current_inspector, get_db
from fieldsync.server.database import Database
from fieldsync.server.models import Inspector

router = APIRouter(prefix="/api/photos", tags=["photos"])


@router.put("/{entity_id}/content", status_code=status.HTTP_204_NO_CONTENT)
async def upload_photo(
    entity_id: str,
    request: Request,
    db: Database = Depends(get_db),
    _auth: Inspector = Depends(get_current_inspector),
) -> Response:
    """Store the binary of a synced photo entity."""
    entity = db.get_entity("photo", entity_id)
    if entity is None or entity.deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Photo not found: {entity_id}",
        )
    content = await request.body()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty photo content",
        )
    content_type = request.headers.get("content-type", "application/octet-stream")
    db.save_photo(entity_id, content, content_type)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{entity_id}/content")
def get_photo(
    entity_id: str,
    db: Database = Depends(get_db),
    _auth: Inspector = Depends(get_current_inspector),
) -> Response:
    """Download the binary of a photo."""
    blob = db.get_photo(entity_id)
    if blob is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Photo content not found: {entity_id}",
        )
    return Response(content=blob.content, media_type=blob.content_type)
