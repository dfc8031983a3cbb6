"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fieldsync.server.database import Database
from fieldsync.server.models import Inspector

# Security scheme
security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_inspector(
    db: Database = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Inspector:
    """Resolve the bearer token to the inspector it belongs to."""
    if credentials is None:
        raise _unauthorized("Missing authentication credentials")

    token = db.validate_token(credentials.credentials)
    if token is None:
        raise _unauthorized("Invalid or expired token")

    inspector = db.get_inspector(token.inspector_id)
    if inspector is None:
        raise _unauthorized("Token owner no longer exists")
    return inspector
