"""Server database using SQLAlchemy with SQLite.

This module provides:
- Inspector and token management
- Entity storage with last-writer conflict detection
- Photo binaries
- Checklist and template reference data
"""

from __future__ import annotations

import hashlib
import json
import secrets
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from fieldsync.server.models import (
    Base,
    Checklist,
    Inspector,
    PhotoBlob,
    ReportTemplate,
    SyncEntity,
    Token,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

ENTITY_TYPES = frozenset({"report", "photo", "defect", "element", "compliance"})
OPERATIONS = frozenset({"create", "update", "delete"})


def hash_token(token: str) -> str:
    """Hash a token using SHA-256.

    Args:
        token: Raw token string.

    Returns:
        Hex-encoded SHA-256 hash.
    """
    return hashlib.sha256(token.encode()).hexdigest()


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (SQLite hands back naive ones)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def isoformat(value: datetime) -> str:
    """Format a stored datetime for the wire."""
    return as_utc(value).isoformat(timespec="milliseconds")


def entity_snapshot(entity: SyncEntity) -> dict[str, Any]:
    """Server version of an entity as sent to devices."""
    snapshot: dict[str, Any] = json.loads(entity.payload_json)
    snapshot.setdefault("id", entity.entity_id)
    snapshot["updatedAt"] = isoformat(entity.updated_at)
    if entity.deleted:
        snapshot["deleted"] = True
    return snapshot


def payloads_diverge(stored: dict[str, Any], incoming: dict[str, Any]) -> bool:
    """Check whether two snapshots disagree on a field both carry.

    updatedAt is ignored: it differs on every write.
    """
    shared = (stored.keys() & incoming.keys()) - {"updatedAt"}
    return any(stored[key] != incoming[key] for key in shared)


class EntityConflictError(Exception):
    """The stored entity changed after the version the device edited."""

    def __init__(self, entity: SyncEntity) -> None:
        super().__init__(f"Conflict on {entity.entity_type} {entity.entity_id}")
        self.entity = entity


class EntityRejectedError(Exception):
    """A change cannot be applied (unknown type, bad payload)."""


class Database:
    """SQLAlchemy database for the reference sync server.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        # Enable WAL mode
        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")

        # Create tables if they don't exist
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine, expire_on_commit=False)

    # === Inspector operations ===

    def create_inspector(self, name: str, email: str | None = None) -> Inspector:
        """Create an inspector account.

        Raises:
            IntegrityError: If the name already exists.
        """
        with self._session() as session:
            inspector = Inspector(name=name, email=email)
            session.add(inspector)
            session.commit()
            session.expunge(inspector)
            return inspector

    def get_inspector(self, inspector_id: int) -> Inspector | None:
        """Get an inspector by ID."""
        with self._session() as session:
            inspector = session.get(Inspector, inspector_id)
            if inspector:
                session.expunge(inspector)
            return inspector

    def record_sync(self, inspector_id: int) -> None:
        """Remember when an inspector last synced."""
        with self._session() as session:
            inspector = session.get(Inspector, inspector_id)
            if inspector:
                inspector.last_sync_at = datetime.now(UTC)
                session.commit()

    # === Token operations ===

    def create_token(
        self,
        inspector_id: int,
        expires_in: timedelta | None = None,
    ) -> tuple[str, Token]:
        """Create a new authentication token.

        Args:
            inspector_id: Inspector the token belongs to.
            expires_in: Optional expiration duration.

        Returns:
            Tuple of (raw_token, Token object).
        """
        raw_token = "fs_" + secrets.token_urlsafe(32)
        now = datetime.now(UTC)
        expires_at = (now + expires_in) if expires_in else None

        with self._session() as session:
            token = Token(
                inspector_id=inspector_id,
                token_hash=hash_token(raw_token),
                created_at=now,
                expires_at=expires_at,
            )
            session.add(token)
            session.commit()
            session.expunge(token)
            return raw_token, token

    def validate_token(self, raw_token: str) -> Token | None:
        """Validate a token and return it if valid.

        Args:
            raw_token: Raw token string.

        Returns:
            Token if valid, None otherwise.
        """
        with self._session() as session:
            stmt = select(Token).where(
                Token.token_hash == hash_token(raw_token),
                Token.revoked == False,  # noqa: E712
            )
            token = session.execute(stmt).scalar_one_or_none()
            if token is None:
                return None
            if token.expires_at and as_utc(token.expires_at) < datetime.now(UTC):
                return None
            session.expunge(token)
            return token

    def revoke_token(self, token_id: int) -> None:
        """Revoke a token."""
        with self._session() as session:
            token = session.get(Token, token_id)
            if token:
                token.revoked = True
                session.commit()

    # === Entity operations ===

    def get_entity(self, entity_type: str, entity_id: str) -> SyncEntity | None:
        """Get the stored version of an entity."""
        with self._session() as session:
            entity = session.get(SyncEntity, (entity_type, entity_id))
            if entity:
                session.expunge(entity)
            return entity

    def apply_change(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        payload: dict[str, Any],
        client_updated_at: datetime,
        device_id: str | None = None,
    ) -> SyncEntity:
        """Apply one change sent by a device.

        A change conflicts when the stored entity was modified after
        client_updated_at and the two snapshots disagree on a shared field.

        Args:
            entity_type: Kind of entity.
            entity_id: Entity id.
            operation: create, update or delete.
            payload: Entity snapshot sent by the device.
            client_updated_at: Modification time of the device's version.
            device_id: Device that sent the change.

        Returns:
            The stored entity after the change.

        Raises:
            EntityRejectedError: If the change is invalid.
            EntityConflictError: If the stored entity is newer and differs.
        """
        if entity_type not in ENTITY_TYPES:
            raise EntityRejectedError(f"Unknown entity type: {entity_type}")
        if operation not in OPERATIONS:
            raise EntityRejectedError(f"Unknown operation: {operation}")
        payload_id = payload.get("id")
        if payload_id is not None and str(payload_id) != entity_id:
            raise EntityRejectedError("Payload id does not match entityId")

        client_updated_at = as_utc(client_updated_at)

        with self._session() as session:
            entity = session.get(SyncEntity, (entity_type, entity_id))

            if entity is not None and as_utc(entity.updated_at) > client_updated_at:
                stored = json.loads(entity.payload_json)
                if entity.deleted or payloads_diverge(stored, payload):
                    session.expunge(entity)
                    raise EntityConflictError(entity)
                # Same content, nothing to write
                session.expunge(entity)
                return entity

            if entity is None:
                entity = SyncEntity(entity_type=entity_type, entity_id=entity_id)
                session.add(entity)

            if operation == "delete":
                stored = json.loads(entity.payload_json) if entity.payload_json else {}
                entity.payload_json = json.dumps({**stored, **payload})
                entity.deleted = True
            else:
                entity.payload_json = json.dumps(payload)
                entity.deleted = False
            entity.updated_at = client_updated_at
            entity.received_at = datetime.now(UTC)
            entity.updated_by_device = device_id

            session.commit()
            session.expunge(entity)
            return entity

    def list_entities_since(
        self, entity_type: str, since: datetime | None = None
    ) -> list[SyncEntity]:
        """List entities of a type received after a watermark."""
        with self._session() as session:
            stmt = select(SyncEntity).where(SyncEntity.entity_type == entity_type)
            if since is not None:
                stmt = stmt.where(SyncEntity.received_at > as_utc(since))
            stmt = stmt.order_by(SyncEntity.received_at)
            entities = list(session.execute(stmt).scalars())
            for entity in entities:
                session.expunge(entity)
            return entities

    # === Photo operations ===

    def has_photo(self, entity_id: str) -> bool:
        """Check if the binary of a photo was uploaded."""
        with self._session() as session:
            return session.get(PhotoBlob, entity_id) is not None

    def save_photo(self, entity_id: str, content: bytes, content_type: str) -> None:
        """Store the binary of a photo entity."""
        with self._session() as session:
            blob = session.get(PhotoBlob, entity_id)
            if blob is None:
                blob = PhotoBlob(entity_id=entity_id, content=content, content_type=content_type)
                session.add(blob)
            else:
                blob.content = content
                blob.content_type = content_type
                blob.uploaded_at = datetime.now(UTC)
            session.commit()

    def get_photo(self, entity_id: str) -> PhotoBlob | None:
        """Get the binary of a photo entity."""
        with self._session() as session:
            blob = session.get(PhotoBlob, entity_id)
            if blob:
                session.expunge(blob)
            return blob

    # === Reference data ===

    def upsert_checklist(self, checklist: dict[str, Any]) -> None:
        """Create or replace a checklist definition."""
        with self._session() as session:
            row = session.get(Checklist, checklist["id"]) or Checklist(id=checklist["id"])
            row.name = checklist["name"]
            row.version = checklist.get("version") or "1.0"
            row.standard = checklist.get("standard")
            row.category = checklist.get("category")
            row.definition_json = json.dumps(checklist)
            row.updated_at = datetime.now(UTC)
            session.add(row)
            session.commit()

    def upsert_template(self, template: dict[str, Any]) -> None:
        """Create or replace a report template definition."""
        with self._session() as session:
            row = session.get(ReportTemplate, template["id"]) or ReportTemplate(id=template["id"])
            row.name = template["name"]
            row.inspection_type = template.get("inspectionType")
            row.is_default = bool(template.get("isDefault"))
            row.definition_json = json.dumps(template)
            row.updated_at = datetime.now(UTC)
            session.add(row)
            session.commit()

    def list_checklists(self) -> list[dict[str, Any]]:
        """All checklist definitions."""
        with self._session() as session:
            rows = session.execute(select(Checklist).order_by(Checklist.id)).scalars()
            return [json.loads(row.definition_json) for row in rows]

    def list_templates(self) -> list[dict[str, Any]]:
        """All report template definitions."""
        with self._session() as session:
            rows = session.execute(select(ReportTemplate).order_by(ReportTemplate.id)).scalars()
            return [json.loads(row.definition_json) for row in rows]
