"""HTTP client for the remote sync endpoint.

This module provides:
- SyncClient: HTTP client for communicating with the backend
- Batch upload of queued mutations (POST /api/sync/upload)
- Bootstrap/download of reference data and recent reports (GET /api/sync/bootstrap)
- Health check used by the network monitor
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from fieldsync.core.config import ServerConfig
from fieldsync.core.types import EntityType, Operation

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


class NetworkError(APIError):
    """Request never got a response (no connectivity, DNS, timeout)."""


class ServerError(APIError):
    """Server failed to handle the request (5xx)."""


@dataclass
class UploadItem:
    """One queued mutation as sent in an upload batch."""

    entity_type: EntityType
    entity_id: str
    operation: Operation
    payload: dict[str, Any]
    client_updated_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to request body item."""
        return {
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "operation": self.operation.value,
            "payload": self.payload,
            "clientUpdatedAt": self.client_updated_at,
        }


@dataclass
class ServerConflict:
    """Conflict record returned by the upload endpoint."""

    entity_id: str
    server_updated_at: str
    client_updated_at: str
    entity_type: EntityType | None = None
    server_version: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerConflict:
        """Create from API response dictionary."""
        entity_type = data.get("entityType")
        return cls(
            entity_id=str(data["entityId"]),
            server_updated_at=data.get("serverUpdatedAt") or "",
            client_updated_at=data.get("clientUpdatedAt") or "",
            entity_type=EntityType(entity_type) if entity_type else None,
            server_version=dict(data.get("serverVersion") or {}),
        )


@dataclass
class PhotoUploadTarget:
    """Binary upload the server expects for a photo entity."""

    entity_id: str
    upload_url: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhotoUploadTarget:
        """Create from API response dictionary."""
        return cls(entity_id=str(data["entityId"]), upload_url=data["uploadUrl"])


@dataclass
class UploadResponse:
    """Per-item outcome of an upload batch."""

    total: int
    succeeded: int
    failed_count: int
    conflict_count: int
    synced_ids: list[str]
    failed: dict[str, str]  # entity id -> error message
    conflicts: list[ServerConflict]
    pending_photo_uploads: list[PhotoUploadTarget]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadResponse:
        """Create from API response dictionary."""
        stats = data.get("stats") or {}
        synced_ids = [str(i) for i in data.get("syncedIds", [])]
        failed = {str(f["id"]): f.get("error") or "Rejected by server" for f in data.get("failed", [])}
        conflicts = [ServerConflict.from_dict(c) for c in data.get("conflicts", [])]
        return cls(
            total=int(stats.get("total", len(synced_ids) + len(failed) + len(conflicts))),
            succeeded=int(stats.get("succeeded", len(synced_ids))),
            failed_count=int(stats.get("failed", len(failed))),
            conflict_count=int(stats.get("conflicts", len(conflicts))),
            synced_ids=synced_ids,
            failed=failed,
            conflicts=conflicts,
            pending_photo_uploads=[
                PhotoUploadTarget.from_dict(p) for p in data.get("pendingPhotoUploads", [])
            ],
        )


@dataclass
class BootstrapData:
    """Reference data and recent server entities for the download phase."""

    checklists: list[dict[str, Any]]
    templates: list[dict[str, Any]]
    reports: list[dict[str, Any]]
    last_sync_at: str | None
    user: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BootstrapData:
        """Create from API response dictionary.

        Accepts both the bare payload and the {"success", "data"} envelope.
        """
        if "data" in data and isinstance(data["data"], dict):
            data = data["data"]
        return cls(
            checklists=list(data.get("checklists") or []),
            templates=list(data.get("templates") or []),
            reports=list(data.get("reports") or data.get("recentReports") or []),
            last_sync_at=data.get("lastSyncAt"),
            user=data.get("user"),
        )


class SyncClient:
    """HTTP client for the remote sync endpoint."""

    def __init__(
        self,
        config: ServerConfig,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the sync client.

        Args:
            config: Server configuration with URL, token, and settings.
            http_client: Preconfigured httpx client (tests pass a FastAPI
                TestClient here). Auth headers are added to it.
        """
        self._config = config
        if http_client is None:
            http_client = httpx.Client(
                base_url=config.server_url,
                timeout=config.timeout,
                verify=config.verify_ssl,
            )
        http_client.headers["Authorization"] = f"Bearer {config.token}"
        self._client = http_client

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> SyncClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to NetworkError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {url} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Cannot reach server: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code >= 500:
            raise ServerError(self._error_detail(response), response.status_code)
        if response.status_code >= 400:
            raise APIError(self._error_detail(response), response.status_code)
        return response

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("error") or body.get("message") or body)
        return str(body)

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable and healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    # === Sync endpoints ===

    def upload(
        self,
        items: list[UploadItem],
        device_id: str,
        sync_timestamp: str,
    ) -> UploadResponse:
        """Upload a batch of queued mutations.

        Args:
            items: Batch items, FIFO per entity.
            device_id: Identity of this device.
            sync_timestamp: Client time when the cycle started.

        Returns:
            Per-item outcome of the batch.

        Raises:
            NetworkError: If the request never got a response.
            AuthenticationError: If the token is rejected.
            APIError: If the whole batch was refused.
        """
        logger.debug("Uploading batch of %d items", len(items))
        response = self._request(
            "POST",
            "/api/sync/upload",
            json={
                "items": [item.to_dict() for item in items],
                "deviceId": device_id,
                "syncTimestamp": sync_timestamp,
            },
        )
        try:
            return UploadResponse.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise APIError(f"Malformed upload response: {e}", response.status_code) from e

    def bootstrap(self, since: str | None = None) -> BootstrapData:
        """Download reference data and server entities changed since a watermark.

        Args:
            since: Watermark from the previous download (None = full download).

        Returns:
            BootstrapData with checklists, templates and reports.
        """
        params = {"lastSyncAt": since} if since else {}
        response = self._request("GET", "/api/sync/bootstrap", params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise APIError(f"Malformed bootstrap response: {e}", response.status_code) from e
        if not isinstance(data, dict):
            raise APIError("Malformed bootstrap response", response.status_code)
        if data.get("success") is False:
            raise APIError(data.get("error") or "Bootstrap refused by server", response.status_code)
        return BootstrapData.from_dict(data)

    def upload_photo(
        self,
        target: PhotoUploadTarget,
        content: bytes,
        content_type: str = "image/jpeg",
    ) -> None:
        """Upload the binary of a photo to the URL the server handed out.

        Args:
            target: Upload target from an upload response.
            content: Image bytes.
            content_type: MIME type of the image.
        """
        logger.debug("Uploading %d bytes for photo %s", len(content), target.entity_id)
        self._request(
            "PUT",
            target.upload_url,
            content=content,
            headers={"Content-Type": content_type},
        )
