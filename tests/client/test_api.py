"""Tests for the fieldsync HTTP client."""

import json

import httpx
import pytest

from fieldsync.client.api import (
    APIError,
    AuthenticationError,
    BootstrapData,
    NetworkError,
    NotFoundError,
    PhotoUploadTarget,
    ServerError,
    SyncClient,
    UploadItem,
    UploadResponse,
)
from fieldsync.core.config import ServerConfig
from fieldsync.core.types import EntityType, Operation


def make_config(
    server_url: str = "http://test", token: str = "token123"
) -> ServerConfig:
    """Create a ServerConfig for testing."""
    return ServerConfig(server_url=server_url, token=token)


def make_item(entity_id: str = "r1") -> UploadItem:
    """Create an UploadItem for testing."""
    return UploadItem(
        entity_type=EntityType.REPORT,
        entity_id=entity_id,
        operation=Operation.CREATE,
        payload={"id": entity_id, "title": "Roof"},
        client_updated_at="2024-05-01T10:00:00+00:00",
    )


class TestUploadResponse:
    """Tests for UploadResponse parsing."""

    def test_from_dict(self) -> None:
        """Should parse every outcome list."""
        data = {
            "stats": {"total": 3, "succeeded": 1, "failed": 1, "conflicts": 1},
            "syncedIds": ["r1"],
            "failed": [{"id": "r2", "error": "Missing title"}],
            "conflicts": [
                {
                    "entityId": "r3",
                    "entityType": "report",
                    "serverUpdatedAt": "2024-05-02T10:00:00+00:00",
                    "clientUpdatedAt": "2024-05-01T10:00:00+00:00",
                    "serverVersion": {"id": "r3", "title": "Server"},
                }
            ],
            "pendingPhotoUploads": [{"entityId": "p1", "uploadUrl": "/upload/p1"}],
        }

        response = UploadResponse.from_dict(data)

        assert response.total == 3
        assert response.synced_ids == ["r1"]
        assert response.failed == {"r2": "Missing title"}
        assert response.conflicts[0].entity_type is EntityType.REPORT
        assert response.conflicts[0].server_version["title"] == "Server"
        assert response.pending_photo_uploads == [PhotoUploadTarget("p1", "/upload/p1")]

    def test_stats_derived_when_missing(self) -> None:
        """Counts default to the list lengths."""
        response = UploadResponse.from_dict({"syncedIds": ["a", "b"]})

        assert response.total == 2
        assert response.succeeded == 2
        assert response.failed == {}
        assert response.conflicts == []


class TestBootstrapData:
    """Tests for BootstrapData parsing."""

    def test_unwraps_envelope(self) -> None:
        """The {success, data} envelope is unwrapped."""
        data = BootstrapData.from_dict(
            {
                "success": True,
                "data": {
                    "checklists": [{"id": "c1"}],
                    "templates": [],
                    "recentReports": [{"id": "r1"}],
                    "lastSyncAt": "2024-05-01T10:00:00+00:00",
                },
            }
        )

        assert data.checklists == [{"id": "c1"}]
        assert data.reports == [{"id": "r1"}]
        assert data.last_sync_at == "2024-05-01T10:00:00+00:00"


class TestSyncClient:
    """Tests for SyncClient HTTP client."""

    def test_sends_bearer_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Every request carries the token."""
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})

        with SyncClient(make_config()) as client:
            client.health_check()

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer token123"

    def test_health_check_success(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return True when server is healthy."""
        httpx_mock.add_response(url="http://test/health", json={"status": "ok"})

        with SyncClient(make_config()) as client:
            assert client.health_check() is True

    def test_health_check_failure(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return False when server is unhealthy."""
        httpx_mock.add_response(url="http://test/health", status_code=500)

        with SyncClient(make_config()) as client:
            assert client.health_check() is False

    def test_health_check_unreachable(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Connection errors mean offline, not an exception."""
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with SyncClient(make_config()) as client:
            assert client.health_check() is False

    def test_upload(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should post the batch and parse the outcome."""
        httpx_mock.add_response(
            method="POST",
            url="http://test/api/sync/upload",
            json={
                "stats": {"total": 1, "succeeded": 1, "failed": 0, "conflicts": 0},
                "syncedIds": ["r1"],
                "failed": [],
                "conflicts": [],
                "pendingPhotoUploads": [],
            },
        )

        with SyncClient(make_config()) as client:
            response = client.upload([make_item()], "device-1", "2024-05-01T11:00:00+00:00")

        assert response.synced_ids == ["r1"]
        body = json.loads(httpx_mock.get_request().content)
        assert body["deviceId"] == "device-1"
        assert body["syncTimestamp"] == "2024-05-01T11:00:00+00:00"
        assert body["items"] == [
            {
                "entityType": "report",
                "entityId": "r1",
                "operation": "create",
                "payload": {"id": "r1", "title": "Roof"},
                "clientUpdatedAt": "2024-05-01T10:00:00+00:00",
            }
        ]

    def test_upload_unauthorized(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """401 raises AuthenticationError."""
        httpx_mock.add_response(url="http://test/api/sync/upload", status_code=401)

        with SyncClient(make_config()) as client, pytest.raises(AuthenticationError):
            client.upload([make_item()], "device-1", "2024-05-01T11:00:00+00:00")

    def test_upload_server_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """5xx raises ServerError with the detail message."""
        httpx_mock.add_response(
            url="http://test/api/sync/upload",
            status_code=503,
            json={"detail": "maintenance"},
        )

        with SyncClient(make_config()) as client, pytest.raises(ServerError) as exc_info:
            client.upload([make_item()], "device-1", "2024-05-01T11:00:00+00:00")
        assert exc_info.value.status_code == 503
        assert "maintenance" in str(exc_info.value)

    def test_upload_bad_request(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """4xx other than 401/404 raises a plain APIError."""
        httpx_mock.add_response(
            url="http://test/api/sync/upload",
            status_code=422,
            json={"detail": "invalid body"},
        )

        with SyncClient(make_config()) as client, pytest.raises(APIError) as exc_info:
            client.upload([make_item()], "device-1", "2024-05-01T11:00:00+00:00")
        assert not isinstance(exc_info.value, (ServerError, NetworkError))

    def test_upload_malformed_response(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Unparseable bodies raise APIError."""
        httpx_mock.add_response(url="http://test/api/sync/upload", text="not json")

        with SyncClient(make_config()) as client, pytest.raises(APIError):
            client.upload([make_item()], "device-1", "2024-05-01T11:00:00+00:00")

    def test_timeout_is_network_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Timeouts raise NetworkError."""
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))

        with SyncClient(make_config()) as client, pytest.raises(NetworkError):
            client.upload([make_item()], "device-1", "2024-05-01T11:00:00+00:00")

    def test_bootstrap_full(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Without a watermark no lastSyncAt parameter is sent."""
        httpx_mock.add_response(
            url="http://test/api/sync/bootstrap",
            json={
                "success": True,
                "data": {
                    "checklists": [{"id": "c1", "name": "Fire"}],
                    "templates": [{"id": "t1", "name": "Annual"}],
                    "reports": [],
                    "lastSyncAt": "2024-05-01T10:00:00+00:00",
                },
            },
        )

        with SyncClient(make_config()) as client:
            data = client.bootstrap()

        assert data.checklists[0]["id"] == "c1"
        assert data.templates[0]["id"] == "t1"
        assert "lastSyncAt" not in httpx_mock.get_request().url.params

    def test_bootstrap_since(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """The watermark is sent as lastSyncAt."""
        httpx_mock.add_response(json={"success": True, "data": {}})

        with SyncClient(make_config()) as client:
            client.bootstrap("2024-05-01T10:00:00+00:00")

        request = httpx_mock.get_request()
        assert request.url.path == "/api/sync/bootstrap"
        assert request.url.params["lastSyncAt"] == "2024-05-01T10:00:00+00:00"

    def test_bootstrap_refused(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """success: false raises APIError."""
        httpx_mock.add_response(
            url="http://test/api/sync/bootstrap",
            json={"success": False, "error": "account disabled"},
        )

        with SyncClient(make_config()) as client, pytest.raises(APIError, match="disabled"):
            client.bootstrap()

    def test_bootstrap_not_found(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """404 raises NotFoundError."""
        httpx_mock.add_response(url="http://test/api/sync/bootstrap", status_code=404)

        with SyncClient(make_config()) as client, pytest.raises(NotFoundError):
            client.bootstrap()

    def test_upload_photo(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Photo bytes are sent with PUT to the upload URL."""
        httpx_mock.add_response(
            method="PUT", url="http://test/api/photos/p1/content", status_code=204
        )

        with SyncClient(make_config()) as client:
            client.upload_photo(PhotoUploadTarget("p1", "/api/photos/p1/content"), b"jpeg")

        request = httpx_mock.get_request()
        assert request.content == b"jpeg"
        assert request.headers["Content-Type"] == "image/jpeg"
