"""Tests for the reference server endpoints."""

import time
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from fieldsync.server.app import create_app
from fieldsync.server.database import Database


@pytest.fixture
def db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a test database."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def client(db: Database) -> TestClient:
    """Create a test client with the app."""
    app = create_app(db)
    return TestClient(app)


@pytest.fixture
def auth_headers(db: Database) -> dict[str, str]:
    """Create auth headers with a valid token."""
    inspector = db.create_inspector("test-inspector", "inspector@example.com")
    raw_token, _ = db.create_token(inspector.id)
    return {"Authorization": f"Bearer {raw_token}"}


def item(
    entity_id: str,
    operation: str = "create",
    client_updated_at: str = "2024-05-01T10:00:00+00:00",
    entity_type: str = "report",
    **fields: object,
) -> dict[str, object]:
    """Build an upload item."""
    return {
        "entityType": entity_type,
        "entityId": entity_id,
        "operation": operation,
        "payload": {"id": entity_id, "updatedAt": client_updated_at, **fields},
        "clientUpdatedAt": client_updated_at,
    }


def upload(client: TestClient, headers: dict[str, str], *items: dict[str, object]) -> dict:
    """Post an upload batch and return the JSON body."""
    response = client.post(
        "/api/sync/upload",
        json={"items": list(items), "deviceId": "device-1"},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Health endpoint should return OK without a token."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestAuthentication:
    """Tests for bearer token checks."""

    def test_missing_token(self, client: TestClient) -> None:
        """Requests without a token are rejected."""
        response = client.get("/api/sync/bootstrap")
        assert response.status_code == 401

    def test_invalid_token(self, client: TestClient) -> None:
        """Unknown tokens are rejected."""
        response = client.get(
            "/api/sync/bootstrap", headers={"Authorization": "Bearer fs_invalid"}
        )
        assert response.status_code == 401


class TestUploadEndpoint:
    """Tests for POST /api/sync/upload."""

    def test_upload_creates_entities(
        self, client: TestClient, db: Database, auth_headers: dict[str, str]
    ) -> None:
        """Accepted entities are listed in syncedIds."""
        body = upload(
            client, auth_headers, item("r1", title="Roof"), item("d1", entity_type="defect")
        )

        assert body["syncedIds"] == ["r1", "d1"]
        assert body["stats"] == {"total": 2, "succeeded": 2, "failed": 0, "conflicts": 0}
        assert db.get_entity("report", "r1") is not None

    def test_items_of_one_entity_applied_in_order(
        self, client: TestClient, db: Database, auth_headers: dict[str, str]
    ) -> None:
        """create then update of the same entity yields the update."""
        upload(
            client,
            auth_headers,
            item("r1", title="first"),
            item("r1", "update", "2024-05-01T10:05:00+00:00", title="second"),
        )

        bootstrap = client.get("/api/sync/bootstrap", headers=auth_headers).json()
        assert [r["title"] for r in bootstrap["data"]["reports"]] == ["second"]

    def test_rejected_item(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """Invalid items are reported in failed; the rest is applied."""
        bad = item("r2")
        bad["payload"] = {"id": "other"}

        body = upload(client, auth_headers, item("r1"), bad)

        assert body["syncedIds"] == ["r1"]
        assert body["failed"] == [{"id": "r2", "error": "Payload id does not match entityId"}]

    def test_later_items_skipped_after_rejection(
        self, client: TestClient, db: Database, auth_headers: dict[str, str]
    ) -> None:
        """An entity whose first item fails does not get its later items applied."""
        bad = item("r1")
        bad["payload"] = {"id": "other"}

        body = upload(client, auth_headers, bad, item("r1", "update", title="later"))

        assert body["syncedIds"] == []
        assert [f["id"] for f in body["failed"]] == ["r1"]
        assert db.get_entity("report", "r1") is None

    def test_outcomes_separate_per_entity_type(
        self, client: TestClient, db: Database, auth_headers: dict[str, str]
    ) -> None:
        """A rejected report does not block a photo that shares its id."""
        bad = item("x1")
        bad["payload"] = {"id": "other"}

        body = upload(
            client,
            auth_headers,
            bad,
            item("x1", entity_type="photo"),
            item("x1", "update", entity_type="photo", caption="later"),
        )

        assert body["syncedIds"] == ["x1"]
        assert [f["id"] for f in body["failed"]] == ["x1"]
        assert db.get_entity("report", "x1") is None
        assert db.get_entity("photo", "x1") is not None
        assert body["pendingPhotoUploads"] == [
            {"entityId": "x1", "uploadUrl": "/api/photos/x1/content"}
        ]

    def test_conflict_reported(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """A stale change that diverges is returned with the server version."""
        upload(
            client,
            auth_headers,
            item("r1", client_updated_at="2024-05-01T12:00:00+00:00", title="Server"),
        )

        body = upload(
            client,
            auth_headers,
            item("r1", "update", "2024-05-01T10:00:00+00:00", title="Local"),
        )

        assert body["syncedIds"] == []
        conflict = body["conflicts"][0]
        assert conflict["entityId"] == "r1"
        assert conflict["entityType"] == "report"
        assert conflict["serverVersion"]["title"] == "Server"
        assert conflict["serverUpdatedAt"].startswith("2024-05-01T12:00:00")
        assert conflict["clientUpdatedAt"] == "2024-05-01T10:00:00+00:00"

    def test_photo_upload_url_returned(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        """A photo without a binary gets an upload URL."""
        body = upload(client, auth_headers, item("p1", entity_type="photo"))

        assert body["pendingPhotoUploads"] == [
            {"entityId": "p1", "uploadUrl": "/api/photos/p1/content"}
        ]

    def test_invalid_body(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """A body without items is a validation error."""
        response = client.post(
            "/api/sync/upload", json={"deviceId": "device-1"}, headers=auth_headers
        )
        assert response.status_code == 422


class TestBootstrapEndpoint:
    """Tests for GET /api/sync/bootstrap."""

    def test_full_bootstrap(
        self, client: TestClient, db: Database, auth_headers: dict[str, str]
    ) -> None:
        """Reference data, reports and the inspector are returned."""
        db.upsert_checklist({"id": "c1", "name": "Fire", "standard": "AS1851"})
        db.upsert_template({"id": "t1", "name": "Annual", "inspectionType": "annual"})
        upload(client, auth_headers, item("r1", title="Roof"), item("d1", entity_type="defect"))

        response = client.get("/api/sync/bootstrap", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert [c["id"] for c in data["checklists"]] == ["c1"]
        assert [t["id"] for t in data["templates"]] == ["t1"]
        assert [r["id"] for r in data["reports"]] == ["r1"]
        assert data["user"]["name"] == "test-inspector"
        assert data["lastSyncAt"]

    def test_incremental_bootstrap(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        """Only reports received after lastSyncAt are returned."""
        upload(client, auth_headers, item("r1"))
        time.sleep(0.01)
        watermark = client.get("/api/sync/bootstrap", headers=auth_headers).json()["data"][
            "lastSyncAt"
        ]
        upload(client, auth_headers, item("r2"))

        response = client.get(
            "/api/sync/bootstrap", params={"lastSyncAt": watermark}, headers=auth_headers
        )

        assert [r["id"] for r in response.json()["data"]["reports"]] == ["r2"]

    def test_deleted_reports_included(
        self, client: TestClient, auth_headers: dict[str, str]
    ) -> None:
        """Tombstones are sent so devices can drop their copy."""
        upload(
            client,
            auth_headers,
            item("r1"),
            item("r1", "delete", "2024-05-01T11:00:00+00:00"),
        )

        reports = client.get("/api/sync/bootstrap", headers=auth_headers).json()["data"]["reports"]

        assert reports[0]["deleted"] is True

    def test_invalid_watermark(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """A malformed lastSyncAt is a bad request."""
        response = client.get(
            "/api/sync/bootstrap", params={"lastSyncAt": "yesterday"}, headers=auth_headers
        )
        assert response.status_code == 400


class TestPhotoEndpoints:
    """Tests for photo binary upload and download."""

    def test_upload_and_download(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """A stored binary is served back and no longer requested."""
        upload(client, auth_headers, item("p1", entity_type="photo"))

        response = client.put(
            "/api/photos/p1/content",
            content=b"jpeg-bytes",
            headers={**auth_headers, "Content-Type": "image/jpeg"},
        )
        assert response.status_code == 204

        download = client.get("/api/photos/p1/content", headers=auth_headers)
        assert download.content == b"jpeg-bytes"
        assert download.headers["content-type"] == "image/jpeg"

        body = upload(
            client,
            auth_headers,
            item("p1", "update", "2024-05-01T11:00:00+00:00", entity_type="photo"),
        )
        assert body["pendingPhotoUploads"] == []

    def test_upload_unknown_photo(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """Binaries for unknown photo entities are refused."""
        response = client.put(
            "/api/photos/nope/content", content=b"x", headers=auth_headers
        )
        assert response.status_code == 404

    def test_empty_body(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """An empty binary is refused."""
        upload(client, auth_headers, item("p1", entity_type="photo"))
        response = client.put("/api/photos/p1/content", content=b"", headers=auth_headers)
        assert response.status_code == 400

    def test_missing_content(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """Downloading a binary that was never uploaded is a 404."""
        response = client.get("/api/photos/p1/content", headers=auth_headers)
        assert response.status_code == 404
