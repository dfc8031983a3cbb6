"""Pytest fixtures for integration tests.

This module provides fixtures for end-to-end testing of sync engines
against the reference server running in a background uvicorn thread.
"""

from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
import uvicorn
from httpx import Client

from fieldsync.client.api import SyncClient
from fieldsync.client.network import NetworkMonitor
from fieldsync.client.state import LocalSyncState
from fieldsync.client.sync import PhotoUploader, SyncEngine
from fieldsync.core.config import ServerConfig, SyncConfig
from fieldsync.server.app import create_app
from fieldsync.server.database import Database


@dataclass
class TestServer:
    """Container for test server resources."""

    db: Database
    url: str

    def create_token(self, name: str) -> str:
        """Create an inspector and return its raw token."""
        inspector = self.db.create_inspector(name)
        raw_token, _ = self.db.create_token(inspector.id)
        return raw_token


@dataclass
class Device:
    """A simulated field device."""

    name: str
    state: LocalSyncState
    client: SyncClient
    engine: SyncEngine
    network: NetworkMonitor
    online: bool = True

    def edit_report(self, report_id: str, operation: str = "create", **fields: Any) -> int:
        """Queue a report change; pass updatedAt in fields to stamp it."""
        payload = {"id": report_id, **fields}
        return self.state.enqueue("report", report_id, operation, payload)


class UvicornTestServer:
    """Uvicorn server running in a background thread for testing."""

    def __init__(self, app: Any, host: str = "127.0.0.1") -> None:
        self.app = app
        self.host = host
        self.port = 0
        self.server: uvicorn.Server | None = None
        self.thread: threading.Thread | None = None

    def start(self) -> int:
        """Start the server and return the port."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((self.host, 0))
            self.port = s.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        self.server = uvicorn.Server(config)

        self.thread = threading.Thread(target=self.server.run, daemon=True)
        self.thread.start()

        self._wait_for_ready()
        return self.port

    def _wait_for_ready(self, timeout: float = 5.0) -> None:
        """Wait for the server to be ready to accept connections."""
        start = time.time()
        while time.time() - start < timeout:
            try:
                with Client() as client:
                    response = client.get(f"http://{self.host}:{self.port}/health")
                    if response.status_code == 200:
                        return
            except Exception:
                pass
            time.sleep(0.1)
        raise RuntimeError("Server failed to start in time")

    def stop(self) -> None:
        """Stop the server."""
        if self.server:
            self.server.should_exit = True
        if self.thread:
            self.thread.join(timeout=5.0)


@pytest.fixture
def test_server(tmp_path: Path) -> Generator[TestServer, None, None]:
    """Start the reference server on a free port."""
    db = Database(tmp_path / "server" / "test.db")
    server = UvicornTestServer(create_app(db))
    port = server.start()

    yield TestServer(db=db, url=f"http://127.0.0.1:{port}")

    server.stop()
    db.close()


@pytest.fixture
def device_factory(
    tmp_path: Path, test_server: TestServer
) -> Generator[Callable[..., Device], None, None]:
    """Factory fixture to create devices of distinct inspectors."""
    devices: list[Device] = []

    def _create_device(
        name: str | None = None,
        config: SyncConfig | None = None,
        photo_content: bytes | None = None,
    ) -> Device:
        name = name or f"device-{len(devices) + 1}"
        state = LocalSyncState(tmp_path / "devices" / name / "state.db")
        client = SyncClient(ServerConfig(test_server.url, test_server.create_token(name)))
        photo_uploader: PhotoUploader | None = None
        if photo_content is not None:
            photo_uploader = lambda target: client.upload_photo(target, photo_content)  # noqa: E731
        device: Device
        network = NetworkMonitor(lambda: device.online and client.health_check())
        engine = SyncEngine(
            client,
            state,
            network=network,
            config=config,
            photo_uploader=photo_uploader,
            sleep=lambda seconds: None,
        )
        device = Device(name, state, client, engine, network)
        devices.append(device)
        return device

    yield _create_device

    for device in devices:
        device.client.close()
        device.state.close()
