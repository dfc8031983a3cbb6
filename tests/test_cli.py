"""Tests for CLI commands - configure, queue, sync, conflicts, server."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from pytest_httpx import HTTPXMock

from fieldsync.client.cli import cli, load_config
from fieldsync.client.state import LocalSyncState
from fieldsync.server.database import Database

# Nothing listens here, so every command runs offline.
OFFLINE_URL = "http://127.0.0.1:1"


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a temporary config directory."""
    config_dir = tmp_path / ".fieldsync"
    monkeypatch.setenv("FIELDSYNC_HOME", str(config_dir))
    monkeypatch.delenv("FIELDSYNC_SERVER_URL", raising=False)
    monkeypatch.delenv("FIELDSYNC_TOKEN", raising=False)
    return config_dir


@pytest.fixture
def configured(runner: CliRunner, home: Path) -> Path:
    """A config directory with an unreachable server configured."""
    result = runner.invoke(
        cli, ["configure", "--server", OFFLINE_URL, "--token", "fs_test", "--no-check"]
    )
    assert result.exit_code == 0
    return home


class TestConfigureCommand:
    """Tests for 'fieldsync configure'."""

    def test_stores_server_and_token(self, runner: CliRunner, home: Path) -> None:
        """Settings land in config.json with the trailing slash stripped."""
        result = runner.invoke(
            cli,
            ["configure", "--server", "http://example.test/", "--token", "fs_abc", "--no-check"],
        )

        assert result.exit_code == 0
        assert load_config() == {"server_url": "http://example.test", "token": "fs_abc"}
        assert (home / "config.json").exists()

    def test_prompts_for_token(self, runner: CliRunner, home: Path) -> None:
        """The token is prompted for when not given."""
        result = runner.invoke(
            cli, ["configure", "--server", "http://example.test", "--no-check"], input="fs_x\n"
        )

        assert result.exit_code == 0
        assert load_config()["token"] == "fs_x"

    def test_checks_health(self, runner: CliRunner, home: Path, httpx_mock: HTTPXMock) -> None:
        """The server is probed before anything is saved."""
        httpx_mock.add_response(url="http://fieldsync.test/health", json={"status": "ok"})

        result = runner.invoke(
            cli, ["configure", "--server", "http://fieldsync.test", "--token", "fs_abc"]
        )

        assert result.exit_code == 0
        assert "Configured server http://fieldsync.test" in result.output

    def test_unhealthy_server(self, runner: CliRunner, home: Path, httpx_mock: HTTPXMock) -> None:
        """A failing health check leaves the config untouched."""
        httpx_mock.add_response(url="http://fieldsync.test/health", status_code=503)

        result = runner.invoke(
            cli, ["configure", "--server", "http://fieldsync.test", "--token", "fs_abc"]
        )

        assert result.exit_code == 1
        assert load_config() == {}


class TestQueueCommands:
    """Tests for enqueue, queue and discard."""

    def test_enqueue_and_list(self, runner: CliRunner, home: Path) -> None:
        """Queued changes are listed in order."""
        runner.invoke(cli, ["enqueue", "report", "r1", "create", "--payload", '{"title": "Roof"}'])
        runner.invoke(cli, ["enqueue", "defect", "d1", "update"])

        result = runner.invoke(cli, ["queue"])

        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert lines[0].startswith("#1 create report r1")
        assert lines[1].startswith("#2 update defect d1")

    def test_enqueue_fills_id_and_timestamp(self, runner: CliRunner, home: Path) -> None:
        """The payload gets the entity id and an updatedAt stamp."""
        runner.invoke(cli, ["enqueue", "report", "r1", "create", "--payload", '{"title": "Roof"}'])

        state = LocalSyncState(home / "state.db")
        try:
            entry = state.list_pending()[0]
        finally:
            state.close()
        assert entry.payload["id"] == "r1"
        assert entry.payload["title"] == "Roof"
        assert "updatedAt" in entry.payload

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]"])
    def test_enqueue_invalid_payload(self, runner: CliRunner, home: Path, payload: str) -> None:
        """Payloads must be JSON objects."""
        result = runner.invoke(cli, ["enqueue", "report", "r1", "create", "--payload", payload])
        assert result.exit_code == 1

    def test_enqueue_unknown_entity_type(self, runner: CliRunner, home: Path) -> None:
        """Entity types outside the synced set are refused by click."""
        result = runner.invoke(cli, ["enqueue", "invoice", "i1", "create"])
        assert result.exit_code == 2

    def test_empty_queue(self, runner: CliRunner, home: Path) -> None:
        """An empty queue is reported as such."""
        result = runner.invoke(cli, ["queue"])
        assert "Queue is empty." in result.output

    def test_discard(self, runner: CliRunner, configured: Path) -> None:
        """A discarded change leaves the queue."""
        runner.invoke(cli, ["enqueue", "report", "r1", "create"])

        result = runner.invoke(cli, ["discard", "1", "--yes"])

        assert result.exit_code == 0
        assert "Discarded #1" in result.output
        assert "Queue is empty." in runner.invoke(cli, ["queue"]).output

    def test_discard_unknown(self, runner: CliRunner, configured: Path) -> None:
        """Discarding a missing entry fails."""
        result = runner.invoke(cli, ["discard", "42", "--yes"])
        assert result.exit_code == 1


class TestSyncCommands:
    """Tests for sync, status, conflicts and background while offline."""

    def test_sync_requires_configuration(self, runner: CliRunner, home: Path) -> None:
        """Sync without a server configured exits with an error."""
        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 1
        assert "Not configured" in result.output

    def test_env_overrides_config(
        self, runner: CliRunner, home: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """FIELDSYNC_SERVER_URL and FIELDSYNC_TOKEN stand in for configure."""
        monkeypatch.setenv("FIELDSYNC_SERVER_URL", OFFLINE_URL)
        monkeypatch.setenv("FIELDSYNC_TOKEN", "fs_env")

        result = runner.invoke(cli, ["sync", "-q"])

        assert result.exit_code == 0

    def test_offline_sync_keeps_queue(self, runner: CliRunner, configured: Path) -> None:
        """Offline sync succeeds and leaves queued changes in place."""
        runner.invoke(cli, ["enqueue", "report", "r1", "create"])

        result = runner.invoke(cli, ["sync"])

        assert result.exit_code == 0
        assert "Offline - using cached data" in result.output
        assert "Sync OK" in result.output
        assert "#1 create report r1" in runner.invoke(cli, ["queue"]).output

    def test_invalid_policy(self, runner: CliRunner, configured: Path) -> None:
        """Unknown conflict policies are refused."""
        result = runner.invoke(cli, ["sync", "--policy", "coin_flip"])
        assert result.exit_code == 2

    def test_status(self, runner: CliRunner, configured: Path) -> None:
        """Status reports connectivity and queue size."""
        runner.invoke(cli, ["enqueue", "report", "r1", "create"])

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "Online:            no" in result.output
        assert "Pending uploads:   1" in result.output
        assert "Last sync:         never" in result.output

    def test_retry_failed_nothing_to_do(self, runner: CliRunner, configured: Path) -> None:
        """retry-failed with no failed entries says so."""
        result = runner.invoke(cli, ["retry-failed"])

        assert result.exit_code == 0
        assert "No failed uploads." in result.output

    def test_no_conflicts(self, runner: CliRunner, configured: Path) -> None:
        """Without a server round trip there are no conflicts."""
        result = runner.invoke(cli, ["conflicts"])
        assert "No conflicts." in result.output

    def test_resolve_without_conflict(self, runner: CliRunner, configured: Path) -> None:
        """Resolving an entity without a conflict is a no-op."""
        result = runner.invoke(cli, ["resolve", "r1", "keep_local"])

        assert result.exit_code == 0
        assert "No conflict on r1." in result.output

    def test_background_once_offline(self, runner: CliRunner, configured: Path) -> None:
        """A single background run while offline reports no_data."""
        result = runner.invoke(cli, ["background", "--once"])

        assert result.exit_code == 0
        assert "Background sync: no_data (Offline)" in result.output


class TestServerCommands:
    """Tests for the reference server commands."""

    def test_create_inspector(self, runner: CliRunner, tmp_path: Path) -> None:
        """A new inspector gets a working token."""
        db_path = tmp_path / "server.db"

        result = runner.invoke(
            cli, ["server", "create-inspector", "alice", "--db-path", str(db_path)]
        )

        assert result.exit_code == 0
        token = result.output.split("Token: ")[1].strip()
        db = Database(db_path)
        try:
            validated = db.validate_token(token)
        finally:
            db.close()
        assert validated is not None

    def test_duplicate_inspector(self, runner: CliRunner, tmp_path: Path) -> None:
        """Inspector names are unique."""
        args = ["server", "create-inspector", "alice", "--db-path", str(tmp_path / "server.db")]
        runner.invoke(cli, args)

        result = runner.invoke(cli, args)

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_load_reference(self, runner: CliRunner, tmp_path: Path) -> None:
        """Checklists and templates are loaded from JSON."""
        source = tmp_path / "reference.json"
        source.write_text(
            json.dumps(
                {
                    "checklists": [{"id": "c1", "name": "Fire", "standard": "AS1851"}],
                    "templates": [{"id": "t1", "name": "Annual", "inspectionType": "annual"}],
                }
            )
        )
        db_path = tmp_path / "server.db"

        result = runner.invoke(
            cli, ["server", "load-reference", str(source), "--db-path", str(db_path)]
        )

        assert result.exit_code == 0
        assert "Loaded 1 checklists, 1 templates" in result.output
        db = Database(db_path)
        try:
            assert [c["id"] for c in db.list_checklists()] == ["c1"]
        finally:
            db.close()


def test_version(runner: CliRunner) -> None:
    """--version prints the package version."""
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "version" in result.output
