"""Engine construction shared by CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from fieldsync.client.api import SyncClient
from fieldsync.client.cli.config import (
    ConfigError,
    get_server_config,
    get_state_path,
    get_sync_config,
)
from fieldsync.client.network import NetworkMonitor
from fieldsync.client.state import LocalSyncState, StoreError
from fieldsync.client.sync import SyncEngine, SyncResult


@contextmanager
def open_engine(**sync_overrides: Any) -> Iterator[SyncEngine]:
    """Open the local store and client and yield a ready engine.

    Exits with status 1 when the CLI is not configured or the local
    database cannot be opened.
    """
    try:
        server_config = get_server_config()
        sync_config = get_sync_config(**sync_overrides)
    except (ConfigError, ValueError, TypeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        state = LocalSyncState(get_state_path())
    except StoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    client = SyncClient(server_config)
    network = NetworkMonitor(client.health_check, sync_config.network_check_interval)
    try:
        yield SyncEngine(client, state, network=network, config=sync_config)
    finally:
        client.close()
        state.close()


def echo_progress(message: str, percent: int) -> None:
    """Progress callback printing one line per phase."""
    click.echo(f"[{percent:3d}%] {message}")


def echo_result(result: SyncResult) -> None:
    """Print a sync result summary."""
    status = "OK" if result.success else "FAILED"
    click.echo(f"\nSync {status} in {result.duration} ms")
    click.echo(
        f"  Uploaded:   {result.uploaded.total} "
        f"(reports {result.uploaded.reports}, photos {result.uploaded.photos}, "
        f"defects {result.uploaded.defects}, elements {result.uploaded.elements}, "
        f"compliance {result.uploaded.compliance})"
    )
    click.echo(
        f"  Downloaded: {result.downloaded.total} "
        f"(checklists {result.downloaded.checklists}, templates {result.downloaded.templates}, "
        f"reports {result.downloaded.reports})"
    )
    for conflict in result.conflicts:
        click.echo(
            f"  Conflict: {conflict.entity_type.value} {conflict.entity_id} "
            f"(local {conflict.local_updated_at}, server {conflict.server_updated_at})"
        )
    for error in result.errors:
        target = f" [{error.entity_type} {error.entity_id}]" if error.entity_id else ""
        retry = "retryable" if error.retryable else "not retryable"
        click.echo(f"  Error {error.code}{target}: {error.message} ({retry})", err=True)
