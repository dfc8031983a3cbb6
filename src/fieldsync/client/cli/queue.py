"""Queue commands for the fieldsync CLI.

Commands:
- enqueue: Record a local change (testing and debugging)
- queue: List queued changes
- discard: Abandon a queued change
"""

from __future__ import annotations

import json
import sys

import click

from fieldsync.client.cli.config import get_state_path
from fieldsync.client.cli.engine import open_engine
from fieldsync.client.state import LocalSyncState, StoreError
from fieldsync.core.timeutil import utc_now
from fieldsync.core.types import EntityType, Operation


@click.command()
@click.argument("entity_type", type=click.Choice([t.value for t in EntityType]))
@click.argument("entity_id")
@click.argument("operation", type=click.Choice([o.value for o in Operation]))
@click.option("--payload", "payload_json", default="{}", help="Entity snapshot as JSON.")
def enqueue(entity_type: str, entity_id: str, operation: str, payload_json: str) -> None:
    """Queue a local change to ENTITY_TYPE ENTITY_ID."""
    try:
        payload = json.loads(payload_json)
    except json.JSONDecodeError as e:
        click.echo(f"Error: invalid JSON payload: {e}", err=True)
        sys.exit(1)
    if not isinstance(payload, dict):
        click.echo("Error: payload must be a JSON object", err=True)
        sys.exit(1)

    payload.setdefault("id", entity_id)
    payload.setdefault("updatedAt", utc_now())

    try:
        state = LocalSyncState(get_state_path())
        try:
            queue_id = state.enqueue(entity_type, entity_id, operation, payload)
        finally:
            state.close()
    except StoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Queued {operation} {entity_type} {entity_id} (#{queue_id})")


@click.command("queue")
def list_queue() -> None:
    """List queued changes in upload order."""
    try:
        state = LocalSyncState(get_state_path())
        try:
            entries = state.list_pending()
        finally:
            state.close()
    except StoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not entries:
        click.echo("Queue is empty.")
        return

    for entry in entries:
        line = (
            f"#{entry.id} {entry.operation.value} {entry.entity_type.value} {entry.entity_id} "
            f"(attempts {entry.attempt_count})"
        )
        if entry.last_error:
            line += f" - {entry.last_error}"
        click.echo(line)


@click.command()
@click.argument("queue_id", type=int)
@click.confirmation_option(prompt="Abandon this change for good?")
def discard(queue_id: int) -> None:
    """Abandon the queued change QUEUE_ID."""
    with open_engine() as engine:
        found = engine.discard(queue_id)
    if not found:
        click.echo(f"Error: no queued change #{queue_id}", err=True)
        sys.exit(1)
    click.echo(f"Discarded #{queue_id}")
