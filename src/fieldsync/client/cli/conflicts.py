"""Conflict commands for the fieldsync CLI.

Conflicts are kept in memory by the engine, so both commands run a sync
cycle first; the server reports every unresolved conflict again.

Commands:
- conflicts: List conflicts awaiting a decision
- resolve: Keep the local or the server version of an entity
"""

from __future__ import annotations

import json
import sys

import click

from fieldsync.client.cli.engine import open_engine
from fieldsync.client.sync import ConflictResolutionError
from fieldsync.core.types import ConflictPolicy, ConflictResolution


@click.command()
@click.option("--details", is_flag=True, help="Print both versions.")
def conflicts(details: bool) -> None:
    """List conflicts between queued changes and the server."""
    with open_engine(conflict_policy=ConflictPolicy.MANUAL) as engine:
        engine.sync()
        pending = engine.conflicts

    if not pending:
        click.echo("No conflicts.")
        return

    for conflict in pending:
        click.echo(
            f"{conflict.entity_type.value} {conflict.entity_id}: "
            f"local {conflict.local_updated_at}, server {conflict.server_updated_at}"
        )
        if details:
            click.echo(f"  local:  {json.dumps(conflict.local_version, sort_keys=True)}")
            click.echo(f"  server: {json.dumps(conflict.server_version, sort_keys=True)}")


@click.command()
@click.argument("entity_id")
@click.argument("resolution", type=click.Choice([r.value for r in ConflictResolution]))
def resolve(entity_id: str, resolution: str) -> None:
    """Resolve the conflict on ENTITY_ID with RESOLUTION."""
    with open_engine(conflict_policy=ConflictPolicy.MANUAL) as engine:
        engine.sync()
        try:
            resolved = engine.resolve(entity_id, resolution)
        except ConflictResolutionError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    if not resolved:
        click.echo(f"No conflict on {entity_id}.")
        return
    click.echo(f"Resolved {entity_id}: {resolution}")
