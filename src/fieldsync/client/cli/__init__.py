"""Command-line interface for fieldsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the server connection
- status: Show the sync state
- sync: Run one sync cycle
- retry-failed: Re-send rejected queue entries
- conflicts: List conflicts awaiting a decision
- resolve: Resolve a conflict
- enqueue: Queue a local change
- queue: List queued changes
- discard: Abandon a queued change
- background: Run the background trigger
- server: Reference server commands
"""

from __future__ import annotations

import logging

import click

from fieldsync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_server_config,
    get_state_path,
    get_sync_config,
    load_config,
    save_config,
)
from fieldsync.client.cli.configure import configure
from fieldsync.client.cli.conflicts import conflicts, resolve
from fieldsync.client.cli.queue import discard, enqueue, list_queue
from fieldsync.client.cli.server import server
from fieldsync.client.cli.sync import background, retry_failed, status, sync


@click.group()
@click.version_option(package_name="fieldsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """fieldsync - Offline sync for field inspection data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Setup
cli.add_command(configure)

# Sync commands
cli.add_command(status)
cli.add_command(sync)
cli.add_command(retry_failed)
cli.add_command(background)

# Conflict commands
cli.add_command(conflicts)
cli.add_command(resolve)

# Queue commands
cli.add_command(enqueue)
cli.add_command(list_queue)
cli.add_command(discard)

# Reference server commands
cli.add_command(server)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_server_config",
    "get_state_path",
    "get_sync_config",
    "load_config",
    "save_config",
]
