"""Sync commands for the fieldsync CLI.

Commands:
- sync: Run one sync cycle
- retry-failed: Re-send rejected queue entries
- status: Show the sync state
- background: Run the background trigger
"""

from __future__ import annotations

import sys
import threading

import click

from fieldsync.client.background import BackgroundSync, RunResult
from fieldsync.client.cli.engine import echo_progress, echo_result, open_engine
from fieldsync.core.types import ConflictPolicy

POLICY_CHOICES = [policy.value for policy in ConflictPolicy]


@click.command()
@click.option(
    "--policy",
    type=click.Choice(POLICY_CHOICES),
    default=None,
    help="Conflict policy for this run (default: from config, else manual).",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not print progress.")
def sync(policy: str | None, quiet: bool) -> None:
    """Upload queued changes and download server data."""
    with open_engine(conflict_policy=policy) as engine:
        if not quiet:
            engine.on_progress(echo_progress)
        result = engine.sync()
        echo_result(result)
    if not result.success:
        sys.exit(1)


@click.command("retry-failed")
def retry_failed() -> None:
    """Reset and re-send queue entries the server rejected."""
    with open_engine() as engine:
        failed = engine.get_failed_count()
        if failed == 0:
            click.echo("No failed uploads.")
            return
        click.echo(f"Retrying {failed} failed uploads...")
        engine.on_progress(echo_progress)
        result = engine.retry_failed()
        echo_result(result)
    if not result.success:
        sys.exit(1)


@click.command()
def status() -> None:
    """Show connectivity, queue size and the last sync outcome."""
    with open_engine() as engine:
        engine.network.check()
        snapshot = engine.get_sync_state()

    click.echo(f"Online:            {'yes' if snapshot.is_online else 'no'}")
    click.echo(f"Last sync:         {snapshot.last_sync_at or 'never'}")
    click.echo(f"Pending uploads:   {snapshot.pending_uploads}")
    click.echo(f"Failed uploads:    {snapshot.failed_uploads}")
    click.echo(f"Pending downloads: {snapshot.pending_downloads}")
    if snapshot.last_error:
        click.echo(f"Last error:        {snapshot.last_error.code}: {snapshot.last_error.message}")


@click.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between runs (minimum 900).",
)
@click.option("--once", is_flag=True, help="Run a single background sync and exit.")
def background(interval: float | None, once: bool) -> None:
    """Run sync on an interval and whenever the network comes back."""
    with open_engine() as engine:
        background_sync = BackgroundSync(engine, interval or engine.config.background_interval)

        if once:
            outcome = background_sync.trigger()
            run = background_sync.log[-1]
            click.echo(f"Background sync: {outcome.value} ({run.message})")
            if outcome is RunResult.FAILED:
                sys.exit(1)
            return

        background_sync.register()
        background_sync.attach_network(engine.network)
        engine.network.start()
        click.echo(
            f"Background sync every {background_sync.interval:.0f}s. Press Ctrl+C to stop."
        )
        stop = threading.Event()
        try:
            while not stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            click.echo("\nStopping background sync...")
        finally:
            engine.network.stop()
            background_sync.unregister()
