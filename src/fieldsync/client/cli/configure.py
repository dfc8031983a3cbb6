"""Configuration command for the fieldsync CLI.

Commands:
- configure: Store the server URL and access token
"""

from __future__ import annotations

import sys

import click
import httpx

from fieldsync.client.cli.config import load_config, save_config


@click.command()
@click.option("--server", required=True, help="Server URL (e.g., http://localhost:8000).")
@click.option("--token", prompt=True, hide_input=True, help="Access token of the inspector.")
@click.option("--check/--no-check", default=True, help="Verify the server is reachable.")
def configure(server: str, token: str, check: bool) -> None:
    """Store the server connection used by every other command."""
    server = server.rstrip("/")

    if check:
        try:
            response = httpx.get(f"{server}/health", timeout=10.0)
        except httpx.RequestError as e:
            click.echo(f"Error: Could not connect to server at {server}: {e}", err=True)
            sys.exit(1)
        if response.status_code != 200:
            click.echo(f"Error: Server health check failed (HTTP {response.status_code})", err=True)
            sys.exit(1)

    config = load_config()
    config["server_url"] = server
    config["token"] = token
    save_config(config)
    click.echo(f"Configured server {server}")
