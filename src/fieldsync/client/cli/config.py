"""Configuration utilities for the fieldsync CLI.

Settings live in ~/.fieldsync/config.json. FIELDSYNC_SERVER_URL and
FIELDSYNC_TOKEN override the stored server settings, FIELDSYNC_HOME moves
the whole directory.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from fieldsync.core.config import ServerConfig, SyncConfig


class ConfigError(Exception):
    """The CLI is not configured well enough to run a command."""


def get_config_dir() -> Path:
    """Get the configuration directory.

    Returns:
        Path to $FIELDSYNC_HOME, or ~/.fieldsync.
    """
    home = os.environ.get("FIELDSYNC_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".fieldsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_path() -> Path:
    """Get the path to the local sync database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_server_config() -> ServerConfig:
    """Build the server configuration, applying environment overrides.

    Raises:
        ConfigError: If no server URL or token is configured.
    """
    config = load_config()
    server_url = os.environ.get("FIELDSYNC_SERVER_URL") or config.get("server_url")
    token = os.environ.get("FIELDSYNC_TOKEN") or config.get("token")
    if not server_url or not token:
        raise ConfigError("Not configured. Run 'fieldsync configure' first.")
    return ServerConfig(
        server_url=server_url,
        token=token,
        timeout=float(config.get("timeout", 30.0)),
        verify_ssl=bool(config.get("verify_ssl", True)),
    )


def get_sync_config(**overrides: Any) -> SyncConfig:
    """Build the engine configuration from the "sync" section of the config file."""
    values = dict(load_config().get("sync") or {})
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SyncConfig(**values)
