"""Shared configuration classes for fieldsync.

This module defines configuration classes used by the sync client, the
background trigger and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass

from fieldsync.core.types import ConflictPolicy

# Minimum interval between background runs. Mobile platforms enforce 15 minutes.
MIN_BACKGROUND_INTERVAL = 15 * 60


@dataclass
class ServerConfig:
    """Configuration for connecting to the remote sync endpoint.

    Attributes:
        server_url: Base URL of the backend (e.g., "https://api.example.com").
        token: Bearer token for the device's user.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")


@dataclass
class SyncConfig:
    """Tuning knobs for the sync engine.

    Attributes:
        max_attempts: Attempt ceiling; entries at or above it are suspended
            until an explicit retry_failed().
        bootstrap_retries: Attempts for the bootstrap/download request.
        bootstrap_backoff: Initial backoff in seconds between bootstrap attempts.
        network_check_interval: Seconds between connectivity polls.
        background_interval: Seconds between background sync runs.
        conflict_policy: How conflicts are resolved during a cycle.
    """

    max_attempts: int = 3
    bootstrap_retries: int = 3
    bootstrap_backoff: float = 1.0
    network_check_interval: float = 5.0
    background_interval: float = MIN_BACKGROUND_INTERVAL
    conflict_policy: ConflictPolicy = ConflictPolicy.MANUAL

    def __post_init__(self) -> None:
        """Validate values."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.bootstrap_retries < 1:
            raise ValueError("bootstrap_retries must be at least 1")
        self.background_interval = max(self.background_interval, MIN_BACKGROUND_INTERVAL)
        self.conflict_policy = ConflictPolicy(self.conflict_policy)
