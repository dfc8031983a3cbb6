"""Timestamp helpers.

All timestamps exchanged with the backend and stored locally are ISO-8601
strings in UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp.

    Naive values are taken as UTC. Returns None for empty or invalid input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def is_newer(candidate: str | None, reference: str | None) -> bool:
    """Check whether candidate is strictly later than reference.

    A missing candidate is never newer; a missing reference is older than
    any valid candidate.
    """
    candidate_dt = parse_timestamp(candidate)
    if candidate_dt is None:
        return False
    reference_dt = parse_timestamp(reference)
    if reference_dt is None:
        return True
    return candidate_dt > reference_dt
