"""Download phase of a sync cycle.

This module provides:
- BootstrapDownloader: Fetches reference data and recent reports and writes
  them to the local store

Server copies of reports never overwrite local work: a report with queued
changes, or a local draft newer than the server copy, is held aside in the
store and counted in pending_downloads. Held copies are applied by a later
cycle once the local change is gone (or at once when it is discarded).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fieldsync.client.sync.retry import retry_with_backoff
from fieldsync.client.sync.types import (
    CHECKLIST_DOWNLOAD_FAILED,
    REPORT_DOWNLOAD_FAILED,
    TEMPLATE_DOWNLOAD_FAILED,
    SyncErrorInfo,
    SyncResult,
)
from fieldsync.core.timeutil import is_newer, parse_timestamp
from fieldsync.core.types import EntityType, SyncStatus

if TYPE_CHECKING:
    from fieldsync.client.api import BootstrapData, SyncClient
    from fieldsync.client.state import LocalSyncState

logger = logging.getLogger(__name__)

# Local statuses that mean the row holds changes the server has not seen
_UNSENT_STATUSES = {SyncStatus.PENDING, SyncStatus.PROCESSING, SyncStatus.ERROR}


class BootstrapDownloader:
    """Writes server data to the local store."""

    def __init__(
        self,
        client: SyncClient,
        state: LocalSyncState,
        max_attempts: int = 3,
        initial_backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the downloader.

        Args:
            client: HTTP client for server communication.
            state: Local state database.
            max_attempts: Attempts for the bootstrap request.
            initial_backoff: Seconds before the first retry (doubles each time).
            sleep: Sleep function (injected by tests).
        """
        self._client = client
        self._state = state
        self._max_attempts = max_attempts
        self._initial_backoff = initial_backoff
        self._sleep = sleep

    def fetch(self) -> BootstrapData:
        """Request everything changed since the report watermark.

        Raises:
            APIError: When every attempt failed, or on a non-transient error.
        """
        since = self._state.get_watermark(EntityType.REPORT)
        logger.debug(f"Bootstrapping since {since or 'the beginning'}")
        return retry_with_backoff(
            lambda: self._client.bootstrap(since),
            max_attempts=self._max_attempts,
            initial_backoff=self._initial_backoff,
            sleep=self._sleep,
        )

    def save_checklists(self, checklists: list[dict[str, Any]], result: SyncResult) -> None:
        """Cache checklist definitions; malformed ones are reported and skipped."""
        for checklist in checklists:
            if not checklist.get("id") or not checklist.get("name"):
                self._reject(result, CHECKLIST_DOWNLOAD_FAILED, "checklist", checklist)
                continue
            self._state.save_checklist(checklist)
            result.downloaded.checklists += 1

    def save_templates(self, templates: list[dict[str, Any]], result: SyncResult) -> None:
        """Cache report templates; malformed ones are reported and skipped."""
        for template in templates:
            if not template.get("id") or not template.get("name"):
                self._reject(result, TEMPLATE_DOWNLOAD_FAILED, "template", template)
                continue
            self._state.save_template(template)
            result.downloaded.templates += 1

    def merge_reports(self, reports: list[dict[str, Any]], result: SyncResult) -> int:
        """Write server reports into the local mirror.

        Reports with local changes are held aside. Held copies from earlier
        cycles are applied once their local changes are gone.

        Returns:
            Number of server reports still held back.
        """
        received: set[str] = set()
        for report in reports:
            report_id = report.get("id")
            if not report_id:
                self._reject(result, REPORT_DOWNLOAD_FAILED, "report", report)
                continue
            report_id = str(report_id)
            received.add(report_id)

            if self._has_local_changes(report_id, report):
                logger.debug(f"Keeping local copy of report {report_id}")
                self._state.hold_server_copy(EntityType.REPORT, report)
                continue

            if report.get("deleted"):
                self._state.remove_entity(EntityType.REPORT, report_id)
            else:
                self._state.upsert_entity_mirror(EntityType.REPORT, report)
            self._state.drop_held_copy(EntityType.REPORT, report_id)
            result.downloaded.reports += 1

        for held in self._state.list_held_copies(EntityType.REPORT):
            report_id = str(held["id"])
            if report_id in received or self._has_local_changes(report_id, held):
                continue
            logger.debug(f"Applying held server copy of report {report_id}")
            self._state.apply_held_copy(EntityType.REPORT, report_id)
            result.downloaded.reports += 1

        return self._state.get_pending_downloads()

    def advance_watermark(self, data: BootstrapData) -> None:
        """Remember up to when server reports were downloaded."""
        watermark = data.last_sync_at
        if not watermark:
            stamps = [r["updatedAt"] for r in data.reports if parse_timestamp(r.get("updatedAt"))]
            watermark = max(stamps, key=parse_timestamp) if stamps else None
        if watermark:
            self._state.set_watermark(EntityType.REPORT, watermark)

    def _has_local_changes(self, report_id: str, report: dict[str, Any]) -> bool:
        local = self._state.get_entity(EntityType.REPORT, report_id)
        if local is None:
            return False
        if local.sync_status in _UNSENT_STATUSES:
            return True
        if self._state.list_queued_for_entity(EntityType.REPORT, report_id):
            return True
        return local.sync_status is SyncStatus.DRAFT and is_newer(
            local.updated_at, report.get("updatedAt")
        )

    @staticmethod
    def _reject(result: SyncResult, code: str, kind: str, item: dict[str, Any]) -> None:
        message = f"Malformed {kind} in bootstrap response: {item.get('id') or '<no id>'}"
        logger.warning(message)
        result.errors.append(SyncErrorInfo(code, message, retryable=True))
