"""Upload batch planning over the durable sync queue.

This module provides:
- UploadBatch: Queue entries selected for one upload request
- plan_batch: Select entries in FIFO-per-entity order

Ordering:
    Entries of the same entity keep their enqueue order inside the batch,
    so a create is always sent before the updates that follow it. Entries
    of different entities carry no relative ordering guarantee.

    If an entry cannot be sent (suspended at the attempt ceiling, or not
    selected by retry_failed), every later entry of the same entity is held
    back as well.

    Server outcomes are reported per entity id. When entities of different
    types share an id, only the type queued first is sent and the others are
    deferred to a later batch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from fieldsync.client.api import UploadItem
from fieldsync.client.state import QueuedOperation
from fieldsync.client.sync.retry import blocked_entries
from fieldsync.core.types import EntityType

logger = logging.getLogger(__name__)

EntityKey = tuple[EntityType, str]


@dataclass
class UploadBatch:
    """Queue entries selected for one upload request.

    Attributes:
        entries: Entries to send, FIFO order.
        held_back: Entries not sent this time, FIFO order.
        deferred: Sendable entries whose id is taken by another entity
            type in this batch, FIFO order.
    """

    entries: list[QueuedOperation]
    held_back: list[QueuedOperation] = field(default_factory=list)
    deferred: list[QueuedOperation] = field(default_factory=list)

    def __len__(self) -> int:
        """Number of entries to send."""
        return len(self.entries)

    def __bool__(self) -> bool:
        """Check if there is anything to send."""
        return bool(self.entries)

    @property
    def items(self) -> list[UploadItem]:
        """Request body items in batch order."""
        return [
            UploadItem(
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                operation=entry.operation,
                payload=entry.payload,
                client_updated_at=entry.client_updated_at,
            )
            for entry in self.entries
        ]

    def by_entity(self) -> Iterator[tuple[EntityKey, list[QueuedOperation]]]:
        """Group entries per entity, in order of first appearance.

        Entity ids are unique within a batch, so the server results keyed by
        id map to one entity and all of its entries share the outcome.
        """
        groups: dict[EntityKey, list[QueuedOperation]] = {}
        for entry in self.entries:
            groups.setdefault((entry.entity_type, entry.entity_id), []).append(entry)
        yield from groups.items()


def plan_batch(
    pending: Iterable[QueuedOperation],
    exclude: Callable[[QueuedOperation], bool] | None = None,
) -> UploadBatch:
    """Select the queue entries to send in one upload request.

    Args:
        pending: Queue entries in FIFO order (LocalSyncState.list_pending()).
        exclude: Predicate for entries that must not be sent this time.

    Returns:
        UploadBatch with sendable, held-back and deferred entries.
    """
    entries = sorted(pending, key=lambda e: e.id)
    held_back: list[QueuedOperation] = []
    if exclude is not None:
        entries, held_back = blocked_entries(entries, exclude)
        if held_back:
            logger.debug("Holding back %d queue entries", len(held_back))

    owners: dict[str, EntityType] = {}

    def id_taken(entry: QueuedOperation) -> bool:
        return owners.setdefault(entry.entity_id, entry.entity_type) is not entry.entity_type

    sendable, deferred = blocked_entries(entries, id_taken)
    if deferred:
        logger.debug("Deferring %d queue entries with a shared entity id", len(deferred))
    return UploadBatch(entries=sendable, held_back=held_back, deferred=deferred)
