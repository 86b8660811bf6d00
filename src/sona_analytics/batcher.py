"""Batch assembly from the event store."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .store.base import EventRecord, EventStore


logger = logging.getLogger(__name__)

EVENT_BATCH_SIZE = 10


@dataclass(frozen=True)
class Batch:
    """An ordered group of records drained together for one delivery attempt."""
    records: tuple[EventRecord, ...]

    @property
    def ids(self) -> frozenset[int]:
        """Exact id set to purge once the collector has answered."""
        return frozenset(r.id for r in self.records)

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [r.payload for r in self.records]

    def to_json(self) -> str:
        """Wire body: a JSON array with one object per record."""
        return json.dumps(self.payloads, default=str, allow_nan=False)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class Batcher:
    """
    Reads the next batch from the head of the store.

    Reading never removes anything: records are purged by the coordinator
    only after the delivery outcome is known. A crash in between therefore
    causes the same batch to be delivered again (at-least-once).
    """
    store: EventStore
    max_batch_size: int = EVENT_BATCH_SIZE

    def __post_init__(self):
        if self.max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")

    def next_batch(self) -> Batch | None:
        """Return the oldest pending records, or None if the store is empty."""
        records = self.store.peek_batch(self.max_batch_size)
        if not records:
            return None
        logger.debug(f"Assembled batch of {len(records)} events (ids {records[0].id}..{records[-1].id})")
        return Batch(records=tuple(records))
