"""In-memory event store for tests and volatile pipelines."""

from __future__ import annotations

import copy
import json
import threading
from collections import OrderedDict
from itertools import islice
from typing import Any, Iterable

from ..errors import StorageFault
from .base import EventRecord, EventStore


class InMemoryEventStore(EventStore):
    """
    Thread-safe event log kept in process memory.

    Same ordering and purge semantics as the SQLite store, but records do
    not survive a restart. Payloads go through the same JSON encoding as
    the SQLite store, so anything it would reject is rejected here too.
    """

    def __init__(self) -> None:
        self._records: OrderedDict[int, dict[str, Any]] = OrderedDict()
        self._next_id = 1
        self._lock = threading.Lock()

    def append(self, payload: dict[str, Any]) -> int:
        try:
            stored = json.loads(json.dumps(payload, default=str, allow_nan=False))
        except (TypeError, ValueError) as e:
            raise StorageFault(f"Event payload is not serializable: {e}") from e

        with self._lock:
            record_id = self._next_id
            self._next_id += 1
            self._records[record_id] = stored
            return record_id

    def peek_batch(self, max_size: int) -> list[EventRecord]:
        if max_size <= 0:
            return []
        with self._lock:
            head = list(islice(self._records.items(), max_size))
        return [EventRecord(id=i, payload=copy.deepcopy(p)) for i, p in head]

    def purge(self, ids: Iterable[int]) -> None:
        with self._lock:
            for record_id in ids:
                self._records.pop(record_id, None)

    def count(self) -> int:
        with self._lock:
            return len(self._records)
