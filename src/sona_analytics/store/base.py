"""Base event store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable


@dataclass(frozen=True, slots=True)
class EventRecord:
    """A stored event awaiting delivery."""
    id: int
    payload: dict[str, Any]


class EventStore(ABC):
    """
    Abstract base class for event stores.

    A store is an append-only log ordered by id. Records leave the log only
    through purge(), which the coordinator calls once the collector has
    answered for the batch that contained them.
    """

    @abstractmethod
    def append(self, payload: dict[str, Any]) -> int:
        """
        Store a payload and return its newly assigned id.

        Raises:
            StorageFault: If the payload could not be persisted
        """
        ...

    @abstractmethod
    def peek_batch(self, max_size: int) -> list[EventRecord]:
        """Return up to max_size records, oldest first, without removing them."""
        ...

    @abstractmethod
    def purge(self, ids: Iterable[int]) -> None:
        """Remove exactly the given ids. Unknown ids are ignored."""
        ...

    @abstractmethod
    def count(self) -> int:
        """Number of records not yet purged."""
        ...

    def close(self) -> None:
        """Release underlying resources."""
        pass
