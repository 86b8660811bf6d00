"""Base delivery interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from ..batcher import Batch


class OutcomeStatus(str, Enum):
    """Result of one delivery attempt."""
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"  # network, timeout, 5xx - keep the batch
    FATAL_FAILURE = "fatal_failure"          # rejected by collector - drop the batch


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Outcome of sending a batch."""
    status: OutcomeStatus
    reason: str | None = None
    status_code: int | None = None

    @classmethod
    def success(cls, status_code: int | None = None) -> DeliveryOutcome:
        return cls(OutcomeStatus.SUCCESS, status_code=status_code)

    @classmethod
    def retryable(cls, reason: str, status_code: int | None = None) -> DeliveryOutcome:
        return cls(OutcomeStatus.RETRYABLE_FAILURE, reason, status_code)

    @classmethod
    def fatal(cls, reason: str, status_code: int | None = None) -> DeliveryOutcome:
        return cls(OutcomeStatus.FATAL_FAILURE, reason, status_code)

    @property
    def should_purge(self) -> bool:
        """Whether the batch is finished with, delivered or not."""
        return self.status != OutcomeStatus.RETRYABLE_FAILURE


class DeliveryClient(ABC):
    """
    Abstract base class for delivery clients.

    A delivery client is a single-shot transmitter: send() makes exactly one
    attempt and reports how it went. Retry timing belongs to the coordinator.
    send() must not raise; every failure is reported as an outcome.
    """

    @abstractmethod
    def send(self, batch: Batch) -> DeliveryOutcome:
        ...

    def start(self) -> None:
        """Initialize the client (called on startup)."""
        pass

    def stop(self) -> None:
        """Clean up the client (called on shutdown)."""
        pass
