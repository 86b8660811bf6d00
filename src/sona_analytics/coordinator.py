"""Flush scheduling and delivery coordination."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .batcher import EVENT_BATCH_SIZE, Batch, Batcher
from .delivery.base import DeliveryClient, DeliveryOutcome, OutcomeStatus
from .errors import StorageFault
from .store.base import EventStore


logger = logging.getLogger(__name__)


class FlushState(str, Enum):
    """Where the current flush attempt is."""
    IDLE = "idle"
    BATCHING = "batching"
    SENDING = "sending"


@dataclass
class PipelineCoordinator:
    """
    Drives batches from the event store to the delivery client.

    A single worker thread owns all flush attempts, and flush_once() is
    guarded by a non-blocking lock, so at most one attempt is ever in
    flight. A trigger that arrives mid-attempt only sets the pending flag
    and the worker goes round again when the attempt completes.

    Triggers:
    - notify_appended(): the store holds at least a full batch
    - the periodic timer (flush_interval_seconds)
    - request_flush(): explicit host request, ignores any backoff window

    Records are purged only after the collector answered (accepted or
    permanently rejected). Retryable failures leave the batch at the head of
    the store and back off exponentially before the next attempt.
    """
    store: EventStore
    delivery: DeliveryClient | None

    max_batch_size: int = EVENT_BATCH_SIZE
    flush_interval_seconds: float = 30.0

    retry_initial_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 300.0

    # Called with the dropped batch after a fatal rejection
    on_fatal_failure: Callable[[Batch, DeliveryOutcome], None] | None = None

    # Internal state
    _batcher: Batcher = field(init=False)
    _state: FlushState = field(default=FlushState.IDLE, init=False)
    _flush_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _pending: bool = field(default=False, init=False)
    _manual: bool = field(default=False, init=False)
    _wakeup: threading.Event = field(default_factory=threading.Event, init=False)
    _stopping: threading.Event = field(default_factory=threading.Event, init=False)
    _worker: threading.Thread | None = field(default=None, init=False)
    _retry_delay: float = field(default=0.0, init=False)
    _retry_at: float | None = field(default=None, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._batcher = Batcher(self.store, self.max_batch_size)
        self._stats = {
            "batches_sent": 0,
            "events_sent": 0,
            "retryable_failures": 0,
            "fatal_failures": 0,
            "events_dropped": 0,
            "purge_errors": 0,
        }

    @property
    def store_only(self) -> bool:
        """True when there is no delivery client and events only accumulate."""
        return self.delivery is None

    def start(self) -> None:
        """Start the delivery worker (call on startup)."""
        if self._worker is not None:
            return
        if self.delivery is not None:
            self.delivery.start()

        self._stopping.clear()
        self._worker = threading.Thread(
            target=self._run,
            name="sona-analytics-delivery",
            daemon=True,
        )
        self._worker.start()

    def stop(self, timeout: float | None = 5.0, flush: bool = False) -> None:
        """
        Stop the worker, optionally draining the store first.

        The timeout bounds the whole call: joining the worker and the final
        drain share it. An attempt still sending after the timeout is
        abandoned; its records were never purged and will be delivered again
        on the next launch. Records left over when the drain runs out of
        time stay queued the same way.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self._stopping.set()
        self._wakeup.set()

        abandoned = False
        if self._worker is not None:
            self._worker.join(timeout)
            abandoned = self._worker.is_alive()
            if abandoned:
                logger.warning("Delivery worker did not stop in time, abandoning in-flight batch")
            self._worker = None

        if self.delivery is not None and not abandoned:
            if flush:
                self.drain(manual=True, deadline=deadline)
            self.delivery.stop()

        logger.info(f"Pipeline coordinator stopped. Stats: {self._stats}")

    def notify_appended(self) -> None:
        """Size trigger: wake the worker once a full batch is waiting."""
        if self.store_only:
            return
        try:
            full = self.store.count() >= self.max_batch_size
        except StorageFault as e:
            logger.debug(f"Cannot check queue size: {e}")
            return
        if full:
            self._pending = True
            self._wakeup.set()

    def request_flush(self) -> None:
        """Explicit trigger from the host (e.g. the app moved to background)."""
        if self.store_only:
            return
        self._manual = True
        self._pending = True
        self._wakeup.set()

    def flush_once(self) -> DeliveryOutcome | None:
        """
        Make one flush attempt on the calling thread.

        Returns the delivery outcome, or None when nothing was sent (store
        empty, store-only mode, unreadable store, or another attempt already
        in flight, in which case the pending flag is set).
        """
        if self.store_only:
            return None
        if not self._flush_lock.acquire(blocking=False):
            self._pending = True
            return None

        try:
            self._pending = False
            self._state = FlushState.BATCHING
            try:
                batch = self._batcher.next_batch()
            except StorageFault as e:
                logger.error(f"Cannot read events for delivery: {e}")
                return None
            if batch is None:
                return None

            self._state = FlushState.SENDING
            outcome = self._send(batch)
            self._handle_outcome(batch, outcome)
            return outcome
        finally:
            self._state = FlushState.IDLE
            self._flush_lock.release()

    def drain(self, manual: bool = False, deadline: float | None = None) -> list[DeliveryOutcome]:
        """
        Run flush attempts until there is nothing more to do right now.

        Size and timer triggers keep going while a full batch is waiting or
        another trigger arrived meanwhile; manual drains continue until the
        store is empty. A retryable failure always ends the drain.

        Args:
            manual: Drain until empty, ignoring any backoff window
            deadline: time.monotonic() value after which no new attempt starts
        """
        outcomes: list[DeliveryOutcome] = []
        if self._in_backoff() and not manual:
            return outcomes

        while not self._stopping.is_set() or manual:
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning(f"Drain deadline reached, {self._count()} events left queued")
                break
            purge_errors = self._stats["purge_errors"]
            outcome = self.flush_once()
            if outcome is None:
                break
            outcomes.append(outcome)
            if outcome.status == OutcomeStatus.RETRYABLE_FAILURE:
                break
            if self._stats["purge_errors"] != purge_errors:
                # The same records would be read again
                break
            if manual or self._pending:
                continue
            if self._count() < self.max_batch_size:
                break
        return outcomes

    def _run(self) -> None:
        logger.info(
            f"Delivery worker started (batch_size={self.max_batch_size}, "
            f"interval={self.flush_interval_seconds}s)"
        )

        while not self._stopping.is_set():
            self._wakeup.wait(self._next_wait())
            self._wakeup.clear()
            if self._stopping.is_set():
                break

            manual, self._manual = self._manual, False
            try:
                self.drain(manual=manual)
            except Exception as e:
                logger.error(f"Delivery worker error: {e}")

        logger.info("Delivery worker stopped")

    def _send(self, batch: Batch) -> DeliveryOutcome:
        try:
            return self.delivery.send(batch)
        except Exception as e:
            return DeliveryOutcome.retryable(f"delivery error: {e}")

    def _handle_outcome(self, batch: Batch, outcome: DeliveryOutcome) -> None:
        if outcome.status == OutcomeStatus.RETRYABLE_FAILURE:
            self._stats["retryable_failures"] += 1
            delay = self._schedule_retry()
            logger.warning(
                f"Delivery of {len(batch)} events failed ({outcome.reason}), "
                f"retrying in {delay:.1f}s"
            )
            return

        self._reset_backoff()

        if outcome.status == OutcomeStatus.SUCCESS:
            self._stats["batches_sent"] += 1
            self._stats["events_sent"] += len(batch)
        else:
            self._stats["fatal_failures"] += 1
            self._stats["events_dropped"] += len(batch)
            logger.error(f"Dropping {len(batch)} events rejected by collector: {outcome.reason}")
            self._notify_fatal(batch, outcome)

        try:
            self.store.purge(batch.ids)
        except StorageFault as e:
            # Records stay queued and are delivered again later
            self._stats["purge_errors"] += 1
            logger.error(f"Failed to purge delivered batch: {e}")

    def _notify_fatal(self, batch: Batch, outcome: DeliveryOutcome) -> None:
        if self.on_fatal_failure is None:
            return
        try:
            self.on_fatal_failure(batch, outcome)
        except Exception as e:
            logger.error(f"Fatal failure callback raised: {e}")

    def _schedule_retry(self) -> float:
        if self._retry_delay <= 0:
            self._retry_delay = self.retry_initial_delay_seconds
        else:
            self._retry_delay = min(self._retry_delay * 2, self.retry_max_delay_seconds)
        self._retry_at = time.monotonic() + self._retry_delay
        return self._retry_delay

    def _reset_backoff(self) -> None:
        self._retry_delay = 0.0
        self._retry_at = None

    def _in_backoff(self) -> bool:
        return self._retry_at is not None and time.monotonic() < self._retry_at

    def _next_wait(self) -> float:
        if self._in_backoff():
            return self._retry_at - time.monotonic()
        return self.flush_interval_seconds

    def _count(self) -> int:
        try:
            return self.store.count()
        except StorageFault:
            return 0

    @property
    def state(self) -> FlushState:
        return self._state

    @property
    def pending(self) -> bool:
        """A trigger arrived that has not been served yet."""
        return self._pending

    @property
    def retry_delay_seconds(self) -> float:
        """Current backoff delay (0 when not backing off)."""
        return self._retry_delay

    @property
    def stats(self) -> dict:
        """Get coordinator statistics."""
        return {
            **self._stats,
            "state": self._state.value,
            "pending": self._pending,
            "retry_delay_seconds": self._retry_delay,
        }
