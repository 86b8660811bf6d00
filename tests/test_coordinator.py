"""Tests for flush coordination."""

import logging
import threading
import time

import pytest

from sona_analytics.coordinator import FlushState, PipelineCoordinator
from sona_analytics.delivery.base import DeliveryOutcome, OutcomeStatus
from sona_analytics.errors import StorageFault
from sona_analytics.store.memory import InMemoryEventStore
from sona_analytics.store.sqlite import SqliteEventStore


class Crash(BaseException):
    """Stands in for the process dying mid-send."""


class PurgeFailingStore(InMemoryEventStore):
    def purge(self, ids):
        raise StorageFault("disk I/O error")


def wait_until(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


def make_coordinator(store, delivery, **kwargs):
    kwargs.setdefault("max_batch_size", 10)
    kwargs.setdefault("flush_interval_seconds", 60.0)
    kwargs.setdefault("retry_initial_delay_seconds", 60.0)
    return PipelineCoordinator(store=store, delivery=delivery, **kwargs)


class TestFlushOnce:
    def test_empty_store(self, delivery):
        coordinator = make_coordinator(InMemoryEventStore(), delivery)
        assert coordinator.flush_once() is None
        assert delivery.sent == []

    def test_success_purges_exactly_the_batch(self, store, delivery, fill):
        ids = fill(store, 15)
        coordinator = make_coordinator(store, delivery)

        outcome = coordinator.flush_once()

        assert outcome.status == OutcomeStatus.SUCCESS
        assert delivery.sent == [ids[:10]]
        assert store.count() == 5
        remaining = [r.id for r in store.peek_batch(20)]
        assert remaining == ids[10:]
        assert coordinator.stats["events_sent"] == 10
        assert coordinator.state == FlushState.IDLE

    def test_fatal_failure_purges_and_logs(self, store, scripted, fill, caplog):
        delivery = scripted([DeliveryOutcome.fatal("HTTP 400", 400)])
        fill(store, 3)
        coordinator = make_coordinator(store, delivery)

        with caplog.at_level(logging.ERROR, logger="sona_analytics.coordinator"):
            outcome = coordinator.flush_once()

        assert outcome.status == OutcomeStatus.FATAL_FAILURE
        assert store.count() == 0
        assert coordinator.stats["fatal_failures"] == 1
        assert coordinator.stats["events_dropped"] == 3
        assert "Dropping 3 events" in caplog.text

    def test_fatal_failure_callback(self, scripted, fill):
        store = InMemoryEventStore()
        delivery = scripted([DeliveryOutcome.fatal("HTTP 422", 422)])
        fill(store, 2)
        dropped = []
        coordinator = make_coordinator(
            store, delivery, on_fatal_failure=lambda batch, outcome: dropped.append((len(batch), outcome.status_code))
        )

        coordinator.flush_once()
        assert dropped == [(2, 422)]

    def test_fatal_failure_callback_errors_absorbed(self, scripted, fill):
        store = InMemoryEventStore()
        fill(store, 2)

        def explode(batch, outcome):
            raise RuntimeError("host bug")

        coordinator = make_coordinator(
            store, scripted([DeliveryOutcome.fatal("HTTP 400", 400)]), on_fatal_failure=explode
        )
        assert coordinator.flush_once().status == OutcomeStatus.FATAL_FAILURE
        assert store.count() == 0

    def test_retryable_failure_keeps_batch(self, store, scripted, fill):
        delivery = scripted([DeliveryOutcome.retryable("HTTP 500", 500)])
        ids = fill(store, 4)
        coordinator = make_coordinator(store, delivery, retry_initial_delay_seconds=2.0)

        outcome = coordinator.flush_once()

        assert outcome.status == OutcomeStatus.RETRYABLE_FAILURE
        assert store.count() == 4
        assert coordinator.retry_delay_seconds == 2.0
        assert coordinator.stats["retryable_failures"] == 1

        # The same records are read again, unchanged, on the next attempt
        assert coordinator.flush_once().status == OutcomeStatus.SUCCESS
        assert delivery.sent == [ids, ids]
        assert delivery.bodies[0] == delivery.bodies[1]
        assert store.count() == 0
        assert coordinator.retry_delay_seconds == 0.0

    def test_backoff_doubles_and_caps(self, scripted, fill):
        store = InMemoryEventStore()
        fill(store, 1)
        delivery = scripted([DeliveryOutcome.retryable("down")] * 5)
        coordinator = make_coordinator(
            store, delivery, retry_initial_delay_seconds=1.0, retry_max_delay_seconds=5.0
        )

        delays = []
        for _ in range(5):
            coordinator.flush_once()
            delays.append(coordinator.retry_delay_seconds)
        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_delivery_exception_is_retryable(self, fill):
        class Broken:
            def send(self, batch):
                raise RuntimeError("boom")

        store = InMemoryEventStore()
        fill(store, 2)
        outcome = make_coordinator(store, Broken()).flush_once()
        assert outcome.status == OutcomeStatus.RETRYABLE_FAILURE
        assert store.count() == 2

    def test_store_only_mode(self, fill):
        store = InMemoryEventStore()
        fill(store, 20)
        coordinator = make_coordinator(store, None)

        assert coordinator.store_only
        assert coordinator.flush_once() is None
        coordinator.request_flush()
        coordinator.notify_appended()
        assert store.count() == 20

    def test_purge_failure_means_redelivery(self, delivery, fill, caplog):
        store = PurgeFailingStore()
        fill(store, 2)
        coordinator = make_coordinator(store, delivery)

        assert coordinator.flush_once().status == OutcomeStatus.SUCCESS
        assert coordinator.stats["purge_errors"] == 1
        assert store.count() == 2
        # A manual drain must not spin on the unpurgeable batch
        assert len(coordinator.drain(manual=True)) == 1


class TestAtLeastOnce:
    def test_crash_between_send_and_purge_redelivers(self, db_path, scripted, fill):
        class CrashingDelivery:
            def __init__(self):
                self.sent = []

            def send(self, batch):
                self.sent.append(sorted(batch.ids))
                raise Crash()

        store = SqliteEventStore(db_path)
        ids = fill(store, 12)
        crashing = CrashingDelivery()
        with pytest.raises(Crash):
            make_coordinator(store, crashing).flush_once()
        store.close()

        # Relaunch over the same database
        store = SqliteEventStore(db_path)
        delivery = scripted()
        coordinator = make_coordinator(store, delivery)
        coordinator.flush_once()

        assert crashing.sent == [ids[:10]]
        assert delivery.sent == [ids[:10]]
        assert store.count() == 2
        store.close()


class TestDrain:
    def test_size_trigger_drains_full_batches_only(self, delivery, fill):
        store = InMemoryEventStore()
        fill(store, 25)
        coordinator = make_coordinator(store, delivery)

        outcomes = coordinator.drain()

        assert len(outcomes) == 2
        assert store.count() == 5

    def test_manual_drain_empties_store(self, delivery, fill):
        store = InMemoryEventStore()
        ids = fill(store, 25)
        coordinator = make_coordinator(store, delivery)

        outcomes = coordinator.drain(manual=True)

        assert [o.status for o in outcomes] == [OutcomeStatus.SUCCESS] * 3
        assert delivery.sent == [ids[:10], ids[10:20], ids[20:]]
        assert store.count() == 0

    def test_drain_stops_on_retryable(self, scripted, fill):
        store = InMemoryEventStore()
        fill(store, 25)
        delivery = scripted([DeliveryOutcome.success(), DeliveryOutcome.retryable("HTTP 503", 503)])
        coordinator = make_coordinator(store, delivery)

        outcomes = coordinator.drain(manual=True)

        assert [o.status for o in outcomes] == [OutcomeStatus.SUCCESS, OutcomeStatus.RETRYABLE_FAILURE]
        assert store.count() == 15

    def test_backoff_defers_automatic_flush_only(self, scripted, fill):
        store = InMemoryEventStore()
        fill(store, 10)
        delivery = scripted([DeliveryOutcome.retryable("HTTP 500", 500)])
        coordinator = make_coordinator(store, delivery, retry_initial_delay_seconds=60.0)

        coordinator.flush_once()
        assert coordinator.drain() == []
        assert len(delivery.sent) == 1

        assert len(coordinator.drain(manual=True)) == 1
        assert store.count() == 0

    def test_concurrent_trigger_is_coalesced(self, scripted, fill):
        store = InMemoryEventStore()
        fill(store, 5)
        gate = threading.Event()
        delivery = scripted(gate=gate)
        coordinator = make_coordinator(store, delivery)

        worker = threading.Thread(target=coordinator.flush_once)
        worker.start()
        assert delivery.sending.wait(5)

        assert coordinator.state == FlushState.SENDING
        assert coordinator.flush_once() is None
        assert coordinator.pending

        gate.set()
        worker.join(5)
        assert len(delivery.sent) == 1
        assert coordinator.state == FlushState.IDLE


class TestWorker:
    def test_size_trigger_wakes_worker(self, delivery, fill):
        store = InMemoryEventStore()
        coordinator = make_coordinator(store, delivery)
        coordinator.start()
        try:
            fill(store, 9)
            coordinator.notify_appended()
            time.sleep(0.05)
            assert delivery.sent == []

            fill(store, 1)
            coordinator.notify_appended()
            assert wait_until(lambda: store.count() == 0)
            assert len(delivery.sent) == 1
        finally:
            coordinator.stop()
        assert delivery.started and delivery.stopped

    def test_request_flush_sends_partial_batch(self, delivery, fill):
        store = InMemoryEventStore()
        coordinator = make_coordinator(store, delivery)
        coordinator.start()
        try:
            fill(store, 3)
            coordinator.request_flush()
            assert wait_until(lambda: store.count() == 0)
        finally:
            coordinator.stop()

    def test_periodic_timer(self, delivery, fill):
        store = InMemoryEventStore()
        coordinator = make_coordinator(store, delivery, flush_interval_seconds=0.05)
        coordinator.start()
        try:
            fill(store, 2)
            assert wait_until(lambda: store.count() == 0)
        finally:
            coordinator.stop()

    def test_retry_after_backoff(self, scripted, fill):
        store = InMemoryEventStore()
        delivery = scripted([DeliveryOutcome.retryable("HTTP 500", 500)])
        coordinator = make_coordinator(store, delivery, retry_initial_delay_seconds=0.05)
        coordinator.start()
        try:
            fill(store, 10)
            coordinator.notify_appended()
            assert wait_until(lambda: store.count() == 0)
            assert len(delivery.sent) == 2
        finally:
            coordinator.stop()

    def test_trigger_during_send_causes_another_attempt(self, scripted, fill):
        store = InMemoryEventStore()
        gate = threading.Event()
        delivery = scripted(gate=gate)
        coordinator = make_coordinator(store, delivery)
        coordinator.start()
        try:
            first = fill(store, 10)
            coordinator.notify_appended()
            assert delivery.sending.wait(5)

            # Fewer than a full batch arrives while the first send is in flight
            second = fill(store, 3)
            coordinator.notify_appended()
            assert coordinator.flush_once() is None
            assert coordinator.pending

            gate.set()
            assert wait_until(lambda: store.count() == 0)
            assert delivery.sent == [first, second]
            assert not coordinator.pending
        finally:
            coordinator.stop()

    def test_request_flush_during_send_is_served(self, scripted, fill):
        store = InMemoryEventStore()
        gate = threading.Event()
        delivery = scripted(gate=gate)
        coordinator = make_coordinator(store, delivery)
        coordinator.start()
        try:
            first = fill(store, 10)
            coordinator.notify_appended()
            assert delivery.sending.wait(5)

            second = fill(store, 2)
            coordinator.request_flush()

            gate.set()
            assert wait_until(lambda: store.count() == 0)
            assert delivery.sent == [first, second]
        finally:
            coordinator.stop()

    def test_stop_with_flush_respects_timeout(self, scripted, fill):
        class SlowDelivery(scripted):
            def send(self, batch):
                time.sleep(0.3)
                return super().send(batch)

        store = InMemoryEventStore()
        delivery = SlowDelivery()
        coordinator = make_coordinator(store, delivery)
        coordinator.start()
        fill(store, 100)

        started = time.monotonic()
        coordinator.stop(timeout=0.5, flush=True)
        elapsed = time.monotonic() - started

        assert elapsed < 1.5
        assert 0 < len(delivery.sent) < 10
        assert store.count() == 100 - 10 * len(delivery.sent)
        assert delivery.stopped

    def test_drain_deadline_already_passed(self, delivery, fill):
        store = InMemoryEventStore()
        fill(store, 5)
        coordinator = make_coordinator(store, delivery)

        assert coordinator.drain(manual=True, deadline=time.monotonic() - 1) == []
        assert store.count() == 5

    def test_stop_with_flush_drains(self, delivery, fill):
        store = InMemoryEventStore()
        coordinator = make_coordinator(store, delivery)
        coordinator.start()
        fill(store, 4)

        coordinator.stop(flush=True)

        assert store.count() == 0
        assert delivery.stopped
