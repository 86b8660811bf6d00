"""Shared test fixtures for the analytics pipeline."""

from __future__ import annotations

import threading

import pytest

from sona_analytics.batcher import Batch
from sona_analytics.delivery.base import DeliveryClient, DeliveryOutcome
from sona_analytics.store.memory import InMemoryEventStore
from sona_analytics.store.sqlite import SqliteEventStore


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


class ScriptedDelivery(DeliveryClient):
    """
    Delivery that records every batch and answers from a script.

    Once the script runs out every batch succeeds. If a gate is given,
    send() blocks until the gate is set.
    """

    def __init__(self, outcomes: list[DeliveryOutcome] | None = None, gate: threading.Event | None = None):
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.sent: list[list[int]] = []
        self.bodies: list[list[dict]] = []
        self.sending = threading.Event()
        self.started = False
        self.stopped = False

    def send(self, batch: Batch) -> DeliveryOutcome:
        self.sent.append(sorted(batch.ids))
        self.bodies.append(batch.payloads)
        self.sending.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.outcomes:
            return self.outcomes.pop(0)
        return DeliveryOutcome.success(200)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "analytics.db")


@pytest.fixture
def sqlite_store(db_path):
    store = SqliteEventStore(db_path)
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    """Each event store implementation in turn."""
    if request.param == "sqlite":
        s = SqliteEventStore(tmp_path / "events.db")
    else:
        s = InMemoryEventStore()
    yield s
    s.close()


@pytest.fixture
def delivery():
    return ScriptedDelivery()


@pytest.fixture
def fill():
    """Append n numbered events to a store and return their ids."""
    def _fill(store, n: int) -> list[int]:
        return [store.append({"event_type": "e", "properties": {"n": i}}) for i in range(n)]
    return _fill


@pytest.fixture
def scripted():
    """Factory for scripted deliveries."""
    return ScriptedDelivery
