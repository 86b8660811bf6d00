"""Event stores - durable, ordered logs of undelivered events."""

from .base import EventRecord, EventStore
from .memory import InMemoryEventStore
from .preferences import InMemoryPreferences, PreferenceStore, SqlitePreferences
from .sqlite import SqliteEventStore

__all__ = [
    "EventRecord",
    "EventStore",
    "InMemoryEventStore",
    "SqliteEventStore",
    "PreferenceStore",
    "InMemoryPreferences",
    "SqlitePreferences",
]
