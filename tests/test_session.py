"""Tests for session tracking."""

from sona_analytics.errors import StorageFault
from sona_analytics.session import (
    NO_SESSION,
    PREFKEY_LAST_SESSION_ID,
    PREFKEY_LAST_SESSION_TIME,
    SessionTracker,
)
from sona_analytics.store.preferences import InMemoryPreferences, SqlitePreferences


class FailingPreferences(InMemoryPreferences):
    def set_long(self, key, value):
        raise StorageFault("disk full")


class TestSessionTracker:
    def test_no_session_initially(self):
        tracker = SessionTracker(InMemoryPreferences())
        assert tracker.session_id == NO_SESSION
        assert tracker.last_event_time == NO_SESSION

    def test_session_continuity(self):
        tracker = SessionTracker(InMemoryPreferences(), min_time_between_sessions_ms=10000)

        first = tracker.on_event(0)
        second = tracker.on_event(5000)
        third = tracker.on_event(20000)

        assert first == second == 0
        assert third == 20000

    def test_gap_equal_to_threshold_keeps_session(self):
        tracker = SessionTracker(InMemoryPreferences(), min_time_between_sessions_ms=10000)
        tracker.on_event(1000)
        assert tracker.on_event(11000) == 1000
        assert tracker.on_event(21001) == 21001

    def test_each_event_extends_session(self):
        tracker = SessionTracker(InMemoryPreferences(), min_time_between_sessions_ms=10000)
        for t in range(0, 60000, 9000):
            assert tracker.on_event(t) == 0

    def test_state_written_through(self):
        prefs = InMemoryPreferences()
        tracker = SessionTracker(prefs)
        tracker.on_event(1000)
        tracker.on_event(3000)

        assert prefs.get_long(PREFKEY_LAST_SESSION_ID) == 1000
        assert prefs.get_long(PREFKEY_LAST_SESSION_TIME) == 3000

    def test_restart_inside_idle_window_resumes(self, db_path):
        prefs = SqlitePreferences(db_path)
        SessionTracker(prefs).on_event(50000)
        prefs.close()

        prefs = SqlitePreferences(db_path)
        tracker = SessionTracker(prefs)
        assert tracker.session_id == 50000
        assert tracker.on_event(55000) == 50000
        prefs.close()

    def test_restart_after_idle_window_starts_new_session(self, db_path):
        prefs = SqlitePreferences(db_path)
        SessionTracker(prefs).on_event(50000)
        prefs.close()

        prefs = SqlitePreferences(db_path)
        tracker = SessionTracker(prefs)
        assert tracker.on_event(70000) == 70000
        prefs.close()

    def test_persist_failure_keeps_memory_state(self):
        tracker = SessionTracker(FailingPreferences())
        assert tracker.on_event(1000) == 1000
        assert tracker.on_event(2000) == 1000

    def test_reset(self):
        prefs = InMemoryPreferences()
        tracker = SessionTracker(prefs)
        tracker.on_event(1000)
        tracker.reset()

        assert tracker.session_id == NO_SESSION
        assert prefs.get_long(PREFKEY_LAST_SESSION_ID) == NO_SESSION
        assert tracker.on_event(2000) == 2000
