"""Session boundary detection from idle-time gaps."""

from __future__ import annotations

import logging
import threading

from .errors import StorageFault
from .store.preferences import PreferenceStore


logger = logging.getLogger(__name__)

NO_SESSION = -1

PREFKEY_LAST_SESSION_TIME = "sona_analytics.previousSessionEnd"
PREFKEY_LAST_SESSION_ID = "sona_analytics.previousSessionId"

MIN_TIME_BETWEEN_SESSIONS_MILLIS = 10 * 1000


class SessionTracker:
    """
    Derives session ids from the time between consecutive events.

    A session id is the epoch-millisecond timestamp of the event that
    started it. When the gap since the previous event exceeds the idle
    threshold, the next event starts a new session; otherwise it joins the
    current one. There is no explicit end: a process that is killed and
    relaunched inside the idle window resumes the same session.

    State is loaded from the preference store once at construction and
    written through on every stamp.
    """

    def __init__(
        self,
        preferences: PreferenceStore,
        min_time_between_sessions_ms: int = MIN_TIME_BETWEEN_SESSIONS_MILLIS,
    ):
        self._preferences = preferences
        self.min_time_between_sessions_ms = min_time_between_sessions_ms
        self._lock = threading.Lock()

        self._session_id = preferences.get_long(PREFKEY_LAST_SESSION_ID, NO_SESSION)
        self._last_event_time = preferences.get_long(PREFKEY_LAST_SESSION_TIME, NO_SESSION)

    @property
    def session_id(self) -> int:
        return self._session_id

    @property
    def last_event_time(self) -> int:
        return self._last_event_time

    def on_event(self, now_ms: int) -> int:
        """Stamp an event occurring at now_ms and return its session id."""
        with self._lock:
            if self._is_new_session(now_ms):
                self._session_id = now_ms
                self._persist(PREFKEY_LAST_SESSION_ID, now_ms)
                logger.debug(f"Started session {now_ms}")

            self._last_event_time = now_ms
            self._persist(PREFKEY_LAST_SESSION_TIME, now_ms)
            return self._session_id

    def reset(self) -> None:
        """Forget the current session; the next event starts a new one."""
        with self._lock:
            self._session_id = NO_SESSION
            self._last_event_time = NO_SESSION
            self._persist(PREFKEY_LAST_SESSION_ID, NO_SESSION)
            self._persist(PREFKEY_LAST_SESSION_TIME, NO_SESSION)

    def _is_new_session(self, now_ms: int) -> bool:
        if self._session_id == NO_SESSION or self._last_event_time == NO_SESSION:
            return True
        return now_ms - self._last_event_time > self.min_time_between_sessions_ms

    def _persist(self, key: str, value: int) -> None:
        # In-memory state stays authoritative for this process if the write fails
        try:
            self._preferences.set_long(key, value)
        except StorageFault as e:
            logger.warning(f"Could not persist session state: {e}")
