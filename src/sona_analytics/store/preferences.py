"""Persisted scalar preferences (session state survives restarts here)."""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from ..errors import StorageFault
from .sqlite import init_db


logger = logging.getLogger(__name__)


class PreferenceStore(ABC):
    """Key/value store for integer preferences."""

    @abstractmethod
    def get_long(self, key: str, default: int = -1) -> int:
        ...

    @abstractmethod
    def set_long(self, key: str, value: int) -> None:
        """
        Write a value through to storage.

        Raises:
            StorageFault: If the value could not be persisted
        """
        ...

    def close(self) -> None:
        pass


class InMemoryPreferences(PreferenceStore):
    """Preferences that live only as long as the process."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._values: dict[str, int] = dict(initial or {})
        self._lock = threading.Lock()

    def get_long(self, key: str, default: int = -1) -> int:
        with self._lock:
            return self._values.get(key, default)

    def set_long(self, key: str, value: int) -> None:
        with self._lock:
            self._values[key] = value


class SqlitePreferences(PreferenceStore):
    """Preferences stored in the `preferences` table next to the event log."""

    def __init__(self, db_path: str | Path = "sona_analytics.db"):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn: sqlite3.Connection | None = init_db(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageFault(f"Cannot open preferences at {self.db_path}: {e}") from e

    def get_long(self, key: str, default: int = -1) -> int:
        with self._lock:
            if self._conn is None:
                return default
            try:
                row = self._conn.execute(
                    "SELECT value FROM preferences WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                logger.warning(f"Failed to read preference {key}: {e}")
                return default
        return row[0] if row else default

    def set_long(self, key: str, value: int) -> None:
        with self._lock:
            if self._conn is None:
                raise StorageFault(f"Preferences {self.db_path} are closed")
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO preferences (key, value) VALUES (?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (key, value),
                    )
            except sqlite3.Error as e:
                raise StorageFault(f"Failed to write preference {key}: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
