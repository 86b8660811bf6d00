"""SQLite-backed durable event store."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterable

from ..errors import StorageFault
from .base import EventRecord, EventStore


logger = logging.getLogger(__name__)

EVENT_TABLE_NAME = "events"

# AUTOINCREMENT keeps ids strictly increasing even after the newest rows are purged
SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {EVENT_TABLE_NAME} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS preferences (
    key TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""


def _reject_constant(name: str) -> Any:
    # NaN and Infinity have no JSON encoding and would poison the whole batch body
    raise ValueError(f"non-standard JSON constant {name}")


def init_db(db_path: str | Path) -> sqlite3.Connection:
    """Open the database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".

    Returns:
        A connection usable from any thread (callers serialize access).
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.executescript(SCHEMA_SQL)
    conn.commit()

    return conn


class SqliteEventStore(EventStore):
    """
    Durable event log in a single SQLite table.

    One lock serializes every statement on the shared connection, so an
    append can never interleave with a batch read or a purge. The row count
    is read once on open and then kept up to date by append and purge, so
    count() never scans the table.
    """

    def __init__(self, db_path: str | Path = "sona_analytics.db"):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn: sqlite3.Connection | None = init_db(self.db_path)
            (self._count,) = self._conn.execute(
                f"SELECT COUNT(*) FROM {EVENT_TABLE_NAME}"
            ).fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageFault(f"Cannot open event store at {self.db_path}: {e}") from e

    def append(self, payload: dict[str, Any]) -> int:
        try:
            event = json.dumps(payload, default=str, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise StorageFault(f"Event payload is not serializable: {e}") from e

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    cursor = conn.execute(
                        f"INSERT INTO {EVENT_TABLE_NAME} (event) VALUES (?)",
                        (event,),
                    )
            except sqlite3.Error as e:
                raise StorageFault(f"Failed to append event: {e}") from e
            self._count += 1
            return cursor.lastrowid

    def peek_batch(self, max_size: int) -> list[EventRecord]:
        if max_size <= 0:
            return []

        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(
                    f"SELECT id, event FROM {EVENT_TABLE_NAME} ORDER BY id ASC LIMIT ?",
                    (max_size,),
                ).fetchall()
            except sqlite3.Error as e:
                raise StorageFault(f"Failed to read events: {e}") from e

        records = []
        for row_id, event in rows:
            try:
                payload = json.loads(event, parse_constant=_reject_constant)
            except ValueError:
                # Still delivered so the row is eventually purged instead of wedging the queue
                logger.error(f"Corrupt event record {row_id}, delivering as raw text")
                payload = {"_raw": event}
            records.append(EventRecord(id=row_id, payload=payload))
        return records

    def purge(self, ids: Iterable[int]) -> None:
        id_list = sorted(set(ids))
        if not id_list:
            return

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    cursor = conn.executemany(
                        f"DELETE FROM {EVENT_TABLE_NAME} WHERE id = ?",
                        [(i,) for i in id_list],
                    )
            except sqlite3.Error as e:
                raise StorageFault(f"Failed to purge {len(id_list)} events: {e}") from e
            # rowcount sums the rows deleted across the whole executemany
            self._count = max(0, self._count - cursor.rowcount)

    def count(self) -> int:
        with self._lock:
            self._connection()
            return self._count

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _connection(self) -> sqlite3.Connection:
        """Return the open connection (caller must hold lock)."""
        if self._conn is None:
            raise StorageFault(f"Event store {self.db_path} is closed")
        return self._conn
