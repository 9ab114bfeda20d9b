"""Append-only, per-log event store backed by SQLite.

Each log is identified by a string ``log_id`` (one target's audit stream)
and holds events with strictly increasing IDs assigned by the store. The
store also accepts replicated events with the IDs they already carry, which
is what the range-based sync protocol uses to fill gaps.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterable

from ..errors import NotFoundError
from ..ranges import FULL_SET, SortedRangeSet
from .event import Descriptor, LogEvent, now_millis

logger = logging.getLogger(__name__)

LOG_SCHEMA = """
CREATE TABLE IF NOT EXISTS log_events (
    log_id TEXT NOT NULL,
    event_id INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    type INTEGER NOT NULL,
    properties TEXT NOT NULL,
    PRIMARY KEY (log_id, event_id)
);

CREATE TABLE IF NOT EXISTS log_lowest_ids (
    log_id TEXT PRIMARY KEY,
    lowest_id INTEGER NOT NULL
);
"""


class LogStore:
    """Event store holding any number of independent logs.

    All access goes through one SQLite connection guarded by a lock, so every
    ``put`` allocates its ID and inserts the event in one step: IDs per log
    are gap-free and never duplicated, even with concurrent writers.
    """

    def __init__(self, db_path: str | Path, max_events: int = 0):
        """Initialize the log store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            max_events: Keep at most this many newest events per log;
                0 keeps everything.
        """
        if max_events < 0:
            raise ValueError(f"max_events must not be negative, was {max_events}")
        self.db_path = Path(db_path).expanduser()
        self.max_events = max_events
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        with self._lock:
            if self._conn is not None:
                return
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(LOG_SCHEMA)
            self._conn.commit()

        logger.info(f"LogStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> LogEvent:
        return LogEvent(
            log_id=row["log_id"],
            event_id=row["event_id"],
            timestamp=row["timestamp"],
            type=row["type"],
            properties=json.loads(row["properties"]),
        )

    # ------------------------------------------------------------------
    # Writing

    def put(
        self,
        log_id: str,
        type: int,
        properties: dict[str, str] | None = None,
        timestamp: int | None = None,
    ) -> LogEvent:
        """Append a new event to a log, creating the log if needed.

        Args:
            log_id: Log to append to.
            type: Event type, usually an ``AuditEventType``.
            properties: Event properties; iteration order is preserved.
            timestamp: Milliseconds since the epoch; defaults to now.

        Returns:
            The stored event with its assigned ID.
        """
        with self._lock:
            conn = self._ensure_connected()
            next_id = max(self._highest_id(conn, log_id), self._lowest_id(conn, log_id) - 1) + 1
            event = LogEvent(
                log_id=log_id,
                event_id=next_id,
                timestamp=timestamp if timestamp is not None else now_millis(),
                type=int(type),
                properties=dict(properties or {}),
            )
            self._insert(conn, event)
            self._trim(conn, log_id)
            conn.commit()

        logger.debug(f"Appended event {event.event_id} to log {log_id}")
        return event

    def put_events(self, events: Iterable[LogEvent]) -> int:
        """Store replicated events under the IDs they carry.

        Events whose ID is already present, or below the log's lowest ID, are
        skipped, so applying the same batch twice is harmless.

        Returns:
            Number of events actually added.
        """
        added = 0
        touched: set[str] = set()
        with self._lock:
            conn = self._ensure_connected()
            for event in events:
                if event.event_id < self._lowest_id(conn, event.log_id):
                    continue
                added += self._insert(conn, event, ignore_existing=True)
                touched.add(event.log_id)
            for log_id in touched:
                self._trim(conn, log_id)
            conn.commit()

        if added:
            logger.debug(f"Stored {added} replicated events")
        return added

    def _insert(self, conn: sqlite3.Connection, event: LogEvent, ignore_existing: bool = False) -> int:
        verb = "INSERT OR IGNORE" if ignore_existing else "INSERT"
        cursor = conn.execute(
            f"""
            {verb} INTO log_events (log_id, event_id, timestamp, type, properties)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.log_id,
                event.event_id,
                event.timestamp,
                int(event.type),
                json.dumps(event.properties),
            ),
        )
        return cursor.rowcount

    def _trim(self, conn: sqlite3.Connection, log_id: str) -> None:
        if self.max_events <= 0:
            return
        cursor = conn.execute(
            """
            DELETE FROM log_events
            WHERE log_id = ? AND event_id NOT IN (
                SELECT event_id FROM log_events
                WHERE log_id = ?
                ORDER BY event_id DESC
                LIMIT ?
            )
            """,
            (log_id, log_id, self.max_events),
        )
        if cursor.rowcount > 0:
            logger.debug(f"Dropped {cursor.rowcount} old events from log {log_id}")

    # ------------------------------------------------------------------
    # Reading

    def get(self, log_id: str, start: int | None = None, end: int | None = None) -> list[LogEvent]:
        """Get the events of a log, optionally limited to ``start <= id <= end``.

        Raises:
            NotFoundError: If the store has never seen ``log_id``.
        """
        with self._lock:
            conn = self._ensure_connected()
            if not self._knows(conn, log_id):
                raise NotFoundError(f"Unknown log: {log_id}")
            cursor = conn.execute(
                """
                SELECT log_id, event_id, timestamp, type, properties
                FROM log_events
                WHERE log_id = ? AND event_id >= ? AND event_id <= ?
                ORDER BY event_id ASC
                """,
                (log_id, start if start is not None else 0, end if end is not None else FULL_SET.high),
            )
            return [self._row_to_event(row) for row in cursor]

    def get_events(self, log_id: str, range_set: SortedRangeSet) -> list[LogEvent]:
        """Get the events of a log whose IDs are in ``range_set``.

        An unknown log yields an empty list.
        """
        result = []
        with self._lock:
            conn = self._ensure_connected()
            for r in range_set.ranges():
                cursor = conn.execute(
                    """
                    SELECT log_id, event_id, timestamp, type, properties
                    FROM log_events
                    WHERE log_id = ? AND event_id >= ? AND event_id <= ?
                    ORDER BY event_id ASC
                    """,
                    (log_id, r.low, r.high),
                )
                result.extend(self._row_to_event(row) for row in cursor)
        return result

    def get_highest_id(self, log_id: str) -> int:
        """Highest event ID in a log, 0 if it has none."""
        with self._lock:
            return self._highest_id(self._ensure_connected(), log_id)

    def get_log_ids(self) -> set[str]:
        with self._lock:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "SELECT log_id FROM log_events UNION SELECT log_id FROM log_lowest_ids"
            )
            return {row[0] for row in cursor}

    def get_descriptor(self, log_id: str) -> Descriptor:
        """The IDs held for a log; empty for an unknown log."""
        with self._lock:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "SELECT event_id FROM log_events WHERE log_id = ? ORDER BY event_id",
                (log_id,),
            )
            return Descriptor(log_id, SortedRangeSet.from_items(row[0] for row in cursor))

    def get_descriptors(self) -> list[Descriptor]:
        return [self.get_descriptor(log_id) for log_id in sorted(self.get_log_ids())]

    # ------------------------------------------------------------------
    # Lowest ID

    def set_lowest_id(self, log_id: str, lowest_id: int) -> None:
        """Drop all events below ``lowest_id`` and refuse them from now on.

        The lowest ID only ever moves up; a lower value is ignored.
        """
        with self._lock:
            conn = self._ensure_connected()
            if lowest_id <= self._lowest_id(conn, log_id):
                return
            conn.execute(
                """
                INSERT INTO log_lowest_ids (log_id, lowest_id) VALUES (?, ?)
                ON CONFLICT(log_id) DO UPDATE SET lowest_id = excluded.lowest_id
                """,
                (log_id, lowest_id),
            )
            cursor = conn.execute(
                "DELETE FROM log_events WHERE log_id = ? AND event_id < ?",
                (log_id, lowest_id),
            )
            conn.commit()

        logger.info(f"Lowest ID of log {log_id} set to {lowest_id}, dropped {cursor.rowcount} events")

    def get_lowest_id(self, log_id: str) -> int:
        """Lowest ID kept for a log, 0 if none was set."""
        with self._lock:
            return self._lowest_id(self._ensure_connected(), log_id)

    @staticmethod
    def _highest_id(conn: sqlite3.Connection, log_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(event_id) FROM log_events WHERE log_id = ?", (log_id,)
        ).fetchone()
        return row[0] if row[0] is not None else 0

    @staticmethod
    def _lowest_id(conn: sqlite3.Connection, log_id: str) -> int:
        row = conn.execute(
            "SELECT lowest_id FROM log_lowest_ids WHERE log_id = ?", (log_id,)
        ).fetchone()
        return row[0] if row is not None else 0

    @staticmethod
    def _knows(conn: sqlite3.Connection, log_id: str) -> bool:
        row = conn.execute(
            """
            SELECT 1 FROM log_events WHERE log_id = ?
            UNION SELECT 1 FROM log_lowest_ids WHERE log_id = ?
            """,
            (log_id, log_id),
        ).fetchone()
        return row is not None

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with event counts per log.
        """
        with self._lock:
            conn = self._ensure_connected()
            cursor = conn.execute(
                "SELECT log_id, COUNT(*), MAX(event_id) FROM log_events GROUP BY log_id"
            )
            logs = {row[0]: {"events": row[1], "highest_id": row[2]} for row in cursor}

        stats = {
            "total_events": sum(log["events"] for log in logs.values()),
            "logs": logs,
            "max_events": self.max_events,
        }
        if str(self.db_path) != ":memory:" and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)
        return stats
