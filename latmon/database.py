"""SQLite handle shared by the registry, the measurement store and the tuner.

Each thread gets its own connection. Connection-scoped pragmas are kept in one
place and re-applied lazily whenever the tuning layer changes them, so the
scheduler's writer thread and the HTTP reader threads always run with the same
busy-timeout and durability settings.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from latmon.errors import StorageError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA = """
CREATE TABLE IF NOT EXISTS latency_monitoring (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip TEXT NOT NULL UNIQUE,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS latency_measurements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ip TEXT NOT NULL,
    latency REAL,
    packet_loss INTEGER NOT NULL DEFAULT 0,
    measured_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_latency_measurements_ip
    ON latency_measurements(ip);
CREATE INDEX IF NOT EXISTS idx_latency_measurements_measured_at
    ON latency_measurements(measured_at);

CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


# Stays below SQLITE_MAX_VARIABLE_NUMBER on older builds.
MAX_QUERY_PARAMS = 500


def chunked(items: list, size: int = MAX_QUERY_PARAMS):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as sortable UTC text (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> datetime:
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class Database:
    """Thread-aware SQLite database handle."""

    def __init__(self, path, busy_timeout_ms: int = 5000):
        self.path = Path(path)
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []
        self._session_pragmas: dict[str, object] = {"busy_timeout": busy_timeout_ms}
        self._generation = 0
        self._closed = False

    def open(self):
        """Create the parent directory and the schema if missing."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create database directory: {e}") from e

        with self.transaction() as conn:
            conn.executescript(SCHEMA)
        logger.info("Connected to SQLite database: %s", self.path)

    def connection(self) -> sqlite3.Connection:
        """Return the calling thread's connection, opening it on first use."""
        if self._closed:
            raise StorageError("Database is closed")

        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.path),
                    timeout=self._session_pragmas.get("busy_timeout", 5000) / 1000.0,
                    check_same_thread=False,
                )
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open database {self.path}: {e}") from e
            conn.row_factory = sqlite3.Row
            with self._lock:
                self._connections.append(conn)
            self._local.conn = conn
            self._local.generation = -1
            logger.debug(
                "Opened connection for thread %s (open: %d)",
                threading.current_thread().name,
                len(self._connections),
            )

        if self._local.generation != self._generation:
            with self._lock:
                pragmas = dict(self._session_pragmas)
                generation = self._generation
            try:
                for name, value in pragmas.items():
                    conn.execute(f"PRAGMA {name} = {value}")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot apply session pragmas: {e}") from e
            self._local.generation = generation

        return conn

    def release(self):
        """Close the calling thread's connection, if any (HTTP request threads call this on teardown)."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            return
        self._local.conn = None
        with self._lock:
            if conn in self._connections:
                self._connections.remove(conn)
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning("Error closing connection: %s", e)

    @contextmanager
    def transaction(self):
        """Yield a connection; commit on success, roll back on any failure.

        sqlite3 errors are re-raised as StorageError.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            self._rollback(conn)
            raise StorageError(str(e)) from e
        except BaseException:
            self._rollback(conn)
            raise

    def _rollback(self, conn: sqlite3.Connection):
        try:
            conn.rollback()
        except sqlite3.Error as e:
            logger.error("Rollback failed: %s", e)

    def pragma(self, name: str, value=None):
        """Run a pragma on the calling thread's connection and return its first value."""
        statement = f"PRAGMA {name}" if value is None else f"PRAGMA {name} = {value}"
        conn = self.connection()
        try:
            row = conn.execute(statement).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"{statement} failed: {e}") from e
        return row[0] if row is not None else None

    def set_session_pragmas(self, pragmas: dict):
        """Merge connection-scoped pragmas; every connection picks them up on next use."""
        with self._lock:
            self._session_pragmas.update(pragmas)
            self._generation += 1

    def get_app_config(self, key: str) -> str | None:
        with self.transaction() as conn:
            row = conn.execute("SELECT value FROM app_config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_app_config(self, key: str, value: str):
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO app_config (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, format_timestamp(utc_now())),
            )

    def close(self):
        """Close every connection opened by any thread."""
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()
            self._closed = True
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning("Error closing connection: %s", e)
        logger.debug("Database closed (%d connections)", len(connections))
