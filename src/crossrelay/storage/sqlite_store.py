"""SQLite correlation backend.

Durable variant of the in-memory correlation store. Survives restarts; expiry is
stored as an absolute timestamp per key, enforced on every read, and expired
rows are swept on startup and periodically on insert.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from crossrelay.core.constants import RelayDirection

# "database is locked" and friends are transient under concurrent writers
DB_RETRY = retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(sqlite3.OperationalError),
    reraise=True,
)


class SQLiteCorrelationStore:
    """Correlation store backed by three tables.

    Tables:
    - bridges: bridge name -> surrogate id
    - correlations: (bridge, direction, source id) -> expiry timestamp
    - destinations: destination ids recorded under a correlation, in insert order
    """

    def __init__(
        self,
        db_path: str,
        *,
        ttl_seconds: float = 24 * 3600,
        clock: Callable[[], float] = time.time,
        purge_interval: float | None = None,
    ) -> None:
        self._db_path = db_path
        self._ttl = ttl_seconds
        self._clock = clock
        # Expired rows are swept on insert at most once per interval
        self._purge_interval = ttl_seconds if purge_interval is None else purge_interval
        self._last_purge = clock()
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success, rolls back on error, and always closes."""
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bridges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS correlations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bridge_id INTEGER NOT NULL REFERENCES bridges(id),
                    direction TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    UNIQUE (bridge_id, direction, source_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS destinations (
                    correlation_id INTEGER NOT NULL REFERENCES correlations(id) ON DELETE CASCADE,
                    destination_id TEXT NOT NULL,
                    PRIMARY KEY (correlation_id, destination_id)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_destinations_dest ON destinations(destination_id)")
            self._delete_expired(conn)
        self._initialized = True
        logger.debug("SQLite correlation store ready at {}", self._db_path)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking DB call off the event loop, one at a time."""
        async with self._lock:
            if not self._initialized:
                await asyncio.to_thread(DB_RETRY(self._init_db))
            return await asyncio.to_thread(DB_RETRY(func), *args)

    # -- blocking helpers (run in a worker thread) --

    @staticmethod
    def _bridge_id(conn: sqlite3.Connection, bridge: str) -> int | None:
        row = conn.execute("SELECT id FROM bridges WHERE name = ?", (bridge,)).fetchone()
        return int(row["id"]) if row is not None else None

    def _ensure_bridge(self, conn: sqlite3.Connection, bridge: str) -> int:
        bridge_id = self._bridge_id(conn, bridge)
        if bridge_id is not None:
            return bridge_id
        cur = conn.execute("INSERT INTO bridges (name) VALUES (?)", (bridge,))
        return int(cur.lastrowid)

    def _live_correlation(
        self, conn: sqlite3.Connection, bridge_id: int, direction: str, source_id: str
    ) -> int | None:
        row = conn.execute(
            "SELECT id, expires_at FROM correlations WHERE bridge_id = ? AND direction = ? AND source_id = ?",
            (bridge_id, direction, source_id),
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] <= self._clock():
            conn.execute("DELETE FROM correlations WHERE id = ?", (row["id"],))
            return None
        return int(row["id"])

    def _insert_sync(self, bridge: str, direction: str, source_id: str, destination_id: str) -> None:
        with self._transaction() as conn:
            self._purge_if_due(conn)
            bridge_id = self._ensure_bridge(conn, bridge)
            corr_id = self._live_correlation(conn, bridge_id, direction, source_id)
            if corr_id is None:
                cur = conn.execute(
                    "INSERT INTO correlations (bridge_id, direction, source_id, expires_at) VALUES (?, ?, ?, ?)",
                    (bridge_id, direction, source_id, self._clock() + self._ttl),
                )
                corr_id = int(cur.lastrowid)
            conn.execute(
                "INSERT OR IGNORE INTO destinations (correlation_id, destination_id) VALUES (?, ?)",
                (corr_id, destination_id),
            )

    def _get_sync(self, bridge: str, direction: str, source_id: str) -> list[str]:
        with self._transaction() as conn:
            bridge_id = self._bridge_id(conn, bridge)
            if bridge_id is None:
                return []
            corr_id = self._live_correlation(conn, bridge_id, direction, source_id)
            if corr_id is None:
                return []
            rows = conn.execute(
                "SELECT destination_id FROM destinations WHERE correlation_id = ? ORDER BY rowid",
                (corr_id,),
            ).fetchall()
        return [row["destination_id"] for row in rows]

    def _get_reverse_sync(self, bridge: str, direction: str, destination_id: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT c.source_id FROM destinations d
                JOIN correlations c ON c.id = d.correlation_id
                JOIN bridges b ON b.id = c.bridge_id
                WHERE b.name = ? AND c.direction = ? AND d.destination_id = ? AND c.expires_at > ?
                ORDER BY c.id
                LIMIT 1
                """,
                (bridge, direction, destination_id, self._clock()),
            ).fetchone()
        return row["source_id"] if row else None

    def _remove_sync(self, bridge: str, direction: str, source_id: str) -> list[str]:
        with self._transaction() as conn:
            bridge_id = self._bridge_id(conn, bridge)
            if bridge_id is None:
                return []
            corr_id = self._live_correlation(conn, bridge_id, direction, source_id)
            if corr_id is None:
                return []
            rows = conn.execute(
                "SELECT destination_id FROM destinations WHERE correlation_id = ? ORDER BY rowid",
                (corr_id,),
            ).fetchall()
            conn.execute("DELETE FROM correlations WHERE id = ?", (corr_id,))
        return [row["destination_id"] for row in rows]

    def _delete_expired(self, conn: sqlite3.Connection) -> int:
        now = self._clock()
        self._last_purge = now
        cur = conn.execute("DELETE FROM correlations WHERE expires_at <= ?", (now,))
        return cur.rowcount

    def _purge_if_due(self, conn: sqlite3.Connection) -> None:
        if self._clock() - self._last_purge < self._purge_interval:
            return
        purged = self._delete_expired(conn)
        if purged:
            logger.debug("Swept {} expired correlations", purged)

    def _purge_sync(self) -> int:
        with self._transaction() as conn:
            return self._delete_expired(conn)

    # -- async contract --

    async def insert(self, bridge: str, direction: RelayDirection, source_id: str, destination_id: str) -> None:
        await self._run(self._insert_sync, bridge, direction, str(source_id), str(destination_id))

    async def get(self, bridge: str, direction: RelayDirection, source_id: str) -> list[str]:
        return await self._run(self._get_sync, bridge, direction, str(source_id))

    async def get_reverse(self, bridge: str, direction: RelayDirection, destination_id: str) -> str | None:
        return await self._run(self._get_reverse_sync, bridge, direction, str(destination_id))

    async def remove(self, bridge: str, direction: RelayDirection, source_id: str) -> list[str]:
        return await self._run(self._remove_sync, bridge, direction, str(source_id))

    async def purge_expired(self) -> int:
        """Delete every expired correlation. Returns the number of keys dropped."""
        purged = await self._run(self._purge_sync)
        if purged:
            logger.debug("Purged {} expired correlations", purged)
        return purged

    async def close(self) -> None:
        # Connections are per call; nothing is held open
        return None
