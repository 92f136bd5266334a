from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol


logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> bool: ...

    async def remove(self, key: str) -> bool: ...


class SqliteKeyValueStore:
    """
    Local key/value store: JSON values keyed by string, one row per key.

    Reads see the latest write for the same key; there are no multi-key transactions. Calls run in a
    worker thread so the event loop is never blocked on disk.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        # Self-heal on a corrupted file: move it aside and start fresh.
        self._conn = self._open_or_quarantine()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, check_same_thread=False)

    def _open_or_quarantine(self) -> sqlite3.Connection:
        if self.db_path.exists():
            try:
                conn = self._connect()
                if self._connection_is_healthy(conn):
                    return conn
                conn.close()
                raise sqlite3.DatabaseError("SQLite quick_check failed")
            except sqlite3.DatabaseError as e:
                logger.warning("State DB appears corrupted/unreadable; starting a fresh one. (%s)", e)
                self._quarantine_db_files()
        return self._connect()

    def _connection_is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            _ = conn.execute("PRAGMA schema_version;").fetchone()
            row = conn.execute("PRAGMA quick_check;").fetchone()
            return bool(row and row[0] == "ok")
        except sqlite3.DatabaseError:
            return False

    def _quarantine_db_files(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for p in (self.db_path, Path(str(self.db_path) + "-wal"), Path(str(self.db_path) + "-shm")):
            try:
                if p.exists():
                    p.replace(p.with_name(p.name + f".corrupt-{stamp}"))
            except OSError:
                logger.debug("Failed to quarantine path=%s", p, exc_info=True)

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    def get_sync(self, key: str) -> Optional[Any]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?;", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError:
            logger.warning("Ignoring unreadable value stored under key=%r", key)
            return None

    def set_sync(self, key: str, value: Any) -> bool:
        now = datetime.now(timezone.utc).isoformat()
        payload = json.dumps(value)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at;
                """,
                (key, payload, now),
            )
            self._conn.commit()
        return True

    def remove_sync(self, key: str) -> bool:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?;", (key,))
            self._conn.commit()
        return True

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self.get_sync, key)

    async def set(self, key: str, value: Any) -> bool:
        return await asyncio.to_thread(self.set_sync, key, value)

    async def remove(self, key: str) -> bool:
        return await asyncio.to_thread(self.remove_sync, key)
