"""SQLite-backed durable key-value store."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from pathlib import Path

from pagestash.backends.base import BaseBackend, dumps
from pagestash.exceptions import CorruptionError, QuotaExceededError, StorageError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT DEFAULT (datetime('now'))
);
"""


class SqliteBackend(BaseBackend):
    """Single-table key/value store with JSON text values.

    Each call opens its own connection in a worker thread, so the event
    loop never blocks on disk I/O.

    Args:
        path: Database file; parent directories are created.
        capacity_bytes: Reject writes that would push usage past this size.
    """

    def __init__(self, path: Path | str, capacity_bytes: int | None = None):
        self.path = Path(path).expanduser()
        self.capacity_bytes = capacity_bytes
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._run(self._init_schema)
        logger.debug("Opened SQLite store at %s", self.path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        return conn

    def _run(self, fn, *args):
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open store at {self.path}: {e}") from e
        try:
            return fn(conn, *args)
        except sqlite3.DatabaseError as e:
            # DatabaseError covers malformed/not-a-database files.
            if isinstance(e, (sqlite3.OperationalError, sqlite3.IntegrityError)):
                raise StorageError(f"SQLite operation failed: {e}") from e
            raise CorruptionError(f"SQLite storage is corrupt: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"SQLite operation failed: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _init_schema(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    @staticmethod
    def _get(conn: sqlite3.Connection, keys: list[str] | None) -> dict:
        if keys is None:
            rows = conn.execute("SELECT key, value FROM kv").fetchall()
        elif not keys:
            return {}
        else:
            placeholders = ",".join("?" for _ in keys)
            rows = conn.execute(
                f"SELECT key, value FROM kv WHERE key IN ({placeholders})", list(keys)
            ).fetchall()
        result = {}
        for row in rows:
            try:
                result[row["key"]] = json.loads(row["value"])
            except json.JSONDecodeError as e:
                raise CorruptionError(f"Stored value for {row['key']!r} is corrupt: {e}") from e
        return result

    def _set(self, conn: sqlite3.Connection, encoded: dict[str, str]) -> None:
        if self.capacity_bytes is not None:
            placeholders = ",".join("?" for _ in encoded)
            row = conn.execute(
                "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) "
                f"FROM kv WHERE key NOT IN ({placeholders})",
                list(encoded),
            ).fetchone()
            projected = row[0] + sum(
                len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in encoded.items()
            )
            if projected > self.capacity_bytes:
                raise QuotaExceededError(
                    f"QUOTA_BYTES quota exceeded ({projected} > {self.capacity_bytes} bytes)"
                )
        with conn:
            conn.executemany(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                list(encoded.items()),
            )

    @staticmethod
    def _remove(conn: sqlite3.Connection, keys: list[str]) -> None:
        with conn:
            conn.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in keys])

    @staticmethod
    def _keys(conn: sqlite3.Connection) -> list[str]:
        return [row["key"] for row in conn.execute("SELECT key FROM kv").fetchall()]

    @staticmethod
    def _bytes_in_use(conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT COALESCE(SUM(LENGTH(CAST(key AS BLOB)) + LENGTH(CAST(value AS BLOB))), 0) FROM kv"
        ).fetchone()
        return int(row[0])

    async def get(self, keys: list[str] | None = None) -> dict:
        return await asyncio.to_thread(self._run, self._get, keys)

    async def set(self, items: dict) -> None:
        if not items:
            return
        encoded = {key: dumps(value) for key, value in items.items()}
        await asyncio.to_thread(self._run, self._set, encoded)

    async def remove(self, keys: list[str]) -> None:
        if not keys:
            return
        await asyncio.to_thread(self._run, self._remove, list(keys))

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._run, self._keys)

    async def bytes_in_use(self) -> int:
        return await asyncio.to_thread(self._run, self._bytes_in_use)
