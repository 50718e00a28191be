"""
Persistence layer for wallet state.

The wallet state is an opaque string-keyed store with last-write-wins
semantics and no transactions, mirroring browser-extension local storage.
Values are JSON-compatible and are always handed out as copies, so a caller
mutating a returned dict never changes persisted state until it calls
``set`` again.

Two backends:
    MemoryStorage   in-process dict, used by tests and ephemeral wallets
    SQLiteStorage   single ``kv`` table, WAL mode, JSON-encoded values

Usage:
    store = SQLiteStorage("data/nami.db")
    await store.set({STORAGE.currency: "usd"})
    currency = await store.get(STORAGE.currency)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger("nami.storage")


class STORAGE:
    """Keys of the persisted wallet record."""
    encryptedKey = "encryptedKey"
    accounts = "accounts"
    currentAccount = "currentAccount"
    network = "network"
    provider = "provider"
    currency = "currency"
    whitelisted = "whitelisted"
    migration = "migration"


def _copy(value: Any) -> Any:
    return json.loads(json.dumps(value))


class Storage(ABC):
    """Async key/value store contract.

    The store itself has no compare-and-swap. Callers doing a
    read-modify-write of a key hold :meth:`lock` for that key, which is
    shared by every object built on the same store instance.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        """The lock serialising read-modify-write sequences on *key*."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @abstractmethod
    async def get(self, key: str | None = None) -> Any:
        """Return the value for *key*, ``None`` if absent, or everything when *key* is None."""

    @abstractmethod
    async def set(self, items: dict[str, Any]) -> bool:
        """Write every key of *items*; last write wins."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every key."""

    async def close(self) -> None:
        return None


class MemoryStorage(Storage):
    """Dict-backed storage; values are JSON-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None):
        super().__init__()
        self._data: dict[str, Any] = _copy(initial or {})

    async def get(self, key: str | None = None) -> Any:
        if key is None:
            return _copy(self._data)
        if key not in self._data:
            return None
        return _copy(self._data[key])

    async def set(self, items: dict[str, Any]) -> bool:
        for key, value in items.items():
            self._data[key] = _copy(value)
        return True

    async def clear(self) -> None:
        self._data.clear()


class SQLiteStorage(Storage):
    """Thin SQLite wrapper persisting each key as one JSON row."""

    def __init__(self, db_path: str = "data/nami.db"):
        super().__init__()
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # Calls are dispatched through asyncio.to_thread, so the connection
        # is shared across worker threads and guarded by _io_lock.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._io_lock = threading.Lock()
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        logger.info(f"Storage opened: {db_path}")

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        self._conn.commit()

    # ── sync primitives (run in a worker thread) ─────────────────

    def _get_sync(self, key: str | None) -> Any:
        with self._io_lock:
            if key is None:
                rows = self._conn.execute("SELECT key, value FROM kv").fetchall()
                return {r["key"]: json.loads(r["value"]) for r in rows}
            row = self._conn.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row["value"]) if row else None

    def _set_sync(self, items: dict[str, Any]) -> None:
        rows = [(k, json.dumps(v)) for k, v in items.items()]
        with self._io_lock:
            self._conn.executemany(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", rows
            )
            self._conn.commit()

    def _clear_sync(self) -> None:
        with self._io_lock:
            self._conn.execute("DELETE FROM kv")
            self._conn.commit()

    # ── async API ────────────────────────────────────────────────

    async def get(self, key: str | None = None) -> Any:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, items: dict[str, Any]) -> bool:
        await asyncio.to_thread(self._set_sync, items)
        return True

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)
        logger.info("Storage cleared")

    async def close(self) -> None:
        with self._io_lock:
            self._conn.close()

    def __enter__(self) -> SQLiteStorage:
        return self

    def __exit__(self, *exc) -> None:
        with self._io_lock:
            self._conn.close()


def open_storage(backend: str = "sqlite", path: str = "data/nami.db") -> Storage:
    """Build the storage backend named in the configuration."""
    if backend == "memory":
        return MemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(path)
    raise ValueError(f"Unknown storage backend: {backend!r}")
