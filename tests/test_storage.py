"""
Tests for the key-value storage backends (storage.py).

Covers:
  - Schema creation and WAL mode
  - get / set / clear on both backends
  - Values are copies, not shared references
  - Persistence across reopen
  - open_storage backend selection
  - Per-key read-modify-write locks
"""

from __future__ import annotations

import asyncio
import os

import pytest

from nami_core.storage import STORAGE, MemoryStorage, SQLiteStorage, open_storage


@pytest.fixture
def sqlite_store(tmp_path):
    """Fresh SQLiteStorage in a temp directory."""
    s = SQLiteStorage(str(tmp_path / "test.db"))
    yield s
    s._conn.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield MemoryStorage()
    else:
        s = SQLiteStorage(str(tmp_path / "any.db"))
        yield s
        s._conn.close()


# ═══════════════════════════════════════════════════════════════════
#  Schema
# ═══════════════════════════════════════════════════════════════════

class TestSchema:
    def test_kv_table_created(self, sqlite_store):
        tables = sqlite_store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        assert "kv" in {r["name"] for r in tables}

    def test_wal_mode_enabled(self, sqlite_store):
        mode = sqlite_store._conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"

    def test_directory_created_if_missing(self, tmp_path):
        deep_path = str(tmp_path / "a" / "b" / "wallet.db")
        with SQLiteStorage(deep_path):
            pass
        assert os.path.isfile(deep_path)


# ═══════════════════════════════════════════════════════════════════
#  Key-value operations
# ═══════════════════════════════════════════════════════════════════

class TestKeyValue:
    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, any_store):
        assert await any_store.get(STORAGE.accounts) is None

    @pytest.mark.asyncio
    async def test_set_and_get(self, any_store):
        accounts = {"0": {"index": 0, "name": "Main", "mainnet": {"lovelace": "5"}}}
        assert await any_store.set({STORAGE.accounts: accounts, STORAGE.currentAccount: 0})
        assert await any_store.get(STORAGE.accounts) == accounts
        assert await any_store.get(STORAGE.currentAccount) == 0

    @pytest.mark.asyncio
    async def test_get_all(self, any_store):
        await any_store.set({STORAGE.currency: "eur", STORAGE.provider: "blockfrost"})
        assert await any_store.get() == {"currency": "eur", "provider": "blockfrost"}

    @pytest.mark.asyncio
    async def test_overwrite(self, any_store):
        await any_store.set({STORAGE.currency: "usd"})
        await any_store.set({STORAGE.currency: "eur"})
        assert await any_store.get(STORAGE.currency) == "eur"

    @pytest.mark.asyncio
    async def test_clear(self, any_store):
        await any_store.set({STORAGE.currency: "usd", STORAGE.whitelisted: ["a"]})
        await any_store.clear()
        assert await any_store.get() == {}

    @pytest.mark.asyncio
    async def test_returned_values_are_copies(self, any_store):
        await any_store.set({STORAGE.whitelisted: ["https://a.example"]})
        value = await any_store.get(STORAGE.whitelisted)
        value.append("https://b.example")
        assert await any_store.get(STORAGE.whitelisted) == ["https://a.example"]

    @pytest.mark.asyncio
    async def test_memory_initial_data(self):
        store = MemoryStorage({STORAGE.currency: "jpy"})
        assert await store.get(STORAGE.currency) == "jpy"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = str(tmp_path / "wallet.db")
        first = SQLiteStorage(path)
        await first.set({STORAGE.migration: {"version": "1.0.0", "completed": ["1.0.0"]}})
        await first.close()

        second = SQLiteStorage(path)
        assert await second.get(STORAGE.migration) == {"version": "1.0.0", "completed": ["1.0.0"]}
        await second.close()


class TestOpenStorage:
    def test_memory(self):
        assert isinstance(open_storage("memory"), MemoryStorage)

    def test_sqlite(self, tmp_path):
        store = open_storage("sqlite", str(tmp_path / "x.db"))
        assert isinstance(store, SQLiteStorage)
        store._conn.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            open_storage("redis")


# ═══════════════════════════════════════════════════════════════════
#  Key locks
# ═══════════════════════════════════════════════════════════════════

class TestKeyLocks:
    def test_lock_is_per_key_and_stable(self, any_store):
        lock = any_store.lock(STORAGE.accounts)
        assert any_store.lock(STORAGE.accounts) is lock
        assert any_store.lock(STORAGE.migration) is not lock

    def test_stores_do_not_share_locks(self):
        assert MemoryStorage().lock(STORAGE.accounts) is not MemoryStorage().lock(STORAGE.accounts)

    @pytest.mark.asyncio
    async def test_lock_serialises_read_modify_write(self, any_store):
        await any_store.set({STORAGE.whitelisted: []})

        async def append(origin):
            async with any_store.lock(STORAGE.whitelisted):
                current = await any_store.get(STORAGE.whitelisted)
                await asyncio.sleep(0)
                await any_store.set({STORAGE.whitelisted: current + [origin]})

        await asyncio.gather(*(append(f"https://{i}.example") for i in range(5)))
        assert len(await any_store.get(STORAGE.whitelisted)) == 5
