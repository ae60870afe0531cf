"""Tests for the SQLite backend."""

import sqlite3

import pytest

from pagestash.backends.sqlite import SqliteBackend
from pagestash.exceptions import CorruptionError, QuotaExceededError


@pytest.mark.asyncio
async def test_roundtrip_and_persistence(tmp_path):
    path = tmp_path / "nested" / "store.db"
    backend = SqliteBackend(path)
    await backend.set({"pages": [{"id": "a"}], "settings": {"theme": "dark"}})

    reopened = SqliteBackend(path)
    assert await reopened.get(["pages"]) == {"pages": [{"id": "a"}]}
    assert sorted(await reopened.keys()) == ["pages", "settings"]


@pytest.mark.asyncio
async def test_remove_and_missing_keys(tmp_path):
    backend = SqliteBackend(tmp_path / "store.db")
    await backend.set({"a": 1, "b": 2})
    await backend.remove(["a", "nope"])
    assert await backend.get(["a", "b"]) == {"b": 2}
    assert await backend.get([]) == {}


@pytest.mark.asyncio
async def test_bytes_in_use(tmp_path):
    backend = SqliteBackend(tmp_path / "store.db")
    assert await backend.bytes_in_use() == 0
    await backend.set({"k": [1]})
    assert await backend.bytes_in_use() == len("k") + len("[1]")


@pytest.mark.asyncio
async def test_capacity_enforced(tmp_path):
    backend = SqliteBackend(tmp_path / "store.db", capacity_bytes=10)
    await backend.set({"k": "abc"})
    with pytest.raises(QuotaExceededError):
        await backend.set({"other": "a much longer value"})
    assert await backend.keys() == ["k"]


@pytest.mark.asyncio
async def test_undecodable_value_raises_corruption(tmp_path):
    path = tmp_path / "store.db"
    backend = SqliteBackend(path)
    conn = sqlite3.connect(str(path))
    with conn:
        conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now'))",
            ("pages", "[{broken"),
        )
    conn.close()
    with pytest.raises(CorruptionError):
        await backend.get_one("pages")
    assert await backend.keys() == ["pages"]
