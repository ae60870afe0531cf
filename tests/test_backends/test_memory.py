"""Tests for the in-memory backend."""

import pytest

from pagestash.backends.memory import MemoryBackend
from pagestash.exceptions import CorruptionError, QuotaExceededError


@pytest.mark.asyncio
async def test_set_get_remove():
    backend = MemoryBackend()
    await backend.set({"a": [1, 2], "b": {"x": True}})
    assert await backend.get(["a", "missing"]) == {"a": [1, 2]}
    assert await backend.get() == {"a": [1, 2], "b": {"x": True}}
    await backend.remove(["a", "unknown"])
    assert await backend.keys() == ["b"]


@pytest.mark.asyncio
async def test_values_are_copied():
    backend = MemoryBackend()
    value = {"tags": ["a"]}
    await backend.set({"k": value})
    value["tags"].append("b")
    fetched = await backend.get_one("k")
    assert fetched == {"tags": ["a"]}
    fetched["tags"].append("c")
    assert await backend.get_one("k") == {"tags": ["a"]}


@pytest.mark.asyncio
async def test_bytes_in_use():
    backend = MemoryBackend()
    assert await backend.bytes_in_use() == 0
    await backend.set({"k": [1]})
    assert await backend.bytes_in_use() == len("k") + len("[1]")


@pytest.mark.asyncio
async def test_capacity_enforced():
    backend = MemoryBackend(capacity_bytes=10)
    await backend.set({"k": "abc"})
    with pytest.raises(QuotaExceededError):
        await backend.set({"other": "a much longer value"})
    assert await backend.keys() == ["k"]


@pytest.mark.asyncio
async def test_overwrite_counts_replacement_not_sum():
    backend = MemoryBackend(capacity_bytes=8)
    await backend.set({"k": "abcd"})
    await backend.set({"k": "wxyz"})
    assert await backend.get_one("k") == "wxyz"


@pytest.mark.asyncio
async def test_torn_value_raises_corruption():
    backend = MemoryBackend()
    backend.put_raw("pages", '[{"id": "a"')
    with pytest.raises(CorruptionError):
        await backend.get(["pages"])
    assert await backend.keys() == ["pages"]
