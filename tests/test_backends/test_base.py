"""Tests for the backend base class."""

import pytest

from pagestash.backends.base import BaseBackend, dumps, json_size


class DictBackend(BaseBackend):
    """Minimal subclass relying on the base ``keys``/``get_one`` helpers."""

    def __init__(self):
        self.data = {}

    async def get(self, keys=None):
        wanted = list(self.data) if keys is None else keys
        return {k: self.data[k] for k in wanted if k in self.data}

    async def set(self, items):
        self.data.update(items)

    async def remove(self, keys):
        for key in keys:
            self.data.pop(key, None)

    async def bytes_in_use(self):
        return json_size(self.data)


def test_cannot_instantiate_abstract():
    with pytest.raises(TypeError):
        BaseBackend()


def test_json_size_is_compact_encoding_length():
    assert dumps({"a": 1}) == '{"a":1}'
    assert json_size([1, 2]) == 5


@pytest.mark.asyncio
async def test_default_helpers():
    backend = DictBackend()
    await backend.set({"pages": [], "settings": {}})
    assert sorted(await backend.keys()) == ["pages", "settings"]
    assert await backend.get_one("pages") == []
    assert await backend.get_one("missing", "fallback") == "fallback"
