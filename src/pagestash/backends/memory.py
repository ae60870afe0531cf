"""In-process backend holding JSON-encoded values in a dict."""

from __future__ import annotations

import json

from pagestash.backends.base import BaseBackend, dumps
from pagestash.exceptions import CorruptionError, QuotaExceededError


class MemoryBackend(BaseBackend):
    """Dict-backed store for tests and ephemeral sessions.

    Values are kept as JSON text so callers never share mutable state with
    the store, and so sizes match what a persistent backend would report.

    Args:
        capacity_bytes: Reject writes that would push usage past this size.
    """

    def __init__(self, capacity_bytes: int | None = None):
        self.capacity_bytes = capacity_bytes
        self._data: dict[str, str] = {}

    async def get(self, keys: list[str] | None = None) -> dict:
        wanted = list(self._data) if keys is None else keys
        result = {}
        for key in wanted:
            if key not in self._data:
                continue
            try:
                result[key] = json.loads(self._data[key])
            except json.JSONDecodeError as e:
                raise CorruptionError(f"Stored value for {key!r} is corrupt: {e}") from e
        return result

    async def set(self, items: dict) -> None:
        encoded = {key: dumps(value) for key, value in items.items()}
        if self.capacity_bytes is not None:
            projected = sum(
                len(k.encode("utf-8")) + len(v.encode("utf-8"))
                for k, v in {**self._data, **encoded}.items()
            )
            if projected > self.capacity_bytes:
                raise QuotaExceededError(
                    f"QUOTA_BYTES quota exceeded ({projected} > {self.capacity_bytes} bytes)"
                )
        self._data.update(encoded)

    async def remove(self, keys: list[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._data)

    async def bytes_in_use(self) -> int:
        return sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in self._data.items())

    def put_raw(self, key: str, text: str) -> None:
        """Store undecoded text, bypassing encoding (simulates a torn write)."""
        self._data[key] = text
