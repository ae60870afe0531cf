"""Abstract base class for key-value backing stores."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod


def dumps(value: object) -> str:
    return json.dumps(value, separators=(",", ":"))


def json_size(value: object) -> int:
    """UTF-8 byte length of a value once JSON-encoded."""
    return len(dumps(value).encode("utf-8"))


class BaseBackend(ABC):
    """Async interface over a flat, non-transactional key-value store.

    No transactions, compare-and-swap or cross-key ordering are assumed;
    only per-key read-your-writes.
    """

    @abstractmethod
    async def get(self, keys: list[str] | None = None) -> dict:
        """Return stored values for ``keys`` (every key when None).

        Missing keys are absent from the result.
        """
        ...

    @abstractmethod
    async def set(self, items: dict) -> None:
        """Write every key in ``items``."""
        ...

    @abstractmethod
    async def remove(self, keys: list[str]) -> None:
        """Delete keys; unknown keys are ignored."""
        ...

    @abstractmethod
    async def bytes_in_use(self) -> int:
        """Total encoded size of everything stored."""
        ...

    async def keys(self) -> list[str]:
        """Every stored key. Backends should override to skip decoding values."""
        return list(await self.get())

    async def get_one(self, key: str, default=None):
        result = await self.get([key])
        return result.get(key, default)
