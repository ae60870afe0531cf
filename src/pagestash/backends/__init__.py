"""Key-value backing stores with abstract base."""

from pagestash.backends.base import BaseBackend
from pagestash.backends.memory import MemoryBackend
from pagestash.backends.sqlite import SqliteBackend

__all__ = [
    "BaseBackend",
    "MemoryBackend",
    "SqliteBackend",
]
