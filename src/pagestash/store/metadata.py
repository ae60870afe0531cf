"""Sidecar metadata record describing the page collection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pagestash.backends.base import BaseBackend
from pagestash.config import Clock, now_ms
from pagestash.exceptions import StorageError
from pagestash.store.keys import METADATA_KEY, SCHEMA_VERSION

logger = logging.getLogger(__name__)

_FIELDS = {
    "version": "version",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "totalPages": "total_pages",
    "lastBackup": "last_backup",
    "lastRecovery": "last_recovery",
    "lastCleanup": "last_cleanup",
}


@dataclass
class StoreMetadata:
    version: str = SCHEMA_VERSION
    created_at: int | None = None
    updated_at: int | None = None
    total_pages: int = 0
    last_backup: int | None = None
    last_recovery: int | None = None
    last_cleanup: int | None = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "StoreMetadata":
        known = {attr: data[key] for key, attr in _FIELDS.items() if key in data}
        extra = {k: v for k, v in data.items() if k not in _FIELDS}
        return cls(**known, extra=extra)

    def to_dict(self) -> dict:
        out = dict(self.extra)
        for key, attr in _FIELDS.items():
            out[key] = getattr(self, attr)
        return out


class MetadataStore:
    """Read and merge-update the metadata record.

    Metadata is advisory: write failures are logged and never fail the
    operation that triggered them.
    """

    def __init__(self, backend: BaseBackend, clock: Clock = now_ms):
        self.backend = backend
        self.clock = clock

    async def load(self) -> StoreMetadata:
        """Return the metadata record, creating it on first use."""
        raw = await self.backend.get_one(METADATA_KEY)
        if isinstance(raw, dict):
            return StoreMetadata.from_dict(raw)
        now = self.clock()
        metadata = StoreMetadata(created_at=now, updated_at=now, last_cleanup=now)
        await self.backend.set({METADATA_KEY: metadata.to_dict()})
        return metadata

    async def update(self, changes: dict) -> StoreMetadata | None:
        """Merge camelCase ``changes`` into the record and stamp ``updatedAt``."""
        try:
            current = await self.load()
            merged = {**current.to_dict(), **changes, "updatedAt": self.clock()}
            await self.backend.set({METADATA_KEY: merged})
            return StoreMetadata.from_dict(merged)
        except StorageError as e:
            logger.warning("Failed to update store metadata: %s", e)
            return None
