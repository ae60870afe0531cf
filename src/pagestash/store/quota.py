"""Byte-budget accounting and eviction policies."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from pagestash.backends.base import BaseBackend
from pagestash.config import Clock, StoreConfig, now_ms
from pagestash.exceptions import StorageError
from pagestash.store.backup import BackupManager
from pagestash.store.keys import PAGES_KEY
from pagestash.store.metadata import MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class QuotaStatus:
    bytes_in_use: int
    available_space: int
    usage_percentage: float
    is_near_limit: bool
    is_over_limit: bool

    def to_dict(self) -> dict:
        return {
            "bytesInUse": self.bytes_in_use,
            "availableSpace": self.available_space,
            "usagePercentage": self.usage_percentage,
            "isNearLimit": self.is_near_limit,
            "isOverLimit": self.is_over_limit,
        }


@dataclass
class CleanupResult:
    kept: list[dict] = field(default_factory=list)
    removed_count: int = 0


class QuotaManager:
    """Measure usage against a fixed budget and evict pages when needed.

    Both eviction policies treat the given list as newest-first, so "oldest"
    is always the tail.
    """

    def __init__(
        self,
        backend: BaseBackend,
        backups: BackupManager,
        metadata: MetadataStore,
        config: StoreConfig | None = None,
        clock: Clock = now_ms,
    ):
        self.backend = backend
        self.backups = backups
        self.metadata = metadata
        self.config = config or StoreConfig()
        self.clock = clock

    def classify(self, bytes_in_use: int) -> QuotaStatus:
        budget = self.config.max_storage_bytes
        usage = (bytes_in_use / budget) * 100 if budget else 100.0
        return QuotaStatus(
            bytes_in_use=bytes_in_use,
            available_space=budget - bytes_in_use,
            usage_percentage=usage,
            is_near_limit=usage > self.config.near_limit_percent,
            is_over_limit=usage > self.config.over_limit_percent,
        )

    async def check_quota(self) -> QuotaStatus:
        try:
            used = await self.backend.bytes_in_use()
        except StorageError as e:
            logger.warning("Failed to check storage quota: %s", e)
            used = 0
        return self.classify(used)

    async def emergency_cleanup(self, pages: list[dict]) -> CleanupResult:
        """Snapshot, then keep only the newest share of ``pages``."""
        await self.backups.snapshot("before_emergency_cleanup")

        keep_count = math.floor(len(pages) * self.config.emergency_keep_ratio)
        kept = pages[:keep_count]
        removed = len(pages) - keep_count
        await self.backend.set({PAGES_KEY: kept})
        await self.metadata.update({
            "totalPages": len(kept),
            "lastCleanup": self.clock(),
            "cleanupType": "emergency",
        })
        logger.warning("Emergency cleanup: removed %d pages", removed)
        return CleanupResult(kept=kept, removed_count=removed)

    async def light_cleanup(self, pages: list[dict]) -> CleanupResult:
        """Drop pages older than the stale-page window."""
        cutoff = self.clock() - self.config.stale_page_ms
        kept = [p for p in pages if (p.get("timestamp") or 0) > cutoff]
        removed = len(pages) - len(kept)
        if not removed:
            return CleanupResult(kept=pages, removed_count=0)

        await self.backups.snapshot("before_light_cleanup")
        await self.backend.set({PAGES_KEY: kept})
        await self.metadata.update({
            "totalPages": len(kept),
            "lastCleanup": self.clock(),
            "cleanupType": "light",
        })
        logger.info("Light cleanup: removed %d old pages", removed)
        return CleanupResult(kept=kept, removed_count=removed)
