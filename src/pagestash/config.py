"""Store configuration and clock helpers."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

Clock = Callable[[], int]

MIB = 1024 * 1024
DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class StoreConfig:
    max_storage_bytes: int = 5 * MIB
    near_limit_percent: float = 80
    over_limit_percent: float = 95
    backup_retention_days: int = 7
    stale_page_days: int = 180
    emergency_keep_ratio: float = 0.75
    quota_retry_keep_ratio: float = 0.9
    corruption_threshold_percent: float = 10
    best_effort_backups: bool = False
    db_path: str = str(Path.home() / ".pagestash" / "store.db")

    @property
    def backup_retention_ms(self) -> int:
        return self.backup_retention_days * DAY_MS

    @property
    def stale_page_ms(self) -> int:
        return self.stale_page_days * DAY_MS

    @staticmethod
    def from_env() -> "StoreConfig":
        def _b(name: str, default: str) -> bool:
            return os.getenv(name, default).strip() in ("1", "true", "True", "yes", "YES")

        def _i(name: str, default: int) -> int:
            return int(os.getenv(name, str(default)).strip())

        def _f(name: str, default: float) -> float:
            return float(os.getenv(name, str(default)).strip())

        defaults = StoreConfig()
        return StoreConfig(
            max_storage_bytes=_i("PAGESTASH_MAX_STORAGE_BYTES", defaults.max_storage_bytes),
            near_limit_percent=_f("PAGESTASH_NEAR_LIMIT_PERCENT", defaults.near_limit_percent),
            over_limit_percent=_f("PAGESTASH_OVER_LIMIT_PERCENT", defaults.over_limit_percent),
            backup_retention_days=_i("PAGESTASH_BACKUP_RETENTION_DAYS", defaults.backup_retention_days),
            stale_page_days=_i("PAGESTASH_STALE_PAGE_DAYS", defaults.stale_page_days),
            best_effort_backups=_b("PAGESTASH_BEST_EFFORT_BACKUPS", "0"),
            db_path=os.getenv("PAGESTASH_DB_PATH", defaults.db_path).strip(),
        )
