"""Page and settings persistence with snapshots, quota and corruption recovery."""

from pagestash.store.backup import BackupManager, RecoveryResult, SnapshotInfo
from pagestash.store.corruption import CorruptionReport, detect_corruption
from pagestash.store.metadata import MetadataStore, StoreMetadata
from pagestash.store.pages import (
    BatchResult,
    DeleteResult,
    ImportResult,
    PageQuery,
    PageStore,
    QueryResult,
    StorageInfo,
)
from pagestash.store.quota import CleanupResult, QuotaManager, QuotaStatus
from pagestash.store.settings import SettingsStore, validate_api_key

__all__ = [
    "PageStore",
    "PageQuery",
    "QueryResult",
    "DeleteResult",
    "BatchResult",
    "ImportResult",
    "StorageInfo",
    "SettingsStore",
    "validate_api_key",
    "BackupManager",
    "SnapshotInfo",
    "RecoveryResult",
    "QuotaManager",
    "QuotaStatus",
    "CleanupResult",
    "MetadataStore",
    "StoreMetadata",
    "CorruptionReport",
    "detect_corruption",
]
