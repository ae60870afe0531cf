"""Boundary facade: every call returns ``{"success": bool, "data"|"error": ...}``.

Records leave the service in their camelCase wire form so callers never
handle the internal dataclasses.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pagestash.backends.base import BaseBackend
from pagestash.backends.memory import MemoryBackend
from pagestash.backends.sqlite import SqliteBackend
from pagestash.config import Clock, StoreConfig, now_ms
from pagestash.exceptions import PageStashError, ValidationError
from pagestash.store.backup import RecoveryResult, SnapshotInfo
from pagestash.store.pages import BatchResult, ImportResult, PageStore, QueryResult, StorageInfo
from pagestash.store.settings import SettingsStore

logger = logging.getLogger(__name__)


def _ok(data=None) -> dict:
    return {"success": True, "data": data}


def _fail(error: Exception) -> dict:
    result = {"success": False, "error": str(error)}
    if isinstance(error, ValidationError) and error.errors:
        result["errors"] = error.errors
    return result


def _query_dict(result: QueryResult) -> dict:
    return {
        "pages": [p.to_dict() for p in result.pages],
        "totalCount": result.total_count,
        "filteredCount": result.filtered_count,
        "hasMore": result.has_more,
    }


def _info_dict(info: StorageInfo) -> dict:
    return {
        "pageCount": info.page_count,
        "storageUsed": info.storage_used,
        "lastUpdated": info.last_updated,
        "quota": info.quota.to_dict(),
    }


def _batch_dict(result: BatchResult) -> dict:
    return {
        "operation": result.operation,
        "modified": result.modified,
        "affectedCount": result.affected_count,
    }


def _import_dict(result: ImportResult) -> dict:
    return {
        "importedPages": result.imported_pages,
        "duplicatePages": result.duplicate_pages,
        "skippedPages": result.skipped_pages,
        "totalPages": result.total_pages,
        "importedSettings": result.imported_settings,
        "invalidPages": result.invalid_pages,
    }


def _recovery_dict(result: RecoveryResult) -> dict:
    return {
        "recoveredPageCount": result.recovered_page_count,
        "backupTimestamp": result.snapshot_timestamp,
        "backupId": result.snapshot_id,
    }


def _snapshot_dict(info: SnapshotInfo) -> dict:
    return {
        "id": info.snapshot_id,
        "timestamp": info.timestamp,
        "reason": info.reason,
        "pageCount": info.page_count,
    }


class StorageService:
    """Page and settings operations wrapped in uniform result dicts.

    Usage::

        service = StorageService.from_config()
        result = await service.save({"url": "https://example.com", "title": "Example"})
        if result["success"]:
            page = result["data"]
    """

    def __init__(
        self,
        backend: BaseBackend,
        config: StoreConfig | None = None,
        clock: Clock | None = None,
    ):
        clock = clock or now_ms
        self.config = config or StoreConfig()
        self.backend = backend
        self.settings = SettingsStore(backend, clock)
        self.pages = PageStore(backend, self.config, clock, settings=self.settings)

    @classmethod
    def in_memory(
        cls,
        config: StoreConfig | None = None,
        clock: Clock | None = None,
        capacity_bytes: int | None = None,
    ) -> "StorageService":
        return cls(MemoryBackend(capacity_bytes=capacity_bytes), config, clock)

    @classmethod
    def from_config(cls, config: StoreConfig | None = None, clock: Clock | None = None) -> "StorageService":
        """Open the SQLite store at ``config.db_path`` (env-derived by default)."""
        config = config or StoreConfig.from_env()
        Path(config.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return cls(SqliteBackend(Path(config.db_path).expanduser()), config, clock)

    async def _call(self, operation: str, coro) -> dict:
        try:
            return _ok(await coro)
        except PageStashError as e:
            logger.warning("%s failed: %s", operation, e)
            return _fail(e)
        except Exception as e:
            logger.exception("Unexpected error during %s", operation)
            return _fail(e)

    # ---- Pages ----

    async def save(self, page_data: dict) -> dict:
        async def run():
            return (await self.pages.save(page_data)).to_dict()
        return await self._call("save", run())

    async def get_all(self) -> dict:
        async def run():
            return [p.to_dict() for p in await self.pages.get_all()]
        return await self._call("get_all", run())

    async def get(self, page_id: str) -> dict:
        async def run():
            page = await self.pages.get(page_id)
            return page.to_dict() if page else None
        return await self._call("get", run())

    async def delete(self, page_id: str) -> dict:
        async def run():
            result = await self.pages.delete(page_id)
            return {
                "found": result.found,
                "deletedPage": result.deleted_page.to_dict() if result.deleted_page else None,
            }
        return await self._call("delete", run())

    async def update(self, page_id: str, updates: dict) -> dict:
        async def run():
            return (await self.pages.update(page_id, updates)).to_dict()
        return await self._call("update", run())

    async def search(self, query: str) -> dict:
        async def run():
            return [p.to_dict() for p in await self.pages.search(query)]
        return await self._call("search", run())

    async def filtered_query(self, options: dict | None = None) -> dict:
        async def run():
            return _query_dict(await self.pages.filtered_query(options or {}))
        return await self._call("filtered_query", run())

    async def clear_all(self) -> dict:
        async def run():
            return {"deletedCount": await self.pages.clear_all()}
        return await self._call("clear_all", run())

    async def enforce_limit(self, max_items: int | None = None) -> dict:
        async def run():
            return {"removedCount": await self.pages.enforce_limit(max_items)}
        return await self._call("enforce_limit", run())

    async def batch_operation(self, operation: str, page_ids: list[str], data: dict | None = None) -> dict:
        async def run():
            return _batch_dict(await self.pages.batch_operation(operation, page_ids, data))
        return await self._call("batch_operation", run())

    async def get_storage_info(self) -> dict:
        async def run():
            return _info_dict(await self.pages.get_storage_info())
        return await self._call("get_storage_info", run())

    async def get_storage_stats(self) -> dict:
        return await self._call("get_storage_stats", self.pages.get_storage_stats())

    async def perform_maintenance(self) -> dict:
        return await self._call("perform_maintenance", self.pages.perform_maintenance())

    async def export_all(self) -> dict:
        return await self._call("export_all", self.pages.export_all())

    async def import_all(self, backup: dict) -> dict:
        async def run():
            return _import_dict(await self.pages.import_all(backup))
        return await self._call("import_all", run())

    async def recover(self, snapshot_id: str | None = None) -> dict:
        async def run():
            return _recovery_dict(await self.pages.recover(snapshot_id))
        return await self._call("recover", run())

    async def list_backups(self) -> dict:
        async def run():
            return [_snapshot_dict(s) for s in await self.pages.list_backups()]
        return await self._call("list_backups", run())

    # ---- Settings ----

    async def get_settings(self) -> dict:
        async def run():
            return (await self.settings.get()).to_dict()
        return await self._call("get_settings", run())

    async def save_settings(self, settings: dict) -> dict:
        async def run():
            return (await self.settings.save(settings)).to_dict()
        return await self._call("save_settings", run())

    async def update_settings(self, changes: dict) -> dict:
        async def run():
            return (await self.settings.update(changes)).to_dict()
        return await self._call("update_settings", run())

    async def reset_settings(self) -> dict:
        async def run():
            return (await self.settings.reset()).to_dict()
        return await self._call("reset_settings", run())

    async def export_settings(self) -> dict:
        return await self._call("export_settings", self.settings.export_settings())

    async def import_settings(self, payload: dict) -> dict:
        return await self._call("import_settings", self.settings.import_settings(payload))
