"""The saved-page collection: CRUD, queries, batch edits and self-healing reads.

The whole collection lives under one backend key and is rewritten on every
change. A per-store ``asyncio.Lock`` serializes every public operation so
the read-modify-write cycle cannot lose updates between concurrent callers
of the same store instance. Reads take the lock too because a read can heal
(and therefore rewrite) the stored collection.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

import dateutil.parser

from pagestash.backends.base import BaseBackend, json_size
from pagestash.config import DAY_MS, Clock, StoreConfig, now_ms
from pagestash.exceptions import (
    CorruptionError,
    NotFoundError,
    PageStashError,
    QuotaExceededError,
    RecoveryError,
    UnrecoverableCorruptionError,
    ValidationError,
)
from pagestash.records.migrations import migrate_page
from pagestash.records.models import RECORD_VERSION, SavedPage
from pagestash.records.parser import normalize_tag, parse_page, sanitize, validate_page, validate_settings
from pagestash.store.backup import BackupManager, RecoveryResult, SnapshotInfo
from pagestash.store.corruption import CorruptionReport, detect_corruption, is_structurally_valid
from pagestash.store.keys import PAGES_KEY
from pagestash.store.metadata import MetadataStore
from pagestash.store.quota import QuotaManager, QuotaStatus
from pagestash.store.settings import SettingsStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = RECORD_VERSION

# wire name -> SavedPage attribute
SORT_FIELDS = {
    "timestamp": "timestamp",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "title": "title",
    "domain": "domain",
    "url": "url",
}
STRING_SORT_FIELDS = {"title", "domain", "url"}
SORT_ORDERS = ("asc", "desc")
BATCH_OPERATIONS = ("delete", "addTag", "removeTag")


@dataclass
class PageQuery:
    """Filter, sort and pagination options for ``PageStore.filtered_query``."""

    query: str = ""
    tags: list[str] = field(default_factory=list)
    date_from: int | float | str | datetime | None = None
    date_to: int | float | str | datetime | None = None
    domains: list[str] = field(default_factory=list)
    sort_by: str = "timestamp"
    sort_order: str = "desc"
    limit: int | None = None
    offset: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "PageQuery":
        """Build from camelCase options as sent by UI callers."""
        return cls(
            query=data.get("query") or "",
            tags=list(data.get("tags") or []),
            date_from=data.get("dateFrom"),
            date_to=data.get("dateTo"),
            domains=list(data.get("domains") or []),
            sort_by=data.get("sortBy") or "timestamp",
            sort_order=data.get("sortOrder") or "desc",
            limit=data.get("limit"),
            offset=data.get("offset") or 0,
        )


@dataclass
class QueryResult:
    pages: list[SavedPage]
    total_count: int
    filtered_count: int
    has_more: bool


@dataclass
class DeleteResult:
    found: bool
    deleted_page: SavedPage | None = None


@dataclass
class BatchResult:
    operation: str
    modified: bool
    affected_count: int = 0


@dataclass
class ImportResult:
    imported_pages: int
    duplicate_pages: int
    skipped_pages: int
    total_pages: int
    imported_settings: bool
    invalid_pages: list[dict] = field(default_factory=list)


@dataclass
class StorageInfo:
    page_count: int
    storage_used: int
    last_updated: int
    quota: QuotaStatus


def to_epoch_ms(value: object) -> int | None:
    """Coerce a date bound (epoch ms, datetime or ISO-8601 text) to epoch ms."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid date bound: {value!r}", ["Date bounds must be dates"])
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = dateutil.parser.parse(value)
        except (ValueError, OverflowError) as e:
            raise ValidationError(f"Invalid date bound: {value!r}", [str(e)]) from e
    else:
        raise ValidationError(f"Invalid date bound: {value!r}", ["Date bounds must be dates"])
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _require_page_id(page_id: object) -> None:
    if not page_id or not isinstance(page_id, str):
        raise ValidationError("Invalid page ID provided", ["Page ID must be a non-empty string"])


class PageStore:
    """Persistent collection of SavedPage records on a key-value backend.

    Every destructive operation snapshots the collection through the
    ``BackupManager`` before changing it, and every read runs corruption
    detection, recovering from the newest snapshot when needed.

    Args:
        backend: The key-value store holding pages, settings, metadata and
            snapshots.
        config: Budgets, windows and ratios; defaults to ``StoreConfig()``.
        clock: Epoch-millisecond clock.
        settings: Settings store sharing the backend; created if omitted.
    """

    def __init__(
        self,
        backend: BaseBackend,
        config: StoreConfig | None = None,
        clock: Clock = now_ms,
        settings: SettingsStore | None = None,
    ):
        self.backend = backend
        self.config = config or StoreConfig()
        self.clock = clock
        self.metadata = MetadataStore(backend, clock)
        self.backups = BackupManager(backend, self.metadata, self.config, clock)
        self.quota = QuotaManager(backend, self.backups, self.metadata, self.config, clock)
        self.settings = settings or SettingsStore(backend, clock)
        self._lock = asyncio.Lock()

    # ---- Internal read/write (callers hold the lock) ----

    async def _scan(self) -> tuple[object, CorruptionReport]:
        try:
            raw = await self.backend.get_one(PAGES_KEY)
        except CorruptionError as e:
            return None, CorruptionReport(is_corrupted=True, issues=[str(e)])
        return raw, detect_corruption(raw, self.config.corruption_threshold_percent)

    async def _load(self) -> list[SavedPage]:
        """Read, heal and sort the collection (newest first).

        Raises:
            UnrecoverableCorruptionError: corruption was detected and no
                snapshot could restore the collection. Stored data is left
                untouched.
        """
        raw, report = await self._scan()
        if report.is_corrupted:
            logger.warning("Data corruption detected, attempting recovery: %s", report.issues[:5])
            try:
                await self.backups.recover()
            except RecoveryError as e:
                raise UnrecoverableCorruptionError(
                    f"Stored pages are corrupted and could not be recovered: {e}"
                ) from e
            raw, report = await self._scan()
            if report.is_corrupted:
                raise UnrecoverableCorruptionError("Stored pages are still corrupted after recovery")

        if raw is None:
            return []

        pages: list[SavedPage] = []
        invalid = 0
        for index, entry in enumerate(raw):
            data = migrate_page(entry) if isinstance(entry, dict) else entry
            result = validate_page(data)
            if not result.is_valid or not is_structurally_valid(data):
                logger.warning("Invalid page data at index %d: %s", index, result.errors or "missing id")
                invalid += 1
                continue
            pages.append(sanitize(SavedPage.from_dict(data), touch=False))

        if invalid:
            logger.info("Found %d invalid pages, cleaning up", invalid)
            await self.backups.snapshot("before_cleanup")
            await self.backend.set({PAGES_KEY: [p.to_dict() for p in pages]})
            await self.metadata.update({
                "totalPages": len(pages),
                "lastCleanup": self.clock(),
                "cleanedInvalidPages": invalid,
            })

        pages.sort(key=lambda p: p.timestamp, reverse=True)
        return pages

    async def _persist(self, pages: list[SavedPage]) -> list[SavedPage]:
        """Write the collection, trimming the oldest tail once if over capacity."""
        try:
            await self.backend.set({PAGES_KEY: [p.to_dict() for p in pages]})
            return pages
        except QuotaExceededError as e:
            keep = max(1, math.floor(len(pages) * self.config.quota_retry_keep_ratio)) if pages else 0
            logger.warning(
                "Storage quota exceeded (%s), retrying with %d of %d pages", e, keep, len(pages)
            )
            trimmed = pages[:keep]
            await self.backend.set({PAGES_KEY: [p.to_dict() for p in trimmed]})
            return trimmed

    # ---- Public operations ----

    async def save(self, record: dict | SavedPage) -> SavedPage:
        """Validate, sanitize and store a page, replacing any page with the same URL.

        A replaced page keeps its ``id`` and ``created_at``; a new page goes
        to the head of the collection.

        Raises:
            ValidationError: the record is invalid; nothing is written.
            QuotaExceededError: the write failed even after trimming.
            UnrecoverableCorruptionError: storage is corrupt and no snapshot
                could restore it.
        """
        raw = record.to_dict() if isinstance(record, SavedPage) else record
        page = sanitize(parse_page(raw), touch=False)
        now = self.clock()
        if not raw.get("timestamp"):
            page.timestamp = now
        if not raw.get("createdAt"):
            page.created_at = now
        page.updated_at = now
        async with self._lock:
            return await self._save(page, retry_after_recovery=True)

    async def _save(self, page: SavedPage, retry_after_recovery: bool) -> SavedPage:
        try:
            quota = await self.quota.check_quota()
            if quota.is_over_limit:
                logger.warning(
                    "Storage usage at %.1f%%, performing emergency cleanup", quota.usage_percentage
                )
                current = await self._load()
                await self.quota.emergency_cleanup([p.to_dict() for p in current])

            pages = await self._load()
            for index, existing in enumerate(pages):
                if existing.url == page.url:
                    page.id = existing.id
                    page.created_at = existing.created_at
                    pages[index] = page
                    logger.info("Updated existing page with same URL: %s", page.url)
                    break
            else:
                pages.insert(0, page)

            pages = await self._persist(pages)
            await self.metadata.update({"totalPages": len(pages), "lastPageAdded": self.clock()})
            return page
        except UnrecoverableCorruptionError:
            raise
        except CorruptionError as e:
            if not retry_after_recovery:
                raise
            logger.warning("Storage corrupted during save (%s), recovering and retrying", e)
            try:
                await self.backups.recover()
            except RecoveryError as re:
                raise UnrecoverableCorruptionError(f"Failed to recover storage: {re}") from re
            return await self._save(page, retry_after_recovery=False)

    async def get_all(self) -> list[SavedPage]:
        """Every valid page, newest first. May heal stored data as a side effect."""
        async with self._lock:
            return await self._load()

    async def get(self, page_id: str) -> SavedPage | None:
        _require_page_id(page_id)
        async with self._lock:
            pages = await self._load()
        return next((p for p in pages if p.id == page_id), None)

    async def delete(self, page_id: str) -> DeleteResult:
        """Remove one page. An unknown id is reported, not raised."""
        _require_page_id(page_id)
        async with self._lock:
            pages = await self._load()
            target = next((p for p in pages if p.id == page_id), None)
            if target is None:
                logger.warning("Page with ID %s not found", page_id)
                return DeleteResult(found=False)

            await self.backups.snapshot("before_delete")
            remaining = [p for p in pages if p.id != page_id]
            await self.backend.set({PAGES_KEY: [p.to_dict() for p in remaining]})
            await self.metadata.update({"totalPages": len(remaining), "lastPageDeleted": self.clock()})
            return DeleteResult(found=True, deleted_page=target)

    async def update(self, page_id: str, patch: dict) -> SavedPage:
        """Merge ``patch`` over a stored page. ``id`` cannot be changed.

        Raises:
            NotFoundError: no page has ``page_id``.
            ValidationError: the merged page is invalid; nothing is written.
        """
        _require_page_id(page_id)
        if not isinstance(patch, dict):
            raise ValidationError("Invalid updates provided", ["Updates must be an object"])

        async with self._lock:
            pages = await self._load()
            index = next((i for i, p in enumerate(pages) if p.id == page_id), None)
            if index is None:
                raise NotFoundError(f"Page with ID {page_id} not found")

            merged = {**pages[index].to_dict(), **patch, "id": page_id}
            updated = sanitize(parse_page(merged), touch=False)
            updated.updated_at = self.clock()

            await self.backups.snapshot("before_update")
            pages[index] = updated
            await self._persist(pages)
            await self.metadata.update({"lastPageUpdated": self.clock()})
            return updated

    async def search(self, query: str | None) -> list[SavedPage]:
        """Case-insensitive substring match over title, summary, url and domain."""
        if query is not None and not isinstance(query, str):
            raise ValidationError("Invalid search query", ["Search query must be a string"])
        async with self._lock:
            pages = await self._load()
        needle = (query or "").strip().lower()
        if not needle:
            return pages
        return [
            p for p in pages
            if any(needle in (value or "").lower() for value in (p.title, p.summary, p.url, p.domain))
        ]

    async def filtered_query(self, options: PageQuery | dict | None = None) -> QueryResult:
        """Filter (all constraints must hold), sort, then paginate."""
        if options is None:
            options = PageQuery()
        elif isinstance(options, dict):
            options = PageQuery.from_dict(options)

        if options.sort_by not in SORT_FIELDS:
            raise ValidationError(
                f"Unsupported sort field: {options.sort_by}",
                [f"sortBy must be one of: {', '.join(SORT_FIELDS)}"],
            )
        if options.sort_order not in SORT_ORDERS:
            raise ValidationError(
                f"Unsupported sort order: {options.sort_order}", ["sortOrder must be asc or desc"]
            )
        if options.limit is not None and (not isinstance(options.limit, int) or options.limit < 0):
            raise ValidationError("limit must be a non-negative integer", ["Invalid limit"])
        if not isinstance(options.offset, int) or options.offset < 0:
            raise ValidationError("offset must be a non-negative integer", ["Invalid offset"])
        date_from = to_epoch_ms(options.date_from)
        date_to = to_epoch_ms(options.date_to)

        async with self._lock:
            pages = await self._load()

        if options.query:
            pages = [p for p in pages if p.matches_query(options.query)]
        if options.tags:
            wanted = {normalize_tag(t) for t in options.tags if isinstance(t, str)}
            pages = [p for p in pages if wanted.intersection(p.tags)]
        if date_from is not None:
            pages = [p for p in pages if p.timestamp >= date_from]
        if date_to is not None:
            pages = [p for p in pages if p.timestamp <= date_to]
        if options.domains:
            pages = [p for p in pages if p.domain in options.domains]

        attr = SORT_FIELDS[options.sort_by]
        if options.sort_by in STRING_SORT_FIELDS:
            key = lambda p: (getattr(p, attr) or "").lower()  # noqa: E731
        else:
            key = lambda p: getattr(p, attr) or 0  # noqa: E731
        pages.sort(key=key, reverse=options.sort_order == "desc")

        total_count = len(pages)
        if options.offset:
            pages = pages[options.offset:]
        if options.limit:
            pages = pages[:options.limit]

        return QueryResult(
            pages=pages,
            total_count=total_count,
            filtered_count=len(pages),
            has_more=bool(options.limit) and total_count > options.offset + options.limit,
        )

    async def batch_operation(
        self,
        operation: str,
        page_ids: list[str],
        data: dict | None = None,
    ) -> BatchResult:
        """Apply ``delete``, ``addTag`` or ``removeTag`` to several pages at once."""
        if not isinstance(page_ids, list) or not page_ids:
            raise ValidationError("Invalid page IDs array", ["page_ids must be a non-empty list"])
        if operation not in BATCH_OPERATIONS:
            raise ValidationError(
                f"Unknown batch operation: {operation}",
                [f"operation must be one of: {', '.join(BATCH_OPERATIONS)}"],
            )
        tag = (data or {}).get("tag")
        if operation in ("addTag", "removeTag"):
            if not isinstance(tag, str) or not tag.strip():
                raise ValidationError(
                    f"Tag is required for {operation} operation", ["data.tag must be a non-empty string"]
                )

        ids = set(page_ids)
        async with self._lock:
            pages = await self._load()
            await self.backups.snapshot(f"before_batch_{operation}")

            affected = 0
            if operation == "delete":
                remaining = [p for p in pages if p.id not in ids]
                affected = len(pages) - len(remaining)
                pages = remaining
            else:
                for page in pages:
                    if page.id not in ids:
                        continue
                    changed = page.add_tag(tag) if operation == "addTag" else page.remove_tag(tag)
                    if changed:
                        page.updated_at = self.clock()
                        affected += 1

            modified = affected > 0
            if modified:
                pages = await self._persist(pages)
                await self.metadata.update({
                    "totalPages": len(pages),
                    "lastBatchOperation": self.clock(),
                    "batchOperationType": operation,
                })
            return BatchResult(operation=operation, modified=modified, affected_count=affected)

    async def enforce_limit(self, max_items: int | None = None) -> int:
        """Keep only the newest ``max_items`` pages; returns how many were dropped.

        Defaults to the ``maxStorageItems`` setting.
        """
        if max_items is None:
            max_items = (await self.settings.get()).max_storage_items
        if not isinstance(max_items, int) or isinstance(max_items, bool) or max_items < 0:
            raise ValidationError("max_items must be a non-negative integer", ["Invalid max_items"])

        async with self._lock:
            pages = await self._load()
            if len(pages) <= max_items:
                return 0
            await self.backups.snapshot("before_enforce_limit")
            kept = pages[:max_items]
            await self.backend.set({PAGES_KEY: [p.to_dict() for p in kept]})
            await self.metadata.update({"totalPages": len(kept), "lastCleanup": self.clock()})
            removed = len(pages) - len(kept)
            logger.info("Storage limit enforced: removed %d pages", removed)
            return removed

    async def clear_all(self) -> int:
        """Delete every page; returns how many were removed."""
        async with self._lock:
            pages = await self._load()
            if not pages:
                return 0
            await self.backups.snapshot("before_clear_all")
            await self.backend.set({PAGES_KEY: []})
            await self.metadata.update({
                "totalPages": 0,
                "lastClearAll": self.clock(),
                "clearedPageCount": len(pages),
            })
            logger.info("Cleared all %d pages", len(pages))
            return len(pages)

    async def get_storage_info(self) -> StorageInfo:
        async with self._lock:
            pages = await self._load()
        quota = await self.quota.check_quota()
        return StorageInfo(
            page_count=len(pages),
            storage_used=json_size([p.to_dict() for p in pages]),
            last_updated=self.clock(),
            quota=quota,
        )

    async def get_storage_stats(self) -> dict:
        """Counts, top domains and tags, and usage for dashboards."""
        async with self._lock:
            pages = await self._load()
            metadata = await self.metadata.load()
        quota = await self.quota.check_quota()

        now = self.clock()
        week_ago = now - 7 * DAY_MS
        month_ago = now - 30 * DAY_MS
        monthly = sum(1 for p in pages if p.timestamp > month_ago)
        domains = Counter(p.domain for p in pages)
        tags = Counter(tag for p in pages for tag in p.tags)
        timestamps = [p.timestamp for p in pages]

        return {
            "totalPages": len(pages),
            "recentPages": sum(1 for p in pages if p.timestamp > week_ago),
            "monthlyPages": monthly,
            "storage": quota.to_dict(),
            "topDomains": [{"domain": d, "count": c} for d, c in domains.most_common(10)],
            "topTags": [{"tag": t, "count": c} for t, c in tags.most_common(10)],
            "averagePagesPerDay": monthly / 30,
            "oldestPage": min(timestamps) if timestamps else None,
            "newestPage": max(timestamps) if timestamps else None,
            "metadata": metadata.to_dict(),
        }

    async def perform_maintenance(self) -> dict:
        """Heal, evict by quota and prune old snapshots."""
        async with self._lock:
            try:
                pages = await self._load()
                removed = 0
                quota = await self.quota.check_quota()
                if quota.is_over_limit:
                    logger.warning("Storage quota exceeded, performing emergency cleanup")
                    result = await self.quota.emergency_cleanup([p.to_dict() for p in pages])
                    removed = result.removed_count
                elif quota.is_near_limit:
                    logger.info("Storage near limit, performing light cleanup")
                    result = await self.quota.light_cleanup([p.to_dict() for p in pages])
                    removed = result.removed_count
                pruned = await self.backups.prune()
            except PageStashError as e:
                logger.error("Storage maintenance failed: %s", e)
                await self.metadata.update({
                    "lastMaintenance": self.clock(),
                    "maintenanceStatus": "failed",
                    "maintenanceError": str(e),
                })
                raise

            await self.metadata.update({
                "lastMaintenance": self.clock(),
                "maintenanceStatus": "completed",
            })
            return {"removedPages": removed, "prunedBackups": pruned, "storage": quota.to_dict()}

    async def recover(self, snapshot_id: str | None = None) -> RecoveryResult:
        """Restore pages and settings from a snapshot (newest by default)."""
        async with self._lock:
            return await self.backups.recover(snapshot_id)

    async def list_backups(self) -> list[SnapshotInfo]:
        async with self._lock:
            return await self.backups.list_snapshots()

    async def export_all(self) -> dict:
        async with self._lock:
            pages = await self._load()
        settings = await self.settings.get()
        return {
            "version": EXPORT_VERSION,
            "exportDate": datetime.now(timezone.utc).isoformat(),
            "pages": [p.to_dict() for p in pages],
            "settings": settings.to_dict(),
        }

    async def import_all(self, backup: dict) -> ImportResult:
        """Merge an export into the store; existing URLs win over imported ones.

        Invalid pages are reported in the result rather than raised.
        """
        if not isinstance(backup, dict):
            raise ValidationError("Invalid backup data format", ["Backup must be an object"])
        if not isinstance(backup.get("pages"), list):
            raise ValidationError("Backup data must contain a pages array", ["pages must be an array"])

        async with self._lock:
            existing = await self._load()
            await self.backups.snapshot("before_import")

            valid: list[SavedPage] = []
            invalid: list[dict] = []
            for index, entry in enumerate(backup["pages"]):
                data = migrate_page(entry) if isinstance(entry, dict) else entry
                result = validate_page(data)
                if result.is_valid:
                    valid.append(sanitize(SavedPage.from_dict(data), touch=False))
                else:
                    invalid.append({"index": index, "errors": result.errors})

            seen = {p.url for p in existing}
            new_pages: list[SavedPage] = []
            duplicates = 0
            for page in valid:
                if page.url in seen:
                    duplicates += 1
                    continue
                seen.add(page.url)
                new_pages.append(page)

            merged = existing + new_pages
            merged.sort(key=lambda p: p.timestamp, reverse=True)
            if new_pages:
                merged = await self._persist(merged)

            imported_settings = False
            raw_settings = backup.get("settings")
            if isinstance(raw_settings, dict):
                check = validate_settings(raw_settings)
                if check.is_valid:
                    await self.settings.save(raw_settings)
                    imported_settings = True
                else:
                    logger.warning("Invalid settings in backup, skipping settings import: %s", check.errors)

            await self.metadata.update({
                "totalPages": len(merged),
                "lastImport": self.clock(),
                "importedPageCount": len(new_pages),
            })
            if invalid:
                logger.warning("Skipped %d invalid pages during import", len(invalid))

            return ImportResult(
                imported_pages=len(new_pages),
                duplicate_pages=duplicates,
                skipped_pages=len(invalid),
                total_pages=len(merged),
                imported_settings=imported_settings,
                invalid_pages=invalid,
            )
