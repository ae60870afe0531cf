"""Point-in-time snapshots of pages and settings, with pruning and recovery.

Every snapshot is self-contained: ``{version, reason, timestamp, pages,
settings, checksum}`` stored under ``backup_<epoch-ms>``. Recovery never
needs to consult more than one snapshot.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

from pagestash.backends.base import BaseBackend
from pagestash.config import Clock, StoreConfig, now_ms
from pagestash.exceptions import BackupError, CorruptionError, RecoveryError, StorageError
from pagestash.records.models import ExtensionSettings
from pagestash.store.keys import BACKUP_PREFIX, PAGES_KEY, SCHEMA_VERSION, SETTINGS_KEY
from pagestash.store.metadata import MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class SnapshotInfo:
    snapshot_id: str
    timestamp: int
    reason: str
    page_count: int


@dataclass
class RecoveryResult:
    recovered_page_count: int
    snapshot_timestamp: int | None
    snapshot_id: str


def compute_checksum(pages: list, settings: dict | None) -> str:
    """SHA-256 over the canonical JSON of a snapshot's payload."""
    payload = json.dumps(
        {"pages": pages, "settings": settings},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def snapshot_timestamp(snapshot_id: str) -> int | None:
    """Parse the epoch-ms suffix of a snapshot id; None if it is not one."""
    if not snapshot_id.startswith(BACKUP_PREFIX):
        return None
    try:
        return int(snapshot_id[len(BACKUP_PREFIX):])
    except ValueError:
        return None


class BackupManager:
    """Create, prune and restore snapshots.

    By default a snapshot that cannot be written raises ``BackupError`` so
    the destructive operation it was guarding does not run. With
    ``best_effort=True`` the failure is logged and ``snapshot`` returns None.
    """

    def __init__(
        self,
        backend: BaseBackend,
        metadata: MetadataStore,
        config: StoreConfig | None = None,
        clock: Clock = now_ms,
        best_effort: bool | None = None,
    ):
        self.backend = backend
        self.metadata = metadata
        self.config = config or StoreConfig()
        self.clock = clock
        self.best_effort = self.config.best_effort_backups if best_effort is None else best_effort
        self._last_timestamp = 0

    def _next_timestamp(self) -> int:
        # Strictly increasing so two snapshots in one millisecond never collide.
        ts = max(self.clock(), self._last_timestamp + 1)
        self._last_timestamp = ts
        return ts

    async def snapshot(self, reason: str = "auto") -> str | None:
        """Write a snapshot of the current pages and settings.

        Returns:
            The snapshot id, or None when a best-effort snapshot failed.

        Raises:
            BackupError: if the snapshot could not be written and the
                manager is not best-effort.
        """
        try:
            pages = await self.backend.get_one(PAGES_KEY)
            if not isinstance(pages, list):
                pages = []
            settings = await self._settings_for_snapshot()

            ts = self._next_timestamp()
            snapshot_id = f"{BACKUP_PREFIX}{ts}"
            await self.backend.set({
                snapshot_id: {
                    "version": SCHEMA_VERSION,
                    "reason": reason,
                    "timestamp": ts,
                    "pages": pages,
                    "settings": settings,
                    "checksum": compute_checksum(pages, settings),
                },
            })
        except StorageError as e:
            if self.best_effort:
                logger.warning("Backup %r failed, continuing without it: %s", reason, e)
                return None
            raise BackupError(f"Failed to create backup ({reason}): {e}") from e

        logger.info("Created backup %s (%s, %d pages)", snapshot_id, reason, len(pages))
        await self.metadata.update({"lastBackup": ts, "backupReason": reason})
        await self.prune()
        return snapshot_id

    async def _settings_for_snapshot(self) -> dict:
        # Settings have no recovery path of their own: unreadable means defaults.
        try:
            settings = await self.backend.get_one(SETTINGS_KEY)
        except CorruptionError as e:
            logger.warning("Stored settings are unreadable, snapshotting defaults: %s", e)
            settings = None
        if not isinstance(settings, dict):
            settings = ExtensionSettings.defaults().to_dict()
        return settings

    async def _snapshot_ids(self) -> list[str]:
        """Snapshot ids, newest first."""
        ids = [k for k in await self.backend.keys() if snapshot_timestamp(k) is not None]
        ids.sort(key=snapshot_timestamp, reverse=True)
        return ids

    async def prune(self) -> int:
        """Delete snapshots older than the retention window.

        Pruning is housekeeping; failures are logged and reported as 0.
        """
        cutoff = self.clock() - self.config.backup_retention_ms
        try:
            expired = [sid for sid in await self._snapshot_ids() if snapshot_timestamp(sid) < cutoff]
            if expired:
                await self.backend.remove(expired)
                logger.info("Cleaned up %d old backups", len(expired))
        except StorageError as e:
            logger.warning("Failed to clean old backups: %s", e)
            return 0
        return len(expired)

    async def list_snapshots(self) -> list[SnapshotInfo]:
        ids = await self._snapshot_ids()
        if not ids:
            return []
        stored = await self.backend.get(ids)
        infos = []
        for sid in ids:
            body = stored.get(sid)
            if not isinstance(body, dict):
                continue
            pages = body.get("pages")
            infos.append(SnapshotInfo(
                snapshot_id=sid,
                timestamp=body.get("timestamp") or snapshot_timestamp(sid),
                reason=body.get("reason", "unknown"),
                page_count=len(pages) if isinstance(pages, list) else 0,
            ))
        return infos

    async def recover(self, snapshot_id: str | None = None) -> RecoveryResult:
        """Overwrite live pages and settings from a snapshot.

        With no ``snapshot_id`` the newest snapshot is used. Recovery takes
        no snapshot of its own, so repeating it is idempotent.

        Raises:
            RecoveryError: no snapshot exists, or the chosen one is unusable.
        """
        try:
            if snapshot_id is None:
                ids = await self._snapshot_ids()
                if not ids:
                    raise RecoveryError("No backup found for recovery")
                snapshot_id = ids[0]
            backup = await self.backend.get_one(snapshot_id)
        except StorageError as e:
            raise RecoveryError(f"Cannot read backup {snapshot_id or ''}: {e}") from e

        if not isinstance(backup, dict):
            raise RecoveryError(f"No backup found for recovery ({snapshot_id})")

        pages = backup.get("pages")
        if not isinstance(pages, list):
            raise RecoveryError(f"Invalid backup data structure in {snapshot_id}")

        settings = backup.get("settings")
        expected = backup.get("checksum")
        if expected and not hmac.compare_digest(compute_checksum(pages, settings), expected):
            raise RecoveryError(f"Backup {snapshot_id} failed checksum verification")

        if not isinstance(settings, dict):
            settings = ExtensionSettings.defaults().to_dict()

        try:
            await self.backend.set({PAGES_KEY: pages, SETTINGS_KEY: settings})
        except StorageError as e:
            raise RecoveryError(f"Failed to restore backup {snapshot_id}: {e}") from e

        await self.metadata.update({
            "lastRecovery": self.clock(),
            "recoveredFrom": snapshot_id,
            "totalPages": len(pages),
        })
        logger.warning("Recovered %d pages from backup %s", len(pages), snapshot_id)
        return RecoveryResult(
            recovered_page_count=len(pages),
            snapshot_timestamp=backup.get("timestamp"),
            snapshot_id=snapshot_id,
        )
