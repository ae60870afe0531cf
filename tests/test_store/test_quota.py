"""Tests for quota classification and eviction."""

from unittest.mock import patch

import pytest

from pagestash.config import DAY_MS, StoreConfig
from pagestash.exceptions import BackupError, StorageError
from pagestash.store.backup import BackupManager
from pagestash.store.keys import METADATA_KEY, PAGES_KEY
from pagestash.store.metadata import MetadataStore
from pagestash.store.quota import QuotaManager


def _pages(n, timestamp=0):
    return [
        {"id": f"id{i}", "url": f"https://example.com/{i}", "title": f"Page {i}", "timestamp": timestamp}
        for i in range(n)
    ]


@pytest.fixture
def quota(backend, clock):
    config = StoreConfig(max_storage_bytes=1000)
    metadata = MetadataStore(backend, clock)
    backups = BackupManager(backend, metadata, config, clock)
    return QuotaManager(backend, backups, metadata, config, clock)


def test_classify_thresholds(quota):
    assert not quota.classify(800).is_near_limit
    assert quota.classify(801).is_near_limit
    assert not quota.classify(950).is_over_limit
    status = quota.classify(951)
    assert status.is_over_limit
    assert status.available_space == 49
    assert status.to_dict()["usagePercentage"] == pytest.approx(95.1)


@pytest.mark.asyncio
async def test_check_quota_reads_backend(quota, backend):
    await backend.set({"k": "v"})
    status = await quota.check_quota()
    assert status.bytes_in_use == await backend.bytes_in_use()


@pytest.mark.asyncio
async def test_check_quota_failure_reports_empty(quota, backend):
    with patch.object(backend, "bytes_in_use", side_effect=StorageError("io")):
        status = await quota.check_quota()
    assert status.bytes_in_use == 0
    assert not status.is_near_limit


@pytest.mark.asyncio
async def test_emergency_cleanup_keeps_head(quota, backend):
    pages = _pages(8)
    await backend.set({PAGES_KEY: pages})
    result = await quota.emergency_cleanup(pages)

    assert result.removed_count == 2
    assert result.kept == pages[:6]
    assert await backend.get_one(PAGES_KEY) == pages[:6]
    snapshots = await quota.backups.list_snapshots()
    assert [s.reason for s in snapshots] == ["before_emergency_cleanup"]
    assert snapshots[0].page_count == 8
    assert (await backend.get_one(METADATA_KEY))["cleanupType"] == "emergency"


@pytest.mark.asyncio
async def test_emergency_cleanup_blocked_by_failed_backup(quota, backend):
    pages = _pages(4)
    await backend.set({PAGES_KEY: pages})
    with patch.object(quota.backups, "snapshot", side_effect=BackupError("no room")):
        with pytest.raises(BackupError):
            await quota.emergency_cleanup(pages)
    assert await backend.get_one(PAGES_KEY) == pages


@pytest.mark.asyncio
async def test_light_cleanup_drops_stale(quota, backend, clock):
    fresh = _pages(2, timestamp=clock() - DAY_MS)
    stale = [dict(p, id=f"old{i}", url=f"https://old.example.com/{i}", timestamp=clock() - 200 * DAY_MS)
             for i, p in enumerate(_pages(3))]
    await backend.set({PAGES_KEY: fresh + stale})

    result = await quota.light_cleanup(fresh + stale)
    assert result.removed_count == 3
    assert await backend.get_one(PAGES_KEY) == fresh
    assert [s.reason for s in await quota.backups.list_snapshots()] == ["before_light_cleanup"]


@pytest.mark.asyncio
async def test_light_cleanup_noop_takes_no_snapshot(quota, backend, clock):
    pages = _pages(2, timestamp=clock())
    result = await quota.light_cleanup(pages)
    assert result.removed_count == 0
    assert await quota.backups.list_snapshots() == []
