"""Tests for the backup manager."""

from unittest.mock import patch

import pytest

from pagestash.config import StoreConfig
from pagestash.exceptions import BackupError, QuotaExceededError, RecoveryError
from pagestash.store.backup import BackupManager, compute_checksum, snapshot_timestamp
from pagestash.store.keys import METADATA_KEY, PAGES_KEY, SETTINGS_KEY
from pagestash.store.metadata import MetadataStore


def _pages(n):
    return [{"id": f"id{i}", "url": f"https://example.com/{i}", "title": f"Page {i}"} for i in range(n)]


@pytest.fixture
def manager(backend, clock):
    return BackupManager(backend, MetadataStore(backend, clock), StoreConfig(), clock)


@pytest.mark.asyncio
async def test_snapshot_contents(manager, backend, clock):
    await backend.set({PAGES_KEY: _pages(2), SETTINGS_KEY: {"theme": "dark"}})
    snapshot_id = await manager.snapshot("before_delete")

    assert snapshot_id == f"backup_{clock()}"
    body = await backend.get_one(snapshot_id)
    assert body["reason"] == "before_delete"
    assert body["pages"] == _pages(2)
    assert body["settings"] == {"theme": "dark"}
    assert body["checksum"] == compute_checksum(_pages(2), {"theme": "dark"})

    metadata = await backend.get_one(METADATA_KEY)
    assert metadata["lastBackup"] == clock()
    assert metadata["backupReason"] == "before_delete"


@pytest.mark.asyncio
async def test_snapshot_ids_strictly_increase_within_one_ms(manager):
    first = await manager.snapshot("a")
    second = await manager.snapshot("b")
    assert snapshot_timestamp(second) > snapshot_timestamp(first)
    infos = await manager.list_snapshots()
    assert [i.reason for i in infos] == ["b", "a"]


@pytest.mark.asyncio
async def test_snapshot_of_empty_store_uses_defaults(manager, backend):
    snapshot_id = await manager.snapshot()
    body = await backend.get_one(snapshot_id)
    assert body["pages"] == []
    assert body["settings"]["apiProvider"] == "openai"


@pytest.mark.asyncio
async def test_prune_drops_expired(manager, clock):
    old = await manager.snapshot("old")
    clock.advance_days(8)
    await manager.snapshot("new")
    ids = [i.snapshot_id for i in await manager.list_snapshots()]
    assert old not in ids
    assert len(ids) == 1


@pytest.mark.asyncio
async def test_failed_snapshot_raises(manager, backend):
    with patch.object(backend, "set", side_effect=QuotaExceededError("full")):
        with pytest.raises(BackupError):
            await manager.snapshot("before_delete")


@pytest.mark.asyncio
async def test_best_effort_snapshot_returns_none(backend, clock):
    manager = BackupManager(backend, MetadataStore(backend, clock), StoreConfig(), clock, best_effort=True)
    with patch.object(backend, "set", side_effect=QuotaExceededError("full")):
        assert await manager.snapshot("before_delete") is None


@pytest.mark.asyncio
async def test_recover_without_snapshot(manager):
    with pytest.raises(RecoveryError):
        await manager.recover()


@pytest.mark.asyncio
async def test_recover_restores_newest(manager, backend, clock):
    await backend.set({PAGES_KEY: _pages(1)})
    await manager.snapshot("one")
    await backend.set({PAGES_KEY: _pages(3)})
    newest = await manager.snapshot("three")
    await backend.set({PAGES_KEY: "garbage"})

    result = await manager.recover()
    assert result.snapshot_id == newest
    assert result.recovered_page_count == 3
    assert await backend.get_one(PAGES_KEY) == _pages(3)
    assert (await backend.get_one(METADATA_KEY))["recoveredFrom"] == newest


@pytest.mark.asyncio
async def test_recover_is_idempotent(manager, backend):
    await backend.set({PAGES_KEY: _pages(4)})
    await manager.snapshot("x")
    first = await manager.recover()
    second = await manager.recover()
    assert first.recovered_page_count == second.recovered_page_count == 4
    assert len(await manager.list_snapshots()) == 1


@pytest.mark.asyncio
async def test_recover_specific_snapshot(manager, backend):
    await backend.set({PAGES_KEY: _pages(1)})
    older = await manager.snapshot("one")
    await backend.set({PAGES_KEY: _pages(2)})
    await manager.snapshot("two")
    result = await manager.recover(older)
    assert result.recovered_page_count == 1


@pytest.mark.asyncio
async def test_recover_rejects_checksum_mismatch(manager, backend):
    await backend.set({PAGES_KEY: _pages(2)})
    snapshot_id = await manager.snapshot("x")
    body = await backend.get_one(snapshot_id)
    body["pages"] = _pages(1)
    await backend.set({snapshot_id: body})
    with pytest.raises(RecoveryError):
        await manager.recover()
    assert await backend.get_one(PAGES_KEY) == _pages(2)


@pytest.mark.asyncio
async def test_recover_rejects_bad_structure(manager, backend):
    await backend.set({"backup_5": {"pages": "nope"}})
    with pytest.raises(RecoveryError):
        await manager.recover()


@pytest.mark.asyncio
async def test_recover_accepts_snapshot_without_checksum(manager, backend):
    await backend.set({"backup_5": {"pages": _pages(2), "timestamp": 5}})
    result = await manager.recover()
    assert result.recovered_page_count == 2
    assert (await backend.get_one(SETTINGS_KEY))["theme"] == "light"


@pytest.mark.asyncio
async def test_snapshot_with_unreadable_settings_uses_defaults(manager, backend):
    await backend.set({PAGES_KEY: _pages(2)})
    backend.put_raw(SETTINGS_KEY, '{"theme": "da')

    snapshot_id = await manager.snapshot("before_delete")
    body = await backend.get_one(snapshot_id)
    assert body["pages"] == _pages(2)
    assert body["settings"]["theme"] == "light"


@pytest.mark.asyncio
async def test_snapshot_with_unreadable_pages_still_fails(manager, backend):
    backend.put_raw(PAGES_KEY, '[{"id": "a"')
    with pytest.raises(BackupError):
        await manager.snapshot("before_delete")
