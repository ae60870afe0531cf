"""Ordered schema migrations for persisted records.

Each step upgrades a raw record from one version to the next; steps are
applied in sequence until the record reaches the target version. Adding a
schema version means appending a step, never editing an existing one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timezone
from typing import Callable

import dateutil.parser

from pagestash.records.models import RECORD_VERSION

logger = logging.getLogger(__name__)

LEGACY_VERSION = "0.0.0"


@dataclass(frozen=True)
class Migration:
    from_version: str
    to_version: str
    transform: Callable[[dict], dict]


def compare_versions(a: str, b: str) -> int:
    """Compare dotted numeric versions; returns -1, 0 or 1."""
    a_parts = [int(p) for p in a.split(".")]
    b_parts = [int(p) for p in b.split(".")]
    width = max(len(a_parts), len(b_parts))
    a_parts += [0] * (width - len(a_parts))
    b_parts += [0] * (width - len(b_parts))
    return (a_parts > b_parts) - (a_parts < b_parts)


def record_version(data: dict) -> str:
    version = data.get("version")
    return version if isinstance(version, str) and version else LEGACY_VERSION


def needs_migration(data: dict, target: str = RECORD_VERSION) -> bool:
    try:
        return compare_versions(record_version(data), target) < 0
    except ValueError:
        return False


def apply_migrations(data: dict, steps: list[Migration], target: str = RECORD_VERSION) -> dict:
    """Run every applicable step in order and return a new dict.

    Steps that end at or before the record's version are skipped, so a
    partially migrated record picks up where it left off.
    """
    migrated = dict(data)
    current = record_version(migrated)
    for step in steps:
        if compare_versions(current, target) >= 0:
            break
        if compare_versions(step.to_version, current) <= 0:
            continue
        migrated = step.transform(dict(migrated))
        migrated["version"] = step.to_version
        current = step.to_version
        logger.debug("Migrated record %s -> %s", step.from_version, step.to_version)
    return migrated


def _to_epoch_ms(value: object) -> object:
    if not isinstance(value, str):
        return value
    try:
        parsed = dateutil.parser.isoparse(value)
    except (ValueError, OverflowError):
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _settings_to_v1(data: dict) -> dict:
    data.setdefault("autoCleanup", False)
    data.setdefault("cleanupDays", 90)
    data.setdefault("theme", "light")
    data.setdefault("gridColumns", 1)
    data.setdefault("showDomain", True)
    data.setdefault("showDate", True)
    if "aiEnabled" in data:
        data["enableAISummary"] = data.pop("aiEnabled")
    return data


def _page_to_v1(data: dict) -> dict:
    for key in ("timestamp", "createdAt", "updatedAt", "lastAccessed"):
        if key in data:
            data[key] = _to_epoch_ms(data[key])
    if data.get("tags") is None:
        data["tags"] = []
    timestamp = data.get("timestamp")
    if timestamp:
        data.setdefault("createdAt", timestamp)
        data.setdefault("updatedAt", timestamp)
    return data


SETTINGS_MIGRATIONS: list[Migration] = [
    Migration(LEGACY_VERSION, "1.0.0", _settings_to_v1),
]

PAGE_MIGRATIONS: list[Migration] = [
    Migration(LEGACY_VERSION, "1.0.0", _page_to_v1),
]


def migrate_page(data: dict) -> dict:
    if not needs_migration(data):
        return data
    return apply_migrations(data, PAGE_MIGRATIONS)


def migrate_settings(data: dict) -> dict:
    if not needs_migration(data):
        return data
    return apply_migrations(data, SETTINGS_MIGRATIONS)
