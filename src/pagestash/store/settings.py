"""Persistence for the singleton settings record."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pagestash.backends.base import BaseBackend
from pagestash.config import Clock, now_ms
from pagestash.exceptions import CorruptionError, ValidationError
from pagestash.records.migrations import migrate_settings, needs_migration
from pagestash.records.models import RECORD_VERSION, ExtensionSettings, ValidationResult
from pagestash.records.parser import parse_settings, validate_settings
from pagestash.store.keys import SETTINGS_KEY

logger = logging.getLogger(__name__)

# provider -> (required prefix, minimum length)
API_KEY_RULES = {
    "openai": ("sk-", 20),
    "anthropic": ("sk-ant-", 30),
}

_PROTECTED_FIELDS = ("createdAt", "version")


def validate_api_key(api_key: str | None, provider: str = "openai") -> ValidationResult:
    """Check an API key's shape for the given provider (no network call)."""
    if not api_key or not isinstance(api_key, str):
        return ValidationResult(False, ["API key is required"])
    rule = API_KEY_RULES.get(provider)
    if rule is None:
        return ValidationResult(False, [f"Unsupported API provider: {provider}"])
    prefix, min_length = rule
    key = api_key.strip()
    if not key.startswith(prefix) or len(key) < min_length:
        return ValidationResult(False, [
            f"{provider} API key must start with {prefix!r} and be at least {min_length} characters long"
        ])
    return ValidationResult(True)


class SettingsStore:
    """Get, save and reset the settings record.

    Settings carry no backup or recovery path: anything unreadable falls
    back to schema defaults.
    """

    def __init__(self, backend: BaseBackend, clock: Clock = now_ms):
        self.backend = backend
        self.clock = clock

    async def _raw(self) -> dict | None:
        try:
            raw = await self.backend.get_one(SETTINGS_KEY)
        except CorruptionError as e:
            logger.warning("Stored settings are unreadable, using defaults: %s", e)
            return None
        return raw if isinstance(raw, dict) and raw else None

    async def get(self) -> ExtensionSettings:
        """Return stored settings, or defaults if absent or invalid."""
        raw = await self._raw()
        if raw is None:
            return ExtensionSettings.defaults()

        if needs_migration(raw):
            raw = await self._migrate(raw)

        result = validate_settings(raw)
        if not result.is_valid:
            logger.warning("Invalid settings found, using defaults: %s", result.errors)
            return ExtensionSettings.defaults()
        return ExtensionSettings.from_dict(raw)

    async def _migrate(self, raw: dict) -> dict:
        migrated = migrate_settings(raw)
        if validate_settings(migrated).is_valid:
            logger.info("Migrated settings to version %s", migrated.get("version"))
            await self.backend.set({SETTINGS_KEY: migrated})
            return migrated
        logger.warning("Migration resulted in invalid settings, using defaults")
        defaults = ExtensionSettings.defaults().to_dict()
        await self.backend.set({SETTINGS_KEY: defaults})
        return defaults

    async def save(self, data: dict | ExtensionSettings) -> ExtensionSettings:
        """Validate and persist settings.

        Raises:
            ValidationError: listing every violated constraint; nothing is
                written.
        """
        raw = data.to_dict() if isinstance(data, ExtensionSettings) else data
        settings = parse_settings(raw)
        settings.updated_at = self.clock()
        await self.backend.set({SETTINGS_KEY: settings.to_dict()})
        return settings

    async def reset(self) -> ExtensionSettings:
        logger.info("Resetting settings to defaults")
        return await self.save(ExtensionSettings.defaults())

    async def update(self, changes: dict) -> ExtensionSettings:
        """Merge ``changes`` over the current settings and save."""
        if not isinstance(changes, dict):
            raise ValidationError("Settings changes must be an object", ["Settings changes must be an object"])
        current = (await self.get()).to_dict()
        merged = {**current, **{k: v for k, v in changes.items() if k not in _PROTECTED_FIELDS}}
        return await self.save(merged)

    async def get_setting(self, key: str, default=None):
        return (await self.get()).to_dict().get(key, default)

    async def is_ai_configured(self) -> bool:
        return (await self.get()).is_ai_configured()

    async def export_settings(self) -> dict:
        return {
            "version": RECORD_VERSION,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "settings": (await self.get()).to_dict(),
        }

    async def import_settings(self, payload: dict) -> dict:
        if not isinstance(payload, dict) or not isinstance(payload.get("settings"), dict):
            raise ValidationError("Invalid backup data format", ["settings object is required"])
        result = validate_settings(payload["settings"])
        if not result.is_valid:
            raise ValidationError(
                f"Invalid settings in backup: {', '.join(result.errors)}", result.errors
            )
        await self.save(payload["settings"])
        return {"importedVersion": payload.get("version"), "warnings": result.warnings}
