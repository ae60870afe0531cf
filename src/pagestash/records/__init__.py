"""Saved-page and settings records: models, validation and migrations."""

from pagestash.records.models import ExtensionSettings, SavedPage, ValidationResult
from pagestash.records.parser import (
    parse_page,
    parse_settings,
    sanitize,
    validate_page,
    validate_settings,
)
from pagestash.records.migrations import Migration, apply_migrations, migrate_page, migrate_settings

__all__ = [
    "SavedPage",
    "ExtensionSettings",
    "ValidationResult",
    "validate_page",
    "validate_settings",
    "parse_page",
    "parse_settings",
    "sanitize",
    "Migration",
    "apply_migrations",
    "migrate_page",
    "migrate_settings",
]
