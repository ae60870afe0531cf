"""Validate, parse and sanitize raw page and settings records."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from pagestash.config import now_ms
from pagestash.exceptions import ValidationError
from pagestash.records.models import (
    API_PROVIDERS,
    LANGUAGES,
    THEMES,
    ExtensionSettings,
    SavedPage,
    ValidationResult,
    extract_domain,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_SUMMARY_LENGTH = 1000

_SETTINGS_BOOLEANS = (
    "enableAISummary",
    "autoCleanup",
    "showDomain",
    "showDate",
    "enableAnalytics",
    "shareUsageData",
)
# key -> (low, high)
_SETTINGS_INT_RANGES = {
    "maxStorageItems": (10, 10000),
    "cleanupDays": (1, 365),
    "gridColumns": (1, 3),
}
_SETTINGS_CHOICES = {
    "apiProvider": API_PROVIDERS,
    "language": LANGUAGES,
    "theme": THEMES,
}


def is_valid_url(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def is_data_url(value: object) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_page(raw: object) -> ValidationResult:
    """Check a raw page dict. Never raises and never mutates ``raw``."""
    if not isinstance(raw, dict):
        return ValidationResult(False, ["Page record must be an object"], [])

    errors: list[str] = []
    warnings: list[str] = []

    url = raw.get("url")
    if not url or not isinstance(url, str):
        errors.append("URL is required and must be a string")
    elif not is_valid_url(url):
        errors.append("URL must be a valid HTTP/HTTPS URL")

    title = raw.get("title")
    if not title or not isinstance(title, str):
        errors.append("Title is required and must be a string")
    elif not title.strip():
        errors.append("Title cannot be empty")
    elif len(title) > MAX_TITLE_LENGTH:
        warnings.append(f"Title is very long (>{MAX_TITLE_LENGTH} characters)")

    page_id = raw.get("id")
    if page_id is not None and not isinstance(page_id, str):
        errors.append("ID must be a string")

    summary = raw.get("summary")
    if summary is not None and not isinstance(summary, str):
        errors.append("Summary must be a string")
    elif summary and len(summary) > MAX_SUMMARY_LENGTH:
        warnings.append(f"Summary is very long (>{MAX_SUMMARY_LENGTH} characters)")

    thumbnail = raw.get("thumbnail")
    if thumbnail is not None and not isinstance(thumbnail, str):
        errors.append("Thumbnail must be a string")
    elif thumbnail and not is_data_url(thumbnail) and not is_valid_url(thumbnail):
        warnings.append("Thumbnail should be a valid data URL or HTTP URL")

    timestamp = raw.get("timestamp")
    if timestamp is not None and (not _is_int(timestamp) or timestamp < 0):
        errors.append("Timestamp must be a positive integer")

    tags = raw.get("tags")
    if tags is not None:
        if not isinstance(tags, list):
            errors.append("Tags must be an array")
        else:
            for index, tag in enumerate(tags):
                if not isinstance(tag, str):
                    errors.append(f"Tag at index {index} must be a string")

    archived = raw.get("isArchived")
    if archived is not None and not isinstance(archived, bool):
        errors.append("isArchived must be a boolean")

    return ValidationResult(not errors, errors, warnings)


def validate_settings(raw: object) -> ValidationResult:
    """Check a raw settings dict. Never raises and never mutates ``raw``."""
    if not isinstance(raw, dict):
        return ValidationResult(False, ["Settings record must be an object"], [])

    errors: list[str] = []
    warnings: list[str] = []

    for key in _SETTINGS_BOOLEANS:
        value = raw.get(key)
        if value is not None and not isinstance(value, bool):
            errors.append(f"{key} must be a boolean")

    for key, (low, high) in _SETTINGS_INT_RANGES.items():
        value = raw.get(key)
        if value is not None and (not _is_int(value) or not low <= value <= high):
            errors.append(f"{key} must be an integer between {low} and {high}")

    quality = raw.get("thumbnailQuality")
    if quality is not None and (not _is_number(quality) or not 0.1 <= quality <= 1):
        errors.append("thumbnailQuality must be a number between 0.1 and 1")

    for key, choices in _SETTINGS_CHOICES.items():
        value = raw.get(key)
        if value is not None and value not in choices:
            errors.append(f"{key} must be one of: {', '.join(choices)}")

    api_key = raw.get("apiKey")
    if api_key is not None and not isinstance(api_key, str):
        errors.append("apiKey must be a string")
    elif raw.get("enableAISummary") is True and not (api_key or "").strip():
        warnings.append("AI summary is enabled but no API key is provided")

    return ValidationResult(not errors, errors, warnings)


def parse_page(raw: object) -> SavedPage:
    """Parse untrusted input into a SavedPage.

    Raises:
        ValidationError: listing every violated rule.
    """
    result = validate_page(raw)
    if not result.is_valid:
        raise ValidationError(f"Invalid page data: {', '.join(result.errors)}", result.errors)
    if result.warnings:
        logger.warning("Page validation warnings: %s", result.warnings)
    return SavedPage.from_dict(raw)


def parse_settings(raw: object) -> ExtensionSettings:
    result = validate_settings(raw)
    if not result.is_valid:
        raise ValidationError(f"Invalid settings: {', '.join(result.errors)}", result.errors)
    if result.warnings:
        logger.warning("Settings validation warnings: %s", result.warnings)
    return ExtensionSettings.from_dict(raw)


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def sanitize(page: SavedPage, touch: bool = True) -> SavedPage:
    """Trim strings, recompute the domain and normalize tags in place.

    ``touch`` bumps ``updated_at``; read paths normalize without touching.
    """
    page.title = page.title.strip()
    page.summary = page.summary.strip()
    page.url = page.url.strip()
    page.domain = extract_domain(page.url)

    tags: list[str] = []
    for tag in page.tags or []:
        if not isinstance(tag, str) or not tag.strip():
            continue
        clean = normalize_tag(tag)
        if clean not in tags:
            tags.append(clean)
    page.tags = tags

    if touch:
        page.updated_at = now_ms()
    return page
