"""Data models for saved pages and extension settings."""

from __future__ import annotations

import math
import secrets
import string
from dataclasses import dataclass, field
from urllib.parse import urlparse

from pagestash.config import DAY_MS, now_ms
from pagestash.exceptions import ValidationError

RECORD_VERSION = "1.0.0"
DEFAULT_SUMMARY = "no summary"

API_PROVIDERS = ("openai", "anthropic", "gemini", "ollama")
LANGUAGES = ("auto", "en", "ko")
THEMES = ("light", "dark", "auto")

_BASE36 = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def generate_id() -> str:
    """Time-ordered opaque id: base-36 millis plus a random suffix."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return _base36(now_ms()) + suffix


def extract_domain(url: str | None) -> str:
    if not url:
        return "unknown"
    try:
        host = urlparse(url.strip()).hostname
    except ValueError:
        return "unknown"
    return host or "unknown"


@dataclass
class ValidationResult:
    """Outcome of validating one raw record."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SavedPage:
    """One saved browser tab."""

    url: str
    title: str
    id: str = field(default_factory=generate_id)
    summary: str = DEFAULT_SUMMARY
    thumbnail: str = ""
    timestamp: int = field(default_factory=now_ms)
    domain: str = ""
    description: str = ""
    og_image: str | None = None
    favicon: str | None = None
    tags: list[str] = field(default_factory=list)
    is_archived: bool = False
    last_accessed: int | None = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    version: str = RECORD_VERSION

    def __post_init__(self) -> None:
        if not self.domain:
            self.domain = extract_domain(self.url)

    @classmethod
    def create(cls, url: str, title: str, **fields) -> "SavedPage":
        """Build a page from trusted input, enforcing the required fields.

        ``fields`` are attribute names (``tags=...``, ``og_image=...``).

        Raises:
            ValidationError: ``url`` or ``title`` is missing or blank.
        """
        errors = []
        if not isinstance(url, str) or not url.strip():
            errors.append("URL is required and must be a string")
        if not isinstance(title, str) or not title.strip():
            errors.append("Title is required and must be a string")
        if errors:
            raise ValidationError(f"Invalid page data: {', '.join(errors)}", errors)
        return cls(url=url.strip(), title=title.strip(), **fields)

    @classmethod
    def from_dict(cls, data: dict) -> "SavedPage":
        """Build from the camelCase wire form, defaulting absent fields.

        Does not validate; use ``parse_page`` for untrusted input.
        """
        now = now_ms()
        url = data.get("url") or ""
        return cls(
            id=data.get("id") or generate_id(),
            url=url,
            title=data.get("title") or "",
            summary=data.get("summary") or DEFAULT_SUMMARY,
            thumbnail=data.get("thumbnail") or "",
            timestamp=data.get("timestamp") or now,
            domain=data.get("domain") or extract_domain(url),
            description=data.get("description") or "",
            og_image=data.get("ogImage") or None,
            favicon=data.get("favicon") or None,
            tags=list(data.get("tags") or []),
            is_archived=bool(data.get("isArchived", False)),
            last_accessed=data.get("lastAccessed") or None,
            created_at=data.get("createdAt") or now,
            updated_at=data.get("updatedAt") or now,
            version=data.get("version") or RECORD_VERSION,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "summary": self.summary,
            "thumbnail": self.thumbnail,
            "timestamp": self.timestamp,
            "domain": self.domain,
            "description": self.description,
            "ogImage": self.og_image,
            "favicon": self.favicon,
            "tags": list(self.tags),
            "isArchived": self.is_archived,
            "lastAccessed": self.last_accessed,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "version": self.version,
        }

    def add_tag(self, tag: str) -> bool:
        """Add a normalized tag; returns True if the page changed."""
        if not isinstance(tag, str) or not tag.strip():
            return False
        clean = tag.strip().lower()
        if clean in self.tags:
            return False
        self.tags.append(clean)
        self.updated_at = now_ms()
        return True

    def remove_tag(self, tag: str) -> bool:
        if not isinstance(tag, str):
            return False
        clean = tag.strip().lower()
        if clean not in self.tags:
            return False
        self.tags.remove(clean)
        self.updated_at = now_ms()
        return True

    def mark_accessed(self) -> None:
        self.last_accessed = now_ms()
        self.updated_at = self.last_accessed

    def matches_query(self, query: str | None) -> bool:
        """Case-insensitive substring match over the searchable fields."""
        if not query or not isinstance(query, str):
            return True
        needle = query.lower()
        fields = [self.title, self.summary, self.url, self.domain, self.description, *self.tags]
        return any(f and needle in f.lower() for f in fields)

    def age_in_days(self, now: int | None = None) -> int:
        diff = abs((now if now is not None else now_ms()) - self.created_at)
        return math.ceil(diff / DAY_MS)

    def is_recent(self, now: int | None = None) -> bool:
        return self.age_in_days(now) <= 7


@dataclass
class ExtensionSettings:
    """The singleton settings record."""

    # AI
    enable_ai_summary: bool = False
    api_provider: str = "openai"
    api_key: str = ""
    # Storage
    max_storage_items: int = 1000
    thumbnail_quality: float = 0.8
    auto_cleanup: bool = False
    cleanup_days: int = 90
    # UI
    language: str = "auto"
    theme: str = "light"
    grid_columns: int = 1
    show_domain: bool = True
    show_date: bool = True
    # Privacy
    enable_analytics: bool = False
    share_usage_data: bool = False
    # Metadata
    version: str = RECORD_VERSION
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    @classmethod
    def defaults(cls) -> "ExtensionSettings":
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> "ExtensionSettings":
        now = now_ms()

        def _get(key, default):
            value = data.get(key)
            return default if value is None else value

        return cls(
            enable_ai_summary=_get("enableAISummary", False),
            api_provider=_get("apiProvider", "openai"),
            api_key=_get("apiKey", ""),
            max_storage_items=_get("maxStorageItems", 1000),
            thumbnail_quality=_get("thumbnailQuality", 0.8),
            auto_cleanup=_get("autoCleanup", False),
            cleanup_days=_get("cleanupDays", 90),
            language=_get("language", "auto"),
            theme=_get("theme", "light"),
            grid_columns=_get("gridColumns", 1),
            show_domain=_get("showDomain", True),
            show_date=_get("showDate", True),
            enable_analytics=_get("enableAnalytics", False),
            share_usage_data=_get("shareUsageData", False),
            version=data.get("version") or RECORD_VERSION,
            created_at=data.get("createdAt") or now,
            updated_at=data.get("updatedAt") or now,
        )

    def to_dict(self) -> dict:
        return {
            "enableAISummary": self.enable_ai_summary,
            "apiProvider": self.api_provider,
            "apiKey": self.api_key,
            "maxStorageItems": self.max_storage_items,
            "thumbnailQuality": self.thumbnail_quality,
            "autoCleanup": self.auto_cleanup,
            "cleanupDays": self.cleanup_days,
            "language": self.language,
            "theme": self.theme,
            "gridColumns": self.grid_columns,
            "showDomain": self.show_domain,
            "showDate": self.show_date,
            "enableAnalytics": self.enable_analytics,
            "shareUsageData": self.share_usage_data,
            "version": self.version,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def is_ai_configured(self) -> bool:
        return bool(self.enable_ai_summary and self.api_key and self.api_key.strip() and self.api_provider)
