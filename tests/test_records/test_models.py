"""Tests for SavedPage and ExtensionSettings."""

import pytest

from pagestash.config import DAY_MS
from pagestash.exceptions import ValidationError
from pagestash.records.models import (
    DEFAULT_SUMMARY,
    ExtensionSettings,
    SavedPage,
    extract_domain,
    generate_id,
)


def test_create_applies_defaults():
    page = SavedPage.create("https://news.example.com/a", "Example")
    assert page.domain == "news.example.com"
    assert page.summary == DEFAULT_SUMMARY
    assert page.tags == []
    assert page.is_archived is False
    assert page.version == "1.0.0"
    assert page.id


def test_create_requires_url_and_title():
    with pytest.raises(ValidationError):
        SavedPage.create("", "Example")
    with pytest.raises(ValidationError):
        SavedPage.create("https://example.com", "   ")
    with pytest.raises(ValidationError) as exc:
        SavedPage.create(None, "")
    assert len(exc.value.errors) == 2


def test_create_accepts_attribute_fields():
    page = SavedPage.create(" https://example.com/a ", " Example ", tags=["docs"], og_image="https://example.com/i.png")
    assert page.url == "https://example.com/a"
    assert page.title == "Example"
    assert page.tags == ["docs"]
    assert page.og_image == "https://example.com/i.png"


def test_generate_id_unique():
    ids = {generate_id() for _ in range(50)}
    assert len(ids) == 50


def test_extract_domain():
    assert extract_domain("https://Sub.Example.com:8080/x?y=1") == "sub.example.com"
    assert extract_domain("not a url") == "unknown"
    assert extract_domain(None) == "unknown"


def test_wire_form_is_camel_case():
    page = SavedPage(url="https://example.com", title="T", og_image="https://example.com/i.png")
    data = page.to_dict()
    assert data["ogImage"] == "https://example.com/i.png"
    assert "createdAt" in data and "isArchived" in data
    again = SavedPage.from_dict(data)
    assert again == page


def test_tags():
    page = SavedPage(url="https://example.com", title="T")
    assert page.add_tag(" Python ") is True
    assert page.add_tag("python") is False
    assert page.tags == ["python"]
    assert page.remove_tag("PYTHON") is True
    assert page.remove_tag("python") is False
    assert page.tags == []


def test_matches_query_covers_description_and_tags():
    page = SavedPage(url="https://example.com", title="T", description="Async Guide", tags=["rust"])
    assert page.matches_query("guide")
    assert page.matches_query("RUST")
    assert not page.matches_query("golang")
    assert page.matches_query("")


def test_age_and_recency():
    page = SavedPage(url="https://example.com", title="T", created_at=0)
    assert page.age_in_days(now=3 * DAY_MS) == 3
    assert page.is_recent(now=7 * DAY_MS)
    assert not page.is_recent(now=8 * DAY_MS)


def test_settings_defaults():
    settings = ExtensionSettings.defaults()
    assert settings.api_provider == "openai"
    assert settings.max_storage_items == 1000
    assert settings.thumbnail_quality == 0.8
    assert settings.language == "auto"
    assert settings.grid_columns == 1
    assert settings.show_domain is True


def test_settings_wire_form():
    data = ExtensionSettings(enable_ai_summary=True, api_key="sk-x").to_dict()
    assert data["enableAISummary"] is True
    assert data["apiKey"] == "sk-x"
    assert ExtensionSettings.from_dict({"theme": "dark"}).theme == "dark"
    assert ExtensionSettings.from_dict({"showDate": None}).show_date is True


def test_is_ai_configured():
    assert not ExtensionSettings().is_ai_configured()
    assert not ExtensionSettings(enable_ai_summary=True, api_key="  ").is_ai_configured()
    assert ExtensionSettings(enable_ai_summary=True, api_key="sk-abc").is_ai_configured()
