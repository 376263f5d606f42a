"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import Settings


def test_defaults_match_documented_values() -> None:
    settings = Settings(_env_file=None)

    assert settings.cache_ttl_seconds == 4 * 60 * 60
    assert settings.recommendation_min_items == 10
    assert settings.recommendation_limit == 6
    assert settings.sync_poll_interval_seconds == 0
    assert settings.provider_urls == {}
    assert settings.configured_domains == ()


def test_provider_urls_parse_json_mapping() -> None:
    """Provider URLs may be supplied as a JSON object in the environment."""

    settings = Settings(
        _env_file=None,
        PROVIDER_URLS='{"Games": "https://games.example.com/api/", "books": ""}',
        FALLBACK_PROVIDER_URLS={"music": "https://music.example.com"},
    )

    assert settings.provider_urls == {"games": "https://games.example.com/api"}
    assert settings.configured_domains == ("games", "music")


def test_provider_urls_reject_unknown_domains() -> None:
    with pytest.raises(ValueError, match="Unknown content domain configured"):
        Settings(_env_file=None, PROVIDER_URLS='{"podcasts": "https://example.com"}')


def test_cache_ttl_has_a_floor() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, CACHE_TTL=5)
