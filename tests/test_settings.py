"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import Settings


def test_defaults_match_cache_windows() -> None:
    """Default TTLs follow the embedding, search and library cache windows."""

    settings = Settings(_env_file=None)

    assert settings.embedding_cache_seconds == 30 * 24 * 60 * 60
    assert settings.search_cache_seconds == 24 * 60 * 60
    assert settings.library_cache_seconds == 60 * 60
    assert settings.duplicate_threshold == 0.85
    assert settings.preference_stale_days == 7


def test_blank_redis_url_disables_cache() -> None:
    """Whitespace-only Redis URLs should be treated as unset."""

    settings = Settings(_env_file=None, REDIS_URL="   ")

    assert settings.redis_url is None


def test_cover_image_size_is_normalised() -> None:
    settings = Settings(_env_file=None, COVER_IMAGE_SIZE="1536X1024")

    assert settings.cover_image_size == "1536x1024"


def test_cover_image_size_invalid_raises() -> None:
    with pytest.raises(ValueError, match="COVER_IMAGE_SIZE"):
        Settings(_env_file=None, COVER_IMAGE_SIZE="portrait")


def test_duplicate_threshold_must_be_a_similarity() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, DUPLICATE_THRESHOLD=1.5)
