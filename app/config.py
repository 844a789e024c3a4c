"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Game Curator", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./gamecurator.db", alias="DATABASE_URL"
    )
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    openai_api_url: HttpUrl = Field(
        default="https://api.openai.com/v1", alias="OPENAI_API_URL"
    )
    xai_api_url: HttpUrl = Field(default="https://api.x.ai/v1", alias="XAI_API_URL")
    embedding_model: str = Field(
        default="text-embedding-3-small", alias="EMBEDDING_MODEL"
    )
    provider_timeout_seconds: float = Field(
        default=120.0, alias="PROVIDER_TIMEOUT", gt=0
    )

    embedding_cache_seconds: int = Field(
        default=60 * 60 * 24 * 30, alias="EMBEDDING_CACHE_TTL", ge=60
    )
    search_cache_seconds: int = Field(
        default=60 * 60 * 24, alias="SEARCH_CACHE_TTL", ge=60
    )
    library_cache_seconds: int = Field(
        default=3_600, alias="LIBRARY_CACHE_TTL", ge=60
    )
    models_cache_seconds: int = Field(
        default=3_600, alias="MODELS_CACHE_TTL", ge=60
    )

    embedding_batch_size: int = Field(
        default=100, alias="EMBEDDING_BATCH_SIZE", ge=1, le=2_048
    )
    preference_stale_days: int = Field(
        default=7, alias="PREFERENCE_STALE_DAYS", ge=1
    )
    search_min_similarity: float = Field(
        default=0.6, alias="SEARCH_MIN_SIMILARITY", ge=-1.0, le=1.0
    )
    duplicate_threshold: float = Field(
        default=0.85, alias="DUPLICATE_THRESHOLD", ge=-1.0, le=1.0
    )
    collection_sample_limit: int = Field(
        default=100, alias="COLLECTION_SAMPLE_LIMIT", ge=1, le=500
    )
    next_game_sample_limit: int = Field(
        default=60, alias="NEXT_GAME_SAMPLE_LIMIT", ge=1, le=500
    )
    cover_image_size: str = Field(default="1024x1536", alias="COVER_IMAGE_SIZE")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("redis_url", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("cover_image_size")
    @classmethod
    def _validate_image_size(cls, value: str) -> str:
        """Image sizes are expressed as WIDTHxHEIGHT."""

        width, sep, height = value.lower().partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ValueError("COVER_IMAGE_SIZE must look like 1024x1536")
        return f"{int(width)}x{int(height)}"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
