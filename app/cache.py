"""Redis caching layer.

The cache is strictly best effort: any backend error is logged and reported as
a miss (or a no-op for writes) so an outage never fails a curation request.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

from .utils import hash_text

logger = logging.getLogger(__name__)


class CacheService:
    """Async JSON cache over an optional Redis client."""

    def __init__(self, client: redis.Redis | None):
        self._redis = client

    @classmethod
    def from_url(cls, url: str | None) -> "CacheService":
        """Build a cache for ``url``; without one every read is a miss."""

        if not url:
            logger.info("No REDIS_URL configured; caching disabled")
            return cls(None)
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    async def get(self, key: str) -> Any | None:
        """Get value from cache."""

        if self._redis is None:
            return None
        try:
            value = await self._redis.get(key)
            if value is None:
                return None
            return json.loads(value)
        except Exception as exc:
            logger.warning("Cache get error for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store ``value`` under ``key`` for ``ttl`` seconds."""

        if self._redis is None:
            return False
        try:
            await self._redis.setex(key, ttl, json.dumps(value))
            return True
        except Exception as exc:
            logger.warning("Cache set error for %s: %s", key, exc)
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""

        if self._redis is None:
            return False
        try:
            await self._redis.delete(key)
            return True
        except Exception as exc:
            logger.warning("Cache delete error for %s: %s", key, exc)
            return False

    # Key patterns for different data types
    @staticmethod
    def game_embedding_key(game_id: str, text_hash: str) -> str:
        return f"embedding:game:{game_id}:{text_hash}"

    @staticmethod
    def collection_embedding_key(collection_id: str, text_hash: str) -> str:
        return f"embedding:collection:{collection_id}:{text_hash}"

    @staticmethod
    def text_embedding_key(text_hash: str) -> str:
        return f"embedding:text:{text_hash}"

    @staticmethod
    def search_key(query_hash: str) -> str:
        return f"search:{query_hash}"

    @staticmethod
    def library_key(user_id: str) -> str:
        return f"ai:library:{user_id}"

    @staticmethod
    def models_key(provider: str, api_key: str) -> str:
        # One entry per credential.
        return f"ai:models:{provider}:{hash_text(api_key)[:16]}"
