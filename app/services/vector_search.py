"""Cosine similarity search over a user's embedded library."""

from __future__ import annotations

import logging
from typing import Sequence

from ..cache import CacheService
from ..config import Settings
from ..models import SimilarCollection, SimilarGame
from ..utils import hash_text
from .embeddings import EmbeddingService
from .providers import EmbeddingProvider
from .repository import CurationRepository

logger = logging.getLogger(__name__)

MAX_SIMILAR_RESULTS = 100


def clamp_limit(limit: int) -> int:
    """Keep entity similarity lookups between 1 and ``MAX_SIMILAR_RESULTS``."""

    return min(max(limit, 1), MAX_SIMILAR_RESULTS)


def is_sufficient(results: Sequence[SimilarGame], minimum: int) -> bool:
    """Return whether a search produced enough hits to skip the fallback."""

    return len(results) >= minimum


class VectorSearch:
    """Ranks a user's own games and collections by cosine similarity."""

    def __init__(
        self,
        settings: Settings,
        repository: CurationRepository,
        cache: CacheService,
        embeddings: EmbeddingService,
    ):
        self._settings = settings
        self._repository = repository
        self._cache = cache
        self._embeddings = embeddings

    async def search(
        self,
        provider: EmbeddingProvider,
        query_text: str,
        user_id: str,
        limit: int = 50,
        min_similarity: float | None = None,
    ) -> list[SimilarGame]:
        """Return the user's games most similar to ``query_text``.

        Only the ordered id list is cached. A cache hit is rehydrated with a
        lookup scoped to ``user_id`` so a shared entry never exposes another
        user's games; rehydrated rows carry no similarity score.
        """

        threshold = (
            self._settings.search_min_similarity
            if min_similarity is None
            else min_similarity
        )
        key = self._cache.search_key(hash_text(query_text))
        cached_ids = await self._cache.get(key)
        if isinstance(cached_ids, list):
            logger.debug("Search cache hit for user %s", user_id)
            return await self._repository.owned_games(
                user_id, [str(game_id) for game_id in cached_ids], limit=limit
            )

        query_vector = await self._embeddings.embed_text(provider, query_text)
        results = await self._repository.similar_games(
            user_id, query_vector, limit=limit, min_similarity=threshold
        )
        await self._cache.set(
            key,
            [result.game_id for result in results],
            self._settings.search_cache_seconds,
        )
        return results

    async def similar_to_game(
        self, user_id: str, game_id: str, limit: int = 10
    ) -> list[SimilarGame]:
        """Return the user's games nearest to one of their own games.

        The source game is excluded. An unembedded or foreign source yields
        no results.
        """

        vector = await self._repository.owned_game_embedding(user_id, game_id)
        if vector is None:
            return []
        return await self._repository.similar_games(
            user_id,
            vector,
            limit=clamp_limit(limit),
            min_similarity=-1.0,
            exclude=[game_id],
        )

    async def similar_to_collection(
        self, user_id: str, collection_id: str, limit: int = 10
    ) -> list[SimilarCollection]:
        vector = await self._repository.owned_collection_embedding(user_id, collection_id)
        if vector is None:
            return []
        return await self._repository.similar_collections(
            user_id,
            vector,
            min_similarity=-1.0,
            limit=clamp_limit(limit),
            exclude=[collection_id],
        )
