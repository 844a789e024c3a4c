"""Detect collections that repeat one the user already has."""

from __future__ import annotations

import logging

from ..config import Settings
from ..models import DuplicateCheckResult
from .embeddings import EmbeddingService, build_collection_text
from .providers import EmbeddingProvider
from .repository import CurationRepository

logger = logging.getLogger(__name__)

MAX_SIMILAR_COLLECTIONS = 5


class DuplicateDetector:
    def __init__(
        self,
        settings: Settings,
        repository: CurationRepository,
        embeddings: EmbeddingService,
    ):
        self._settings = settings
        self._repository = repository
        self._embeddings = embeddings

    async def check_duplicate(
        self,
        provider: EmbeddingProvider,
        user_id: str,
        name: str,
        description: str | None,
        min_similarity: float | None = None,
    ) -> DuplicateCheckResult:
        """Compare a draft collection with the user's existing collections.

        A score equal to the threshold counts as a duplicate.
        """

        threshold = (
            self._settings.duplicate_threshold
            if min_similarity is None
            else min_similarity
        )
        vector = await self._embeddings.embed_text(
            provider, build_collection_text(name, description)
        )
        similar = await self._repository.similar_collections(
            user_id,
            vector,
            min_similarity=threshold,
            limit=MAX_SIMILAR_COLLECTIONS,
        )
        is_duplicate = bool(similar) and similar[0].similarity >= threshold
        if is_duplicate:
            logger.info(
                "Collection %r for user %s duplicates %s (%.3f)",
                name,
                user_id,
                similar[0].id,
                similar[0].similarity,
            )
        return DuplicateCheckResult(
            is_duplicate=is_duplicate, similar_collections=similar
        )
