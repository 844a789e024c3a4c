"""Embedding generation with cache-then-persist semantics."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..cache import CacheService
from ..config import Settings
from ..errors import CuratorError
from ..models import CollectionRef, EmbeddingJobResult, GameEmbeddingInput
from ..utils import hash_text
from .providers import EmbeddingProvider
from .repository import CurationRepository

logger = logging.getLogger(__name__)


def build_game_text(game: GameEmbeddingInput) -> str:
    """Return the canonical text embedded for ``game``.

    Empty genres and descriptions are left out entirely so identical content
    always hashes to the same value.
    """

    parts = [f"Game: {game.name}"]
    if game.genres:
        parts.append(f"Genres: {', '.join(game.genres)}")
    if game.description:
        parts.append(f"Description: {game.description}")
    return "\n".join(parts)


def build_collection_text(name: str, description: str | None) -> str:
    return f"Collection: {name}\nDescription: {description or 'No description'}"


def _cached_vector(payload: Any, model: str) -> list[float] | None:
    if not isinstance(payload, dict) or payload.get("model") != model:
        return None
    vector = payload.get("embedding")
    if not isinstance(vector, list) or not vector:
        return None
    return [float(value) for value in vector]


class EmbeddingService:
    """Builds, caches and persists embeddings for games, collections and text."""

    def __init__(
        self,
        settings: Settings,
        repository: CurationRepository,
        cache: CacheService,
    ):
        self._settings = settings
        self._repository = repository
        self._cache = cache

    async def embed_game(
        self, provider: EmbeddingProvider, game: GameEmbeddingInput
    ) -> list[float]:
        """Return the embedding of ``game``, generating it on a cache miss."""

        text = build_game_text(game)
        text_hash = hash_text(text)
        key = self._cache.game_embedding_key(game.game_id, text_hash)
        cached = await self._lookup(key, provider.embedding_model)
        if cached is not None:
            return cached

        vector = await provider.embed(text)
        await self._repository.upsert_game_embedding(
            game.game_id, vector, text_hash, provider.embedding_model
        )
        await self._store(key, vector, provider.embedding_model)
        return vector

    async def embed_games_batch(
        self, provider: EmbeddingProvider, games: Sequence[GameEmbeddingInput]
    ) -> list[list[float]]:
        """Return embeddings for ``games`` in input order.

        Cached entries are never sent to the provider; the misses are embedded
        with a single batch call.
        """

        vectors, _ = await self._embed_batch(provider, games, persist_hits=False)
        return vectors

    async def _embed_batch(
        self,
        provider: EmbeddingProvider,
        games: Sequence[GameEmbeddingInput],
        *,
        persist_hits: bool,
    ) -> tuple[list[list[float]], int]:
        vectors: dict[str, list[float]] = {}
        misses: list[tuple[GameEmbeddingInput, str, str]] = []
        for game in games:
            text = build_game_text(game)
            text_hash = hash_text(text)
            key = self._cache.game_embedding_key(game.game_id, text_hash)
            cached = await self._lookup(key, provider.embedding_model)
            if cached is None:
                misses.append((game, text, text_hash))
                continue
            vectors[game.game_id] = cached
            if persist_hits:
                await self._repository.upsert_game_embedding(
                    game.game_id, cached, text_hash, provider.embedding_model
                )
        hits = len(games) - len(misses)

        if misses:
            generated = await provider.embed_batch([text for _, text, _ in misses])
            for (game, _, text_hash), vector in zip(misses, generated):
                await self._repository.upsert_game_embedding(
                    game.game_id, vector, text_hash, provider.embedding_model
                )
                await self._store(
                    self._cache.game_embedding_key(game.game_id, text_hash),
                    vector,
                    provider.embedding_model,
                )
                vectors[game.game_id] = vector

        ordered: list[list[float]] = []
        for game in games:
            vector = vectors.get(game.game_id)
            if vector is None:
                raise CuratorError(f"Embedding not found for game: {game.game_id}")
            ordered.append(vector)
        return ordered, hits

    async def embed_text(self, provider: EmbeddingProvider, text: str) -> list[float]:
        """Embed free text such as search queries and draft collections."""

        key = self._cache.text_embedding_key(hash_text(text))
        cached = await self._lookup(key, provider.embedding_model)
        if cached is not None:
            return cached
        vector = await provider.embed(text)
        await self._store(key, vector, provider.embedding_model)
        return vector

    async def embed_collection(
        self, provider: EmbeddingProvider, collection: CollectionRef
    ) -> list[float]:
        """Embed and persist ``collection`` so duplicate checks can see it."""

        text = build_collection_text(collection.name, collection.description)
        text_hash = hash_text(text)
        key = self._cache.collection_embedding_key(collection.id, text_hash)
        vector = await self._lookup(key, provider.embedding_model)
        if vector is None:
            vector = await provider.embed(text)
            await self._store(key, vector, provider.embedding_model)
        await self._repository.upsert_collection_embedding(
            collection.id, vector, text_hash, provider.embedding_model
        )
        return vector

    async def generate_user_library_embeddings(
        self,
        provider: EmbeddingProvider,
        user_id: str,
        batch_size: int | None = None,
    ) -> EmbeddingJobResult:
        """Embed one batch of the user's games that have no embedding yet."""

        games = await self._repository.games_missing_embeddings(
            user_id=user_id, limit=batch_size or self._settings.embedding_batch_size
        )
        return await self._run_job(provider, games, label=f"user {user_id}")

    async def generate_missing_game_embeddings(
        self, provider: EmbeddingProvider, batch_size: int | None = None
    ) -> EmbeddingJobResult:
        """Embed one batch of catalog games that have no embedding yet."""

        games = await self._repository.games_missing_embeddings(
            limit=batch_size or self._settings.embedding_batch_size
        )
        return await self._run_job(provider, games, label="catalog")

    async def _run_job(
        self,
        provider: EmbeddingProvider,
        games: Sequence[GameEmbeddingInput],
        *,
        label: str,
    ) -> EmbeddingJobResult:
        if not games:
            return EmbeddingJobResult()

        try:
            # The rows are missing from the store, so cache hits are written too.
            _, cached = await self._embed_batch(provider, games, persist_hits=True)
        except CuratorError as exc:
            logger.error("Embedding batch for %s failed: %s", label, exc)
            return EmbeddingJobResult(processed=len(games), errors=len(games))

        logger.info(
            "Embedded %s games for %s (%s from cache)", len(games), label, cached
        )
        return EmbeddingJobResult(
            processed=len(games), cached=cached, generated=len(games) - cached
        )

    async def _lookup(self, key: str, model: str) -> list[float] | None:
        return _cached_vector(await self._cache.get(key), model)

    async def _store(self, key: str, vector: Sequence[float], model: str) -> None:
        await self._cache.set(
            key,
            {"embedding": list(vector), "model": model},
            self._settings.embedding_cache_seconds,
        )
