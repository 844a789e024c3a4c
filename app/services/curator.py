"""Curation orchestration: collections, next game, covers and duplicates."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..cache import CacheService
from ..config import Settings
from ..errors import (
    ConfigurationError,
    CuratorError,
    NotFoundError,
    ParseError,
    TruncatedResponseError,
)
from ..models import (
    ActivityLogEntry,
    AiSettings,
    CollectionSuggestion,
    CollectionSuggestionsResult,
    CoverImageResult,
    DuplicateCheckResult,
    EmbeddingJobResult,
    GameSummary,
    NextGameResult,
    NextGameSuggestion,
    SimilarCollection,
    SimilarGame,
    TaskType,
    TextGeneration,
    TokenUsage,
)
from ..utils import extract_json_object
from .duplicates import DuplicateDetector
from .embeddings import EmbeddingService
from .model_router import ModelSelection, select_model
from .preferences import PreferenceLearner
from .pricing import image_cost, text_cost
from .prompts import (
    CURATOR_SYSTEM_PROMPT,
    ORGANIZER_SYSTEM_PROMPT,
    build_collection_suggestions_prompt,
    build_cover_image_prompt,
    build_next_game_prompt,
)
from .providers import ProviderBundle, ProviderRegistry
from .repository import CurationRepository
from .sampling import SamplingEngine
from .vector_search import VectorSearch

logger = logging.getLogger(__name__)


def _names_to_ids(names: Sequence[str], library: Sequence[GameSummary]) -> list[str]:
    """Map suggested titles to library ids by exact name; unknown titles are dropped."""

    by_name: dict[str, str] = {}
    for game in library:
        by_name.setdefault(game.name, game.id)
    ids = [by_name[name] for name in names if name in by_name]
    return list(dict.fromkeys(ids))


def _parse_json(generation: TextGeneration, selection: ModelSelection) -> dict[str, Any]:
    if generation.finish_reason == "length":
        logger.warning(
            "Response from %s truncated at %s tokens",
            selection.model,
            selection.max_tokens,
        )
        raise TruncatedResponseError(selection.max_tokens)
    if not generation.text:
        raise ParseError("No response from AI")
    try:
        payload = extract_json_object(generation.text)
    except ValueError as exc:
        raise ParseError(str(exc)) from exc
    if not isinstance(payload, dict):
        raise ParseError("Model response is not a JSON object")
    return payload


class CurationService:
    """Coordinates embeddings, sampling, routing and generation per request."""

    def __init__(
        self,
        settings: Settings,
        repository: CurationRepository,
        cache: CacheService,
        registry: ProviderRegistry,
    ):
        self._settings = settings
        self._repository = repository
        self._cache = cache
        self._registry = registry
        self._embeddings = EmbeddingService(settings, repository, cache)
        self._search = VectorSearch(settings, repository, cache, self._embeddings)
        self._preferences = PreferenceLearner(settings, repository, self._embeddings)
        self._sampler = SamplingEngine(self._search)
        self._duplicates = DuplicateDetector(settings, repository, self._embeddings)

    # -- settings and library ------------------------------------------

    async def _load_settings(self, user_id: str) -> AiSettings | None:
        record, openai, xai = await asyncio.gather(
            self._repository.get_ai_settings(user_id),
            self._repository.get_provider_credentials(user_id, "openai"),
            self._repository.get_provider_credentials(user_id, "xai"),
        )
        if record is None:
            return None
        return record.model_copy(update={"openai": openai, "xai": xai})

    async def _resolve(self, user_id: str) -> tuple[AiSettings, ProviderBundle]:
        ai_settings = await self._load_settings(user_id)
        if ai_settings is None:
            raise ConfigurationError("No active AI provider configured")
        return ai_settings, self._registry.build(ai_settings)

    async def _snapshot(self, user_id: str) -> list[GameSummary]:
        key = self._cache.library_key(user_id)
        cached = await self._cache.get(key)
        if isinstance(cached, list):
            try:
                return [GameSummary.model_validate(item) for item in cached]
            except ValidationError as exc:
                logger.warning("Discarding cached library for user %s: %s", user_id, exc)

        library = await self._repository.fetch_library(user_id)
        if library:
            await self._cache.set(
                key,
                [game.model_dump(mode="json") for game in library],
                self._settings.library_cache_seconds,
            )
        return library

    async def _load_library(self, user_id: str) -> list[GameSummary]:
        library = await self._snapshot(user_id)
        if not library:
            raise NotFoundError("No games in library to analyze")
        return library

    async def invalidate_library(self, user_id: str) -> None:
        """Drop the cached library snapshot after the library changes."""

        await self._cache.delete(self._cache.library_key(user_id))

    async def _refresh(
        self, user_id: str, bundle: ProviderBundle, library: Sequence[GameSummary]
    ) -> None:
        """Backfill embeddings and stale preferences; failures are only logged."""

        provider = bundle.embeddings
        if provider is None:
            return
        job = await self._embeddings.generate_user_library_embeddings(provider, user_id)
        if job.errors:
            logger.warning(
                "Embedding backfill for user %s had %s errors", user_id, job.errors
            )
        try:
            if await self._preferences.should_regenerate(user_id):
                await self._preferences.generate(provider, user_id, library)
        except CuratorError as exc:
            logger.warning("Preference refresh failed for user %s: %s", user_id, exc)

    async def _select(
        self, task_type: TaskType, ai_settings: AiSettings, bundle: ProviderBundle
    ) -> ModelSelection:
        available = await self._registry.available_models(bundle)
        selection = select_model(task_type, ai_settings, available)
        logger.info(
            "Routing %s for user %s to %s",
            task_type,
            ai_settings.user_id,
            selection.model,
        )
        return selection

    # -- activity -------------------------------------------------------

    async def _log(
        self,
        user_id: str,
        action_type: str,
        started: float,
        *,
        provider: str | None,
        model: str | None,
        usage: TokenUsage | None = None,
        cost: float | None = None,
        error: BaseException | None = None,
        collection_id: str | None = None,
        user_input: str | None = None,
    ) -> None:
        entry = ActivityLogEntry(
            user_id=user_id,
            action_type=action_type,
            provider=provider,
            model=model,
            collection_id=collection_id,
            user_input=user_input,
            usage=usage,
            estimated_cost_usd=cost,
            duration_ms=int((time.perf_counter() - started) * 1000),
            success=error is None,
            error_message=str(error) if error is not None else None,
        )
        try:
            await self._repository.log_activity(entry)
        except SQLAlchemyError:
            logger.exception("Failed to record %s activity for %s", action_type, user_id)

    # -- operations -----------------------------------------------------

    async def suggest_collections(
        self, user_id: str, theme: str | None = None
    ) -> CollectionSuggestionsResult:
        ai_settings, bundle = await self._resolve(user_id)
        started = time.perf_counter()
        selection: ModelSelection | None = None
        provider_name: str | None = None

        try:
            library = await self._load_library(user_id)
            selection = await self._select("suggest_collections", ai_settings, bundle)
            provider_name, generator = bundle.generator_for(selection.model)
            await self._refresh(user_id, bundle, library)
            sample = await self._sampler.smart_sample(
                bundle.embeddings,
                user_id,
                library,
                self._settings.collection_sample_limit,
                query=theme,
                scope="collections",
            )
            preferences = await self._repository.list_preferences(user_id)
            prompt = build_collection_suggestions_prompt(
                sample,
                total_games=len(library),
                theme=theme,
                preferences=preferences,
            )
            generation = await generator.generate_text(
                ORGANIZER_SYSTEM_PROMPT,
                prompt,
                model=selection.model,
                max_tokens=selection.max_tokens,
                temperature=selection.temperature,
            )
            payload = _parse_json(generation, selection)
            raw_collections = payload.get("collections")
            if not isinstance(raw_collections, list):
                raise ParseError("Model response has no collections list")
            try:
                suggestions = [
                    CollectionSuggestion.model_validate(item) for item in raw_collections
                ]
            except ValidationError as exc:
                raise ParseError(f"Malformed collection suggestion: {exc}") from exc
            collections = [
                suggestion.model_copy(
                    update={"game_ids": _names_to_ids(suggestion.game_names, library)}
                )
                for suggestion in suggestions
            ]
            cost = text_cost(selection.model, generation.usage)
        except Exception as exc:
            await self._log(
                user_id,
                "suggest_collections",
                started,
                provider=provider_name,
                model=selection.model if selection else None,
                error=exc,
                user_input=theme,
            )
            raise

        await self._log(
            user_id,
            "suggest_collections",
            started,
            provider=provider_name,
            model=selection.model,
            usage=generation.usage,
            cost=cost,
            user_input=theme,
        )
        return CollectionSuggestionsResult(collections=collections, cost=cost)

    async def suggest_next_game(
        self, user_id: str, user_input: str | None = None
    ) -> NextGameResult:
        ai_settings, bundle = await self._resolve(user_id)
        started = time.perf_counter()
        selection: ModelSelection | None = None
        provider_name: str | None = None

        try:
            library = await self._load_library(user_id)
            selection = await self._select("suggest_next_game", ai_settings, bundle)
            provider_name, generator = bundle.generator_for(selection.model)
            await self._refresh(user_id, bundle, library)
            sample = await self._sampler.smart_sample(
                bundle.embeddings,
                user_id,
                library,
                self._settings.next_game_sample_limit,
                query=user_input,
                scope="next_game",
            )
            prompt = build_next_game_prompt(sample, library, user_input=user_input)
            generation = await generator.generate_text(
                CURATOR_SYSTEM_PROMPT,
                prompt,
                model=selection.model,
                max_tokens=selection.max_tokens,
                temperature=selection.temperature,
            )
            payload = _parse_json(generation, selection)
            try:
                suggestion = NextGameSuggestion.model_validate(payload)
            except ValidationError as exc:
                raise ParseError(f"Malformed next game suggestion: {exc}") from exc
            matched = _names_to_ids([suggestion.game_name], library)
            suggestion = suggestion.model_copy(
                update={"game_id": matched[0] if matched else None}
            )
            cost = text_cost(selection.model, generation.usage)
        except Exception as exc:
            await self._log(
                user_id,
                "suggest_next_game",
                started,
                provider=provider_name,
                model=selection.model if selection else None,
                error=exc,
                user_input=user_input,
            )
            raise

        await self._log(
            user_id,
            "suggest_next_game",
            started,
            provider=provider_name,
            model=selection.model,
            usage=generation.usage,
            cost=cost,
            user_input=user_input,
        )
        return NextGameResult(suggestion=suggestion, cost=cost)

    async def generate_collection_cover(
        self,
        user_id: str,
        name: str,
        description: str | None,
        collection_id: str,
    ) -> CoverImageResult:
        ai_settings, bundle = await self._resolve(user_id)
        started = time.perf_counter()
        selection: ModelSelection | None = None
        provider_name: str | None = None
        user_input = f"{name}: {description or ''}"

        try:
            if await self._repository.get_collection(user_id, collection_id) is None:
                raise NotFoundError(f"Collection {collection_id} not found")
            selection = await self._select("generate_cover_image", ai_settings, bundle)
            provider_name, generator = bundle.generator_for(selection.model)
            image = await generator.generate_image(
                build_cover_image_prompt(name, description),
                self._settings.cover_image_size,
                model=selection.model,
            )
            encoded = base64.b64encode(image.image_bytes).decode("ascii")
            image_url = f"data:{image.media_type};base64,{encoded}"
            cost = image_cost(selection.model)
        except Exception as exc:
            await self._log(
                user_id,
                "generate_cover_image",
                started,
                provider=provider_name,
                model=selection.model if selection else None,
                error=exc,
                collection_id=collection_id,
                user_input=user_input,
            )
            raise

        await self._log(
            user_id,
            "generate_cover_image",
            started,
            provider=provider_name,
            model=selection.model,
            usage=TokenUsage(),
            cost=cost,
            collection_id=collection_id,
            user_input=user_input,
        )
        return CoverImageResult(image_url=image_url, cost=cost)

    async def check_duplicate_collection(
        self,
        user_id: str,
        name: str,
        description: str | None,
        min_similarity: float | None = None,
    ) -> DuplicateCheckResult:
        _, bundle = await self._resolve(user_id)
        started = time.perf_counter()
        embedding_model: str | None = None
        user_input = f"{name}: {description or ''}"

        try:
            provider = bundle.require_embeddings()
            embedding_model = provider.embedding_model
            result = await self._duplicates.check_duplicate(
                provider, user_id, name, description, min_similarity
            )
        except Exception as exc:
            await self._log(
                user_id,
                "check_duplicate",
                started,
                provider="openai",
                model=embedding_model,
                error=exc,
                user_input=user_input,
            )
            raise

        await self._log(
            user_id,
            "check_duplicate",
            started,
            provider="openai",
            model=embedding_model,
            user_input=user_input,
        )
        return result

    async def index_collection(self, user_id: str, collection_id: str) -> None:
        """Embed a saved collection so later duplicate checks compare against it."""

        _, bundle = await self._resolve(user_id)
        collection = await self._repository.get_collection(user_id, collection_id)
        if collection is None:
            raise NotFoundError(f"Collection {collection_id} not found")
        await self._embeddings.embed_collection(bundle.require_embeddings(), collection)

    async def backfill_library_embeddings(
        self, user_id: str, batch_size: int | None = None
    ) -> EmbeddingJobResult:
        _, bundle = await self._resolve(user_id)
        return await self._embeddings.generate_user_library_embeddings(
            bundle.require_embeddings(), user_id, batch_size
        )

    async def backfill_catalog_embeddings(
        self, user_id: str, batch_size: int | None = None
    ) -> EmbeddingJobResult:
        """Embed catalog games nobody has embedded yet, billed to ``user_id``."""

        _, bundle = await self._resolve(user_id)
        return await self._embeddings.generate_missing_game_embeddings(
            bundle.require_embeddings(), batch_size
        )

    async def get_activity_logs(
        self, user_id: str, limit: int = 50
    ) -> list[ActivityLogEntry]:
        return await self._repository.list_activity(user_id, limit)

    async def similar_games(
        self, user_id: str, game_id: str, limit: int = 10
    ) -> list[SimilarGame]:
        """Games in the user's library closest to ``game_id``; no provider call."""

        return await self._search.similar_to_game(user_id, game_id, limit)

    async def similar_collections(
        self, user_id: str, collection_id: str, limit: int = 10
    ) -> list[SimilarCollection]:
        return await self._search.similar_to_collection(user_id, collection_id, limit)

    async def estimate_cost(self, user_id: str, task_type: str) -> float:
        """Return a static USD estimate for ``task_type``; no provider is called."""

        ai_settings = await self._load_settings(user_id)
        if ai_settings is None:
            return 0.0

        available: list[str] = []
        try:
            bundle = self._registry.build(ai_settings)
        except ConfigurationError:
            logger.info("No active provider for user %s; estimating from defaults", user_id)
        else:
            available = await self._registry.available_models(bundle)

        if task_type == "generate_cover_image":
            selection = select_model(task_type, ai_settings, available)
            return image_cost(selection.model)

        library = await self._snapshot(user_id)
        if task_type == "suggest_collections":
            prompt_tokens = min(len(library) * 50, 4_000)
            completion_tokens = 800
        elif task_type == "suggest_next_game":
            prompt_tokens = min(len(library) * 30, 2_000)
            completion_tokens = 300
        else:
            raise ValueError(f"Unknown task type: {task_type}")

        selection = select_model(task_type, ai_settings, available)  # type: ignore[arg-type]
        return text_cost(
            selection.model,
            TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )
