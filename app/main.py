"""Entry point for the FastAPI-powered game curator."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .cache import CacheService
from .config import settings
from .database import Database
from .errors import (
    ConfigurationError,
    CuratorError,
    NotFoundError,
    ParseError,
    ProviderError,
)
from .services.curator import CurationService
from .services.providers import ProviderRegistry
from .services.repository import CurationRepository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    provider_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()
    cache = CacheService.from_url(settings.redis_url)

    repository = CurationRepository(database.session_factory)
    registry = ProviderRegistry(settings, provider_client, cache)
    curation_service = CurationService(settings, repository, cache, registry)

    app.state.curation_service = curation_service
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await cache.close()
        await database.dispose()
        await exit_stack.aclose()


class CollectionSuggestRequest(BaseModel):
    theme: str | None = Field(default=None, max_length=500)


class NextGameRequest(BaseModel):
    user_input: str | None = Field(default=None, alias="userInput", max_length=500)

    model_config = {"populate_by_name": True}


class CoverRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None


class DuplicateCheckRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    min_similarity: float | None = Field(
        default=None, alias="minSimilarity", ge=-1.0, le=1.0
    )

    model_config = {"populate_by_name": True}


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="AI curation for personal game libraries",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_curation_service(app: FastAPI) -> CurationService:
    service = getattr(app.state, "curation_service", None)
    if service is None:
        raise RuntimeError("Curation service not initialised")
    return service


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (ProviderError, ParseError)):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ConfigurationError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    logger.error("Unhandled curation error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/ai/collections/suggest")
    async def suggest_collections(
        payload: CollectionSuggestRequest | None = None,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        theme = payload.theme if payload else None
        try:
            result = await service.suggest_collections(user_id, theme)
        except CuratorError as exc:
            raise _http_error(exc) from exc
        return result.model_dump()

    @fastapi_app.post("/api/ai/next-game")
    async def suggest_next_game(
        payload: NextGameRequest | None = None,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        user_input = payload.user_input if payload else None
        try:
            result = await service.suggest_next_game(user_id, user_input)
        except CuratorError as exc:
            raise _http_error(exc) from exc
        return result.model_dump()

    @fastapi_app.post("/api/ai/collections/check-duplicate")
    async def check_duplicate(
        payload: DuplicateCheckRequest,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        try:
            result = await service.check_duplicate_collection(
                user_id, payload.name, payload.description, payload.min_similarity
            )
        except CuratorError as exc:
            raise _http_error(exc) from exc
        return result.model_dump()

    @fastapi_app.post("/api/ai/collections/{collection_id}/cover")
    async def generate_cover(
        collection_id: str,
        payload: CoverRequest,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        try:
            result = await service.generate_collection_cover(
                user_id, payload.name, payload.description, collection_id
            )
        except CuratorError as exc:
            raise _http_error(exc) from exc
        return result.model_dump()

    @fastapi_app.post("/api/ai/collections/{collection_id}/index")
    async def index_collection(
        collection_id: str,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, str]:
        service = get_curation_service(fastapi_app)
        try:
            await service.index_collection(user_id, collection_id)
        except CuratorError as exc:
            raise _http_error(exc) from exc
        return {"status": "indexed"}

    @fastapi_app.get("/api/ai/estimate")
    async def estimate_cost(
        task_type: Literal[
            "suggest_collections", "suggest_next_game", "generate_cover_image"
        ] = Query(alias="taskType"),
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        try:
            cost = await service.estimate_cost(user_id, task_type)
        except (CuratorError, ValueError) as exc:
            raise _http_error(exc) from exc
        return {"taskType": task_type, "estimatedCostUsd": cost}

    @fastapi_app.get("/api/ai/games/{game_id}/similar")
    async def similar_games(
        game_id: str,
        limit: int = Query(default=10, ge=1, le=100),
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        games = await service.similar_games(user_id, game_id, limit)
        return {"games": [game.model_dump() for game in games]}

    @fastapi_app.get("/api/ai/collections/{collection_id}/similar")
    async def similar_collections(
        collection_id: str,
        limit: int = Query(default=10, ge=1, le=100),
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        collections = await service.similar_collections(user_id, collection_id, limit)
        return {"collections": [collection.model_dump() for collection in collections]}

    @fastapi_app.get("/api/ai/activity")
    async def activity(
        limit: int = Query(default=50, ge=1, le=500),
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        entries = await service.get_activity_logs(user_id, limit)
        return {"logs": [entry.model_dump(mode="json") for entry in entries]}

    @fastapi_app.post("/api/ai/embeddings/backfill")
    async def backfill_embeddings(
        scope: Literal["library", "catalog"] = Query(default="library"),
        batch_size: int | None = Query(default=None, alias="batchSize", ge=1, le=2_048),
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> dict[str, Any]:
        service = get_curation_service(fastapi_app)
        try:
            if scope == "catalog":
                result = await service.backfill_catalog_embeddings(user_id, batch_size)
            else:
                result = await service.backfill_library_embeddings(user_id, batch_size)
        except CuratorError as exc:
            raise _http_error(exc) from exc
        return result.model_dump()


app = create_app()
