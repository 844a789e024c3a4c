"""HTTP surface tests with a stubbed curation service."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.errors import ConfigurationError, NotFoundError, ProviderError, TruncatedResponseError
from app.main import register_routes
from app.models import (
    ActivityLogEntry,
    CollectionSuggestion,
    CollectionSuggestionsResult,
    DuplicateCheckResult,
    EmbeddingJobResult,
    SimilarCollection,
    SimilarGame,
)


class StubService:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple] = []

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    async def suggest_collections(self, user_id, theme=None):
        self.calls.append(("suggest_collections", user_id, theme))
        self._maybe_fail()
        return CollectionSuggestionsResult(
            collections=[CollectionSuggestion(name="Cozy", game_ids=["g1"])], cost=0.001
        )

    async def check_duplicate_collection(self, user_id, name, description, min_similarity=None):
        self.calls.append(("check_duplicate", user_id, name, min_similarity))
        self._maybe_fail()
        return DuplicateCheckResult(is_duplicate=False)

    async def estimate_cost(self, user_id, task_type):
        self.calls.append(("estimate_cost", user_id, task_type))
        return 0.04

    async def get_activity_logs(self, user_id, limit=50):
        self.calls.append(("activity", user_id, limit))
        return [ActivityLogEntry(user_id=user_id, action_type="suggest_collections")]

    async def backfill_catalog_embeddings(self, user_id, batch_size=None):
        self.calls.append(("catalog", user_id, batch_size))
        return EmbeddingJobResult(processed=2, generated=2)

    async def backfill_library_embeddings(self, user_id, batch_size=None):
        self.calls.append(("library", user_id, batch_size))
        return EmbeddingJobResult()

    async def similar_games(self, user_id, game_id, limit=10):
        self.calls.append(("similar_games", user_id, game_id, limit))
        return [SimilarGame(game_id="g2", name="Farm Story", similarity=0.8)]

    async def similar_collections(self, user_id, collection_id, limit=10):
        self.calls.append(("similar_collections", user_id, collection_id, limit))
        return [SimilarCollection(id="c2", name="Cozy Nights", similarity=0.75)]


def _client(service: StubService) -> TestClient:
    app = FastAPI()
    register_routes(app)
    app.state.curation_service = service
    return TestClient(app)


def test_suggest_collections_route() -> None:
    service = StubService()
    response = _client(service).post(
        "/api/ai/collections/suggest", json={"theme": "rainy day"}, headers={"X-User-Id": "u1"}
    )

    assert response.status_code == 200
    assert response.json()["collections"][0]["game_ids"] == ["g1"]
    assert service.calls == [("suggest_collections", "u1", "rainy day")]


def test_user_header_is_required() -> None:
    response = _client(StubService()).post("/api/ai/collections/suggest", json={})

    assert response.status_code == 422


def test_errors_map_to_status_codes() -> None:
    cases = [
        (ConfigurationError("No active AI provider configured"), 400),
        (NotFoundError("No games in library to analyze"), 404),
        (ProviderError("boom", status_code=500), 502),
        (TruncatedResponseError(8_000), 502),
    ]
    for error, status in cases:
        response = _client(StubService(error)).post(
            "/api/ai/collections/suggest", headers={"X-User-Id": "u1"}
        )
        assert response.status_code == status
        assert response.json()["detail"] == str(error)


def test_duplicate_check_accepts_camel_case_threshold() -> None:
    service = StubService()
    response = _client(service).post(
        "/api/ai/collections/check-duplicate",
        json={"name": "Cozy", "minSimilarity": 0.9},
        headers={"X-User-Id": "u1"},
    )

    assert response.status_code == 200
    assert response.json() == {"is_duplicate": False, "similar_collections": []}
    assert service.calls == [("check_duplicate", "u1", "Cozy", 0.9)]


def test_estimate_activity_and_backfill_routes() -> None:
    service = StubService()
    client = _client(service)
    headers = {"X-User-Id": "u1"}

    estimate = client.get("/api/ai/estimate", params={"taskType": "generate_cover_image"}, headers=headers)
    bad_task = client.get("/api/ai/estimate", params={"taskType": "write_poem"}, headers=headers)
    activity = client.get("/api/ai/activity", params={"limit": 5}, headers=headers)
    backfill = client.post(
        "/api/ai/embeddings/backfill", params={"scope": "catalog", "batchSize": 10}, headers=headers
    )

    assert estimate.json() == {"taskType": "generate_cover_image", "estimatedCostUsd": 0.04}
    assert bad_task.status_code == 422
    assert activity.json()["logs"][0]["action_type"] == "suggest_collections"
    assert backfill.json()["processed"] == 2
    assert ("catalog", "u1", 10) in service.calls
    assert ("activity", "u1", 5) in service.calls


def test_similarity_routes() -> None:
    service = StubService()
    client = _client(service)
    headers = {"X-User-Id": "u1"}

    games = client.get("/api/ai/games/g1/similar", params={"limit": 3}, headers=headers)
    collections = client.get("/api/ai/collections/c1/similar", headers=headers)
    too_many = client.get("/api/ai/games/g1/similar", params={"limit": 101}, headers=headers)

    assert games.json()["games"][0]["game_id"] == "g2"
    assert collections.json()["collections"][0]["similarity"] == 0.75
    assert too_many.status_code == 422
    assert service.calls == [
        ("similar_games", "u1", "g1", 3),
        ("similar_collections", "u1", "c1", 10),
    ]


def test_healthcheck() -> None:
    assert _client(StubService()).get("/healthz").json() == {"status": "ok"}
