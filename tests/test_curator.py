"""End-to-end curation service tests against an on-disk SQLite database."""

from __future__ import annotations

import asyncio
import json

import pytest
from fakes import (
    FakeCache,
    FakeGenerator,
    FakeRegistry,
    completion,
    open_repository,
    seed_collection,
    seed_games,
    seed_settings,
)

from app.config import Settings
from app.errors import ConfigurationError, NotFoundError, TruncatedResponseError
from app.services.curator import CurationService

LIBRARY = [
    {"id": "g1", "name": "Space Horror", "genres": ["Horror"], "status": "playing"},
    {"id": "g2", "name": "Farm Story", "genres": ["Cozy"], "status": "backlog"},
    {"id": "g3", "name": "Neon Racer", "genres": ["Racing"], "status": "finished", "rating": 9},
]


def _run(tmp_path, registry, scenario, *, games=LIBRARY, settings_for=("u1",), **overrides):
    async def wrapper():
        database, repository = await open_repository(tmp_path)
        try:
            if games:
                await seed_games(database, "u1", games)
            for user_id in settings_for:
                await seed_settings(database, user_id, **overrides)
            service = CurationService(
                Settings(_env_file=None), repository, FakeCache(), registry
            )
            return await scenario(service, database, repository)
        finally:
            await database.dispose()

    return asyncio.run(wrapper())


def test_suggest_collections_maps_names_and_logs(tmp_path) -> None:
    body = {
        "collections": [
            {
                "name": "Late Night Frights",
                "description": "Games to play with the lights off",
                "gameNames": ["Space Horror", "Not In Library", "Space Horror"],
                "reasoning": "You like horror",
            }
        ]
    }
    generator = FakeGenerator([completion(json.dumps(body))], models=["gpt-4o-mini"])
    registry = FakeRegistry(generator)

    async def scenario(service, database, repository):
        result = await service.suggest_collections("u1")
        logs = await service.get_activity_logs("u1")
        missing = await repository.games_missing_embeddings(user_id="u1")
        return result, logs, missing

    result, logs, missing = _run(tmp_path, registry, scenario)

    (collection,) = result.collections
    assert collection.name == "Late Night Frights"
    assert collection.game_ids == ["g1"]
    assert result.cost == pytest.approx(0.00045)

    (call,) = generator.text_calls
    assert call["model"] == "gpt-4o-mini"
    assert call["max_tokens"] == 8_000
    assert call["temperature"] == 0.7
    assert "Space Horror" in call["user_prompt"]

    (entry,) = logs
    assert entry.action_type == "suggest_collections"
    assert entry.provider == "openai"
    assert entry.success is True
    assert entry.usage.total_tokens == 1_500
    # The library was embedded as part of the request.
    assert missing == []
    assert len(registry.embeddings.batch_calls) == 1


def test_truncated_response_is_logged_as_failure(tmp_path) -> None:
    generator = FakeGenerator(
        [completion('{"collections": [', finish_reason="length")], models=["gpt-5-nano"]
    )

    async def scenario(service, database, repository):
        with pytest.raises(TruncatedResponseError):
            await service.suggest_collections("u1", "horror")
        return await service.get_activity_logs("u1")

    (entry,) = _run(tmp_path, FakeRegistry(generator), scenario)

    assert entry.success is False
    assert entry.model == "gpt-5-nano"
    assert entry.user_input == "horror"
    assert "truncated" in entry.error_message


def test_missing_configuration_fails_before_any_call(tmp_path) -> None:
    generator = FakeGenerator()

    async def scenario(service, database, repository):
        with pytest.raises(ConfigurationError):
            await service.suggest_collections("u1")
        with pytest.raises(ConfigurationError):
            await service.suggest_next_game("u2")
        return await service.get_activity_logs("u1")

    logs = _run(tmp_path, FakeRegistry(generator), scenario, active=False)

    assert logs == []
    assert generator.text_calls == []


def test_empty_library_is_not_found(tmp_path) -> None:
    generator = FakeGenerator()

    async def scenario(service, database, repository):
        with pytest.raises(NotFoundError):
            await service.suggest_collections("u1", "cozy")
        return await service.get_activity_logs("u1")

    (entry,) = _run(tmp_path, FakeRegistry(generator), scenario, games=())

    assert generator.text_calls == []
    assert entry.action_type == "suggest_collections"
    assert entry.success is False
    assert entry.provider is None
    assert entry.model is None
    assert entry.user_input == "cozy"
    assert "No games in library" in entry.error_message


def test_suggest_next_game_matches_library_title(tmp_path) -> None:
    body = {"gameName": "Farm Story", "reasoning": "Something calm", "estimatedHours": 12}
    generator = FakeGenerator([completion(f"Sure!\n{json.dumps(body)}")])

    async def scenario(service, database, repository):
        return await service.suggest_next_game("u1", "something relaxing")

    result = _run(tmp_path, FakeRegistry(generator), scenario)

    assert result.suggestion.game_name == "Farm Story"
    assert result.suggestion.game_id == "g2"
    assert result.suggestion.estimated_hours == 12
    (call,) = generator.text_calls
    assert call["max_tokens"] == 2_000
    assert "something relaxing" in call["user_prompt"]


def test_cover_returns_data_url_and_requires_ownership(tmp_path) -> None:
    generator = FakeGenerator()

    async def scenario(service, database, repository):
        await seed_collection(database, "u1", "c1", "Cozy Nights")
        result = await service.generate_collection_cover("u1", "Cozy Nights", None, "c1")
        with pytest.raises(NotFoundError):
            await service.generate_collection_cover("u1", "Other", None, "missing")
        logs = await service.get_activity_logs("u1")
        return result, logs

    result, logs = _run(tmp_path, FakeRegistry(generator), scenario)

    assert result.image_url == "data:image/png;base64,cG5nLWJ5dGVz"
    assert result.cost == pytest.approx(0.04)
    assert generator.image_calls[0]["model"] == "dall-e-3"
    assert sorted(
        (entry.collection_id, entry.success, entry.model) for entry in logs
    ) == [("c1", True, "dall-e-3"), ("missing", False, None)]
    assert {entry.action_type for entry in logs} == {"generate_cover_image"}
    assert len(generator.image_calls) == 1


def test_estimate_cost(tmp_path) -> None:
    registry = FakeRegistry(FakeGenerator())

    async def scenario(service, database, repository):
        collections = await service.estimate_cost("u1", "suggest_collections")
        next_game = await service.estimate_cost("u1", "suggest_next_game")
        cover = await service.estimate_cost("u1", "generate_cover_image")
        unknown_user = await service.estimate_cost("nobody", "suggest_collections")
        with pytest.raises(ValueError):
            await service.estimate_cost("u1", "write_poem")
        return collections, next_game, cover, unknown_user

    collections, next_game, cover, unknown_user = _run(tmp_path, registry, scenario)

    assert collections == pytest.approx((150 * 0.15 + 800 * 0.6) / 1_000_000)
    assert next_game == pytest.approx((90 * 0.15 + 300 * 0.6) / 1_000_000)
    assert cover == pytest.approx(0.04)
    assert unknown_user == 0.0


def test_duplicate_check_against_indexed_collection(tmp_path) -> None:
    registry = FakeRegistry(FakeGenerator())

    async def scenario(service, database, repository):
        await seed_collection(database, "u1", "c1", "Space Horror", "space horror")
        await service.index_collection("u1", "c1")
        result = await service.check_duplicate_collection("u1", "Space Horror", "space horror")
        logs = await service.get_activity_logs("u1")
        return result, logs

    result, logs = _run(tmp_path, registry, scenario)

    assert result.is_duplicate is True
    assert result.similar_collections[0].id == "c1"
    (entry,) = logs
    assert (entry.action_type, entry.provider, entry.model) == (
        "check_duplicate",
        "openai",
        "text-embedding-3-small",
    )


def test_backfill_library_embeddings(tmp_path) -> None:
    registry = FakeRegistry(FakeGenerator())

    async def scenario(service, database, repository):
        first = await service.backfill_library_embeddings("u1", batch_size=2)
        second = await service.backfill_library_embeddings("u1", batch_size=2)
        third = await service.backfill_library_embeddings("u1", batch_size=2)
        return first, second, third

    first, second, third = _run(tmp_path, registry, scenario)

    assert (first.processed, first.generated) == (2, 2)
    assert (second.processed, second.generated) == (1, 1)
    assert third.processed == 0
