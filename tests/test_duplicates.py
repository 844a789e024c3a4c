"""Duplicate collection detection tests."""

from __future__ import annotations

import asyncio

from fakes import FakeCache, FakeEmbeddingProvider, open_repository, seed_collection

from app.config import Settings
from app.models import CollectionRef
from app.services.duplicates import DuplicateDetector
from app.services.embeddings import EmbeddingService


async def _index(database, embeddings, provider, user_id, collection_id, name, description=None):
    await seed_collection(database, user_id, collection_id, name, description)
    await embeddings.embed_collection(
        provider,
        CollectionRef(id=collection_id, user_id=user_id, name=name, description=description),
    )


def _run(tmp_path, scenario):
    async def wrapper():
        database, repository = await open_repository(tmp_path)
        try:
            settings = Settings(_env_file=None)
            embeddings = EmbeddingService(settings, repository, FakeCache())
            detector = DuplicateDetector(settings, repository, embeddings)
            return await scenario(database, embeddings, detector)
        finally:
            await database.dispose()

    return asyncio.run(wrapper())


def test_identical_collection_is_duplicate_even_at_threshold_one(tmp_path) -> None:
    provider = FakeEmbeddingProvider()

    async def scenario(database, embeddings, detector):
        await _index(database, embeddings, provider, "u1", "c1", "Space Horror", "space horror")
        await _index(database, embeddings, provider, "u1", "c2", "Cozy Farms", "farm cozy")
        default = await detector.check_duplicate(provider, "u1", "Space Horror", "space horror")
        strict = await detector.check_duplicate(
            provider, "u1", "Space Horror", "space horror", min_similarity=1.0
        )
        return default, strict

    default, strict = _run(tmp_path, scenario)

    assert default.is_duplicate is True
    assert [item.id for item in default.similar_collections] == ["c1"]
    assert default.similar_collections[0].similarity == 1.0
    assert strict.is_duplicate is True


def test_unrelated_collection_is_not_duplicate(tmp_path) -> None:
    provider = FakeEmbeddingProvider()

    async def scenario(database, embeddings, detector):
        await _index(database, embeddings, provider, "u1", "c1", "Space Horror", "space horror")
        return await detector.check_duplicate(provider, "u1", "Racing Nights", "racing")

    result = _run(tmp_path, scenario)

    assert result.is_duplicate is False
    assert result.similar_collections == []


def test_other_users_collections_are_invisible(tmp_path) -> None:
    provider = FakeEmbeddingProvider()

    async def scenario(database, embeddings, detector):
        await _index(database, embeddings, provider, "u2", "c9", "Space Horror", "space horror")
        return await detector.check_duplicate(provider, "u1", "Space Horror", "space horror")

    result = _run(tmp_path, scenario)

    assert result.is_duplicate is False
    assert result.similar_collections == []


def test_similar_collections_are_capped_at_five(tmp_path) -> None:
    provider = FakeEmbeddingProvider()

    async def scenario(database, embeddings, detector):
        for index in range(7):
            await _index(database, embeddings, provider, "u1", f"c{index}", "Puzzle Box", "puzzle")
        return await detector.check_duplicate(provider, "u1", "Puzzle Box", "puzzle")

    result = _run(tmp_path, scenario)

    assert result.is_duplicate is True
    assert [item.id for item in result.similar_collections] == ["c0", "c1", "c2", "c3", "c4"]
