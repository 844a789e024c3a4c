"""Datastore access for embeddings, preferences, settings and activity logs."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

from pydantic import ValidationError
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import (
    ActivityLogRecord,
    AiSettingsRecord,
    Collection,
    CollectionEmbedding,
    Game,
    GameEmbedding,
    LibraryEntry,
    ProviderCredentialRecord,
    UserPreferenceEmbedding,
)
from ..models import (
    ActivityLogEntry,
    AiSettings,
    CollectionRef,
    GameEmbeddingInput,
    GameSummary,
    PreferenceRecord,
    ProviderCredentials,
    SimilarCollection,
    SimilarGame,
    TokenUsage,
)
from ..utils import cosine_similarity, utcnow

logger = logging.getLogger(__name__)


def _rank(
    query: Sequence[float], rows: Sequence[tuple[Any, Sequence[float]]]
) -> list[tuple[Any, float]]:
    """Score ``rows`` against ``query``, skipping vectors of another dimension."""

    scored: list[tuple[Any, float]] = []
    for item, vector in rows:
        if not vector or len(vector) != len(query):
            continue
        # Rounded so identical vectors score exactly 1.0.
        scored.append((item, round(cosine_similarity(query, vector), 10)))
    return scored


class CurationRepository:
    """Queries backing the curation services, always scoped by user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # -- settings -------------------------------------------------------

    async def get_ai_settings(self, user_id: str) -> AiSettings | None:
        async with self._session_factory() as session:
            record = await session.get(AiSettingsRecord, user_id)
        if record is None:
            return None
        return AiSettings(
            user_id=record.user_id,
            model=record.model,
            image_model=record.image_model,
            temperature=record.temperature,
            max_tokens=record.max_tokens,
            collection_suggestions_model=record.collection_suggestions_model,
            next_game_suggestions_model=record.next_game_suggestions_model,
            cover_generation_model=record.cover_generation_model,
            enable_smart_routing=record.enable_smart_routing,
        )

    async def get_provider_credentials(
        self, user_id: str, provider: str
    ) -> ProviderCredentials | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProviderCredentialRecord).where(
                    ProviderCredentialRecord.user_id == user_id,
                    ProviderCredentialRecord.provider == provider,
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            return None
        try:
            return ProviderCredentials(
                provider=record.provider,
                api_key=record.api_key,
                base_url=record.base_url,
                is_active=record.is_active,
            )
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid %s credentials for user %s: %s", provider, user_id, exc
            )
            return None

    # -- library --------------------------------------------------------

    async def fetch_library(self, user_id: str) -> list[GameSummary]:
        """Return the user's library, playing first, then by playtime."""

        band = case(
            (LibraryEntry.status == "playing", 1),
            (LibraryEntry.playtime_minutes.is_not(None), 2),
            else_=3,
        )
        statement = (
            select(LibraryEntry, Game)
            .join(Game, Game.id == LibraryEntry.game_id)
            .where(LibraryEntry.user_id == user_id)
            .order_by(
                band,
                func.coalesce(LibraryEntry.playtime_minutes, -1).desc(),
                Game.name,
                Game.id,
            )
        )
        async with self._session_factory() as session:
            rows = (await session.execute(statement)).all()

        return [
            GameSummary(
                id=game.id,
                name=game.name,
                genres=list(game.genres or []),
                status=entry.status or "backlog",
                rating=entry.rating,
                playtime_minutes=entry.playtime_minutes,
                completion_percentage=entry.completion_percentage,
                series_name=game.series_name,
                release_year=game.release_year,
                favorite=bool(entry.is_favorite),
            )
            for entry, game in rows
        ]

    async def games_missing_embeddings(
        self, *, user_id: str | None = None, limit: int = 100
    ) -> list[GameEmbeddingInput]:
        """Return games without an embedding, optionally limited to one library."""

        statement = (
            select(Game)
            .outerjoin(GameEmbedding, GameEmbedding.game_id == Game.id)
            .where(GameEmbedding.id.is_(None))
            .order_by(Game.id)
            .limit(limit)
        )
        if user_id is not None:
            statement = statement.join(
                LibraryEntry, LibraryEntry.game_id == Game.id
            ).where(LibraryEntry.user_id == user_id)
        async with self._session_factory() as session:
            games = (await session.execute(statement)).scalars().all()
        return [
            GameEmbeddingInput(
                game_id=game.id,
                name=game.name,
                genres=list(game.genres or []),
                description=game.description,
            )
            for game in games
        ]

    async def user_has_embeddings(self, user_id: str) -> bool:
        statement = (
            select(func.count())
            .select_from(LibraryEntry)
            .join(GameEmbedding, GameEmbedding.game_id == LibraryEntry.game_id)
            .where(LibraryEntry.user_id == user_id)
        )
        async with self._session_factory() as session:
            count = (await session.execute(statement)).scalar_one()
        return count > 0

    # -- embeddings -----------------------------------------------------

    async def upsert_game_embedding(
        self, game_id: str, vector: Sequence[float], text_hash: str, model: str
    ) -> None:
        async with self._session_factory() as session:
            await self._upsert(
                session,
                GameEmbedding,
                {"game_id": game_id},
                {
                    "embedding": list(vector),
                    "text_hash": text_hash,
                    "model": model,
                    "updated_at": utcnow(),
                },
            )

    async def upsert_collection_embedding(
        self, collection_id: str, vector: Sequence[float], text_hash: str, model: str
    ) -> None:
        async with self._session_factory() as session:
            await self._upsert(
                session,
                CollectionEmbedding,
                {"collection_id": collection_id},
                {
                    "embedding": list(vector),
                    "text_hash": text_hash,
                    "model": model,
                    "updated_at": utcnow(),
                },
            )

    async def similar_games(
        self,
        user_id: str,
        query: Sequence[float],
        *,
        limit: int,
        min_similarity: float,
        exclude: Sequence[str] = (),
    ) -> list[SimilarGame]:
        """Rank the user's own embedded games against ``query``."""

        statement = (
            select(Game, GameEmbedding.embedding)
            .join(GameEmbedding, GameEmbedding.game_id == Game.id)
            .join(LibraryEntry, LibraryEntry.game_id == Game.id)
            .where(LibraryEntry.user_id == user_id)
        )
        if exclude:
            statement = statement.where(Game.id.not_in(list(exclude)))
        async with self._session_factory() as session:
            rows = (await session.execute(statement)).all()

        scored = [
            (game, similarity)
            for game, similarity in _rank(query, [(game, vector) for game, vector in rows])
            if similarity >= min_similarity
        ]
        scored.sort(key=lambda pair: (-pair[1], pair[0].id))
        return [
            SimilarGame(
                game_id=game.id,
                name=game.name,
                genres=list(game.genres or []),
                similarity=similarity,
            )
            for game, similarity in scored[:limit]
        ]

    async def owned_game_embedding(
        self, user_id: str, game_id: str
    ) -> list[float] | None:
        """Return the stored vector of ``game_id`` if it is in the user's library."""

        statement = (
            select(GameEmbedding.embedding)
            .join(LibraryEntry, LibraryEntry.game_id == GameEmbedding.game_id)
            .where(LibraryEntry.user_id == user_id, GameEmbedding.game_id == game_id)
        )
        async with self._session_factory() as session:
            return (await session.execute(statement)).scalars().first()

    async def owned_collection_embedding(
        self, user_id: str, collection_id: str
    ) -> list[float] | None:
        statement = (
            select(CollectionEmbedding.embedding)
            .join(Collection, Collection.id == CollectionEmbedding.collection_id)
            .where(Collection.user_id == user_id, Collection.id == collection_id)
        )
        async with self._session_factory() as session:
            return (await session.execute(statement)).scalars().first()

    async def owned_games(
        self, user_id: str, game_ids: Sequence[str], *, limit: int
    ) -> list[SimilarGame]:
        """Point lookup of ``game_ids`` restricted to the user's library, in order."""

        if not game_ids:
            return []
        statement = (
            select(Game)
            .join(LibraryEntry, LibraryEntry.game_id == Game.id)
            .join(GameEmbedding, GameEmbedding.game_id == Game.id)
            .where(LibraryEntry.user_id == user_id, Game.id.in_(list(game_ids)))
        )
        async with self._session_factory() as session:
            games = {game.id: game for game in (await session.execute(statement)).scalars()}
        ordered = [games[game_id] for game_id in game_ids if game_id in games]
        return [
            SimilarGame(game_id=game.id, name=game.name, genres=list(game.genres or []))
            for game in ordered[:limit]
        ]

    async def get_collection(
        self, user_id: str, collection_id: str
    ) -> CollectionRef | None:
        async with self._session_factory() as session:
            record = await session.get(Collection, collection_id)
        if record is None or record.user_id != user_id:
            return None
        return CollectionRef(
            id=record.id,
            user_id=record.user_id,
            name=record.name,
            description=record.description,
        )

    async def similar_collections(
        self,
        user_id: str,
        query: Sequence[float],
        *,
        min_similarity: float,
        limit: int = 5,
        exclude: Sequence[str] = (),
    ) -> list[SimilarCollection]:
        """Compare ``query`` with every collection embedding owned by the user."""

        statement = (
            select(Collection, CollectionEmbedding.embedding)
            .join(CollectionEmbedding, CollectionEmbedding.collection_id == Collection.id)
            .where(Collection.user_id == user_id)
        )
        if exclude:
            statement = statement.where(Collection.id.not_in(list(exclude)))
        async with self._session_factory() as session:
            rows = (await session.execute(statement)).all()

        scored = [
            (collection, similarity)
            for collection, similarity in _rank(query, [(c, v) for c, v in rows])
            if similarity >= min_similarity
        ]
        scored.sort(key=lambda pair: (-pair[1], pair[0].id))
        return [
            SimilarCollection(
                id=collection.id,
                name=collection.name,
                description=collection.description,
                similarity=similarity,
            )
            for collection, similarity in scored[:limit]
        ]

    # -- preferences ----------------------------------------------------

    async def latest_preference_update(self, user_id: str) -> datetime | None:
        statement = select(func.max(UserPreferenceEmbedding.updated_at)).where(
            UserPreferenceEmbedding.user_id == user_id
        )
        async with self._session_factory() as session:
            return (await session.execute(statement)).scalar_one_or_none()

    async def upsert_preference(
        self,
        user_id: str,
        preference_type: str,
        vector: Sequence[float],
        *,
        confidence: float,
        sample_size: int,
    ) -> None:
        async with self._session_factory() as session:
            await self._upsert(
                session,
                UserPreferenceEmbedding,
                {"user_id": user_id, "preference_type": preference_type},
                {
                    "embedding": list(vector),
                    "confidence": confidence,
                    "sample_size": sample_size,
                    "updated_at": utcnow(),
                },
            )

    async def list_preferences(self, user_id: str) -> list[PreferenceRecord]:
        statement = (
            select(UserPreferenceEmbedding)
            .where(UserPreferenceEmbedding.user_id == user_id)
            .order_by(
                UserPreferenceEmbedding.confidence.desc(),
                UserPreferenceEmbedding.preference_type,
            )
        )
        async with self._session_factory() as session:
            records = (await session.execute(statement)).scalars().all()
        return [
            PreferenceRecord(
                preference_type=record.preference_type,
                confidence=record.confidence,
                sample_size=record.sample_size,
                updated_at=record.updated_at,
            )
            for record in records
        ]

    # -- activity -------------------------------------------------------

    async def log_activity(self, entry: ActivityLogEntry) -> None:
        usage = entry.usage
        async with self._session_factory() as session:
            session.add(
                ActivityLogRecord(
                    user_id=entry.user_id,
                    action_type=entry.action_type,
                    provider=entry.provider,
                    model=entry.model,
                    collection_id=entry.collection_id,
                    user_input=entry.user_input,
                    prompt_tokens=usage.prompt_tokens if usage else None,
                    completion_tokens=usage.completion_tokens if usage else None,
                    total_tokens=usage.total_tokens if usage else None,
                    estimated_cost_usd=entry.estimated_cost_usd,
                    duration_ms=entry.duration_ms,
                    success=entry.success,
                    error_message=entry.error_message,
                    created_at=entry.created_at or utcnow(),
                )
            )
            await session.commit()

    async def list_activity(self, user_id: str, limit: int = 50) -> list[ActivityLogEntry]:
        statement = (
            select(ActivityLogRecord)
            .where(ActivityLogRecord.user_id == user_id)
            .order_by(ActivityLogRecord.created_at.desc(), ActivityLogRecord.id.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            records = (await session.execute(statement)).scalars().all()
        return [
            ActivityLogEntry(
                id=record.id,
                user_id=record.user_id,
                action_type=record.action_type,
                provider=record.provider,
                model=record.model,
                collection_id=record.collection_id,
                user_input=record.user_input,
                usage=(
                    TokenUsage(
                        prompt_tokens=record.prompt_tokens or 0,
                        completion_tokens=record.completion_tokens or 0,
                        total_tokens=record.total_tokens or 0,
                    )
                    if record.total_tokens is not None
                    else None
                ),
                estimated_cost_usd=record.estimated_cost_usd,
                duration_ms=record.duration_ms,
                success=record.success,
                error_message=record.error_message,
                created_at=record.created_at,
            )
            for record in records
        ]

    @staticmethod
    async def _upsert(
        session: AsyncSession,
        model: type,
        keys: dict[str, Any],
        values: dict[str, Any],
    ) -> None:
        """Insert or overwrite the row identified by ``keys``; last write wins."""

        result = await session.execute(select(model).filter_by(**keys))
        record = result.scalar_one_or_none()
        if record is None:
            session.add(model(**keys, **values))
        else:
            for name, value in values.items():
                setattr(record, name, value)
        try:
            await session.commit()
        except IntegrityError:
            # A concurrent writer inserted the row first; overwrite it.
            await session.rollback()
            await session.execute(update(model).filter_by(**keys).values(**values))
            await session.commit()
