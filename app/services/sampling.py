"""Select a prompt-sized subset of a library."""

from __future__ import annotations

import logging
import math
from typing import Iterable, Literal, Sequence

from ..errors import ProviderError
from ..models import GameSummary
from .providers import EmbeddingProvider
from .vector_search import VectorSearch, is_sufficient

logger = logging.getLogger(__name__)

SampleScope = Literal["collections", "next_game"]

PLAYING_SHARE = 0.2
HIGH_RATED_SHARE = 0.2
DIVERSE_SHARE = 0.4
BACKLOG_SHARE = 0.2

MIN_SEMANTIC_RESULTS: dict[str, int] = {"collections": 10, "next_game": 5}


def quota_sample(library: Sequence[GameSummary], limit: int) -> list[GameSummary]:
    """Return a deterministic, quota-balanced subset of ``library``.

    Quotas are taken in order (playing, high rated, genre round-robin,
    backlog) and any open slots are filled from the remaining games in
    library order.
    """

    if limit <= 0:
        return []

    selected: list[GameSummary] = []
    used: set[str] = set()

    def take(candidates: Sequence[GameSummary], quota: int) -> None:
        for game in candidates:
            if quota <= 0 or len(selected) >= limit:
                return
            if game.id in used:
                continue
            selected.append(game)
            used.add(game.id)
            quota -= 1

    take(
        [game for game in library if game.status == "playing"],
        math.floor(limit * PLAYING_SHARE),
    )
    take(
        [game for game in library if (game.rating or 0) >= 8],
        math.floor(limit * HIGH_RATED_SHARE),
    )

    buckets: dict[str, list[GameSummary]] = {}
    for game in library:
        if game.id in used:
            continue
        for genre in game.genres:
            buckets.setdefault(genre, []).append(game)
    quota = math.floor(limit * DIVERSE_SHARE)
    cursors = {genre: 0 for genre in buckets}
    active = list(buckets)
    while quota > 0 and active and len(selected) < limit:
        for genre in list(active):
            if quota <= 0 or len(selected) >= limit:
                break
            bucket = buckets[genre]
            position = cursors[genre]
            while position < len(bucket) and bucket[position].id in used:
                position += 1
            if position >= len(bucket):
                active.remove(genre)
                continue
            game = bucket[position]
            cursors[genre] = position + 1
            selected.append(game)
            used.add(game.id)
            quota -= 1

    take(
        [game for game in library if game.status == "backlog"],
        math.floor(limit * BACKLOG_SHARE),
    )
    take(library, limit - len(selected))
    return selected


def scope_library(
    library: Sequence[GameSummary], scope: SampleScope
) -> list[GameSummary]:
    """Return the part of ``library`` a task may draw from."""

    if scope == "next_game":
        return [game for game in library if game.status in ("backlog", "playing")]
    return list(library)


class SamplingEngine:
    """Semantic-first sampler that falls back to quota sampling."""

    def __init__(self, search: VectorSearch):
        self._search = search

    async def smart_sample(
        self,
        provider: EmbeddingProvider | None,
        user_id: str,
        library: Sequence[GameSummary],
        limit: int,
        *,
        query: str | None = None,
        scope: SampleScope = "collections",
    ) -> list[GameSummary]:
        """Return at most ``limit`` games relevant to ``query``.

        Semantic hits are used only when at least the scope's minimum pass
        the similarity threshold; otherwise the quota sampler runs on the
        scoped library.
        """

        pool = scope_library(library, scope)
        query = (query or "").strip()
        if query and provider is not None:
            try:
                hits = await self._search.search(
                    provider, query, user_id, limit=max(limit, len(pool))
                )
            except ProviderError as exc:
                logger.warning(
                    "Semantic sampling failed for user %s, using quotas: %s",
                    user_id,
                    exc,
                )
            else:
                by_id = {game.id: game for game in pool}
                ranked = _dedupe(
                    by_id[hit.game_id] for hit in hits if hit.game_id in by_id
                )[:limit]
                if is_sufficient(ranked, MIN_SEMANTIC_RESULTS[scope]):
                    return ranked
                logger.info(
                    "Only %s semantic matches for user %s, using quotas",
                    len(ranked),
                    user_id,
                )
        return quota_sample(pool, limit)


def _dedupe(games: Iterable[GameSummary]) -> list[GameSummary]:
    seen: set[str] = set()
    unique: list[GameSummary] = []
    for game in games:
        if game.id not in seen:
            seen.add(game.id)
            unique.append(game)
    return unique
