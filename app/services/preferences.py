"""Learn weighted preference clusters from a user's library."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from ..config import Settings
from ..models import GameSummary
from ..utils import hash_text, slugify, utcnow
from .embeddings import EmbeddingService
from .providers import EmbeddingProvider
from .repository import CurationRepository

logger = logging.getLogger(__name__)

MIN_SIGNAL_SIZE = 3
HIGH_RATING = 8
HIGH_PLAYTIME_MINUTES = 1_200
TOP_GENRES = 3
TOP_FRANCHISES = 3
GAMES_PER_GENRE = 5
GAMES_PER_SIGNAL = 10


@dataclass(frozen=True)
class PreferenceSignal:
    """One qualifying signal, ready to be embedded."""

    preference_type: str
    games: tuple[GameSummary, ...]
    weight: float

    def render(self) -> str:
        return "\n".join(game.describe() for game in self.games)


def _tag(prefix: str, label: str) -> str:
    slug = slugify(label, separator="_") or hash_text(label)[:12]
    return f"{prefix}_{slug}"


def _average(values: Iterable[int]) -> float | None:
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)


def _group(games: Iterable[GameSummary], keys) -> dict[str, list[GameSummary]]:
    """Group ``games`` by every key ``keys(game)`` yields, keeping first appearance."""

    groups: dict[str, list[GameSummary]] = {}
    for game in games:
        for key in keys(game):
            groups.setdefault(key, []).append(game)
    return groups


def _genre_signals(library: Sequence[GameSummary]) -> list[PreferenceSignal]:
    rated = [game for game in library if (game.rating or 0) >= HIGH_RATING]
    groups = _group(rated, lambda game: dict.fromkeys(game.genres))
    qualifying = [
        (genre, games, _average(game.rating or 0 for game in games) or 0.0)
        for genre, games in groups.items()
        if len(games) >= MIN_SIGNAL_SIZE
    ]
    # sorted() is stable, so equal averages keep first-appearance order.
    qualifying = sorted(qualifying, key=lambda item: -item[2])[:TOP_GENRES]
    return [
        PreferenceSignal(
            preference_type=_tag("genre", genre),
            games=tuple(games[:GAMES_PER_GENRE]),
            weight=average / 10,
        )
        for genre, games, average in qualifying
    ]


def _playtime_signal(library: Sequence[GameSummary]) -> PreferenceSignal | None:
    heavy = [
        game
        for game in library
        if (game.playtime_minutes or 0) >= HIGH_PLAYTIME_MINUTES
    ]
    if len(heavy) < MIN_SIGNAL_SIZE:
        return None
    heavy = sorted(heavy, key=lambda game: -(game.playtime_minutes or 0))
    return PreferenceSignal(
        preference_type="high_playtime",
        games=tuple(heavy[:GAMES_PER_SIGNAL]),
        weight=0.9,
    )


def _franchise_signals(library: Sequence[GameSummary]) -> list[PreferenceSignal]:
    groups = _group(
        library, lambda game: [game.series_name] if game.series_name else []
    )
    qualifying = [
        (series, games) for series, games in groups.items() if len(games) >= MIN_SIGNAL_SIZE
    ]
    qualifying = sorted(qualifying, key=lambda item: -len(item[1]))[:TOP_FRANCHISES]
    signals = []
    for series, games in qualifying:
        average = _average(game.rating for game in games if game.rating is not None)
        signals.append(
            PreferenceSignal(
                preference_type=_tag("franchise", series),
                games=tuple(games[:GAMES_PER_SIGNAL]),
                weight=average / 10 if average is not None else 0.7,
            )
        )
    return signals


def _flag_signal(
    library: Sequence[GameSummary], preference_type: str, weight: float, predicate
) -> PreferenceSignal | None:
    games = [game for game in library if predicate(game)]
    if len(games) < MIN_SIGNAL_SIZE:
        return None
    return PreferenceSignal(
        preference_type=preference_type,
        games=tuple(games[:GAMES_PER_SIGNAL]),
        weight=weight,
    )


def analyze_preferences(library: Sequence[GameSummary]) -> list[PreferenceSignal]:
    """Return every signal whose gate is met by ``library``.

    The analysis is pure: identical libraries always produce identical signals
    in the same order.
    """

    signals: list[PreferenceSignal] = []
    signals.extend(_genre_signals(library))
    playtime = _playtime_signal(library)
    if playtime is not None:
        signals.append(playtime)
    signals.extend(_franchise_signals(library))
    for signal in (
        _flag_signal(library, "favorites", 1.0, lambda game: game.favorite),
        _flag_signal(
            library, "completed_themes", 0.8, lambda game: game.status == "completed"
        ),
    ):
        if signal is not None:
            signals.append(signal)
    return signals


class PreferenceLearner:
    """Keeps a user's preference embeddings up to date."""

    def __init__(
        self,
        settings: Settings,
        repository: CurationRepository,
        embeddings: EmbeddingService,
    ):
        self._settings = settings
        self._repository = repository
        self._embeddings = embeddings

    async def should_regenerate(
        self, user_id: str, *, now: datetime | None = None
    ) -> bool:
        """Return ``True`` when the user has no clusters or the newest is stale."""

        latest = await self._repository.latest_preference_update(user_id)
        if latest is None:
            return True
        age = (now or utcnow()) - latest
        return age > timedelta(days=self._settings.preference_stale_days)

    async def generate(
        self,
        provider: EmbeddingProvider,
        user_id: str,
        library: Sequence[GameSummary],
    ) -> list[PreferenceSignal]:
        """Embed and store every qualifying signal.

        Signals that no longer qualify keep their previous record.
        """

        signals = analyze_preferences(library)
        if not signals:
            logger.info("No preference signals found for user %s", user_id)
            return []

        for signal in signals:
            vector = await self._embeddings.embed_text(provider, signal.render())
            await self._repository.upsert_preference(
                user_id,
                signal.preference_type,
                vector,
                confidence=min(max(signal.weight, 0.0), 1.0),
                sample_size=len(signal.games),
            )
        logger.info(
            "Generated %s preference embeddings for user %s", len(signals), user_id
        )
        return signals
