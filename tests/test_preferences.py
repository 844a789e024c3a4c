"""Preference learning tests."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from fakes import FakeCache, FakeEmbeddingProvider, open_repository

from app.config import Settings
from app.models import GameSummary
from app.services.embeddings import EmbeddingService
from app.services.preferences import PreferenceLearner, analyze_preferences


def _game(game_id: str, **fields) -> GameSummary:
    fields.setdefault("name", f"Game {game_id}")
    return GameSummary(id=game_id, **fields)


def test_genre_affinity_uses_highly_rated_games() -> None:
    library = [
        _game("1", genres=["RPG", "Action"], rating=10),
        _game("2", genres=["RPG"], rating=9),
        _game("3", genres=["RPG", "Action"], rating=8),
        _game("4", genres=["Action"], rating=8),
        _game("5", genres=["Puzzle"], rating=9),
        _game("6", genres=["Puzzle"], rating=7),
        _game("7", genres=["Puzzle"], rating=9),
    ]

    signals = {signal.preference_type: signal for signal in analyze_preferences(library)}

    assert set(signals) == {"genre_rpg", "genre_action"}
    assert signals["genre_rpg"].weight == pytest.approx(0.9)
    assert signals["genre_action"].weight == pytest.approx(26 / 30)
    assert [game.id for game in signals["genre_rpg"].games] == ["1", "2", "3"]


def test_genre_affinity_keeps_top_three_and_five_games() -> None:
    library = []
    for genre, rating in [("A", 8), ("B", 10), ("C", 9), ("D", 9)]:
        library.extend(
            _game(f"{genre}{n}", genres=[genre], rating=rating) for n in range(6)
        )

    genre_signals = [
        signal for signal in analyze_preferences(library) if signal.preference_type.startswith("genre_")
    ]

    assert [signal.preference_type for signal in genre_signals] == ["genre_b", "genre_c", "genre_d"]
    assert all(len(signal.games) == 5 for signal in genre_signals)


def test_fixed_weight_signals_and_gates() -> None:
    library = [
        _game("1", playtime_minutes=5_000, favorite=True, status="completed"),
        _game("2", playtime_minutes=1_200, favorite=True, status="completed"),
        _game("3", playtime_minutes=2_400, favorite=True, status="completed"),
        _game("4", playtime_minutes=1_199),
    ]

    signals = {signal.preference_type: signal for signal in analyze_preferences(library)}

    assert signals["high_playtime"].weight == 0.9
    assert [game.id for game in signals["high_playtime"].games] == ["1", "3", "2"]
    assert signals["favorites"].weight == 1.0
    assert signals["completed_themes"].weight == 0.8

    two_favorites = [_game("1", favorite=True), _game("2", favorite=True)]
    assert analyze_preferences(two_favorites) == []


def test_franchise_affinity_weights() -> None:
    library = [
        _game("1", series_name="Zelda", rating=10),
        _game("2", series_name="Zelda", rating=8),
        _game("3", series_name="Zelda"),
        _game("4", series_name="Mario"),
        _game("5", series_name="Mario"),
        _game("6", series_name="Mario"),
        _game("7", series_name="Mario"),
        _game("8", series_name="Metroid"),
        _game("9", series_name="Metroid"),
    ]

    signals = [
        signal for signal in analyze_preferences(library) if signal.preference_type.startswith("franchise_")
    ]

    assert [signal.preference_type for signal in signals] == ["franchise_mario", "franchise_zelda"]
    assert signals[0].weight == 0.7
    assert signals[1].weight == pytest.approx(0.9)


def test_signal_text_lists_names_and_genres() -> None:
    library = [_game(str(n), name=f"Title {n}", genres=["Sim", "Cozy"], favorite=True) for n in range(3)]

    (signal,) = analyze_preferences(library)

    assert signal.render() == "Title 0 (Sim, Cozy)\nTitle 1 (Sim, Cozy)\nTitle 2 (Sim, Cozy)"


def test_staleness_gate_and_generation(tmp_path) -> None:
    provider = FakeEmbeddingProvider()
    library = [_game(str(n), genres=["Cozy"], favorite=True) for n in range(3)]

    async def scenario():
        database, repository = await open_repository(tmp_path)
        try:
            settings = Settings(_env_file=None)
            learner = PreferenceLearner(
                settings, repository, EmbeddingService(settings, repository, FakeCache())
            )
            before = await learner.should_regenerate("u1")
            await learner.generate(provider, "u1", library)
            fresh = await learner.should_regenerate("u1")
            latest = await repository.latest_preference_update("u1")
            week_old = await learner.should_regenerate("u1", now=latest + timedelta(days=7))
            stale = await learner.should_regenerate(
                "u1", now=latest + timedelta(days=7, seconds=1)
            )
            stored = await repository.list_preferences("u1")
            # Signals that stop qualifying keep their previous record.
            await learner.generate(provider, "u1", library[:2])
            kept = await repository.list_preferences("u1")
            return before, fresh, week_old, stale, stored, kept
        finally:
            await database.dispose()

    before, fresh, week_old, stale, stored, kept = asyncio.run(scenario())

    assert before is True
    assert fresh is False
    assert week_old is False
    assert stale is True
    assert [(pref.preference_type, pref.confidence, pref.sample_size) for pref in stored] == [
        ("favorites", 1.0, 3)
    ]
    assert [pref.preference_type for pref in kept] == ["favorites"]
