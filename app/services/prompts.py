"""Prompt templates for the generation provider."""

from __future__ import annotations

from textwrap import dedent
from typing import Sequence

from ..models import GameSummary, PreferenceRecord

CURATOR_SYSTEM_PROMPT = (
    "You are an expert video game curator with deep knowledge of gaming history, "
    "genres, and player preferences.\nProvide personalized, insightful "
    "recommendations based on play history, completion status, and user "
    "preferences.\nBe concise and focus on actionable suggestions. Always respond "
    "in valid JSON format."
)

ORGANIZER_SYSTEM_PROMPT = (
    "You are a game library organizer specializing in identifying patterns and "
    "themes across game collections.\nSuggest cohesive, themed collections that "
    "make sense for a player's library. Focus on meaningful connections between "
    "games (series, genres, gameplay style, themes, developers). Always respond "
    "in valid JSON format."
)


def _library_line(game: GameSummary) -> str:
    line = f"{game.describe()} - {game.status}"
    if game.rating:
        line += f" [{game.rating}/10]"
    if game.series_name:
        line += f" [Series: {game.series_name}]"
    return line


def _preference_label(preference_type: str) -> str:
    return preference_type.replace("_", " ")


def build_collection_suggestions_prompt(
    sample: Sequence[GameSummary],
    *,
    total_games: int,
    theme: str | None = None,
    preferences: Sequence[PreferenceRecord] = (),
) -> str:
    library_text = "\n".join(_library_line(game) for game in sample)
    sections = [
        "Based on this game library, suggest 3-5 themed collections that would be "
        "meaningful for this player.",
        f"Library ({total_games} games total, showing {len(sample)}):\n{library_text}",
    ]
    if preferences:
        lines = "\n".join(
            f"- {_preference_label(pref.preference_type)} "
            f"(confidence {pref.confidence:.2f}, {pref.sample_size} games)"
            for pref in preferences
        )
        sections.append(f"Learned player preferences:\n{lines}")
    if theme:
        sections.append(f"Requested theme: {theme}")
    sections.append(
        dedent(
            """\
            Return JSON with this exact structure:
            {
              "collections": [
                {
                  "name": "Collection Name",
                  "description": "Brief description of the theme (1-2 sentences)",
                  "gameNames": ["Exact Game Title 1", "Exact Game Title 2"],
                  "reasoning": "Why these games work together as a collection"
                }
              ]
            }

            Guidelines:
            - Focus on: game series, genres, gameplay styles, completion status, themes, developers
            - Collection names should be creative and descriptive
            - Each collection should have 3-15 games
            - Use exact game titles from the library
            - Avoid generic collections (e.g., "All RPGs") - be more specific
            - Consider the player's preferences based on ratings and playtime"""
        )
    )
    if theme:
        sections[-1] += "\n- Every collection must fit the requested theme"
    return "\n\n".join(sections)


def build_next_game_prompt(
    sample: Sequence[GameSummary],
    library: Sequence[GameSummary],
    *,
    user_input: str | None = None,
) -> str:
    """Build the next-game prompt.

    Play history comes from the whole library; candidates come from ``sample``.
    """

    recent = [game for game in library if game.playtime_hours][:10]
    playing = [game for game in sample if game.status == "playing"]
    backlog = [game for game in sample if game.status == "backlog"][:50]

    recent_text = "\n".join(
        f"{_library_line(game)} - {game.playtime_hours}h played" for game in recent
    )
    playing_text = "\n".join(
        f"{game.describe()} - {game.completion_percentage or 0:g}% complete"
        for game in playing
    )
    backlog_text = "\n".join(
        game.describe()
        + (f" [Series: {game.series_name}]" if game.series_name else "")
        for game in backlog
    )
    request = f"\n\nUser's specific request: {user_input}" if user_input else ""
    request_hint = "user request, " if user_input else ""

    return (
        "Suggest the next game this player should play from their library.\n\n"
        f"Recently Played ({'with playtime' if recent else 'none'}):\n"
        f"{recent_text or 'No recent playtime data'}\n\n"
        f"Currently Playing ({len(playing) if playing else 'none'}):\n"
        f"{playing_text or 'No games currently in progress'}\n\n"
        f"Backlog ({len(backlog)} games, showing up to 50):\n"
        f"{backlog_text or 'No games in backlog'}{request}\n\n"
        "Return JSON with this exact structure:\n"
        "{\n"
        '  "gameName": "Exact Game Title",\n'
        '  "reasoning": "Why this game is recommended next (consider: play history, '
        "genres enjoyed, completion patterns, variety, "
        f'{request_hint}unfinished series)",\n'
        '  "estimatedHours": 15\n'
        "}\n\n"
        "Guidelines:\n"
        "- Recommend from backlog or currently playing games\n"
        "- Consider play patterns, favorite genres (based on ratings/playtime), and variety\n"
        "- If user specified a preference, prioritize that\n"
        "- Provide thoughtful reasoning\n"
        "- Use exact game title from library\n"
        "- Estimated hours should be realistic (can be null if unknown)"
    )


def build_cover_image_prompt(name: str, description: str | None) -> str:
    return (
        f'Create a cover image for a video game collection titled "{name}".\n\n'
        f"Description: {description or 'No description'}\n\n"
        "The image should:\n"
        "- Visually represent the theme of this game collection\n"
        "- Be suitable as a collection cover (portrait orientation)\n"
        "- Have a cohesive color scheme that fits the theme\n"
        "- Be visually appealing and professional\n"
        "- Not include text (the collection name will be overlaid separately)"
    )
