from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect

from app.database import Database

EXPECTED_TABLES = {
    "games",
    "library_entries",
    "collections",
    "game_embeddings",
    "collection_embeddings",
    "user_preference_embeddings",
    "ai_settings",
    "ai_provider_credentials",
    "ai_activity_logs",
}


def test_create_all_builds_schema_and_is_repeatable(tmp_path) -> None:
    database_path = tmp_path / "curator.db"

    async def build() -> None:
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        try:
            await database.create_all()
            await database.create_all()
        finally:
            await database.dispose()

    asyncio.run(build())

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        settings_columns = {column["name"] for column in inspector.get_columns("ai_settings")}
        entry_columns = {column["name"] for column in inspector.get_columns("library_entries")}
    finally:
        engine.dispose()

    assert EXPECTED_TABLES <= tables
    assert {
        "enable_smart_routing",
        "collection_suggestions_model",
        "next_game_suggestions_model",
        "cover_generation_model",
    } <= settings_columns
    assert "is_favorite" in entry_columns
