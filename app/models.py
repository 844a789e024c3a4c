"""Pydantic models describing library snapshots and curation payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

GameStatus = Literal["backlog", "playing", "finished", "dropped", "completed"]
TaskType = Literal["suggest_collections", "suggest_next_game", "generate_cover_image"]
ProviderName = Literal["openai", "xai"]

TASK_TYPES: tuple[TaskType, ...] = (
    "suggest_collections",
    "suggest_next_game",
    "generate_cover_image",
)


class GameSummary(BaseModel):
    """Per-request view of one game in a user's library."""

    id: str
    name: str
    genres: list[str] = Field(default_factory=list)
    status: GameStatus = "backlog"
    rating: int | None = Field(default=None, ge=1, le=10)
    playtime_minutes: int | None = Field(default=None, ge=0)
    completion_percentage: float | None = None
    series_name: str | None = None
    release_year: int | None = None
    favorite: bool = False

    @property
    def playtime_hours(self) -> int | None:
        if not self.playtime_minutes:
            return None
        return round(self.playtime_minutes / 60)

    def describe(self) -> str:
        """Return the one-line label used in prompts and preference text."""

        return f"{self.name} ({', '.join(self.genres)})"


class GameEmbeddingInput(BaseModel):
    """Fields of a game that feed its canonical embedding text."""

    game_id: str
    name: str
    genres: list[str] = Field(default_factory=list)
    description: str | None = None


class CollectionRef(BaseModel):
    """Identity and text of a persisted collection."""

    id: str
    user_id: str
    name: str
    description: str | None = None


class SimilarGame(BaseModel):
    """Ranked hit from a library similarity search."""

    game_id: str
    name: str
    genres: list[str] = Field(default_factory=list)
    # ``None`` when the row was rehydrated from a cached id list.
    similarity: float | None = None


class SimilarCollection(BaseModel):
    id: str
    name: str
    description: str | None = None
    similarity: float


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool
    similar_collections: list[SimilarCollection] = Field(default_factory=list)


class EmbeddingJobResult(BaseModel):
    """Counters reported by embedding backfill jobs."""

    processed: int = 0
    cached: int = 0
    generated: int = 0
    errors: int = 0


class PreferenceRecord(BaseModel):
    preference_type: str
    confidence: float = Field(ge=0.0, le=1.0)
    sample_size: int
    updated_at: datetime


class ProviderCredentials(BaseModel):
    """Validated, immutable credentials for one provider account."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName
    api_key: str = Field(min_length=1, repr=False)
    base_url: str | None = None
    is_active: bool = True

    @field_validator("api_key", "base_url", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value


class AiSettings(BaseModel):
    """Immutable per-user routing preferences and provider credentials."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    model: str = "gpt-4o-mini"
    image_model: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2_000, ge=1)
    collection_suggestions_model: str | None = None
    next_game_suggestions_model: str | None = None
    cover_generation_model: str | None = None
    enable_smart_routing: bool = True
    openai: ProviderCredentials | None = None
    xai: ProviderCredentials | None = None

    def override_for(self, task_type: TaskType) -> str | None:
        """Return the user's explicit model choice for ``task_type``."""

        overrides: dict[str, str | None] = {
            "suggest_collections": self.collection_suggestions_model,
            "suggest_next_game": self.next_game_suggestions_model,
            "generate_cover_image": self.cover_generation_model,
        }
        return overrides.get(task_type) or None

    def credentials_for(self, provider: ProviderName) -> ProviderCredentials | None:
        """Return active credentials for ``provider`` if configured."""

        credentials = self.openai if provider == "openai" else self.xai
        if credentials is None or not credentials.is_active:
            return None
        return credentials


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class TextGeneration(BaseModel):
    text: str | None = None
    finish_reason: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)


class ImageGeneration(BaseModel):
    image_bytes: bytes
    media_type: str = "image/png"


class CollectionSuggestion(BaseModel):
    """Collection proposed by the model, with names mapped back to ids."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    game_names: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("gameNames", "game_names", "games"),
    )
    game_ids: list[str] = Field(default_factory=list)
    reasoning: str = ""


class NextGameSuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    game_name: str = Field(validation_alias=AliasChoices("gameName", "game_name", "name"))
    reasoning: str = ""
    estimated_hours: float | None = Field(
        default=None, validation_alias=AliasChoices("estimatedHours", "estimated_hours")
    )
    game_id: str | None = None


class CollectionSuggestionsResult(BaseModel):
    collections: list[CollectionSuggestion]
    cost: float


class NextGameResult(BaseModel):
    suggestion: NextGameSuggestion
    cost: float


class CoverImageResult(BaseModel):
    image_url: str
    cost: float


class ActivityLogEntry(BaseModel):
    """Single row of the AI activity audit trail."""

    id: int | None = None
    user_id: str
    action_type: str
    provider: str | None = None
    model: str | None = None
    collection_id: str | None = None
    user_input: str | None = None
    usage: TokenUsage | None = None
    estimated_cost_usd: float | None = None
    duration_ms: int = 0
    success: bool = True
    error_message: str | None = None
    created_at: datetime | None = None
