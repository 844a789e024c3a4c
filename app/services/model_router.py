"""Per-task model selection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..models import AiSettings, TaskType


@dataclass(frozen=True)
class ModelRoute:
    primary: str
    fallbacks: tuple[str, ...]
    max_tokens: int
    temperature: float | None


@dataclass(frozen=True)
class ModelSelection:
    model: str
    max_tokens: int
    temperature: float | None
    is_reasoning_model: bool


MODEL_ROUTES: dict[str, ModelRoute] = {
    "suggest_collections": ModelRoute(
        primary="gpt-5-nano",
        fallbacks=("gpt-4o-mini", "gpt-5-mini"),
        max_tokens=8_000,
        temperature=None,
    ),
    "suggest_next_game": ModelRoute(
        primary="gpt-4o-mini",
        fallbacks=("gpt-5-nano", "gpt-5-mini"),
        max_tokens=4_000,
        temperature=0.7,
    ),
    "generate_cover_image": ModelRoute(
        primary="grok-2-image-1212",
        fallbacks=("gpt-image-1.5", "dall-e-3"),
        max_tokens=0,
        temperature=None,
    ),
}

DEFAULT_IMAGE_MODEL = "dall-e-3"


def is_reasoning_model(model: str) -> bool:
    """Reasoning families reject a custom temperature."""

    return model.startswith("gpt-5") or "o1" in model or "o3" in model


def _selection(model: str, max_tokens: int, temperature: float | None) -> ModelSelection:
    reasoning = is_reasoning_model(model)
    return ModelSelection(
        model=model,
        max_tokens=max_tokens,
        temperature=None if reasoning else temperature,
        is_reasoning_model=reasoning,
    )


def select_model(
    task_type: TaskType,
    settings: AiSettings,
    available_models: Sequence[str],
) -> ModelSelection:
    """Pick the model and parameters for ``task_type``.

    A per-task override always wins. Otherwise, with smart routing on, the
    route's primary and then its fallbacks are tried against
    ``available_models``. The user's defaults are the last resort.
    """

    route = MODEL_ROUTES[task_type]
    route_temperature = (
        route.temperature if route.temperature is not None else settings.temperature
    )

    override = settings.override_for(task_type)
    if override:
        return _selection(override, route.max_tokens, route_temperature)

    if settings.enable_smart_routing:
        available = set(available_models)
        for candidate in (route.primary, *route.fallbacks):
            if candidate in available:
                return _selection(candidate, route.max_tokens, route_temperature)

    if task_type == "generate_cover_image":
        return _selection(
            settings.image_model or DEFAULT_IMAGE_MODEL,
            route.max_tokens,
            None,
        )
    return _selection(settings.model, settings.max_tokens, settings.temperature)
