"""Static price table used for cost estimates."""

from __future__ import annotations

from dataclasses import dataclass

from ..models import TokenUsage


@dataclass(frozen=True)
class ModelPrice:
    """USD per million tokens, or per generated image."""

    input: float = 0.0
    output: float = 0.0
    per_image: float | None = None


MODEL_PRICES: dict[str, ModelPrice] = {
    "gpt-5": ModelPrice(input=1.25, output=10.0),
    "gpt-5-mini": ModelPrice(input=0.25, output=2.0),
    "gpt-5-nano": ModelPrice(input=0.05, output=0.4),
    "gpt-4o-mini": ModelPrice(input=0.15, output=0.6),
    "gpt-4o": ModelPrice(input=5.0, output=15.0),
    "gpt-4-turbo": ModelPrice(input=10.0, output=30.0),
    "grok-2-image-1212": ModelPrice(per_image=0.07),
    "gpt-image-1.5": ModelPrice(per_image=0.04),
    "dall-e-3": ModelPrice(per_image=0.04),
    "dall-e-2": ModelPrice(per_image=0.02),
}

DEFAULT_TEXT_PRICE = ModelPrice(input=1.0, output=2.0)
DEFAULT_IMAGE_PRICE = ModelPrice(per_image=0.04)


def price_for(model: str, *, image: bool = False) -> ModelPrice:
    price = MODEL_PRICES.get(model)
    if price is not None:
        return price
    return DEFAULT_IMAGE_PRICE if image else DEFAULT_TEXT_PRICE


def text_cost(model: str, usage: TokenUsage) -> float:
    price = price_for(model)
    if price.per_image is not None:
        return price.per_image
    return (
        usage.prompt_tokens * price.input + usage.completion_tokens * price.output
    ) / 1_000_000


def image_cost(model: str, images: int = 1) -> float:
    price = price_for(model, image=True)
    return (price.per_image or 0.0) * images
