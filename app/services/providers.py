"""Provider contracts and the per-user multi-provider registry."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import httpx

from ..cache import CacheService
from ..config import Settings
from ..errors import ConfigurationError, ProviderError
from ..models import (
    AiSettings,
    ImageGeneration,
    ProviderCredentials,
    ProviderName,
    TextGeneration,
)
from .openai import OpenAIClient

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    embedding_model: str

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]: ...


class GenerationProvider(Protocol):
    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
    ) -> TextGeneration: ...

    async def generate_image(
        self,
        prompt: str,
        size: str,
        *,
        model: str,
        options: dict[str, Any] | None = None,
    ) -> ImageGeneration: ...

    async def list_models(self) -> list[str]: ...


def provider_for_model(model: str) -> ProviderName:
    """Return the provider that serves ``model``."""

    return "xai" if model.lower().startswith("grok") else "openai"


@dataclass
class ProviderBundle:
    """Providers resolved for one request."""

    embeddings: EmbeddingProvider | None
    generators: dict[str, GenerationProvider] = field(default_factory=dict)
    credentials: dict[str, ProviderCredentials] = field(default_factory=dict)

    def require_embeddings(self) -> EmbeddingProvider:
        if self.embeddings is None:
            raise ConfigurationError(
                "An active OpenAI provider is required for embeddings"
            )
        return self.embeddings

    def generator_for(self, model: str) -> tuple[str, GenerationProvider]:
        provider = provider_for_model(model)
        generator = self.generators.get(provider)
        if generator is None:
            raise ConfigurationError(
                f"Model {model} needs an active {provider} provider configuration"
            )
        return provider, generator


class ProviderRegistry:
    """Builds provider clients from validated user credentials."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        cache: CacheService,
    ):
        self._settings = settings
        self._client = http_client
        self._cache = cache
        self._default_urls: dict[str, str] = {
            "openai": str(settings.openai_api_url),
            "xai": str(settings.xai_api_url),
        }

    def build(self, ai_settings: AiSettings) -> ProviderBundle:
        """Return clients for every active provider of ``ai_settings``."""

        bundle = ProviderBundle(embeddings=None)
        for name in ("openai", "xai"):
            credentials = ai_settings.credentials_for(name)  # type: ignore[arg-type]
            if credentials is None:
                continue
            client = OpenAIClient(
                self._client,
                credentials,
                embedding_model=self._settings.embedding_model,
                base_url=self._default_urls[name],
            )
            bundle.generators[name] = client
            bundle.credentials[name] = credentials
            if name == "openai":
                # xAI has no embeddings endpoint.
                bundle.embeddings = client
        if not bundle.generators:
            raise ConfigurationError("No active AI provider configured")
        return bundle

    async def available_models(self, bundle: ProviderBundle) -> list[str]:
        """Return the union of models visible to every configured provider."""

        names = list(bundle.generators)
        results = await asyncio.gather(
            *(self._models_for(name, bundle) for name in names)
        )
        models: list[str] = []
        for listing in results:
            for model in listing:
                if model not in models:
                    models.append(model)
        return models

    async def _models_for(self, name: str, bundle: ProviderBundle) -> list[str]:
        credentials = bundle.credentials[name]
        key = self._cache.models_key(name, credentials.api_key)
        cached = await self._cache.get(key)
        if isinstance(cached, list):
            return [str(model) for model in cached]
        try:
            models = await bundle.generators[name].list_models()
        except ProviderError as exc:
            # Routing falls back to the user's defaults when discovery fails.
            logger.warning("Model discovery failed for %s: %s", name, exc)
            return []
        await self._cache.set(key, models, self._settings.models_cache_seconds)
        return models
