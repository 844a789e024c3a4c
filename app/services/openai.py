"""Integration helpers for OpenAI-compatible APIs (OpenAI and xAI).

Both providers expose the same ``/embeddings``, ``/chat/completions``,
``/images/generations`` and ``/models`` endpoints, so a single client bound
to one set of credentials serves either of them.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Sequence

import httpx

from ..errors import ProviderError
from ..models import ImageGeneration, ProviderCredentials, TextGeneration, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "xai": "https://api.x.ai/v1",
}


class OpenAIClient:
    """Client responsible for talking to one OpenAI-compatible account."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        credentials: ProviderCredentials,
        *,
        embedding_model: str = "text-embedding-3-small",
        base_url: str | None = None,
    ):
        self._client = http_client
        self._credentials = credentials
        self._base_url = (
            credentials.base_url
            or base_url
            or DEFAULT_BASE_URLS[credentials.provider]
        ).rstrip("/")
        self.embedding_model = embedding_model

    @property
    def provider(self) -> str:
        return self._credentials.provider

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a single text."""

        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Return embeddings for ``texts`` in input order."""

        if not texts:
            return []
        data = await self._post(
            "/embeddings", {"model": self.embedding_model, "input": list(texts)}
        )
        rows = data.get("data")
        if not isinstance(rows, list) or len(rows) != len(texts):
            raise ProviderError("Embedding response does not match the request size")
        try:
            ordered = sorted(rows, key=lambda row: int(row.get("index", 0)))
            return [[float(value) for value in row["embedding"]] for row in ordered]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed embedding response: {exc!r}") from exc

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
    ) -> TextGeneration:
        """Run a JSON-mode chat completion."""

        payload: dict[str, Any] = {
            "model": model,
            # Newer models reject max_tokens in favour of max_completion_tokens.
            "max_completion_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if temperature is not None:
            payload["temperature"] = temperature

        data = await self._post("/chat/completions", payload)
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Model returned no choices")
        choice = choices[0] or {}
        message = choice.get("message") or {}
        content = message.get("content")
        raw_usage = data.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
            completion_tokens=int(raw_usage.get("completion_tokens") or 0),
            total_tokens=int(raw_usage.get("total_tokens") or 0),
        )
        reasoning_tokens = (raw_usage.get("completion_tokens_details") or {}).get(
            "reasoning_tokens"
        )
        if reasoning_tokens:
            logger.debug("%s used %s reasoning tokens", model, reasoning_tokens)
        return TextGeneration(
            text=content if isinstance(content, str) else None,
            finish_reason=choice.get("finish_reason"),
            usage=usage,
        )

    async def generate_image(
        self,
        prompt: str,
        size: str,
        *,
        model: str,
        options: dict[str, Any] | None = None,
    ) -> ImageGeneration:
        """Generate a single image and return its raw bytes."""

        payload: dict[str, Any] = {"model": model, "prompt": prompt, "n": 1}
        if self.provider == "openai":
            payload["size"] = size
            if "gpt-image" in model:
                payload["output_format"] = "png"
            else:
                payload["response_format"] = "b64_json"
        else:
            payload["response_format"] = "b64_json"
        if options:
            payload.update(options)

        data = await self._post("/images/generations", payload)
        images = data.get("data") or []
        if not images:
            raise ProviderError("No image data in response")
        image = images[0] or {}
        encoded = image.get("b64_json")
        if encoded:
            try:
                return ImageGeneration(image_bytes=base64.b64decode(encoded))
            except (TypeError, ValueError) as exc:
                raise ProviderError(f"Invalid base64 image data: {exc}") from exc
        url = image.get("url")
        if url:
            return await self._download_image(url)
        raise ProviderError("No image data in response (neither URL nor base64)")

    async def list_models(self) -> list[str]:
        """Return the model identifiers visible to these credentials."""

        try:
            response = await self._client.get(
                f"{self._base_url}/models", headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider} model listing failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(response.text, status_code=response.status_code)
        rows = _json_body(response, "/models").get("data") or []
        return [str(row["id"]) for row in rows if isinstance(row, dict) and row.get("id")]

    async def _download_image(self, url: str) -> ImageGeneration:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Image download failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                f"Image download failed with status {response.status_code}",
                status_code=response.status_code,
            )
        media_type = response.headers.get("content-type", "image/png").split(";")[0]
        return ImageGeneration(image_bytes=response.content, media_type=media_type)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._credentials.api_key}",
            "Content-Type": "application/json",
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(
                f"{self._base_url}{path}", json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider} request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning(
                "%s %s returned %s: %s",
                self.provider,
                path,
                response.status_code,
                response.text,
            )
            raise ProviderError(response.text, status_code=response.status_code)
        return _json_body(response, path)


def _json_body(response: httpx.Response, path: str) -> dict[str, Any]:
    """Decode a 2xx body; anything but a JSON object is a provider fault."""

    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(
            f"{path} returned a non-JSON body", status_code=response.status_code
        ) from exc
    if not isinstance(data, dict):
        raise ProviderError(
            f"{path} returned an unexpected payload", status_code=response.status_code
        )
    return data
