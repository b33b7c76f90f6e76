from __future__ import annotations

import asyncio
from typing import Protocol

import httpx

from kbchat.config import Settings
from kbchat.services.rag.embedder import HashEmbeddingClient
from kbchat.services.rag.errors import RequestTimeoutError


class EmbeddingError(RuntimeError):
    pass


class EmbeddingClient(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingClient:
    """Client for any OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            if self._http_client is not None:
                response = await self._post(self._http_client, text, headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await self._post(client, text, headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Embedding request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise EmbeddingError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingError(f"Invalid embeddings payload: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data:
            raise EmbeddingError("Invalid embeddings payload: missing data")

        embedding = data[0].get("embedding") if isinstance(data[0], dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingError("Invalid embeddings payload: missing embedding vector")

        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError(f"Invalid embeddings payload: non-numeric vector value ({exc})") from exc

    async def _post(
        self, client: httpx.AsyncClient, text: str, headers: dict[str, str]
    ) -> httpx.Response:
        return await client.post(
            f"{self._base_url}/embeddings",
            json={"model": self._model, "input": text},
            headers=headers,
            timeout=self._timeout_seconds,
        )


async def embed_with_timeout(
    client: EmbeddingClient, text: str, *, timeout_seconds: float
) -> list[float]:
    try:
        return await asyncio.wait_for(client.embed(text), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise RequestTimeoutError(
            f"Embedding generation exceeded {timeout_seconds:g}s"
        ) from exc


def build_embedding_client(settings: Settings) -> EmbeddingClient:
    if settings.embed_provider == "hash":
        return HashEmbeddingClient(dimensions=settings.embed_dimensions)
    if settings.embed_provider == "openai":
        return OpenAIEmbeddingClient(
            base_url=settings.embed_base_url,
            model=settings.embed_model,
            api_key=settings.embed_api_key,
            timeout_seconds=settings.embed_timeout_seconds,
        )
    raise ValueError(f"Unsupported EMBED_PROVIDER: {settings.embed_provider}")
