from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol

import httpx

from kbchat.config import Settings
from kbchat.services.rag.errors import RequestTimeoutError

SYSTEM_PROMPT = (
    "You are a helpful assistant for this website. Answer using the provided context "
    "when possible and keep answers short and conversational. "
    "If the context is insufficient, say so briefly."
)


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    async def complete(self, prompt: str, context: str) -> ChatResult: ...


class OpenAIChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str = "",
        api_key: str = "",
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def complete(self, prompt: str, context: str) -> ChatResult:
        for model, used_fallback in self._model_candidates():
            try:
                content = await self._chat_completion(model=model, prompt=prompt, context=context)
            except httpx.TimeoutException as exc:
                raise RequestTimeoutError(f"Chat completion timed out: {exc}") from exc
            except (httpx.HTTPError, ValueError) as exc:
                if used_fallback or not self._has_fallback():
                    raise LLMClientError(str(exc)) from exc
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        raise LLMClientError("No model candidates configured")

    def _has_fallback(self) -> bool:
        return bool(self._fallback_model) and self._fallback_model != self._default_model

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._has_fallback():
            candidates.append((self._fallback_model, True))
        return candidates

    async def _chat_completion(self, *, model: str, prompt: str, context: str) -> str:
        request = {
            "model": model,
            "messages": [
                {"role": "system", "content": f"{SYSTEM_PROMPT}\n\nContext:\n{context}"},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.7,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

        if self._http_client is not None:
            response = await self._http_client.post(
                f"{self._base_url}/chat/completions",
                json=request,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions", json=request, headers=headers
                )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()


async def complete_with_timeout(
    client: LLMClient, prompt: str, context: str, *, timeout_seconds: float
) -> ChatResult:
    try:
        return await asyncio.wait_for(client.complete(prompt, context), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise RequestTimeoutError(f"Response generation exceeded {timeout_seconds:g}s") from exc


def build_llm_client(settings: Settings) -> LLMClient:
    return OpenAIChatClient(
        base_url=settings.llm_base_url,
        default_model=settings.llm_model,
        fallback_model=settings.llm_fallback_model,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )
