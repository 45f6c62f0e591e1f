"""OpenRouter implementation of LLMProvider.

Agents and the supervisor may each name a different model, so the model is
chosen per call. One ``httpx.AsyncClient`` is shared by every concurrent
request and must be released with ``aclose()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from groupchat.config import Settings
from groupchat.llm.base import LLMProvider
from groupchat.models import LLMResponse, LLMToolCall

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]
_RETRYABLE_STATUS = frozenset({429, 502, 503})


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible chat endpoint."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=settings.openrouter_base_url,
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            headers={
                "Authorization": f"Bearer {settings.openrouter_api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
        model: str | None = None,
        provider: str | None = None,
    ) -> LLMResponse:
        if not model:
            raise ValueError("OpenRouter requests need a model")
        payload: dict[str, Any] = {"model": model_slug(model, provider), "messages": messages}
        if tools:
            payload["tools"] = tools
        if response_format:
            payload["response_format"] = response_format

        data = await self._post_with_retries(payload)
        response = _parse_completion(data)
        _LOGGER.info(
            "LLM response: model=%s finish_reason=%r content=%r tool_calls=%d",
            payload["model"],
            data["choices"][0].get("finish_reason"),
            response.content[:200],
            len(response.tool_calls),
        )
        return response

    async def _post_with_retries(self, payload: dict[str, Any]) -> dict[str, Any]:
        for attempt in range(_MAX_RETRIES + 1):
            response = await self._client.post("/chat/completions", json=payload)
            if response.status_code in _RETRYABLE_STATUS and attempt < _MAX_RETRIES:
                wait = _RETRY_BACKOFF_SECONDS[attempt]
                _LOGGER.warning(
                    "OpenRouter returned %d for %s, retrying in %ds (attempt %d/%d)",
                    response.status_code,
                    payload["model"],
                    wait,
                    attempt + 1,
                    _MAX_RETRIES,
                )
                await asyncio.sleep(wait)
                continue
            response.raise_for_status()
            return response.json()
        raise RuntimeError("unreachable")


def model_slug(model: str, provider: str | None = None) -> str:
    """OpenRouter addresses models as ``provider/model``."""

    if "/" in model or not provider:
        return model
    return f"{provider}/{model}"


def _parse_completion(data: dict[str, Any]) -> LLMResponse:
    choice = data["choices"][0]["message"]
    tool_calls = [
        LLMToolCall(
            name=call.get("function", {}).get("name", ""),
            arguments=_safe_json_loads(call.get("function", {}).get("arguments", "{}")),
            call_id=call.get("id"),
        )
        for call in choice.get("tool_calls") or []
    ]
    return LLMResponse(content=choice.get("content") or "", tool_calls=tool_calls, raw=data)


def _safe_json_loads(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
