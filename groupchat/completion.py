"""Fills placeholder messages with model replies."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from groupchat.llm.base import LLMProvider
from groupchat.models import CompletionResult
from groupchat.stores import MessageStore
from groupchat.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


class CompletionService:
    """Runs one chat completion and writes the result into an existing message."""

    def __init__(
        self,
        llm: LLMProvider,
        message_store: MessageStore,
        tool_registry: ToolRegistry,
        request_timeout_seconds: float,
    ) -> None:
        self._llm = llm
        self._messages = message_store
        self._tool_registry = tool_registry
        self._request_timeout_seconds = request_timeout_seconds

    async def complete(
        self,
        messages: list[dict[str, Any]],
        placeholder_message_id: int,
        model: str,
        provider: str,
        trace_params: dict[str, Any] | None = None,
        allow_tools: bool = True,
    ) -> CompletionResult:
        trace_id = (trace_params or {}).get("traceId")
        LOGGER.info(
            "Completion for message %s (trace=%s, model=%s/%s, %d messages)",
            placeholder_message_id,
            trace_id,
            provider,
            model,
            len(messages),
        )
        tools = self._tool_registry.list_tool_specs() if allow_tools else None
        response = await asyncio.wait_for(
            self._llm.generate(messages, tools=tools or None, model=model, provider=provider),
            timeout=self._request_timeout_seconds,
        )

        patch: dict[str, Any] = {
            "content": response.content,
            "model": model,
            "provider": provider,
        }
        if response.tool_calls:
            for index, tool_call in enumerate(response.tool_calls):
                if tool_call.call_id is None:
                    tool_call.call_id = f"call_{placeholder_message_id}_{index}"
            patch["tools"] = response.tool_calls
        self._messages.dispatch_update(placeholder_message_id, patch)

        return CompletionResult(is_function_call=bool(response.tool_calls), content=response.content)
