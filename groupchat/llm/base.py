"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from groupchat.models import LLMResponse


class LLMProvider(ABC):
    """Abstract model provider shared by agents and the supervisor."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
        model: str | None = None,
        provider: str | None = None,
    ) -> LLMResponse:
        """Generate a model response with the given model, served by the given provider."""
