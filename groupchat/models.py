"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from groupchat.cancellation import CancellationToken

ResponseSpeed = Literal["fast", "medium", "slow"]

# Content of an assistant message whose reply has not arrived yet.
LOADING_PLACEHOLDER = "..."


@dataclass(slots=True)
class Agent:
    """A member of a group chat roster."""

    id: str
    title: str = ""
    provider: str | None = None
    model: str | None = None
    system_role: str = ""


@dataclass(slots=True)
class GroupConfig:
    """Per-group orchestration settings."""

    response_speed: ResponseSpeed | None = None
    orchestrator_model: str | None = None
    orchestrator_provider: str | None = None
    system_prompt: str | None = None


@dataclass(slots=True)
class LLMToolCall:
    """Tool invocation returned by an LLM provider."""

    name: str
    arguments: dict[str, Any]
    call_id: str | None = None


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    raw: dict[str, Any] | None = None


@dataclass(slots=True)
class ChatMessage:
    """A persisted group-chat message."""

    id: int
    group_id: str
    role: str
    content: str
    topic_id: str | None = None
    agent_id: str | None = None
    target_id: str | None = None
    tools: list[LLMToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    tools_calling: bool = False
    error: dict[str, Any] | None = None
    model: str | None = None
    provider: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_public(self) -> bool:
        return self.target_id is None


@dataclass(slots=True)
class Decision:
    """One supervisor pick: which agent speaks, and to whom."""

    agent_id: str
    target_id: str | None = None


@dataclass(slots=True)
class SupervisorContext:
    """Everything a decision function needs to pick the next speakers."""

    agents: list[Agent]
    group_id: str
    messages: list[ChatMessage]
    model: str
    provider: str
    user_name: str
    cancellation_token: CancellationToken
    system_prompt: str | None = None


@dataclass(slots=True)
class CompletionResult:
    """Outcome of filling a placeholder message with a model reply."""

    is_function_call: bool
    content: str = ""


@dataclass(slots=True)
class ToolCallOptions:
    """Context the tool-call runner needs to produce the follow-up reply."""

    model: str
    provider: str
    messages: list[dict[str, Any]] = field(default_factory=list)


def message_map_key(group_id: str, topic_id: str | None = None) -> str:
    """Return the cache key that scopes messages to a (group, topic) pair."""

    return f"{group_id}_{topic_id or 'default'}"
