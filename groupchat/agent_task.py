"""Produces one agent's reply for a supervisor decision."""

from __future__ import annotations

import logging
from typing import Any, Callable

from groupchat.completion import CompletionService
from groupchat.models import LOADING_PLACEHOLDER, ChatMessage, ToolCallOptions
from groupchat.prompts import (
    GroupMember,
    annotate_author,
    author_name,
    build_group_chat_system_prompt,
    filter_messages_for_agent,
    group_members,
    to_llm_message,
    turn_instruction,
)
from groupchat.scheduler import DecisionScheduler
from groupchat.stores import MessageStore, SessionStore, UserProfileStore
from groupchat.supervisor import DEFAULT_USER_NAME
from groupchat.tool_calls import ToolCallRunner

LOGGER = logging.getLogger(__name__)

ERROR_KIND = "CreateMessageError"


class AgentResponseTask:
    """Builds an agent's filtered context, fills a placeholder, and handles tool calls."""

    def __init__(
        self,
        message_store: MessageStore,
        session: SessionStore,
        profile: UserProfileStore,
        completion: CompletionService,
        tool_calls: ToolCallRunner,
        scheduler: DecisionScheduler,
        rearm_allowed: Callable[[str], bool] | None = None,
    ) -> None:
        self._messages = message_store
        self._session = session
        self._profile = profile
        self._completion = completion
        self._tool_calls = tool_calls
        self._scheduler = scheduler
        self._rearm_allowed = rearm_allowed

    async def run(self, group_id: str, agent_id: str, target_id: str | None = None) -> None:
        topic_id = self._session.active_topic_id
        placeholder_id: int | None = None
        try:
            agents = self._session.group_agents(group_id)
            agent = next((a for a in agents if a.id == agent_id), None)
            if agent is None:
                LOGGER.error("Agent %s not found in group %s", agent_id, group_id)
                return
            if not agent.model or not agent.provider:
                LOGGER.error("No provider or model configured for agent %s", agent_id)
                return

            history = [
                m
                for m in filter_messages_for_agent(self._messages.messages(group_id, topic_id), agent_id)
                if m.content != LOADING_PLACEHOLDER
            ]
            user_name = self._profile.nickname() or DEFAULT_USER_NAME
            members = group_members(agents, user_name)
            system_prompt = build_group_chat_system_prompt(members, agent.system_role, agent_id)

            placeholder_id = self._messages.create_message(
                {
                    "group_id": group_id,
                    "topic_id": topic_id,
                    "role": "assistant",
                    "content": LOADING_PLACEHOLDER,
                    "agent_id": agent_id,
                    "target_id": target_id,
                    "model": agent.model,
                    "provider": agent.provider,
                }
            )

            target_name = None
            if target_id:
                target = next((m for m in members if m.id == target_id), None)
                target_name = target.title if target else target_id

            messages_for_api = [
                {"role": "system", "content": system_prompt},
                *(self._annotated(m, members, user_name) for m in history),
                {"role": "user", "content": turn_instruction(target_name)},
            ]

            result = await self._completion.complete(
                messages_for_api,
                placeholder_id,
                agent.model,
                agent.provider,
                trace_params={"traceId": f"group-{group_id}-agent-{agent_id}", "agentId": agent_id},
            )

            if result.is_function_call:
                self._messages.dispatch_update(placeholder_id, {"tools_calling": True})
                await self._messages.refresh()
                await self._tool_calls.run_tool_calls(
                    placeholder_id,
                    ToolCallOptions(model=agent.model, provider=agent.provider, messages=messages_for_api),
                )
                # Tools resolved: continue the conversation without waiting for the rest of the batch.
                if self._rearm_allowed is None or self._rearm_allowed(group_id):
                    self._scheduler.trigger(group_id)
                else:
                    LOGGER.info("Not re-arming group %s after tool calls: autonomous round limit reached", group_id)
                return

            # No re-arm here; the executor re-arms once per batch.
            await self._messages.refresh()
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Failed to process message for agent %s in group %s", agent_id, group_id)
            self._report_failure(group_id, topic_id, agent_id, placeholder_id, exc)

    @staticmethod
    def _annotated(message: ChatMessage, members: list[GroupMember], user_name: str) -> dict[str, Any]:
        if message.role not in ("user", "assistant"):
            return to_llm_message(message)
        name = author_name(message, members, user_name)
        return to_llm_message(message, annotate_author(message.content, name))

    def _report_failure(
        self,
        group_id: str,
        topic_id: str | None,
        agent_id: str,
        placeholder_id: int | None,
        exc: Exception,
    ) -> None:
        pending = [
            m
            for m in self._messages.messages(group_id, topic_id)
            if m.role == "assistant" and m.agent_id == agent_id and m.content == LOADING_PLACEHOLDER
        ]
        if not pending:
            return
        message = next((m for m in pending if m.id == placeholder_id), pending[-1])
        reason = str(exc) or type(exc).__name__
        self._messages.dispatch_update(
            message.id,
            {
                "content": f"Error: Failed to generate response. {reason}",
                "error": {"type": ERROR_KIND, "message": reason},
            },
        )
