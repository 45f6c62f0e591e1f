"""Supervisor decisions: who speaks next in a group chat."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from groupchat.cancellation import CancellationRegistry, CancellationToken, DecisionCancelled, LoadingFlags
from groupchat.llm.base import LLMProvider
from groupchat.models import ChatMessage, Decision, SupervisorContext
from groupchat.stores import GroupConfigStore, MessageStore, SessionStore, UserProfileStore

if TYPE_CHECKING:
    from groupchat.executor import AgentResponseExecutor

LOGGER = logging.getLogger(__name__)

DEFAULT_ORCHESTRATOR_MODEL = "gemini-2.5-flash"
DEFAULT_ORCHESTRATOR_PROVIDER = "google"
DEFAULT_USER_NAME = "User"


class DecisionFunction(ABC):
    """Picks the next speakers. Must raise DecisionCancelled once its token fires."""

    @abstractmethod
    async def decide(self, context: SupervisorContext) -> list[Decision]:
        """Return the agents that should reply next; empty means nobody."""


def is_tool_call_message(message: ChatMessage) -> bool:
    return message.role == "assistant" and bool(message.tools)


def should_skip_decision(messages: list[ChatMessage]) -> bool:
    """True while the transcript is waiting on a tool-call round trip."""

    if not messages:
        return True
    last = messages[-1]
    return is_tool_call_message(last) or last.role == "tool"


class SupervisorInvoker:
    """Runs the decision function for a group and hands decisions to the executor."""

    def __init__(
        self,
        registry: CancellationRegistry,
        loading: LoadingFlags,
        message_store: MessageStore,
        session: SessionStore,
        group_configs: GroupConfigStore,
        profile: UserProfileStore,
        decision_fn: DecisionFunction,
        executor: AgentResponseExecutor,
    ) -> None:
        self._registry = registry
        self._loading = loading
        self._messages = message_store
        self._session = session
        self._group_configs = group_configs
        self._profile = profile
        self._decision_fn = decision_fn
        self._executor = executor

    async def run(self, group_id: str) -> None:
        messages = self._messages.messages(group_id, self._session.active_topic_id)
        if not messages:
            return
        if should_skip_decision(messages):
            LOGGER.info("Skipping supervisor decision for group %s: tool-call sequence in progress", group_id)
            return

        token = CancellationToken()
        self._registry.put_token(group_id, token)
        self._loading.set(group_id, True)

        try:
            config = self._group_configs.config(group_id)
            context = SupervisorContext(
                agents=self._session.group_agents(group_id),
                group_id=group_id,
                messages=messages,
                model=config.orchestrator_model or DEFAULT_ORCHESTRATOR_MODEL,
                provider=config.orchestrator_provider or DEFAULT_ORCHESTRATOR_PROVIDER,
                user_name=self._profile.nickname() or DEFAULT_USER_NAME,
                system_prompt=config.system_prompt,
                cancellation_token=token,
            )
            decisions = await self._decision_fn.decide(context)
            LOGGER.info("Supervisor decisions for group %s: %s", group_id, decisions)
            if decisions:
                await self._executor.run(group_id, decisions)
        except DecisionCancelled as exc:
            LOGGER.info("Supervisor decision was cancelled for group %s: %s", group_id, exc)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Supervisor decision failed for group %s", group_id)
        finally:
            self._registry.discard_token(group_id, token)
            # A newer run may already own the slot; only clear the flag if none does.
            if self._registry.peek_token(group_id) is None:
                self._loading.set(group_id, False)


_DECISION_INSTRUCTIONS = """You are the supervisor of a group chat between a human and several AI agents.
Decide which agents should speak next, if any.

Members:
{roster}

Rules:
- Return an empty list when the conversation has reached a natural pause or nobody has anything useful to add.
- Pick only agents from the member list, using their ids.
- Set "target" to a member id (or "user") only when the reply should be a private direct message.
- Prefer one or two speakers per round.

Return JSON only: {{"decisions": [{{"id": "<agent id>", "target": "<member id or null>"}}]}}"""


class LLMDecisionFunction(DecisionFunction):
    """Asks the orchestrator model for the next speakers as JSON."""

    def __init__(self, llm: LLMProvider, history_limit: int = 30) -> None:
        self._llm = llm
        self._history_limit = history_limit

    async def decide(self, context: SupervisorContext) -> list[Decision]:
        if not context.agents:
            return []
        roster = "\n".join(f"- {agent.title or agent.id} (id: {agent.id})" for agent in context.agents)
        system = _DECISION_INSTRUCTIONS.format(roster=roster)
        if context.system_prompt:
            system = f"{context.system_prompt}\n\n{system}"

        titles = {agent.id: agent.title or agent.id for agent in context.agents}
        transcript = "\n".join(
            _transcript_line(message, titles, context.user_name)
            for message in context.messages[-self._history_limit :]
            if message.role in ("user", "assistant")
        )
        prompt = [
            {"role": "system", "content": system},
            {"role": "user", "content": f"Conversation so far:\n{transcript}\n\nWho should speak next?"},
        ]
        response = await context.cancellation_token.run(
            self._llm.generate(
                prompt,
                response_format={"type": "json_object"},
                model=context.model,
                provider=context.provider,
            )
        )
        return parse_decisions(response.content, set(titles))


def parse_decisions(raw: str, agent_ids: set[str]) -> list[Decision]:
    """Parse the supervisor's JSON reply, dropping picks for unknown agents."""

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Supervisor returned non-JSON output: %r", raw[:200])
        return []
    items = data.get("decisions", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []

    decisions: list[Decision] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        agent_id = str(item.get("id") or "")
        if agent_id not in agent_ids:
            LOGGER.warning("Supervisor picked unknown agent %r", agent_id)
            continue
        target = item.get("target")
        decisions.append(Decision(agent_id=agent_id, target_id=str(target) if target else None))
    return decisions


def _transcript_line(message: ChatMessage, titles: dict[str, str], user_name: str) -> str:
    author = user_name if message.role == "user" else titles.get(message.agent_id or "", "Unknown")
    if message.target_id:
        target = user_name if message.target_id == "user" else titles.get(message.target_id, message.target_id)
        author = f"{author} -> {target} (private)"
    return f"{author}: {message.content}"
