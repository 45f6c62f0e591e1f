"""Command dispatcher for @-prefixed console input.

Commands manage the group roster and configuration without going through the
supervisor. An unrecognised @command returns None, letting the text fall
through as an ordinary group message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, get_args

from groupchat.models import Agent, ResponseSpeed

if TYPE_CHECKING:
    from groupchat.db import Database
    from groupchat.runtime import GroupChatRuntime

LOGGER = logging.getLogger(__name__)

_AGENT_USAGE = "Usage: @agent add <id> <provider> <model> [title...] | @agent remove <id>"
_SPEED_USAGE = f"Usage: @speed <{'|'.join(get_args(ResponseSpeed))}|default>"


def parse_command(text: str) -> tuple[str, list[str]] | None:
    """Split an @-prefixed message into (command, args).

    Returns:
        A (command, args) tuple where command is lowercased, or None if text
        is not a valid @command.
    """
    text = text.strip()
    if not text.startswith("@"):
        return None
    parts = text[1:].split()
    if not parts:
        return None
    return parts[0].lower(), parts[1:]


class CommandDispatcher:
    """Routes @-prefixed input to roster and configuration handlers."""

    def __init__(self, runtime: GroupChatRuntime, db: Database) -> None:
        self._runtime = runtime
        self._db = db

    async def dispatch(self, group_id: str, text: str) -> str | None:
        """Dispatch a line of input to a command handler.

        Returns:
            A reply string for recognised commands, or None for unknown ones.
        """
        parsed = parse_command(text)
        if parsed is None:
            return None
        command, args = parsed
        LOGGER.info("Command dispatch: command=%r args=%r", command, args)
        if command == "agents":
            return self._handle_agents(group_id)
        if command == "agent":
            return self._handle_agent(group_id, args)
        if command == "persona":
            return self._handle_persona(group_id, args)
        if command == "speed":
            return self._handle_speed(group_id, args)
        if command == "orchestrator":
            return self._handle_orchestrator(group_id, args)
        if command == "prompt":
            self._runtime.group_configs.update(group_id, system_prompt=" ".join(args) or None)
            return "Group system prompt updated." if args else "Group system prompt cleared."
        if command == "nick":
            return self._handle_nick(args)
        if command == "dm":
            return await self._handle_dm(group_id, args)
        if command == "stop":
            self._runtime.stop(group_id)
            return "Stopped. Agents will wait for your next message."
        if command == "topic":
            topic_id = args[0] if args else None
            self._runtime.switch_session(group_id, topic_id)
            return f"Switched to topic {topic_id or 'default'}."
        if command == "clear":
            self._runtime.clear_history(group_id)
            return "Conversation history cleared."
        if command == "status":
            return self._handle_status(group_id)
        return None

    def _handle_agents(self, group_id: str) -> str:
        agents = self._runtime.session.group_agents(group_id)
        if not agents:
            return "No agents in this group yet. " + _AGENT_USAGE
        lines = [
            f"- {agent.title} (id: {agent.id}, {agent.provider or '?'}/{agent.model or '?'})"
            for agent in agents
        ]
        return "Agents:\n" + "\n".join(lines)

    def _handle_agent(self, group_id: str, args: list[str]) -> str:
        if not args:
            return _AGENT_USAGE
        action = args[0].lower()
        if action == "add":
            if len(args) < 4:
                return _AGENT_USAGE
            agent_id, provider, model = args[1], args[2], args[3]
            if agent_id == "user":
                return "The id 'user' is reserved for you."
            title = " ".join(args[4:]) or agent_id
            self._db.upsert_agent(group_id, Agent(id=agent_id, title=title, provider=provider, model=model))
            return f"Added {title} ({agent_id})."
        if action == "remove":
            if len(args) < 2:
                return _AGENT_USAGE
            if self._db.remove_agent(group_id, args[1]):
                return f"Removed {args[1]}."
            return f"No agent with id {args[1]}."
        return _AGENT_USAGE

    def _handle_persona(self, group_id: str, args: list[str]) -> str:
        if len(args) < 2:
            return "Usage: @persona <agent id> <system role text>"
        agent = next((a for a in self._runtime.session.group_agents(group_id) if a.id == args[0]), None)
        if agent is None:
            return f"No agent with id {args[0]}."
        agent.system_role = " ".join(args[1:])
        self._db.upsert_agent(group_id, agent)
        return f"Persona for {agent.title} updated."

    def _handle_speed(self, group_id: str, args: list[str]) -> str:
        if len(args) != 1:
            return _SPEED_USAGE
        speed = args[0].lower()
        if speed == "default":
            self._runtime.group_configs.update(group_id, response_speed=None)
            return "Response speed reset to default."
        try:
            self._runtime.group_configs.update(group_id, response_speed=speed)
        except ValueError:
            return _SPEED_USAGE
        return f"Response speed set to {speed}."

    def _handle_orchestrator(self, group_id: str, args: list[str]) -> str:
        if len(args) != 2:
            return "Usage: @orchestrator <provider> <model>"
        provider, model = args
        self._runtime.group_configs.update(group_id, orchestrator_provider=provider, orchestrator_model=model)
        return f"Supervisor will use {provider}/{model}."

    def _handle_nick(self, args: list[str]) -> str:
        if not args:
            return f"You are {self._runtime.profile.nickname() or 'User'}."
        nickname = " ".join(args)
        self._runtime.profile.set_nickname(nickname)
        return f"You are now {nickname}."

    async def _handle_dm(self, group_id: str, args: list[str]) -> str:
        if len(args) < 2:
            return "Usage: @dm <agent id> <message>"
        agent_id = args[0]
        if not any(a.id == agent_id for a in self._runtime.session.group_agents(group_id)):
            return f"No agent with id {agent_id}."
        message_id = await self._runtime.send_group_message(group_id, " ".join(args[1:]), target_member_id=agent_id)
        if message_id is None:
            return "Failed to send direct message."
        return f"Direct message sent to {agent_id}."

    def _handle_status(self, group_id: str) -> str:
        config = self._runtime.group_configs.config(group_id)
        state = "deciding" if self._runtime.loading.is_loading(group_id) else (
            "waiting to decide" if self._runtime.scheduler.pending(group_id) else "idle"
        )
        return (
            f"Group {group_id}: supervisor {state}; "
            f"speed={config.response_speed or 'default'}; "
            f"rounds since your last message={self._runtime.executor.rounds(group_id)}."
        )
