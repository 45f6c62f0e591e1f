"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys

from groupchat.commands import CommandDispatcher
from groupchat.config import load_settings
from groupchat.db import Database
from groupchat.llm.openrouter import OpenRouterProvider
from groupchat.models import LOADING_PLACEHOLDER, ChatMessage
from groupchat.runtime import GroupChatRuntime
from groupchat.tools.notes_tool import ListNotesTool, WriteNoteTool
from groupchat.tools.registry import ToolRegistry
from groupchat.tools.roster_tool import ListGroupMembersTool
from groupchat.tools.time_tool import GetCurrentTimeTool

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)


class ConsolePrinter:
    """Prints each agent reply once it has finished generating."""

    def __init__(self) -> None:
        self._printed: set[int] = set()

    def __call__(self, key: str, messages: list[ChatMessage]) -> None:
        for message in messages:
            if message.id in self._printed or message.role != "assistant":
                continue
            if message.content == LOADING_PLACEHOLDER or message.tools_calling:
                continue
            self._printed.add(message.id)
            if not message.content:
                continue
            audience = f" -> {message.target_id}" if message.target_id else ""
            print(f"[{message.agent_id}{audience}] {message.content}", flush=True)

    def mark_seen(self, messages: list[ChatMessage]) -> None:
        self._printed.update(m.id for m in messages)


async def run() -> None:
    """Initialize app layers and start processing loop."""

    settings = load_settings()

    db = Database(settings.database_path)
    db.initialize()

    provider = OpenRouterProvider(settings)
    tools = ToolRegistry(db)
    tools.register(GetCurrentTimeTool())
    tools.register(WriteNoteTool(db))
    tools.register(ListNotesTool(db))
    tools.register(ListGroupMembersTool(db))

    printer = ConsolePrinter()
    runtime = GroupChatRuntime.from_settings(settings, db, provider, tools, listener=printer)
    printer.mark_seen(runtime.messages.messages(settings.group_id, settings.topic_id))
    dispatcher = CommandDispatcher(runtime, db)

    print(f"Group chat '{settings.group_id}'. Type a message, or @agents / @agent add ... to manage members.")
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            group_id = runtime.session.active_id or settings.group_id
            reply = await dispatcher.dispatch(group_id, text)
            if reply is not None:
                print(reply, flush=True)
                continue
            await runtime.send_group_message(group_id, text)
    finally:
        await runtime.aclose()
        await provider.aclose()
        LOGGER.info("Group chat shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
