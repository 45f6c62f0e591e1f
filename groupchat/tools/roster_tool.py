"""Lets an agent look up who else is in the group."""

from __future__ import annotations

from typing import Any

from groupchat.db import Database
from groupchat.tools.base import Tool


class ListGroupMembersTool(Tool):
    name = "list_group_members"
    description = "List the agents in this group chat with their ids and display titles."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"group_id": {"type": "string"}},
        "required": ["group_id"],
        "additionalProperties": False,
    }
    context_fields = ("group_id",)

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> list[dict[str, str]]:
        return [{"id": agent.id, "title": agent.title} for agent in self._db.list_agents(kwargs["group_id"])]
