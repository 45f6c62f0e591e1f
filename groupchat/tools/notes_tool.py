"""Shared group notebook tools."""

from __future__ import annotations

from typing import Any

from groupchat.db import Database
from groupchat.tools.base import Tool


class WriteNoteTool(Tool):
    """Pin a note to the group's shared notebook."""

    name = "write_note"
    description = "Save a short note to the group's shared notebook so every member can find it later."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "group_id": {"type": "string"},
            "agent_id": {"type": "string"},
            "note": {"type": "string"},
        },
        "required": ["group_id", "note"],
        "additionalProperties": False,
    }
    context_fields = ("group_id", "agent_id")

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        note = kwargs["note"].strip()
        if not note:
            raise ValueError("Note must not be empty")
        author = kwargs.get("agent_id")
        text = f"[{author}] {note}" if author else note
        note_id = self._db.write_note(group_id=kwargs["group_id"], note=text)
        return {"note_id": note_id}


class ListNotesTool(Tool):
    """Read back the group's shared notebook."""

    name = "list_notes"
    description = "List the most recent notes in the group's shared notebook."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "group_id": {"type": "string"},
            "limit": {"type": "integer"},
        },
        "required": ["group_id"],
        "additionalProperties": False,
    }
    context_fields = ("group_id",)

    def __init__(self, db: Database) -> None:
        self._db = db

    async def run(self, **kwargs: Any) -> list[dict[str, Any]]:
        limit = max(1, min(int(kwargs.get("limit", 20)), 100))
        return self._db.list_notes(group_id=kwargs["group_id"], limit=limit)
