"""Registry for safe tool registration and execution."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError, create_model

from groupchat.db import Database
from groupchat.tools.base import Tool


class ToolRegistry:
    """Explicit registry of the tools agents are allowed to call."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def names(self) -> list[str]:
        return sorted(self._tools)

    def list_tool_specs(self) -> list[dict[str, Any]]:
        return [tool.spec() for tool in self._tools.values()]

    async def execute(
        self,
        group_id: str,
        tool_name: str,
        arguments: dict[str, Any],
        agent_id: str | None = None,
    ) -> Any:
        tool = self._tools.get(tool_name)
        if tool is None:
            raise KeyError(f"Unknown tool: {tool_name}")

        context = {"group_id": group_id, "agent_id": agent_id}
        payload = {**arguments}
        for field_name in tool.context_fields:
            payload[field_name] = context.get(field_name)

        validated = _validate_arguments(tool.parameters_schema, payload)
        try:
            result = await tool.run(**validated)
        except Exception as exc:  # noqa: BLE001
            self._db.log_tool_execution(group_id, tool_name, validated, {"error": str(exc)}, succeeded=False)
            raise
        self._db.log_tool_execution(group_id, tool_name, validated, result, succeeded=True)
        return result


def _validate_arguments(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _JSON_TYPES.get(config.get("type", "string"), str)
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolArguments", **fields)
    try:
        value = model(**payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid input for tool: {exc}") from exc
    return value.model_dump(exclude_none=True)


_JSON_TYPES: dict[str, type[Any]] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "object": dict,
    "array": list,
}
