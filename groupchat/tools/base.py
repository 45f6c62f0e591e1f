"""Tool contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """Base class for tools group-chat agents may call.

    ``context_fields`` name parameters the runtime fills in (the calling group
    or agent); they are validated like any other argument but never shown to
    the model.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    context_fields: tuple[str, ...] = ()

    def spec(self) -> dict[str, Any]:
        properties = {
            key: value
            for key, value in self.parameters_schema.get("properties", {}).items()
            if key not in self.context_fields
        }
        required = [key for key in self.parameters_schema.get("required", []) if key not in self.context_fields]
        parameters: dict[str, Any] = {**self.parameters_schema, "properties": properties}
        if required:
            parameters["required"] = required
        else:
            parameters.pop("required", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    @abstractmethod
    async def run(self, **kwargs: Any) -> Any:
        """Execute tool with validated arguments."""
