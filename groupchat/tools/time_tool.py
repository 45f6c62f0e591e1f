"""Clock tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from groupchat.tools.base import Tool


class GetCurrentTimeTool(Tool):
    """Returns the current time, optionally in an IANA timezone."""

    name = "get_current_time"
    description = "Get the current date/time in ISO-8601 format, in UTC or a named IANA timezone."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"timezone": {"type": "string"}},
        "additionalProperties": False,
    }

    async def run(self, **kwargs: Any) -> dict[str, str]:
        zone_name = kwargs.get("timezone") or "UTC"
        try:
            zone = timezone.utc if zone_name == "UTC" else ZoneInfo(zone_name)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown timezone: {zone_name}") from exc
        return {"timezone": zone_name, "time": datetime.now(zone).isoformat()}
