"""Stores the orchestration core reads from and writes to.

Each store is a thin view over ``Database``. ``MessageStore`` additionally keeps
an in-memory map of the message lists it has served, keyed by
``message_map_key(group_id, topic_id)``, so that the core always reads the
latest placeholder and tool-call state without re-querying on every access.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, get_args

from groupchat.db import Database
from groupchat.models import Agent, ChatMessage, GroupConfig, ResponseSpeed, message_map_key

LOGGER = logging.getLogger(__name__)

MessageListener = Callable[[str, list[ChatMessage]], None]


class MessageStore:
    """Creates, patches and caches group-chat messages."""

    def __init__(self, db: Database, listener: MessageListener | None = None) -> None:
        self._db = db
        self._listener = listener
        self._messages_map: dict[str, list[ChatMessage]] = {}
        self._scopes: dict[str, tuple[str, str | None]] = {}

    def messages(self, group_id: str, topic_id: str | None = None) -> list[ChatMessage]:
        key = message_map_key(group_id, topic_id)
        cached = self._messages_map.get(key)
        if cached is None:
            cached = self._db.list_messages(group_id, topic_id)
            self._messages_map = {**self._messages_map, key: cached}
            self._scopes = {**self._scopes, key: (group_id, topic_id)}
        return list(cached)

    def get(self, message_id: int) -> ChatMessage | None:
        return self._db.get_message(message_id)

    def create_message(self, params: dict[str, Any]) -> int:
        message_id = self._db.create_message(**params)
        message = self._db.get_message(message_id)
        if message is not None:
            key = message_map_key(message.group_id, message.topic_id)
            existing = self.messages(message.group_id, message.topic_id)
            self._messages_map = {**self._messages_map, key: [*existing, message]}
        return message_id

    def dispatch_update(self, message_id: int, patch: dict[str, Any]) -> None:
        self._db.update_message(message_id, patch)
        updated = self._db.get_message(message_id)
        if updated is None:
            LOGGER.warning("Message %s vanished while applying update", message_id)
            return
        key = message_map_key(updated.group_id, updated.topic_id)
        if key in self._messages_map:
            self._messages_map = {
                **self._messages_map,
                key: [updated if m.id == message_id else m for m in self._messages_map[key]],
            }

    async def refresh(self) -> None:
        """Reload every cached scope from the database and notify the listener."""

        refreshed = {
            key: self._db.list_messages(group_id, topic_id)
            for key, (group_id, topic_id) in self._scopes.items()
        }
        self._messages_map = {**self._messages_map, **refreshed}
        if self._listener is not None:
            for key, messages in refreshed.items():
                self._listener(key, messages)

    def forget(self, group_id: str, topic_id: str | None = None) -> None:
        key = message_map_key(group_id, topic_id)
        self._messages_map = {k: v for k, v in self._messages_map.items() if k != key}
        self._scopes = {k: v for k, v in self._scopes.items() if k != key}


class SessionStore:
    """Tracks the active group/topic and serves group rosters."""

    def __init__(self, db: Database, active_id: str | None = None, active_topic_id: str | None = None) -> None:
        self._db = db
        self._active_id = active_id
        self._active_topic_id = active_topic_id

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_topic_id(self) -> str | None:
        return self._active_topic_id

    def activate(self, group_id: str, topic_id: str | None = None) -> None:
        self._db.upsert_group(group_id)
        self._active_id = group_id
        self._active_topic_id = topic_id

    def group_agents(self, group_id: str) -> list[Agent]:
        return self._db.list_agents(group_id)


class GroupConfigStore:
    """Per-group orchestration settings."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def config(self, group_id: str) -> GroupConfig:
        return self._db.get_group_config(group_id)

    def update(self, group_id: str, **fields: Any) -> None:
        speed = fields.get("response_speed")
        if speed is not None and speed not in get_args(ResponseSpeed):
            raise ValueError(f"Unknown response speed: {speed}")
        self._db.update_group_config(group_id, **fields)


class UserProfileStore:
    """The human participant's display name."""

    def __init__(self, db: Database, default_nickname: str | None = None) -> None:
        self._db = db
        self._default_nickname = default_nickname or None

    def nickname(self) -> str | None:
        return self._db.get_nickname() or self._default_nickname

    def set_nickname(self, nickname: str) -> None:
        self._db.set_nickname(nickname)
