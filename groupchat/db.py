"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from groupchat.models import Agent, ChatMessage, GroupConfig, LLMToolCall

SCHEMA_VERSION = 1

_GROUP_CONFIG_COLUMNS = ("response_speed", "orchestrator_model", "orchestrator_provider", "system_prompt")
_MESSAGE_PATCH_COLUMNS = ("content", "tools", "tools_calling", "error", "model", "provider")


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS groups (
                group_id TEXT PRIMARY KEY,
                name TEXT,
                response_speed TEXT,
                orchestrator_model TEXT,
                orchestrator_provider TEXT,
                system_prompt TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS agents (
                group_id TEXT NOT NULL,
                agent_id TEXT NOT NULL,
                title TEXT NOT NULL,
                provider TEXT,
                model TEXT,
                system_role TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                PRIMARY KEY(group_id, agent_id),
                FOREIGN KEY(group_id) REFERENCES groups(group_id)
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id TEXT NOT NULL,
                topic_id TEXT,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                agent_id TEXT,
                target_id TEXT,
                tools_json TEXT,
                tool_call_id TEXT,
                tools_calling INTEGER NOT NULL DEFAULT 0,
                error_json TEXT,
                model TEXT,
                provider TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(group_id) REFERENCES groups(group_id)
            );

            CREATE TABLE IF NOT EXISTS tool_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                input_json TEXT NOT NULL,
                output_json TEXT NOT NULL,
                succeeded INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(group_id) REFERENCES groups(group_id)
            );

            CREATE TABLE IF NOT EXISTS notes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id TEXT NOT NULL,
                note TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(group_id) REFERENCES groups(group_id)
            );

            CREATE TABLE IF NOT EXISTS user_profile (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                nickname TEXT
            );
            """
        )

    def upsert_group(self, group_id: str, name: str | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO groups(group_id, name, created_at)
                VALUES(?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    name=COALESCE(excluded.name, groups.name)
                """,
                (group_id, name, _utc_now_iso()),
            )

    def get_group_config(self, group_id: str) -> GroupConfig:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT response_speed, orchestrator_model, orchestrator_provider, system_prompt
                FROM groups
                WHERE group_id = ?
                """,
                (group_id,),
            ).fetchone()
        if row is None:
            return GroupConfig()
        return GroupConfig(**{column: row[column] for column in _GROUP_CONFIG_COLUMNS})

    def update_group_config(self, group_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(_GROUP_CONFIG_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown group config fields: {sorted(unknown)}")
        if not fields:
            return
        self.upsert_group(group_id)
        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE groups SET {assignments} WHERE group_id = ?",
                (*fields.values(), group_id),
            )

    def upsert_agent(self, group_id: str, agent: Agent) -> None:
        self.upsert_group(group_id)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO agents(group_id, agent_id, title, provider, model, system_role, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(group_id, agent_id) DO UPDATE SET
                    title=excluded.title,
                    provider=excluded.provider,
                    model=excluded.model,
                    system_role=excluded.system_role
                """,
                (group_id, agent.id, agent.title, agent.provider, agent.model, agent.system_role, _utc_now_iso()),
            )

    def remove_agent(self, group_id: str, agent_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM agents WHERE group_id = ? AND agent_id = ?", (group_id, agent_id)
            )
            return cur.rowcount > 0

    def list_agents(self, group_id: str) -> list[Agent]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT agent_id, title, provider, model, system_role
                FROM agents
                WHERE group_id = ?
                ORDER BY created_at ASC, agent_id ASC
                """,
                (group_id,),
            ).fetchall()
        return [
            Agent(
                id=row["agent_id"],
                title=row["title"],
                provider=row["provider"],
                model=row["model"],
                system_role=row["system_role"] or "",
            )
            for row in rows
        ]

    def create_message(
        self,
        group_id: str,
        role: str,
        content: str,
        topic_id: str | None = None,
        agent_id: str | None = None,
        target_id: str | None = None,
        tools: list[LLMToolCall] | None = None,
        tool_call_id: str | None = None,
        model: str | None = None,
        provider: str | None = None,
    ) -> int:
        now = _utc_now_iso()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO messages(
                    group_id, topic_id, role, content, agent_id, target_id,
                    tools_json, tool_call_id, model, provider, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    group_id,
                    topic_id,
                    role,
                    content,
                    agent_id,
                    target_id,
                    _dump_tools(tools),
                    tool_call_id,
                    model,
                    provider,
                    now,
                    now,
                ),
            )
            return int(cur.lastrowid)

    def update_message(self, message_id: int, patch: dict[str, Any]) -> None:
        unknown = set(patch) - set(_MESSAGE_PATCH_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")
        columns: dict[str, Any] = {}
        for key, value in patch.items():
            if key == "tools":
                columns["tools_json"] = _dump_tools(value)
            elif key == "error":
                columns["error_json"] = json.dumps(value) if value is not None else None
            elif key == "tools_calling":
                columns["tools_calling"] = int(bool(value))
            else:
                columns[key] = value
        if not columns:
            return
        columns["updated_at"] = _utc_now_iso()
        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE messages SET {assignments} WHERE id = ?",
                (*columns.values(), message_id),
            )

    def get_message(self, message_id: int) -> ChatMessage | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return _row_to_message(row) if row else None

    def list_messages(self, group_id: str, topic_id: str | None = None) -> list[ChatMessage]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE group_id = ? AND topic_id IS ? ORDER BY id ASC",
                (group_id, topic_id),
            ).fetchall()
        return [_row_to_message(row) for row in rows]

    def clear_history(self, group_id: str, topic_id: str | None = None) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM messages WHERE group_id = ? AND topic_id IS ?", (group_id, topic_id)
            )

    def log_tool_execution(
        self,
        group_id: str,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_output: Any,
        succeeded: bool,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_executions(group_id, tool_name, input_json, output_json, succeeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    group_id,
                    tool_name,
                    json.dumps(tool_input),
                    json.dumps(tool_output),
                    int(succeeded),
                    _utc_now_iso(),
                ),
            )

    def write_note(self, group_id: str, note: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO notes(group_id, note, created_at) VALUES (?, ?, ?)",
                (group_id, note, _utc_now_iso()),
            )
            return int(cur.lastrowid)

    def list_notes(self, group_id: str, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, note, created_at FROM notes WHERE group_id = ? ORDER BY id DESC LIMIT ?",
                (group_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_nickname(self) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT nickname FROM user_profile WHERE id = 1").fetchone()
        return row["nickname"] if row else None

    def set_nickname(self, nickname: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_profile(id, nickname) VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET nickname=excluded.nickname
                """,
                (nickname,),
            )


def _dump_tools(tools: list[LLMToolCall] | None) -> str | None:
    if not tools:
        return None
    return json.dumps(
        [{"name": tc.name, "arguments": tc.arguments, "call_id": tc.call_id} for tc in tools]
    )


def _load_tools(raw: str | None) -> list[LLMToolCall]:
    if not raw:
        return []
    return [
        LLMToolCall(name=item["name"], arguments=item.get("arguments") or {}, call_id=item.get("call_id"))
        for item in json.loads(raw)
    ]


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=int(row["id"]),
        group_id=row["group_id"],
        topic_id=row["topic_id"],
        role=row["role"],
        content=row["content"],
        agent_id=row["agent_id"],
        target_id=row["target_id"],
        tools=_load_tools(row["tools_json"]),
        tool_call_id=row["tool_call_id"],
        tools_calling=bool(row["tools_calling"]),
        error=json.loads(row["error_json"]) if row["error_json"] else None,
        model=row["model"],
        provider=row["provider"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
