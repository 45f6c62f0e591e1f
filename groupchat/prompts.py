"""Prompt construction and per-agent message visibility for group chats."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from groupchat.models import Agent, ChatMessage

USER_MEMBER_ID = "user"
AUTHOR_TAG = "author_name_do_not_include_in_your_response"


@dataclass(slots=True)
class GroupMember:
    id: str
    title: str


def group_members(agents: list[Agent], user_name: str) -> list[GroupMember]:
    """Roster announced to agents; the human participant is always listed first."""

    return [
        GroupMember(id=USER_MEMBER_ID, title=user_name),
        *(GroupMember(id=agent.id, title=agent.title or agent.id) for agent in agents),
    ]


def filter_messages_for_agent(messages: list[ChatMessage], agent_id: str) -> list[ChatMessage]:
    """Hide direct messages from agents outside the sender/recipient pair."""

    return [
        message
        for message in messages
        if message.is_public or message.agent_id == agent_id or message.target_id == agent_id
    ]


def build_group_chat_system_prompt(
    members: list[GroupMember],
    base_system_role: str,
    agent_id: str,
) -> str:
    me = next((member for member in members if member.id == agent_id), None)
    my_title = me.title if me else agent_id
    roster = "\n".join(f"- {member.title} (id: {member.id})" for member in members)

    sections = []
    if base_system_role.strip():
        sections.append(base_system_role.strip())
    sections.append(
        f"You are {my_title} (id: {agent_id}), one participant in a group chat.\n"
        f"Group members:\n{roster}"
    )
    sections.append(
        "Each earlier message starts with its author's name inside "
        f"<{AUTHOR_TAG}> tags. The tags are there for your reference only; never write them "
        "yourself and never prefix your reply with your own name.\n"
        "Some messages are direct messages that only their sender and recipient can see. "
        "Stay in character and keep replies conversational and concise."
    )
    return "\n\n".join(sections)


def annotate_author(content: str, author_name: str) -> str:
    return f"<{AUTHOR_TAG}>{author_name}</{AUTHOR_TAG}>{content}"


def author_name(message: ChatMessage, members: list[GroupMember], user_name: str) -> str:
    lookup_id = USER_MEMBER_ID if message.role == "user" else message.agent_id
    member = next((m for m in members if m.id == lookup_id), None)
    if member and member.title:
        return member.title
    return user_name if message.role == "user" else "Unknown"


def turn_instruction(target_name: str | None) -> str:
    audience = target_name if target_name else "the group publicly"
    return (
        "Now it's your turn to respond. Based on the supervisor decision, your message will be "
        f"sent to {audience}. Please respond as this agent would, considering the full "
        "conversation history provided above. Directly return the message content, no other "
        "text. You do not need to add an author name or anything else."
    )


def to_llm_message(message: ChatMessage, content: str | None = None) -> dict[str, Any]:
    """Render a stored message in the OpenAI-compatible chat format."""

    payload: dict[str, Any] = {
        "role": message.role,
        "content": message.content if content is None else content,
    }
    if message.role == "assistant" and message.tools:
        payload["tool_calls"] = [
            {
                "id": tc.call_id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in message.tools
        ]
    if message.role == "tool" and message.tool_call_id:
        payload["tool_call_id"] = message.tool_call_id
    return payload
