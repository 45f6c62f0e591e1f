import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from groupchat.completion import CompletionService
from groupchat.db import Database
from groupchat.models import LOADING_PLACEHOLDER, LLMResponse, LLMToolCall, ToolCallOptions
from groupchat.stores import MessageStore
from groupchat.tool_calls import ToolCallRunner
from groupchat.tools.notes_tool import ListNotesTool, WriteNoteTool
from groupchat.tools.registry import ToolRegistry


class FakeLLM:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(self, messages, tools=None, response_format=None, model=None, provider=None):  # noqa: ANN001, ANN201
        self.calls.append({"messages": messages, "tools": tools, "model": model, "provider": provider})
        return self.responses.pop(0)


def _setup(tmp_path, llm):
    db = Database(tmp_path / "groupchat.db")
    db.initialize()
    registry = ToolRegistry(db)
    registry.register(WriteNoteTool(db))
    registry.register(ListNotesTool(db))
    messages = MessageStore(db)
    completion = CompletionService(llm, messages, registry, request_timeout_seconds=5)
    return db, registry, messages, completion


def _placeholder(messages, agent_id="a", target_id=None):
    return messages.create_message(
        {
            "group_id": "g1",
            "role": "assistant",
            "content": LOADING_PLACEHOLDER,
            "agent_id": agent_id,
            "target_id": target_id,
        }
    )


@pytest.mark.asyncio
async def test_complete_fills_placeholder_with_reply(tmp_path):
    llm = FakeLLM(LLMResponse(content="hello there"))
    _, _, messages, completion = _setup(tmp_path, llm)
    message_id = _placeholder(messages)

    result = await completion.complete([{"role": "user", "content": "hi"}], message_id, "gpt-4o", "openai")

    assert result.is_function_call is False
    assert result.content == "hello there"
    stored = messages.get(message_id)
    assert (stored.content, stored.model, stored.provider) == ("hello there", "gpt-4o", "openai")
    assert messages.messages("g1")[0].content == "hello there"
    assert {spec["function"]["name"] for spec in llm.calls[0]["tools"]} == {"write_note", "list_notes"}


@pytest.mark.asyncio
async def test_complete_records_tool_calls_with_generated_ids(tmp_path):
    llm = FakeLLM(
        LLMResponse(
            content="",
            tool_calls=[
                LLMToolCall(name="list_notes", arguments={}),
                LLMToolCall(name="write_note", arguments={"note": "x"}, call_id="given"),
            ],
        )
    )
    _, _, messages, completion = _setup(tmp_path, llm)
    message_id = _placeholder(messages)

    result = await completion.complete([], message_id, "gpt-4o", "openai")

    assert result.is_function_call is True
    tools = messages.get(message_id).tools
    assert [t.call_id for t in tools] == [f"call_{message_id}_0", "given"]


@pytest.mark.asyncio
async def test_complete_without_tools_sends_no_tool_specs(tmp_path):
    llm = FakeLLM(LLMResponse(content="ok"))
    _, _, messages, completion = _setup(tmp_path, llm)

    await completion.complete([], _placeholder(messages), "gpt-4o", "openai", allow_tools=False)

    assert llm.calls[0]["tools"] is None


@pytest.mark.asyncio
async def test_complete_times_out(tmp_path):
    class SlowLLM:
        async def generate(self, *args, **kwargs):  # noqa: ANN002, ANN003, ANN201
            await asyncio.sleep(10)

    db = Database(tmp_path / "groupchat.db")
    db.initialize()
    messages = MessageStore(db)
    completion = CompletionService(SlowLLM(), messages, ToolRegistry(db), request_timeout_seconds=0.01)

    with pytest.raises(asyncio.TimeoutError):
        await completion.complete([], _placeholder(messages), "gpt-4o", "openai")


class TestToolCallRunner:
    @pytest.mark.asyncio
    async def test_runs_tools_and_fills_follow_up(self, tmp_path):
        llm = FakeLLM(
            LLMResponse(
                content="",
                tool_calls=[LLMToolCall(name="write_note", arguments={"note": "buy milk"}, call_id="c1")],
            ),
            LLMResponse(content="Noted!"),
        )
        db, registry, messages, completion = _setup(tmp_path, llm)
        message_id = _placeholder(messages, target_id="b")
        await completion.complete([{"role": "user", "content": "note it"}], message_id, "gpt-4o", "openai")
        runner = ToolCallRunner(messages, registry, completion)

        await runner.run_tool_calls(
            message_id,
            ToolCallOptions(model="gpt-4o", provider="openai", messages=[{"role": "user", "content": "note it"}]),
        )

        assert db.list_notes("g1", limit=5)[0]["note"] == "[a] buy milk"
        history = messages.messages("g1")
        assert [m.role for m in history] == ["assistant", "tool", "assistant"]
        tool_message = history[1]
        assert tool_message.tool_call_id == "c1"
        assert tool_message.content.startswith("[TOOL DATA")
        assert (tool_message.agent_id, tool_message.target_id) == ("a", "b")
        assert history[0].tools_calling is False
        assert history[2].content == "Noted!"
        assert (history[2].agent_id, history[2].target_id) == ("a", "b")

        follow_up_call = llm.calls[1]
        assert follow_up_call["tools"] is None
        sent = follow_up_call["messages"]
        assert sent[1]["tool_calls"][0]["id"] == "c1"
        assert sent[2]["role"] == "tool"
        assert sent[2]["tool_call_id"] == "c1"

    @pytest.mark.asyncio
    async def test_tool_errors_become_results(self, tmp_path):
        llm = FakeLLM(
            LLMResponse(
                content="",
                tool_calls=[
                    LLMToolCall(name="nope", arguments={}, call_id="c1"),
                    LLMToolCall(name="write_note", arguments={"note": "   "}, call_id="c2"),
                ],
            ),
            LLMResponse(content="Sorry."),
        )
        _, registry, messages, completion = _setup(tmp_path, llm)
        message_id = _placeholder(messages)
        await completion.complete([], message_id, "gpt-4o", "openai")

        await ToolCallRunner(messages, registry, completion).run_tool_calls(
            message_id, ToolCallOptions(model="gpt-4o", provider="openai")
        )

        tool_messages = [m for m in messages.messages("g1") if m.role == "tool"]
        payloads = [json.loads(m.content.split("\n", 1)[1]) for m in tool_messages]
        assert "Unknown tool" in payloads[0]["error"]
        assert "empty" in payloads[1]["error"]
        assert messages.messages("g1")[-1].content == "Sorry."

    @pytest.mark.asyncio
    async def test_message_without_tools_just_clears_flag(self, tmp_path):
        _, registry, messages, _ = _setup(tmp_path, FakeLLM())
        message_id = _placeholder(messages)
        messages.dispatch_update(message_id, {"tools_calling": True})
        completion = MagicMock()
        completion.complete = AsyncMock()

        await ToolCallRunner(messages, registry, completion).run_tool_calls(
            message_id, ToolCallOptions(model="gpt-4o", provider="openai")
        )

        assert messages.get(message_id).tools_calling is False
        completion.complete.assert_not_awaited()
