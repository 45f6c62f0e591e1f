"""Tests for the @command dispatch system."""

from __future__ import annotations

import pytest
import pytest_asyncio

from groupchat.cancellation import CancellationToken
from groupchat.commands import CommandDispatcher, parse_command
from groupchat.db import Database
from groupchat.models import Agent, LLMResponse
from groupchat.runtime import GroupChatRuntime
from groupchat.tools.registry import ToolRegistry


class FakeLLM:
    async def generate(self, messages, tools=None, response_format=None, model=None, provider=None):  # noqa: ANN001, ANN201
        return LLMResponse(content="llm reply")


class SilentDecisionFunction:
    async def decide(self, context):  # noqa: ANN001, ANN201
        return []


@pytest_asyncio.fixture
async def env(tmp_path):
    db = Database(tmp_path / "groupchat.db")
    db.initialize()
    runtime = GroupChatRuntime(
        db=db,
        llm=FakeLLM(),
        tool_registry=ToolRegistry(db),
        request_timeout_seconds=5,
        max_autonomous_rounds=3,
        decision_fn=SilentDecisionFunction(),
    )
    runtime.switch_session("group-1")
    yield runtime, CommandDispatcher(runtime, db), db
    await runtime.aclose()


# ===========================================================================
# parse_command
# ===========================================================================


class TestParseCommand:
    def test_regular_text_returns_none(self):
        assert parse_command("hello world") is None

    def test_empty_string_returns_none(self):
        assert parse_command("") is None

    def test_at_sign_alone_returns_none(self):
        assert parse_command("@") is None

    def test_at_sign_with_whitespace_only_returns_none(self):
        assert parse_command("@   ") is None

    def test_command_with_no_args(self):
        assert parse_command("@agents") == ("agents", [])

    def test_command_with_args(self):
        assert parse_command("@agent add a openai gpt-4o") == ("agent", ["add", "a", "openai", "gpt-4o"])

    def test_command_keyword_is_lowercased(self):
        assert parse_command("@SPEED fast") == ("speed", ["fast"])

    def test_leading_trailing_whitespace_stripped(self):
        assert parse_command("  @stop  ") == ("stop", [])

    def test_args_case_preserved(self):
        cmd, args = parse_command("@nick Sam")  # type: ignore[misc]
        assert args == ["Sam"]


# ===========================================================================
# CommandDispatcher.dispatch
# ===========================================================================


class TestCommandDispatcherRouting:
    @pytest.mark.asyncio
    async def test_plain_message_returns_none(self, env):
        _, dispatcher, _ = env
        assert await dispatcher.dispatch("group-1", "hello world") is None

    @pytest.mark.asyncio
    async def test_unknown_command_returns_none(self, env):
        _, dispatcher, _ = env
        assert await dispatcher.dispatch("group-1", "@foobar something") is None


class TestRosterCommands:
    @pytest.mark.asyncio
    async def test_add_list_and_remove_agent(self, env):
        _, dispatcher, db = env

        assert "No agents" in await dispatcher.dispatch("group-1", "@agents")
        reply = await dispatcher.dispatch("group-1", "@agent add a openai gpt-4o Alice the Poet")
        assert reply == "Added Alice the Poet (a)."

        listing = await dispatcher.dispatch("group-1", "@agents")
        assert "Alice the Poet (id: a, openai/gpt-4o)" in listing

        assert await dispatcher.dispatch("group-1", "@agent remove a") == "Removed a."
        assert await dispatcher.dispatch("group-1", "@agent remove a") == "No agent with id a."
        assert db.list_agents("group-1") == []

    @pytest.mark.asyncio
    async def test_title_defaults_to_id(self, env):
        _, dispatcher, db = env
        await dispatcher.dispatch("group-1", "@agent add bob anthropic claude")
        assert db.list_agents("group-1")[0].title == "bob"

    @pytest.mark.asyncio
    async def test_user_id_is_reserved(self, env):
        _, dispatcher, db = env
        reply = await dispatcher.dispatch("group-1", "@agent add user openai gpt-4o")
        assert "reserved" in reply
        assert db.list_agents("group-1") == []

    @pytest.mark.asyncio
    async def test_malformed_agent_command_returns_usage(self, env):
        _, dispatcher, _ = env
        assert (await dispatcher.dispatch("group-1", "@agent add a")).startswith("Usage")
        assert (await dispatcher.dispatch("group-1", "@agent")).startswith("Usage")
        assert (await dispatcher.dispatch("group-1", "@agent rename a")).startswith("Usage")

    @pytest.mark.asyncio
    async def test_persona_updates_system_role(self, env):
        _, dispatcher, db = env
        db.upsert_agent("group-1", Agent(id="a", title="Alice", provider="openai", model="gpt-4o"))

        reply = await dispatcher.dispatch("group-1", "@persona a You are a grumpy pirate.")

        assert reply == "Persona for Alice updated."
        assert db.list_agents("group-1")[0].system_role == "You are a grumpy pirate."
        assert await dispatcher.dispatch("group-1", "@persona zed hi") == "No agent with id zed."


class TestConfigCommands:
    @pytest.mark.asyncio
    async def test_speed(self, env):
        runtime, dispatcher, _ = env

        assert await dispatcher.dispatch("group-1", "@speed FAST") == "Response speed set to fast."
        assert runtime.group_configs.config("group-1").response_speed == "fast"

        assert (await dispatcher.dispatch("group-1", "@speed warp")).startswith("Usage")
        assert runtime.group_configs.config("group-1").response_speed == "fast"

        await dispatcher.dispatch("group-1", "@speed default")
        assert runtime.group_configs.config("group-1").response_speed is None

    @pytest.mark.asyncio
    async def test_orchestrator_and_prompt(self, env):
        runtime, dispatcher, _ = env

        await dispatcher.dispatch("group-1", "@orchestrator anthropic claude-sonnet")
        await dispatcher.dispatch("group-1", "@prompt Keep it short.")

        config = runtime.group_configs.config("group-1")
        assert (config.orchestrator_provider, config.orchestrator_model) == ("anthropic", "claude-sonnet")
        assert config.system_prompt == "Keep it short."

        assert await dispatcher.dispatch("group-1", "@prompt") == "Group system prompt cleared."
        assert runtime.group_configs.config("group-1").system_prompt is None

    @pytest.mark.asyncio
    async def test_nick(self, env):
        runtime, dispatcher, _ = env

        assert await dispatcher.dispatch("group-1", "@nick") == "You are User."
        assert await dispatcher.dispatch("group-1", "@nick Captain Sam") == "You are now Captain Sam."
        assert runtime.profile.nickname() == "Captain Sam"


class TestConversationCommands:
    @pytest.mark.asyncio
    async def test_dm_sends_targeted_message_and_arms_supervisor(self, env):
        runtime, dispatcher, db = env
        db.upsert_agent("group-1", Agent(id="a", title="Alice", provider="openai", model="gpt-4o"))

        reply = await dispatcher.dispatch("group-1", "@dm a just between us")

        assert reply == "Direct message sent to a."
        [message] = runtime.messages.messages("group-1")
        assert (message.content, message.target_id) == ("just between us", "a")
        assert runtime.scheduler.pending("group-1")

    @pytest.mark.asyncio
    async def test_dm_to_unknown_agent(self, env):
        runtime, dispatcher, _ = env
        assert await dispatcher.dispatch("group-1", "@dm zed hello") == "No agent with id zed."
        assert runtime.messages.messages("group-1") == []

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_work(self, env):
        runtime, dispatcher, _ = env
        await runtime.send_group_message("group-1", "hello")
        token = CancellationToken()
        runtime.registry.put_token("group-1", token)

        reply = await dispatcher.dispatch("group-1", "@stop")

        assert reply.startswith("Stopped")
        assert not runtime.scheduler.pending("group-1")
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_topic_switch(self, env):
        runtime, dispatcher, _ = env
        await runtime.send_group_message("group-1", "hello")

        assert await dispatcher.dispatch("group-1", "@topic ideas") == "Switched to topic ideas."
        assert runtime.session.active_topic_id == "ideas"
        assert not runtime.scheduler.pending("group-1")

        await dispatcher.dispatch("group-1", "@topic")
        assert runtime.session.active_topic_id is None

    @pytest.mark.asyncio
    async def test_clear(self, env):
        runtime, dispatcher, db = env
        await runtime.send_group_message("group-1", "hello")

        assert await dispatcher.dispatch("group-1", "@clear") == "Conversation history cleared."
        assert runtime.messages.messages("group-1") == []
        assert db.list_messages("group-1") == []
        assert not runtime.scheduler.pending("group-1")

    @pytest.mark.asyncio
    async def test_status(self, env):
        runtime, dispatcher, _ = env

        assert "supervisor idle" in await dispatcher.dispatch("group-1", "@status")
        await runtime.send_group_message("group-1", "hello")
        status = await dispatcher.dispatch("group-1", "@status")
        assert "waiting to decide" in status
        assert "speed=default" in status
        assert "rounds since your last message=0" in status
