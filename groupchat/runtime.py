"""Wires the group-chat orchestration core together."""

from __future__ import annotations

import logging

from groupchat.agent_task import AgentResponseTask
from groupchat.cancellation import CancellationRegistry, LoadingFlags
from groupchat.completion import CompletionService
from groupchat.config import Settings
from groupchat.db import Database
from groupchat.executor import AgentResponseExecutor
from groupchat.llm.base import LLMProvider
from groupchat.scheduler import DecisionScheduler
from groupchat.stores import GroupConfigStore, MessageListener, MessageStore, SessionStore, UserProfileStore
from groupchat.supervisor import DecisionFunction, LLMDecisionFunction, SupervisorInvoker
from groupchat.tool_calls import ToolCallRunner
from groupchat.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


class GroupChatRuntime:
    """Session-scoped owner of the scheduler, registry and stores.

    One instance lives for the application's running session. Switching the
    active group or topic, and shutting down, cancel every pending decision.
    """

    def __init__(
        self,
        db: Database,
        llm: LLMProvider,
        tool_registry: ToolRegistry,
        request_timeout_seconds: float,
        max_autonomous_rounds: int | None = None,
        decision_fn: DecisionFunction | None = None,
        user_nickname: str | None = None,
        listener: MessageListener | None = None,
    ) -> None:
        self.registry = CancellationRegistry()
        self.loading = LoadingFlags()
        self.messages = MessageStore(db, listener=listener)
        self.session = SessionStore(db)
        self.group_configs = GroupConfigStore(db)
        self.profile = UserProfileStore(db, default_nickname=user_nickname)
        self._db = db
        self._creating_message = False

        completion = CompletionService(llm, self.messages, tool_registry, request_timeout_seconds)
        tool_calls = ToolCallRunner(self.messages, tool_registry, completion)

        # The scheduler fires the invoker, which is built below; the lambda resolves it late.
        self.scheduler = DecisionScheduler(
            self.registry, self.loading, self.group_configs, handler=lambda group_id: self.invoker.run(group_id)
        )
        agent_task = AgentResponseTask(
            self.messages,
            self.session,
            self.profile,
            completion,
            tool_calls,
            self.scheduler,
            rearm_allowed=lambda group_id: self.executor.rearm_allowed(group_id),
        )
        self.executor = AgentResponseExecutor(agent_task, self.scheduler, max_autonomous_rounds)
        self.invoker = SupervisorInvoker(
            self.registry,
            self.loading,
            self.messages,
            self.session,
            self.group_configs,
            self.profile,
            decision_fn or LLMDecisionFunction(llm),
            self.executor,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        db: Database,
        llm: LLMProvider,
        tool_registry: ToolRegistry,
        listener: MessageListener | None = None,
    ) -> GroupChatRuntime:
        runtime = cls(
            db=db,
            llm=llm,
            tool_registry=tool_registry,
            request_timeout_seconds=settings.request_timeout_seconds,
            max_autonomous_rounds=settings.max_autonomous_rounds,
            user_nickname=settings.user_nickname,
            listener=listener,
        )
        runtime.switch_session(settings.group_id, settings.topic_id)
        return runtime

    @property
    def is_creating_message(self) -> bool:
        return self._creating_message

    def switch_session(self, group_id: str, topic_id: str | None = None) -> None:
        """Make a group/topic active, abandoning every pending decision."""

        self.scheduler.cancel_all()
        self.session.activate(group_id, topic_id)
        LOGGER.info("Active group chat is now %s (topic=%s)", group_id, topic_id)

    async def send_group_message(
        self,
        group_id: str,
        text: str,
        target_member_id: str | None = None,
        only_add_user_message: bool = False,
    ) -> int | None:
        """Record a user message and arm the supervisor for the group."""

        if not text.strip():
            return None
        if self.session.active_id != group_id:
            self.switch_session(group_id, self.session.active_topic_id)

        self._creating_message = True
        try:
            message_id = self.messages.create_message(
                {
                    "group_id": group_id,
                    "topic_id": self.session.active_topic_id,
                    "role": "user",
                    "content": text,
                    "target_id": target_member_id,
                }
            )
            await self.messages.refresh()
            if only_add_user_message:
                return message_id
            self.executor.reset_rounds(group_id)
            self.scheduler.trigger(group_id)
            return message_id
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to send group message to %s", group_id)
            return None
        finally:
            self._creating_message = False

    def stop(self, group_id: str) -> None:
        """Halt the autonomous conversation in a group until the next user message."""

        self.scheduler.cancel(group_id)
        self.executor.reset_rounds(group_id)

    def clear_history(self, group_id: str) -> None:
        self.stop(group_id)
        self._db.clear_history(group_id, self.session.active_topic_id)
        self.messages.forget(group_id, self.session.active_topic_id)

    async def aclose(self) -> None:
        await self.scheduler.aclose()
        LOGGER.info("Group chat runtime closed")
