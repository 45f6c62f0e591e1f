"""Fan-out/fan-in execution of a supervisor decision batch."""

from __future__ import annotations

import asyncio
import logging

from groupchat.agent_task import AgentResponseTask
from groupchat.models import Decision
from groupchat.scheduler import DecisionScheduler

LOGGER = logging.getLogger(__name__)


class AgentResponseExecutor:
    """Runs every decided agent concurrently, then re-arms the scheduler once."""

    def __init__(
        self,
        agent_task: AgentResponseTask,
        scheduler: DecisionScheduler,
        max_autonomous_rounds: int | None = None,
    ) -> None:
        self._agent_task = agent_task
        self._scheduler = scheduler
        self._max_autonomous_rounds = max_autonomous_rounds
        self._rounds: dict[str, int] = {}

    def rounds(self, group_id: str) -> int:
        return self._rounds.get(group_id, 0)

    def reset_rounds(self, group_id: str) -> None:
        self._rounds = {k: v for k, v in self._rounds.items() if k != group_id}

    def rearm_allowed(self, group_id: str) -> bool:
        """False once the group has used up its autonomous rounds; the current batch counts."""

        return not (self._max_autonomous_rounds and self.rounds(group_id) >= self._max_autonomous_rounds)

    async def run(self, group_id: str, decisions: list[Decision]) -> None:
        if not decisions:
            return

        self._rounds = {**self._rounds, group_id: self.rounds(group_id) + 1}
        tasks = [
            asyncio.create_task(
                self._agent_task.run(group_id, decision.agent_id, decision.target_id),
                name=f"agent-{group_id}-{decision.agent_id}",
            )
            for decision in decisions
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for decision, result in zip(decisions, results):
            if isinstance(result, BaseException):
                LOGGER.error(
                    "Agent %s failed in group %s: %r", decision.agent_id, group_id, result
                )

        if not self.rearm_allowed(group_id):
            LOGGER.warning(
                "Group %s reached %d consecutive autonomous rounds; waiting for a new user message",
                group_id,
                self._max_autonomous_rounds,
            )
            return
        self._scheduler.trigger(group_id)
