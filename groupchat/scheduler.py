"""Debounced scheduling of supervisor decisions."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from groupchat.cancellation import CancellationRegistry, LoadingFlags
from groupchat.stores import GroupConfigStore

LOGGER = logging.getLogger(__name__)

_DEBOUNCE_MS = {"fast": 3000, "medium": 5000, "slow": 8000}
_DEFAULT_DEBOUNCE_MS = 5000


def debounce_ms(response_speed: str | None) -> int:
    """Quiet period before the supervisor runs, for a group's response speed."""

    return _DEBOUNCE_MS.get(response_speed or "", _DEFAULT_DEBOUNCE_MS)


def debounce_seconds(response_speed: str | None) -> float:
    return debounce_ms(response_speed) / 1000


class DecisionScheduler:
    """Arms one debounced supervisor run per group; the latest trigger wins."""

    def __init__(
        self,
        registry: CancellationRegistry,
        loading: LoadingFlags,
        group_configs: GroupConfigStore,
        handler: Callable[[str], Awaitable[None]],
    ) -> None:
        self._registry = registry
        self._loading = loading
        self._group_configs = group_configs
        self._handler = handler
        self._running: set[asyncio.Task[None]] = set()
        self._closed = False

    def trigger(self, group_id: str) -> None:
        """Cancel whatever is pending for the group and arm a fresh debounce."""

        self.cancel(group_id)
        if self._closed:
            LOGGER.info("Scheduler closed; not arming supervisor decision for group %s", group_id)
            return

        response_speed = self._group_configs.config(group_id).response_speed
        delay = debounce_seconds(response_speed)
        LOGGER.info(
            "Arming supervisor decision for group %s in %.1fs (responseSpeed=%s)",
            group_id,
            delay,
            response_speed,
        )
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay, self._fire, group_id)
        self._registry.put_timer(group_id, handle)

    def cancel(self, group_id: str) -> None:
        """Drop the pending timer and abort the in-flight decision, if any."""

        handle = self._registry.take_timer(group_id)
        if handle is not None:
            handle.cancel()
            LOGGER.info("Cancelled pending supervisor decision timer for group %s", group_id)

        token = self._registry.take_token(group_id)
        if token is not None:
            token.cancel("Supervisor decision superseded or cancelled")
            LOGGER.info("Aborted in-flight supervisor decision for group %s", group_id)

        self._loading.set(group_id, False)

    def cancel_all(self) -> list[str]:
        """Cancel every tracked group; used on session switch and teardown."""

        group_ids = self._registry.group_ids()
        if group_ids:
            LOGGER.info("Cancelling supervisor decisions for groups %s", group_ids)
        for group_id in group_ids:
            self.cancel(group_id)
        return group_ids

    def pending(self, group_id: str) -> bool:
        return self._registry.has_timer(group_id)

    async def aclose(self) -> None:
        """Cancel everything and wait for already-fired runs to finish."""

        self._closed = True
        self.cancel_all()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def _fire(self, group_id: str) -> None:
        self._registry.take_timer(group_id)
        LOGGER.info("Debounced supervisor decision firing for group %s", group_id)
        task = asyncio.create_task(self._run(group_id), name=f"supervisor-{group_id}")
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, group_id: str) -> None:
        try:
            await self._handler(group_id)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Supervisor decision failed for group %s", group_id)
