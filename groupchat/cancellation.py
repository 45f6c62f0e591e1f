"""Per-group bookkeeping for pending debounce timers and in-flight decisions.

The registry holds at most one timer handle and one cancellation token per
group. Every mutation swaps in a fresh dict so a reader iterating over a
snapshot never sees a half-applied change.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class DecisionCancelled(Exception):
    """Raised when a supervisor decision is aborted through its token."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Supervisor decision cancelled")
        self.reason = reason


class CancellationToken:
    """Cooperative cancellation signal handed to the decision function."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise DecisionCancelled(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, abandoning it if the token fires first."""

        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()
        if not work.done():
            work.cancel()
            raise DecisionCancelled(self._reason)
        return work.result()


class CancellationRegistry:
    """Single-slot storage of timer handles and tokens, keyed by group id."""

    def __init__(self) -> None:
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tokens: dict[str, CancellationToken] = {}

    def put_timer(self, group_id: str, handle: asyncio.TimerHandle) -> None:
        self._timers = {**self._timers, group_id: handle}

    def take_timer(self, group_id: str) -> asyncio.TimerHandle | None:
        handle = self._timers.get(group_id)
        if handle is not None:
            self._timers = {k: v for k, v in self._timers.items() if k != group_id}
        return handle

    def has_timer(self, group_id: str) -> bool:
        return group_id in self._timers

    def put_token(self, group_id: str, token: CancellationToken) -> None:
        self._tokens = {**self._tokens, group_id: token}

    def take_token(self, group_id: str) -> CancellationToken | None:
        token = self._tokens.get(group_id)
        if token is not None:
            self._tokens = {k: v for k, v in self._tokens.items() if k != group_id}
        return token

    def peek_token(self, group_id: str) -> CancellationToken | None:
        return self._tokens.get(group_id)

    def discard_token(self, group_id: str, token: CancellationToken) -> bool:
        """Remove *token* only if it still occupies the group's slot."""

        if self._tokens.get(group_id) is not token:
            return False
        self.take_token(group_id)
        return True

    def clear(self, group_id: str) -> None:
        self.take_timer(group_id)
        self.take_token(group_id)

    def group_ids(self) -> list[str]:
        return sorted(set(self._timers) | set(self._tokens))

    def clear_all(self) -> list[str]:
        """Drop every entry and return the groups that had one."""

        removed = self.group_ids()
        if removed:
            self._timers = {}
            self._tokens = {}
            LOGGER.debug("Cleared cancellation registry for groups %s", removed)
        return removed


class LoadingFlags:
    """Per-group "supervisor is deciding" flags."""

    def __init__(self) -> None:
        self._flags: frozenset[str] = frozenset()

    def set(self, group_id: str, loading: bool) -> None:
        if loading:
            self._flags = self._flags | {group_id}
        else:
            self._flags = self._flags - {group_id}

    def is_loading(self, group_id: str) -> bool:
        return group_id in self._flags

    def active(self) -> list[str]:
        return sorted(self._flags)
