import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

import groupchat.scheduler as scheduler_module
from groupchat.cancellation import CancellationRegistry, CancellationToken, LoadingFlags
from groupchat.models import GroupConfig
from groupchat.scheduler import DecisionScheduler, debounce_ms


def _scheduler(handler=None, speed=None):
    configs = MagicMock()
    configs.config.return_value = GroupConfig(response_speed=speed)
    registry = CancellationRegistry()
    loading = LoadingFlags()
    scheduler = DecisionScheduler(registry, loading, configs, handler or AsyncMock())
    return scheduler, registry, loading


@pytest.fixture
def short_debounce(monkeypatch):
    monkeypatch.setattr(scheduler_module, "debounce_seconds", lambda speed: 0.01)


@pytest.mark.parametrize(
    ("speed", "expected"),
    [("fast", 3000), ("medium", 5000), ("slow", 8000), (None, 5000), ("warp", 5000)],
)
def test_debounce_table(speed, expected):
    assert debounce_ms(speed) == expected


@pytest.mark.asyncio
async def test_trigger_arms_timer_with_configured_delay():
    scheduler, registry, _ = _scheduler(speed="fast")
    scheduler.trigger("g1")

    handle = registry.take_timer("g1")
    try:
        delay = handle.when() - asyncio.get_running_loop().time()
        assert delay == pytest.approx(3.0, abs=0.2)
    finally:
        handle.cancel()


@pytest.mark.asyncio
async def test_rapid_triggers_run_handler_once(short_debounce):
    handler = AsyncMock()
    scheduler, registry, _ = _scheduler(handler)

    scheduler.trigger("g1")
    scheduler.trigger("g1")
    await asyncio.sleep(0.1)

    handler.assert_awaited_once_with("g1")
    assert registry.group_ids() == []


@pytest.mark.asyncio
async def test_timer_removes_itself_before_handler_runs(short_debounce):
    seen = []

    async def handler(group_id):
        seen.append(scheduler.pending(group_id))

    scheduler, _, _ = _scheduler(handler)
    scheduler.trigger("g1")
    await asyncio.sleep(0.1)

    assert seen == [False]


@pytest.mark.asyncio
async def test_trigger_aborts_in_flight_token():
    scheduler, registry, loading = _scheduler()
    token = CancellationToken()
    registry.put_token("g1", token)
    loading.set("g1", True)

    scheduler.trigger("g1")
    try:
        assert token.cancelled
        assert registry.peek_token("g1") is None
        assert not loading.is_loading("g1")
        assert scheduler.pending("g1")
    finally:
        scheduler.cancel("g1")


@pytest.mark.asyncio
async def test_cancel_without_pending_work_still_clears_loading():
    scheduler, registry, loading = _scheduler()
    loading.set("g1", True)

    scheduler.cancel("g1")

    assert not loading.is_loading("g1")
    assert registry.group_ids() == []


@pytest.mark.asyncio
async def test_cancel_stops_pending_timer(short_debounce):
    handler = AsyncMock()
    scheduler, _, _ = _scheduler(handler)

    scheduler.trigger("g1")
    scheduler.cancel("g1")
    await asyncio.sleep(0.1)

    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_all_empties_registry():
    handler = AsyncMock()
    scheduler, registry, loading = _scheduler(handler)
    scheduler.trigger("g1")
    scheduler.trigger("g2")
    token = CancellationToken()
    registry.put_token("g3", token)
    loading.set("g3", True)

    cancelled = scheduler.cancel_all()

    assert cancelled == ["g1", "g2", "g3"]
    assert registry.group_ids() == []
    assert token.cancelled
    assert loading.active() == []


@pytest.mark.asyncio
async def test_groups_are_scheduled_independently(short_debounce):
    handler = AsyncMock()
    scheduler, _, _ = _scheduler(handler)

    scheduler.trigger("g1")
    scheduler.trigger("g2")
    await asyncio.sleep(0.1)

    assert sorted(call.args[0] for call in handler.await_args_list) == ["g1", "g2"]


@pytest.mark.asyncio
async def test_handler_failure_is_logged_not_raised(short_debounce, caplog):
    handler = AsyncMock(side_effect=RuntimeError("boom"))
    scheduler, _, _ = _scheduler(handler)

    with caplog.at_level(logging.ERROR):
        scheduler.trigger("g1")
        await asyncio.sleep(0.1)

    assert "Supervisor decision failed for group g1" in caplog.text


@pytest.mark.asyncio
async def test_aclose_waits_for_running_decision_and_blocks_new_triggers(short_debounce):
    finished = []

    async def handler(group_id):
        await asyncio.sleep(0.05)
        finished.append(group_id)

    scheduler, registry, _ = _scheduler(handler)
    scheduler.trigger("g1")
    await asyncio.sleep(0.03)

    await scheduler.aclose()
    scheduler.trigger("g1")

    assert finished == ["g1"]
    assert registry.group_ids() == []
