import asyncio
import datetime as dt
from unittest.mock import AsyncMock, MagicMock

import pytest

from helperapp.fallback_poller import FallbackPoller
from helperapp.utils.time_utils import now_utc

CLAIM_CHANNEL = "helper:session_claimable"


async def _wait_for_condition(predicate, timeout=1.0, interval=0.01):
    end_time = asyncio.get_event_loop().time() + timeout
    while not predicate():
        if asyncio.get_event_loop().time() >= end_time:
            raise TimeoutError("Condition not met within timeout")
        await asyncio.sleep(interval)


def _poller(store, bus, **kwargs):
    kwargs.setdefault("interval_seconds", 0.01)
    kwargs.setdefault("batch_size", 2)
    return FallbackPoller(store=store, bus=bus, claim_channel=CLAIM_CHANNEL, **kwargs)


@pytest.mark.asyncio
async def test_cycle_republishes_oldest_pending_sessions(session_store, insert_session, recording_bus):
    base = now_utc() - dt.timedelta(minutes=5)
    await insert_session(session_id="s-new", created_at=base + dt.timedelta(minutes=2))
    await insert_session(session_id="s-old", created_at=base)
    await insert_session(session_id="s-mid", created_at=base + dt.timedelta(minutes=1))
    poller = _poller(session_store, recording_bus)

    stats = await poller.run_cycle()

    assert stats == {"republished": 2, "orphans": 0}
    assert recording_bus.on(CLAIM_CHANNEL) == [
        {"session_id": "s-old", "source": "poller"},
        {"session_id": "s-mid", "source": "poller"},
    ]


@pytest.mark.asyncio
async def test_claimed_sessions_are_not_republished(
    session_store, insert_session, recording_bus, game_engine
):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", game_engine.initial_document)
    poller = _poller(session_store, recording_bus)

    stats = await poller.run_cycle()

    assert stats["republished"] == 0
    assert recording_bus.published == []


@pytest.mark.asyncio
async def test_orphan_sweep_reports_stale_sessions_with_version(
    session_store, insert_session, recording_bus, game_engine
):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-b", game_engine.initial_document)
    on_orphan = AsyncMock(return_value=object())
    poller = _poller(
        session_store, recording_bus, orphan_after_seconds=90, on_orphan=on_orphan
    )

    fresh = await poller.run_cycle()
    later = await poller.run_cycle(now=now_utc() + dt.timedelta(seconds=120))

    assert fresh["orphans"] == 0
    assert later["orphans"] == 1
    on_orphan.assert_awaited_once_with("s-1", 1)


@pytest.mark.asyncio
async def test_orphan_left_alone_by_handler_is_not_counted(
    session_store, insert_session, recording_bus, game_engine
):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-b", game_engine.initial_document)
    on_orphan = AsyncMock(return_value=None)
    poller = _poller(session_store, recording_bus, orphan_after_seconds=1, on_orphan=on_orphan)

    stats = await poller.run_cycle(now=now_utc() + dt.timedelta(minutes=5))

    assert stats["orphans"] == 0
    on_orphan.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_republishes_until_stopped(session_store, insert_session, recording_bus):
    await insert_session(session_id="s-1")
    poller = _poller(session_store, recording_bus)

    await poller.start()
    await _wait_for_condition(lambda: len(recording_bus.on(CLAIM_CHANNEL)) >= 2)
    await poller.stop()

    assert poller.running is False
    assert {payload["session_id"] for payload in recording_bus.on(CLAIM_CHANNEL)} == {"s-1"}


@pytest.mark.asyncio
async def test_failed_cycle_does_not_stop_loop(recording_bus):
    store = MagicMock()
    calls = {"count": 0}

    async def _list_pending(limit):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("database unavailable")
        return ["s-1"]

    store.list_pending = _list_pending
    poller = _poller(store, recording_bus)

    await poller.start()
    await _wait_for_condition(lambda: recording_bus.on(CLAIM_CHANNEL))
    await poller.stop()

    assert calls["count"] >= 2
