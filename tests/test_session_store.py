"""Tests for the transactional session store."""

import asyncio
import datetime as dt

import pytest

from helperapp.entities import SessionStatus
from helperapp.errors import GameLogicError, HelperError
from helperapp.utils.time_utils import now_utc


def _initialise(snapshot):
    return {"kind": snapshot.game_type, "seed": snapshot.session_id}


@pytest.mark.asyncio
async def test_claim_moves_pending_session_to_in_progress(session_store, insert_session):
    await insert_session(session_id="s-1")

    claimed = await session_store.claim("s-1", "worker-a", _initialise)

    assert claimed is not None
    assert claimed.status is SessionStatus.IN_PROGRESS
    assert claimed.helper_bot_id == "worker-a"
    assert claimed.state == {"kind": "escalating", "seed": "s-1"}
    assert claimed.version == 1


@pytest.mark.asyncio
async def test_second_claim_loses(session_store, insert_session):
    await insert_session(session_id="s-1")

    first = await session_store.claim("s-1", "worker-a", _initialise)
    second = await session_store.claim("s-1", "worker-b", _initialise)

    assert first is not None
    assert second is None
    stored = await session_store.get("s-1")
    assert stored.helper_bot_id == "worker-a"


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(session_store, insert_session):
    await insert_session(session_id="s-race")

    results = await asyncio.gather(
        *(session_store.claim("s-race", f"worker-{idx}", _initialise) for idx in range(4))
    )

    winners = [result for result in results if result is not None]
    assert len(winners) == 1
    stored = await session_store.get("s-race")
    assert stored.helper_bot_id == winners[0].helper_bot_id


@pytest.mark.asyncio
async def test_claim_of_missing_session_returns_none(session_store):
    assert await session_store.claim("nope", "worker-a", _initialise) is None


@pytest.mark.asyncio
async def test_failed_initialisation_forces_error_in_same_transaction(
    session_store, insert_session
):
    await insert_session(session_id="s-bad")

    def _broken(snapshot):
        raise GameLogicError("cannot start", session_id=snapshot.session_id)

    claimed = await session_store.claim("s-bad", "worker-a", _broken)

    assert claimed.status is SessionStatus.ERROR
    assert claimed.final_payout == 0
    stored = await session_store.get("s-bad")
    assert stored.status is SessionStatus.ERROR


@pytest.mark.asyncio
async def test_write_state_increments_version(session_store, insert_session):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", _initialise)

    async with session_store.locked("s-1") as locked:
        updated = locked.write_state({"kind": "escalating", "step": 2})

    assert updated.version == 2
    stored = await session_store.get("s-1")
    assert stored.state == {"kind": "escalating", "step": 2}


@pytest.mark.asyncio
async def test_terminal_sessions_are_frozen(session_store, insert_session):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", _initialise)

    async with session_store.locked("s-1") as locked:
        locked.write_terminal(SessionStatus.COMPLETED_LOSS, 0)

    async with session_store.locked("s-1") as locked:
        with pytest.raises(HelperError):
            locked.write_state({"kind": "escalating"})
        with pytest.raises(HelperError):
            locked.write_terminal(SessionStatus.COMPLETED_WIN, 10)


@pytest.mark.asyncio
async def test_write_terminal_validates_status_and_payout(session_store, insert_session):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", _initialise)

    async with session_store.locked("s-1") as locked:
        with pytest.raises(HelperError):
            locked.write_terminal(SessionStatus.IN_PROGRESS, 0)
        with pytest.raises(HelperError):
            locked.write_terminal(SessionStatus.COMPLETED_WIN, -1)


@pytest.mark.asyncio
async def test_exception_inside_lock_rolls_back(session_store, insert_session):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", _initialise)

    with pytest.raises(RuntimeError):
        async with session_store.locked("s-1") as locked:
            locked.write_state({"kind": "escalating", "step": 99})
            raise RuntimeError("boom")

    stored = await session_store.get("s-1")
    assert stored.version == 1
    assert "step" not in stored.state


@pytest.mark.asyncio
async def test_locked_yields_none_for_missing_row(session_store):
    async with session_store.locked("missing") as locked:
        assert locked is None


@pytest.mark.asyncio
async def test_list_pending_returns_oldest_first_within_limit(session_store, insert_session):
    base = now_utc() - dt.timedelta(minutes=10)
    await insert_session(session_id="s-new", created_at=base + dt.timedelta(minutes=3))
    await insert_session(session_id="s-old", created_at=base)
    await insert_session(session_id="s-mid", created_at=base + dt.timedelta(minutes=1))

    assert await session_store.list_pending(2) == ["s-old", "s-mid"]


@pytest.mark.asyncio
async def test_list_stale_in_progress_reports_versions(session_store, insert_session):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", _initialise)

    assert await session_store.list_stale_in_progress(now_utc() - dt.timedelta(minutes=5), 5) == []
    stale = await session_store.list_stale_in_progress(now_utc() + dt.timedelta(seconds=1), 5)

    assert stale == [("s-1", 1)]


@pytest.mark.asyncio
async def test_attach_prompt_handle_requires_matching_version(session_store, insert_session):
    await insert_session(session_id="s-1")
    await session_store.claim("s-1", "worker-a", _initialise)

    assert await session_store.attach_prompt_handle("s-1", 0, "55") is False
    assert await session_store.attach_prompt_handle("s-1", 1, "56") is True

    stored = await session_store.get("s-1")
    assert stored.state["prompt_handle"] == "56"
    assert stored.version == 1


@pytest.mark.asyncio
async def test_list_owned_in_progress_filters_by_worker(session_store, insert_session):
    await insert_session(session_id="s-1")
    await insert_session(session_id="s-2")
    await session_store.claim("s-1", "worker-a", _initialise)
    await session_store.claim("s-2", "worker-b", _initialise)

    owned = await session_store.list_owned_in_progress("worker-a")

    assert [snapshot.session_id for snapshot in owned] == ["s-1"]
