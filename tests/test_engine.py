from dataclasses import replace

import pytest

from helperapp.entities import (
    ActionKind,
    Participant,
    SessionSnapshot,
    SessionStatus,
    TurnAction,
)
from helperapp.errors import GameLogicError, InvalidTurnError, UnknownArchetypeError


def _session(game_type: str, **overrides) -> SessionSnapshot:
    base = SessionSnapshot(
        session_id="eng-1",
        status=SessionStatus.IN_PROGRESS,
        game_type=game_type,
        stake_amount=1000,
        final_payout=0,
        initiator=Participant("1001", "Alice"),
        opponent=Participant("2002", "Bob"),
        channel_ref="-100500",
        helper_bot_id="worker-a",
    )
    return replace(base, **overrides)


def _started(engine, game_type: str) -> SessionSnapshot:
    session = _session(game_type)
    return replace(session, state=engine.initial_document(session))


def test_unknown_archetype_is_rejected(game_engine):
    with pytest.raises(UnknownArchetypeError):
        game_engine.rules_for("roulette")


def test_initial_document_is_tagged_with_archetype(game_engine):
    for game_type in ("escalating", "rounds", "duel"):
        assert game_engine.initial_document(_session(game_type))["kind"] == game_type


def test_roll_outside_dice_alphabet_is_rejected(game_engine):
    session = _started(game_engine, "escalating")
    action = TurnAction(session_id="eng-1", actor_id="1001", value=7)

    with pytest.raises(InvalidTurnError) as excinfo:
        game_engine.advance(session, action)
    assert excinfo.value.reason == "bad_roll"


def test_actor_must_own_the_turn(game_engine):
    session = _started(game_engine, "escalating")
    action = TurnAction(session_id="eng-1", actor_id="2002", value=4)

    with pytest.raises(InvalidTurnError) as excinfo:
        game_engine.advance(session, action)
    assert excinfo.value.reason == "out_of_turn"


def test_advance_does_not_mutate_the_snapshot(game_engine):
    session = _started(game_engine, "rounds")
    before = dict(session.state)

    result = game_engine.advance(
        session, TurnAction(session_id="eng-1", actor_id="1001", value=5)
    )

    assert session.state == before
    assert result.state.round == 2


def test_malformed_state_surfaces_as_logic_error(game_engine):
    session = _session("rounds", state={"kind": "rounds", "round": "two"})

    with pytest.raises(GameLogicError):
        game_engine.advance(
            session, TurnAction(session_id="eng-1", actor_id="1001", value=5)
        )


def test_settle_error_and_timeout_pay_nothing(game_engine):
    session = _started(game_engine, "escalating")

    errored = game_engine.settle(session, SessionStatus.ERROR)
    timed_out = game_engine.settle(session, SessionStatus.COMPLETED_TIMEOUT)

    assert errored.payout == 0
    assert errored.state is None
    assert timed_out.status is SessionStatus.COMPLETED_TIMEOUT
    assert timed_out.payout == 0
    assert timed_out.state["kind"] == "escalating"
    assert timed_out.state["timed_out_actor"] == "1001"


def test_prompt_for_describes_pending_decision(game_engine):
    session = _started(game_engine, "duel")

    prompt = game_engine.prompt_for(session, timeout_seconds=60)

    assert prompt.actor_id == "1001"
    assert prompt.actor_name == "Alice"
    assert prompt.allowed_actions == (ActionKind.ROLL,)
    assert prompt.details["shots_per_player"] == 3
    assert prompt.timeout_seconds == 60


def test_turn_owner_follows_duel_progress(game_engine):
    session = _started(game_engine, "duel")
    for value in (1, 2, 3):
        result = game_engine.advance(
            session, TurnAction(session_id="eng-1", actor_id="1001", value=value)
        )
        session = replace(session, state=result.state.to_document())

    assert game_engine.turn_owner(session) == "2002"
