import pytest

from helperapp.config import GAME_CONSTANTS
from helperapp.entities import (
    ActionKind,
    Participant,
    SessionSnapshot,
    SessionStatus,
    TurnAction,
)
from helperapp.errors import GameLogicError, InvalidTurnError
from helperapp.games.duel import DuelRules, DuelSettings, build_scoring_rule

ALICE = Participant("1001", "Alice")
BOB = Participant("2002", "Bob")


def _session(stake: int = 1000, opponent=BOB) -> SessionSnapshot:
    return SessionSnapshot(
        session_id="duel-1",
        status=SessionStatus.IN_PROGRESS,
        game_type="duel",
        stake_amount=stake,
        final_payout=0,
        initiator=ALICE,
        opponent=opponent,
        channel_ref="-100500",
    )


def _roll(actor: Participant, value: int) -> TurnAction:
    return TurnAction(session_id="duel-1", actor_id=actor.actor_id, kind=ActionKind.ROLL, value=value)


@pytest.fixture
def rules() -> DuelRules:
    return DuelRules(DuelSettings.from_mapping(GAME_CONSTANTS.duel))


def _play(rules, session, first_rolls, second_rolls):
    state = rules.initial_state(session)
    result = None
    for value in first_rolls:
        result = rules.apply(session, state, _roll(ALICE, value))
        state = result.state
    for value in second_rolls:
        result = rules.apply(session, state, _roll(BOB, value))
        state = result.state
    return result


def test_initiator_rolls_full_quota_before_opponent(rules):
    session = _session()
    state = rules.initial_state(session)
    assert rules.turn_owner(session, state) == ALICE.actor_id

    for value in (3, 4, 5):
        state = rules.apply(session, state, _roll(ALICE, value)).state

    assert rules.turn_owner(session, state) == BOB.actor_id
    assert state.rolls_for(ALICE.actor_id) == [3, 4, 5]


@pytest.mark.parametrize(
    "first, second, status, payout",
    [
        ([6, 6, 6], [1, 1, 1], SessionStatus.COMPLETED_P1_WIN, 2500),
        ([4, 4, 4], [1, 1, 1], SessionStatus.COMPLETED_P1_WIN, 2000),
        ([3, 3, 3], [1, 1, 1], SessionStatus.COMPLETED_P1_WIN, 1900),
        ([2, 2, 2], [3, 3, 3], SessionStatus.COMPLETED_P2_WIN, 0),
        ([5, 2, 3], [4, 4, 2], SessionStatus.COMPLETED_PUSH, 1000),
    ],
)
def test_duel_outcomes_and_payouts(rules, first, second, status, payout):
    session = _session()
    result = _play(rules, session, first, second)

    assert result.terminal is status
    assert rules.payout(session, result.state, result.terminal) == payout
    assert rules.allowed_actions(result.state) == ()


def test_out_of_turn_roll_is_rejected(rules):
    session = _session()
    state = rules.initial_state(session)

    with pytest.raises(InvalidTurnError) as excinfo:
        rules.apply(session, state, _roll(BOB, 6))
    assert excinfo.value.reason == "out_of_turn"


def test_non_roll_actions_are_rejected(rules):
    session = _session()
    state = rules.initial_state(session)
    action = TurnAction(session_id="duel-1", actor_id=ALICE.actor_id, kind=ActionKind.CASHOUT)

    with pytest.raises(InvalidTurnError):
        rules.apply(session, state, action)


def test_duel_without_opponent_is_a_logic_error(rules):
    with pytest.raises(GameLogicError):
        rules.initial_state(_session(opponent=None))


def test_duel_against_self_is_a_logic_error(rules):
    with pytest.raises(GameLogicError):
        rules.initial_state(_session(opponent=ALICE))


def test_threshold_scoring_counts_hits():
    score = build_scoring_rule({"rule": "threshold", "threshold": 5})
    assert score([6, 5, 4, 1]) == 2


def test_unknown_scoring_rule_is_rejected():
    with pytest.raises(ValueError):
        build_scoring_rule({"rule": "median"})


def test_idle_initiator_times_out_with_nothing_paid(rules):
    session = _session()
    state = rules.apply(session, rules.initial_state(session), _roll(ALICE, 6)).state

    status = rules.timeout_status(session, state)

    assert status is SessionStatus.COMPLETED_TIMEOUT
    assert rules.payout(session, state, status) == 0


def test_idle_opponent_forfeits_to_initiator_score(rules):
    session = _session()
    state = rules.initial_state(session)
    for value in (6, 6, 6):
        state = rules.apply(session, state, _roll(ALICE, value)).state
    state = rules.apply(session, state, _roll(BOB, 2)).state

    status = rules.timeout_status(session, state)

    assert status is SessionStatus.COMPLETED_P1_WIN
    assert rules.payout(session, state, status) == 2500
