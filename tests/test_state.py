import pytest

from helperapp.entities import Archetype
from helperapp.errors import GameLogicError, StateDocumentError
from helperapp.games.state import (
    DuelState,
    EscalatingState,
    RoundPhase,
    RoundsState,
    decode_state,
)


def test_decode_state_returns_variant_for_archetype():
    document = EscalatingState(rolls=[4, 5], multiplier=180, turn=2, prompt_handle="77").to_document()

    state = decode_state(Archetype.ESCALATING, document)

    assert isinstance(state, EscalatingState)
    assert state.rolls == [4, 5]
    assert state.multiplier == 180
    assert state.prompt_handle == "77"


def test_rounds_state_keeps_phase():
    document = RoundsState(
        round=3, shots=2, phase=RoundPhase.ROUND_FAILED_PENDING_CHOICE, rolls=[2, 3]
    ).to_document()

    state = decode_state(Archetype.ROUNDS, document)

    assert state.phase is RoundPhase.ROUND_FAILED_PENDING_CHOICE
    assert state.round == 3


def test_decode_state_rejects_foreign_tag():
    document = EscalatingState().to_document()

    with pytest.raises(StateDocumentError):
        decode_state(Archetype.ROUNDS, document)


@pytest.mark.parametrize(
    "document",
    [
        {},
        {"kind": "escalating", "rolls": [1], "multiplier": 100},
        {"kind": "escalating", "rolls": ["4"], "multiplier": 100, "turn": 1},
        {"kind": "escalating", "rolls": [4, 5], "multiplier": 100, "turn": 1},
        {"kind": "escalating", "rolls": [], "multiplier": True, "turn": 0},
    ],
)
def test_malformed_escalating_documents_are_rejected(document):
    with pytest.raises(StateDocumentError):
        decode_state(Archetype.ESCALATING, document)


def test_malformed_rounds_phase_is_rejected():
    document = RoundsState().to_document()
    document["phase"] = "halftime"

    with pytest.raises(StateDocumentError):
        decode_state(Archetype.ROUNDS, document)


def test_duel_rolls_must_be_keyed_by_both_actors():
    document = DuelState(
        first_actor="1", second_actor="2", rolls={"1": [], "2": []}, current_turn="1"
    ).to_document()
    document["rolls"] = {"1": [], "3": []}

    with pytest.raises(StateDocumentError):
        decode_state(Archetype.DUEL, document)


def test_state_document_error_is_a_game_logic_error():
    assert issubclass(StateDocumentError, GameLogicError)
