"""Archetype state documents.

Each archetype owns exactly one concrete state shape. The persisted JSON
document carries a ``kind`` tag naming that shape; decoding checks the tag
against the session's archetype and rejects anything malformed with
:class:`StateDocumentError`, which the coordinator turns into a terminal
``error`` status.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Union

from helperapp.entities import ActorId, Archetype
from helperapp.errors import StateDocumentError


class RoundPhase(str, enum.Enum):
    AWAITING_SHOT = "awaiting_shot"
    ROUND_FAILED_PENDING_CHOICE = "round_failed_pending_choice"


def _require(document: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in document:
        raise StateDocumentError(f"state document is missing '{key}'")
    value = document[key]
    if kind is int and isinstance(value, bool):
        raise StateDocumentError(f"state field '{key}' must be an integer")
    if not isinstance(value, kind):
        raise StateDocumentError(
            f"state field '{key}' must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _int_list(document: Mapping[str, Any], key: str) -> List[int]:
    values = _require(document, key, list)
    if not all(isinstance(item, int) and not isinstance(item, bool) for item in values):
        raise StateDocumentError(f"state field '{key}' must contain integers")
    return list(values)


def _optional_handle(document: Mapping[str, Any]) -> Optional[str]:
    handle = document.get("prompt_handle")
    return str(handle) if handle is not None else None


@dataclass
class EscalatingState:
    kind: ClassVar[Archetype] = Archetype.ESCALATING

    rolls: List[int] = field(default_factory=list)
    multiplier: int = 100
    turn: int = 0
    prompt_handle: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "rolls": list(self.rolls),
            "multiplier": self.multiplier,
            "turn": self.turn,
            "prompt_handle": self.prompt_handle,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "EscalatingState":
        state = cls(
            rolls=_int_list(document, "rolls"),
            multiplier=_require(document, "multiplier", int),
            turn=_require(document, "turn", int),
            prompt_handle=_optional_handle(document),
        )
        if state.turn != len(state.rolls) or state.multiplier < 0:
            raise StateDocumentError("escalating state is inconsistent")
        return state


@dataclass
class RoundsState:
    kind: ClassVar[Archetype] = Archetype.ROUNDS

    round: int = 1
    shots: int = 0
    phase: RoundPhase = RoundPhase.AWAITING_SHOT
    rolls: List[int] = field(default_factory=list)
    prompt_handle: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "round": self.round,
            "shots": self.shots,
            "phase": self.phase.value,
            "rolls": list(self.rolls),
            "prompt_handle": self.prompt_handle,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "RoundsState":
        raw_phase = _require(document, "phase", str)
        try:
            phase = RoundPhase(raw_phase)
        except ValueError as exc:
            raise StateDocumentError(f"unknown round phase '{raw_phase}'") from exc
        state = cls(
            round=_require(document, "round", int),
            shots=_require(document, "shots", int),
            phase=phase,
            rolls=_int_list(document, "rolls"),
            prompt_handle=_optional_handle(document),
        )
        if state.round < 1 or not 0 <= state.shots <= 2:
            raise StateDocumentError("round state is out of range")
        return state


@dataclass
class DuelState:
    kind: ClassVar[Archetype] = Archetype.DUEL

    first_actor: ActorId = ""
    second_actor: ActorId = ""
    rolls: Dict[ActorId, List[int]] = field(default_factory=dict)
    current_turn: Optional[ActorId] = None
    prompt_handle: Optional[str] = None

    def rolls_for(self, actor_id: ActorId) -> List[int]:
        return list(self.rolls.get(actor_id, []))

    def to_document(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "first_actor": self.first_actor,
            "second_actor": self.second_actor,
            "rolls": {actor: list(values) for actor, values in self.rolls.items()},
            "current_turn": self.current_turn,
            "prompt_handle": self.prompt_handle,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "DuelState":
        first_actor = _require(document, "first_actor", str)
        second_actor = _require(document, "second_actor", str)
        raw_rolls = _require(document, "rolls", dict)
        if set(raw_rolls) != {first_actor, second_actor}:
            raise StateDocumentError("duel rolls must be keyed by both actors")
        rolls = {actor: _int_list(raw_rolls, actor) for actor in (first_actor, second_actor)}
        current_turn = document.get("current_turn")
        if current_turn is not None and current_turn not in (first_actor, second_actor):
            raise StateDocumentError("duel turn owner is not a participant")
        return cls(
            first_actor=first_actor,
            second_actor=second_actor,
            rolls=rolls,
            current_turn=current_turn,
            prompt_handle=_optional_handle(document),
        )


GameState = Union[EscalatingState, RoundsState, DuelState]

_DECODERS: Dict[Archetype, Callable[[Mapping[str, Any]], GameState]] = {
    Archetype.ESCALATING: EscalatingState.from_document,
    Archetype.ROUNDS: RoundsState.from_document,
    Archetype.DUEL: DuelState.from_document,
}


def decode_state(archetype: Archetype, document: Mapping[str, Any]) -> GameState:
    """Decode ``document`` into the variant owned by ``archetype``."""

    if not isinstance(document, Mapping):
        raise StateDocumentError("state document must be a mapping")
    tag = document.get("kind")
    if tag != archetype.value:
        raise StateDocumentError(
            f"state document tagged '{tag}' does not belong to '{archetype.value}'"
        )
    return _DECODERS[archetype](document)


__all__ = [
    "DuelState",
    "EscalatingState",
    "GameState",
    "RoundPhase",
    "RoundsState",
    "decode_state",
]
