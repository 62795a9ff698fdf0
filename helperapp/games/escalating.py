"""Escalating-stakes archetype: one actor, running multiplier, cash-out windows."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from helperapp.entities import (
    ActionKind,
    ActorId,
    Archetype,
    Money,
    SessionSnapshot,
    SessionStatus,
    TurnAction,
)
from helperapp.errors import InvalidTurnError, StateDocumentError
from helperapp.games.base import TurnResult
from helperapp.games.payouts import ONE, apply_factor, format_multiplier, scale, to_hundredths
from helperapp.games.state import EscalatingState, GameState


@dataclass(frozen=True)
class RollEffect:
    label: str
    factor: int


@dataclass(frozen=True)
class EscalatingSettings:
    effects: Mapping[int, RollEffect]
    max_turns: int
    round_size: int

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "EscalatingSettings":
        raw_effects = section.get("effects") or {}
        effects: Dict[int, RollEffect] = {}
        for raw_face, raw_effect in raw_effects.items():
            face = int(raw_face)
            if isinstance(raw_effect, Mapping):
                label = str(raw_effect.get("label", face))
                factor = raw_effect.get("factor", 0)
            else:
                label, factor = str(face), raw_effect
            effects[face] = RollEffect(label=label, factor=to_hundredths(factor))
        max_turns = int(section.get("max_turns", 6))
        round_size = int(section.get("round_size", 2))
        if not effects:
            raise ValueError("escalating effects table is empty")
        if max_turns <= 0 or round_size <= 0:
            raise ValueError("escalating max_turns and round_size must be positive")
        return cls(effects=effects, max_turns=max_turns, round_size=round_size)


class EscalatingRules:
    archetype = Archetype.ESCALATING

    def __init__(self, settings: EscalatingSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> EscalatingSettings:
        return self._settings

    def initial_state(self, session: SessionSnapshot) -> EscalatingState:
        return EscalatingState(rolls=[], multiplier=ONE, turn=0)

    def turn_owner(self, session: SessionSnapshot, state: GameState) -> Optional[ActorId]:
        return session.initiator.actor_id

    def _cashout_window_open(self, state: EscalatingState) -> bool:
        turn = state.turn
        return (
            turn > 0
            and turn < self._settings.max_turns
            and turn % self._settings.round_size == 0
        )

    def allowed_actions(self, state: GameState) -> Tuple[ActionKind, ...]:
        state = self._expect(state)
        if self._cashout_window_open(state):
            return (ActionKind.ROLL, ActionKind.CASHOUT)
        return (ActionKind.ROLL,)

    def apply(
        self, session: SessionSnapshot, state: GameState, action: TurnAction
    ) -> TurnResult:
        state = self._expect(state)
        if action.kind is ActionKind.CASHOUT:
            if not self._cashout_window_open(state):
                raise InvalidTurnError(
                    "cash-out is only offered at a round boundary",
                    reason="cashout_unavailable",
                )
            return TurnResult(state=state, terminal=SessionStatus.COMPLETED_CASHOUT, label="cashout")
        if action.kind is not ActionKind.ROLL:
            raise InvalidTurnError(
                f"{action.kind.value} is not an escalating-stakes action",
                reason="unsupported_action",
            )

        effect = self._settings.effects.get(int(action.value))
        if effect is None:
            raise InvalidTurnError(f"roll {action.value} has no effect entry", reason="bad_roll")

        rolls = state.rolls + [int(action.value)]
        turn = state.turn + 1
        if effect.factor == 0:
            lost = replace(state, rolls=rolls, turn=turn)
            return TurnResult(state=lost, terminal=SessionStatus.COMPLETED_LOSS, label=effect.label)

        advanced = replace(
            state,
            rolls=rolls,
            turn=turn,
            multiplier=apply_factor(state.multiplier, effect.factor),
        )
        if turn >= self._settings.max_turns:
            return TurnResult(
                state=advanced, terminal=SessionStatus.COMPLETED_CASHOUT, label=effect.label
            )
        return TurnResult(state=advanced, label=effect.label)

    def timeout_status(self, session: SessionSnapshot, state: GameState) -> SessionStatus:
        return SessionStatus.COMPLETED_TIMEOUT

    def payout(
        self, session: SessionSnapshot, state: GameState, status: SessionStatus
    ) -> Money:
        state = self._expect(state)
        if status is SessionStatus.COMPLETED_CASHOUT:
            return scale(session.stake_amount, state.multiplier)
        return 0

    def describe(self, state: GameState) -> Dict[str, Any]:
        state = self._expect(state)
        return {
            "turn": state.turn,
            "max_turns": self._settings.max_turns,
            "multiplier": format_multiplier(state.multiplier),
            "rolls": list(state.rolls),
        }

    @staticmethod
    def _expect(state: GameState) -> EscalatingState:
        if not isinstance(state, EscalatingState):
            raise StateDocumentError("escalating rules received a foreign state")
        return state


__all__ = ["EscalatingRules", "EscalatingSettings", "RollEffect"]
