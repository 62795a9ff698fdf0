"""Round-progression archetype: two shots per round, cash-out or continue on failure."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

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
from helperapp.games.payouts import format_multiplier, scale, to_hundredths
from helperapp.games.state import GameState, RoundPhase, RoundsState

SHOTS_PER_ROUND = 2


@dataclass(frozen=True)
class RoundSettings:
    rounds: int
    round_multipliers: Mapping[int, int]
    cashout_fraction: int
    instant_loss: FrozenSet[int]
    success: FrozenSet[int]
    miss: FrozenSet[int]

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "RoundSettings":
        multipliers = {
            int(round_no): to_hundredths(value)
            for round_no, value in (section.get("round_multipliers") or {}).items()
        }
        rounds = int(section.get("rounds", len(multipliers)))
        instant_loss = frozenset(int(v) for v in section.get("instant_loss", []))
        success = frozenset(int(v) for v in section.get("success", []))
        miss = frozenset(int(v) for v in section.get("miss", []))

        if rounds <= 0:
            raise ValueError("round progression needs at least one round")
        missing = [r for r in range(1, rounds + 1) if r not in multipliers]
        if missing:
            raise ValueError(f"round multipliers missing for rounds {missing}")
        ordered = [multipliers[r] for r in range(1, rounds + 1)]
        if any(later <= earlier for earlier, later in zip(ordered, ordered[1:])):
            raise ValueError("round multipliers must increase with the round")
        if (instant_loss & success) or (instant_loss & miss) or (success & miss):
            raise ValueError("roll outcome classes must be disjoint")
        return cls(
            rounds=rounds,
            round_multipliers=multipliers,
            cashout_fraction=to_hundredths(section.get("cashout_fraction", 0.5)),
            instant_loss=instant_loss,
            success=success,
            miss=miss,
        )


class RoundRules:
    archetype = Archetype.ROUNDS

    def __init__(self, settings: RoundSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> RoundSettings:
        return self._settings

    def initial_state(self, session: SessionSnapshot) -> RoundsState:
        return RoundsState(round=1, shots=0, phase=RoundPhase.AWAITING_SHOT, rolls=[])

    def turn_owner(self, session: SessionSnapshot, state: GameState) -> Optional[ActorId]:
        return session.initiator.actor_id

    def allowed_actions(self, state: GameState) -> Tuple[ActionKind, ...]:
        state = self._expect(state)
        if state.phase is RoundPhase.ROUND_FAILED_PENDING_CHOICE:
            return (ActionKind.CASHOUT, ActionKind.CONTINUE)
        return (ActionKind.ROLL,)

    def apply(
        self, session: SessionSnapshot, state: GameState, action: TurnAction
    ) -> TurnResult:
        state = self._expect(state)
        if action.kind not in self.allowed_actions(state):
            raise InvalidTurnError(
                f"{action.kind.value} is not allowed while {state.phase.value}",
                reason="phase_mismatch",
            )
        if action.kind is ActionKind.CASHOUT:
            return TurnResult(state=state, terminal=SessionStatus.COMPLETED_CASHOUT, label="cashout")
        if action.kind is ActionKind.CONTINUE:
            return self._continue(state)
        return self._shoot(state, int(action.value))

    def _shoot(self, state: RoundsState, value: int) -> TurnResult:
        rolls = state.rolls + [value]
        if value in self._settings.instant_loss:
            return TurnResult(
                state=replace(state, rolls=rolls),
                terminal=SessionStatus.COMPLETED_LOSS,
                label="instant_loss",
            )
        if value in self._settings.success:
            if state.round >= self._settings.rounds:
                return TurnResult(
                    state=replace(state, rolls=rolls, shots=state.shots + 1),
                    terminal=SessionStatus.COMPLETED_WIN,
                    label="success",
                )
            return TurnResult(
                state=replace(state, rolls=rolls, round=state.round + 1, shots=0),
                label="success",
            )
        if value in self._settings.miss:
            shots = state.shots + 1
            if shots >= SHOTS_PER_ROUND:
                return TurnResult(
                    state=replace(
                        state,
                        rolls=rolls,
                        shots=shots,
                        phase=RoundPhase.ROUND_FAILED_PENDING_CHOICE,
                    ),
                    label="round_failed",
                )
            return TurnResult(state=replace(state, rolls=rolls, shots=shots), label="miss")
        raise InvalidTurnError(f"roll {value} belongs to no outcome class", reason="bad_roll")

    def _continue(self, state: RoundsState) -> TurnResult:
        if state.round >= self._settings.rounds:
            # Nothing left to advance into: continuing past the last round forfeits.
            return TurnResult(state=state, terminal=SessionStatus.COMPLETED_LOSS, label="forfeit")
        return TurnResult(
            state=replace(
                state,
                round=state.round + 1,
                shots=0,
                phase=RoundPhase.AWAITING_SHOT,
            ),
            label="continue",
        )

    def timeout_status(self, session: SessionSnapshot, state: GameState) -> SessionStatus:
        return SessionStatus.COMPLETED_TIMEOUT

    def payout(
        self, session: SessionSnapshot, state: GameState, status: SessionStatus
    ) -> Money:
        state = self._expect(state)
        stake = session.stake_amount
        if status is SessionStatus.COMPLETED_WIN:
            multiplier = self._settings.round_multipliers.get(state.round)
            if multiplier is None:
                raise StateDocumentError(f"no multiplier configured for round {state.round}")
            return stake + scale(stake, multiplier)
        if status is SessionStatus.COMPLETED_CASHOUT:
            return scale(stake, self._settings.cashout_fraction)
        return 0

    def describe(self, state: GameState) -> Dict[str, Any]:
        state = self._expect(state)
        multiplier = self._settings.round_multipliers.get(state.round, 0)
        return {
            "round": state.round,
            "rounds": self._settings.rounds,
            "shots_left": max(SHOTS_PER_ROUND - state.shots, 0),
            "phase": state.phase.value,
            "round_multiplier": format_multiplier(multiplier),
        }

    @staticmethod
    def _expect(state: GameState) -> RoundsState:
        if not isinstance(state, RoundsState):
            raise StateDocumentError("round rules received a foreign state")
        return state


__all__ = ["RoundRules", "RoundSettings", "SHOTS_PER_ROUND"]
