"""Two-actor duel archetype.

The initiator rolls their full quota, then the opponent does. Payouts are
expressed from the initiator's side: the stake belongs to the initiator, so
an opponent win settles at zero and a push returns the stake.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from helperapp.entities import (
    ActionKind,
    ActorId,
    Archetype,
    Money,
    SessionSnapshot,
    SessionStatus,
    TurnAction,
)
from helperapp.errors import GameLogicError, InvalidTurnError, StateDocumentError
from helperapp.games.base import TurnResult
from helperapp.games.payouts import scale, to_hundredths
from helperapp.games.state import DuelState, GameState

ScoringRule = Callable[[Sequence[int]], int]


def sum_score(rolls: Sequence[int]) -> int:
    return sum(rolls)


def threshold_score(threshold: int) -> ScoringRule:
    def _score(rolls: Sequence[int]) -> int:
        return sum(1 for value in rolls if value >= threshold)

    return _score


def build_scoring_rule(config: Mapping[str, Any]) -> ScoringRule:
    rule = str(config.get("rule", "sum")).lower()
    if rule == "sum":
        return sum_score
    if rule == "threshold":
        return threshold_score(int(config.get("threshold", 4)))
    raise ValueError(f"unknown duel scoring rule '{rule}'")


@dataclass(frozen=True)
class PayoutTier:
    min_score: int
    multiplier: int


@dataclass(frozen=True)
class DuelSettings:
    shots_per_player: int
    scoring: ScoringRule
    tiers: Tuple[PayoutTier, ...]

    @classmethod
    def from_mapping(cls, section: Mapping[str, Any]) -> "DuelSettings":
        shots = int(section.get("shots_per_player", 3))
        if shots <= 0:
            raise ValueError("duel shots_per_player must be positive")
        tiers = tuple(
            sorted(
                (
                    PayoutTier(int(item["min_score"]), to_hundredths(item["multiplier"]))
                    for item in section.get("payout_tiers") or []
                ),
                key=lambda tier: tier.min_score,
            )
        )
        if not tiers:
            raise ValueError("duel payout tiers are empty")
        return cls(
            shots_per_player=shots,
            scoring=build_scoring_rule(section.get("scoring") or {}),
            tiers=tiers,
        )

    def tier_multiplier(self, score: int) -> int:
        chosen = 0
        for tier in self.tiers:
            if score >= tier.min_score:
                chosen = tier.multiplier
        return chosen


class DuelRules:
    archetype = Archetype.DUEL

    def __init__(self, settings: DuelSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> DuelSettings:
        return self._settings

    def initial_state(self, session: SessionSnapshot) -> DuelState:
        if session.opponent is None:
            raise GameLogicError("duel session has no opponent", session_id=session.session_id)
        first = session.initiator.actor_id
        second = session.opponent.actor_id
        if first == second:
            raise GameLogicError("duel actors must differ", session_id=session.session_id)
        return DuelState(
            first_actor=first,
            second_actor=second,
            rolls={first: [], second: []},
            current_turn=first,
        )

    def turn_owner(self, session: SessionSnapshot, state: GameState) -> Optional[ActorId]:
        return self._expect(state).current_turn

    def allowed_actions(self, state: GameState) -> Tuple[ActionKind, ...]:
        if self._expect(state).current_turn is None:
            return ()
        return (ActionKind.ROLL,)

    def scores(self, state: GameState) -> Tuple[int, int]:
        state = self._expect(state)
        return (
            self._settings.scoring(state.rolls_for(state.first_actor)),
            self._settings.scoring(state.rolls_for(state.second_actor)),
        )

    def apply(
        self, session: SessionSnapshot, state: GameState, action: TurnAction
    ) -> TurnResult:
        state = self._expect(state)
        if action.kind is not ActionKind.ROLL:
            raise InvalidTurnError(
                f"{action.kind.value} is not a duel action", reason="unsupported_action"
            )
        if state.current_turn is None or action.actor_id != state.current_turn:
            raise InvalidTurnError(
                f"actor {action.actor_id} does not own the turn", reason="out_of_turn"
            )

        quota = self._settings.shots_per_player
        rolls: Dict[ActorId, List[int]] = {
            actor: list(values) for actor, values in state.rolls.items()
        }
        rolls[action.actor_id].append(int(action.value))

        current_turn: Optional[ActorId] = state.current_turn
        if len(rolls[current_turn]) >= quota:
            if current_turn == state.first_actor:
                current_turn = state.second_actor
            else:
                current_turn = None
        advanced = replace(state, rolls=rolls, current_turn=current_turn)
        if current_turn is not None:
            return TurnResult(state=advanced, label="roll")

        first_score, second_score = self.scores(advanced)
        if first_score > second_score:
            status = SessionStatus.COMPLETED_P1_WIN
        elif second_score > first_score:
            status = SessionStatus.COMPLETED_P2_WIN
        else:
            status = SessionStatus.COMPLETED_PUSH
        return TurnResult(state=advanced, terminal=status, label="duel_complete")

    def timeout_status(self, session: SessionSnapshot, state: GameState) -> SessionStatus:
        """An idle opponent forfeits to the initiator's finished quota."""

        state = self._expect(state)
        if state.current_turn is not None and state.current_turn == state.second_actor:
            return SessionStatus.COMPLETED_P1_WIN
        return SessionStatus.COMPLETED_TIMEOUT

    def payout(
        self, session: SessionSnapshot, state: GameState, status: SessionStatus
    ) -> Money:
        stake = session.stake_amount
        if status is SessionStatus.COMPLETED_PUSH:
            return stake
        if status is SessionStatus.COMPLETED_P1_WIN:
            first_score, _ = self.scores(state)
            return stake + scale(stake, self._settings.tier_multiplier(first_score))
        return 0

    def describe(self, state: GameState) -> Dict[str, Any]:
        state = self._expect(state)
        first_score, second_score = self.scores(state)
        return {
            "shots_per_player": self._settings.shots_per_player,
            "first_rolls": state.rolls_for(state.first_actor),
            "second_rolls": state.rolls_for(state.second_actor),
            "first_score": first_score,
            "second_score": second_score,
        }

    @staticmethod
    def _expect(state: GameState) -> DuelState:
        if not isinstance(state, DuelState):
            raise StateDocumentError("duel rules received a foreign state")
        return state


__all__ = [
    "DuelRules",
    "DuelSettings",
    "PayoutTier",
    "build_scoring_rule",
    "sum_score",
    "threshold_score",
]
