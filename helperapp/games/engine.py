"""Archetype dispatch for the game state machine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional

from helperapp.config import GameConstants
from helperapp.entities import (
    ActionKind,
    ActorId,
    Archetype,
    Money,
    SessionSnapshot,
    SessionStatus,
    TurnAction,
)
from helperapp.errors import InvalidTurnError, UnknownArchetypeError
from helperapp.games.base import ArchetypeRules, PromptSnapshot, TurnResult
from helperapp.games.duel import DuelRules, DuelSettings
from helperapp.games.escalating import EscalatingRules, EscalatingSettings
from helperapp.games.rounds import RoundRules, RoundSettings
from helperapp.games.state import GameState, decode_state


@dataclass(frozen=True)
class Settlement:
    status: SessionStatus
    payout: Money
    state: Optional[Dict[str, Any]] = None


class GameEngine:
    """Routes every session to the rule set registered for its archetype tag."""

    def __init__(self, rules: Iterable[ArchetypeRules], *, faces: Iterable[int]) -> None:
        self._rules: Dict[Archetype, ArchetypeRules] = {rule.archetype: rule for rule in rules}
        self._faces: FrozenSet[int] = frozenset(int(face) for face in faces)

    @classmethod
    def from_constants(cls, constants: GameConstants) -> "GameEngine":
        faces = constants.dice.get("faces") or [1, 2, 3, 4, 5, 6]
        return cls(
            [
                EscalatingRules(EscalatingSettings.from_mapping(constants.escalating)),
                RoundRules(RoundSettings.from_mapping(constants.rounds)),
                DuelRules(DuelSettings.from_mapping(constants.duel)),
            ],
            faces=faces,
        )

    @property
    def faces(self) -> FrozenSet[int]:
        return self._faces

    def rules_for(self, game_type: str) -> ArchetypeRules:
        try:
            archetype = Archetype(game_type)
        except ValueError as exc:
            raise UnknownArchetypeError(f"unknown archetype '{game_type}'") from exc
        rules = self._rules.get(archetype)
        if rules is None:
            raise UnknownArchetypeError(f"no rules registered for '{game_type}'")
        return rules

    def initial_document(self, session: SessionSnapshot) -> Dict[str, Any]:
        return self.rules_for(session.game_type).initial_state(session).to_document()

    def decode(self, session: SessionSnapshot) -> GameState:
        rules = self.rules_for(session.game_type)
        return decode_state(rules.archetype, session.state)

    def turn_owner(self, session: SessionSnapshot) -> Optional[ActorId]:
        rules = self.rules_for(session.game_type)
        return rules.turn_owner(session, decode_state(rules.archetype, session.state))

    def advance(self, session: SessionSnapshot, action: TurnAction) -> TurnResult:
        """Apply ``action`` to ``session`` without touching storage.

        Raises :class:`InvalidTurnError` for input that must be rejected and
        :class:`GameLogicError` when the session itself is broken.
        """

        rules = self.rules_for(session.game_type)
        state = decode_state(rules.archetype, session.state)
        if action.kind is ActionKind.ROLL and action.value not in self._faces:
            raise InvalidTurnError(f"roll value {action.value} is outside the dice", reason="bad_roll")
        owner = rules.turn_owner(session, state)
        if owner is None or action.actor_id != owner:
            raise InvalidTurnError(
                f"actor {action.actor_id} does not own the turn", reason="out_of_turn"
            )
        return rules.apply(session, state, action)

    def settle(
        self,
        session: SessionSnapshot,
        status: SessionStatus,
        state: Optional[GameState] = None,
    ) -> Settlement:
        """Compute the payout for a terminal ``status``.

        A timeout is resolved by the archetype against the actor who owed
        the turn; that actor is recorded as ``timed_out_actor`` in the
        settled state document.
        """

        if status is SessionStatus.ERROR:
            return Settlement(status=status, payout=0)
        rules = self.rules_for(session.game_type)
        final_state = state if state is not None else decode_state(rules.archetype, session.state)
        timed_out_actor: Optional[ActorId] = None
        if status is SessionStatus.COMPLETED_TIMEOUT:
            timed_out_actor = rules.turn_owner(session, final_state)
            status = rules.timeout_status(session, final_state)
        payout = rules.payout(session, final_state, status)
        document = final_state.to_document()
        if timed_out_actor is not None:
            document["timed_out_actor"] = timed_out_actor
        return Settlement(status=status, payout=payout, state=document)

    def prompt_for(
        self,
        session: SessionSnapshot,
        *,
        timeout_seconds: float,
        last_label: str = "",
    ) -> Optional[PromptSnapshot]:
        """Describe the pending decision, or ``None`` when nobody owes a turn."""

        rules = self.rules_for(session.game_type)
        state = decode_state(rules.archetype, session.state)
        owner = rules.turn_owner(session, state)
        allowed = rules.allowed_actions(state)
        if owner is None or not allowed:
            return None
        participant = session.participant(owner)
        return PromptSnapshot(
            session_id=session.session_id,
            game_type=session.game_type,
            channel_ref=session.channel_ref,
            actor_id=owner,
            actor_name=participant.display_name if participant else owner,
            stake_amount=session.stake_amount,
            allowed_actions=allowed,
            details=rules.describe(state),
            last_label=last_label,
            timeout_seconds=timeout_seconds,
        )


__all__ = ["GameEngine", "Settlement"]
