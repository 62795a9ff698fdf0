"""Shared contract for archetype rule sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from helperapp.entities import (
    ActionKind,
    ActorId,
    Archetype,
    Money,
    SessionSnapshot,
    SessionStatus,
    TurnAction,
)
from helperapp.games.state import GameState


@dataclass(frozen=True)
class TurnResult:
    """Outcome of applying one accepted action.

    ``terminal`` is ``None`` while the session continues; otherwise it is the
    terminal status the finalizer must write.
    """

    state: GameState
    terminal: Optional[SessionStatus] = None
    label: str = ""


@dataclass(frozen=True)
class PromptSnapshot:
    """Everything the messaging collaborator needs to render the next prompt."""

    session_id: str
    game_type: str
    channel_ref: str
    actor_id: ActorId
    actor_name: str
    stake_amount: Money
    allowed_actions: Tuple[ActionKind, ...]
    details: Dict[str, Any] = field(default_factory=dict)
    last_label: str = ""
    timeout_seconds: float = 0.0


class ArchetypeRules(Protocol):
    archetype: Archetype

    def initial_state(self, session: SessionSnapshot) -> GameState:
        ...

    def turn_owner(self, session: SessionSnapshot, state: GameState) -> Optional[ActorId]:
        ...

    def allowed_actions(self, state: GameState) -> Tuple[ActionKind, ...]:
        ...

    def apply(
        self, session: SessionSnapshot, state: GameState, action: TurnAction
    ) -> TurnResult:
        ...

    def timeout_status(self, session: SessionSnapshot, state: GameState) -> SessionStatus:
        ...

    def payout(
        self, session: SessionSnapshot, state: GameState, status: SessionStatus
    ) -> Money:
        ...

    def describe(self, state: GameState) -> Dict[str, Any]:
        ...


__all__ = ["ArchetypeRules", "PromptSnapshot", "TurnResult"]
