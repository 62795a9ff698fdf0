"""Domain value types shared by the store, the engine and the coordinator."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

SessionId = str
ActorId = str
Money = int


class SessionStatus(str, enum.Enum):
    PENDING_CLAIM = "pending_claim"
    IN_PROGRESS = "in_progress"
    COMPLETED_WIN = "completed_win"
    COMPLETED_LOSS = "completed_loss"
    COMPLETED_CASHOUT = "completed_cashout"
    COMPLETED_TIMEOUT = "completed_timeout"
    COMPLETED_P1_WIN = "completed_p1_win"
    COMPLETED_P2_WIN = "completed_p2_win"
    COMPLETED_PUSH = "completed_push"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionStatus.PENDING_CLAIM, SessionStatus.IN_PROGRESS)


TERMINAL_STATUSES = frozenset(status for status in SessionStatus if status.is_terminal)


class Archetype(str, enum.Enum):
    ESCALATING = "escalating"
    ROUNDS = "rounds"
    DUEL = "duel"


class ActionKind(str, enum.Enum):
    ROLL = "roll"
    CASHOUT = "cashout"
    CONTINUE = "continue"


def _whole_number(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError("roll value must be a number, not a flag")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        return int(raw.strip())
    raise ValueError(f"roll value {raw!r} is not a whole number")


@dataclass(frozen=True)
class TurnAction:
    """One player action addressed to a session."""

    session_id: SessionId
    actor_id: ActorId
    kind: ActionKind = ActionKind.ROLL
    value: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "actor_id": self.actor_id,
            "action": self.kind.value,
            "value": self.value,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TurnAction":
        """Build an action from a bus payload; raises ``ValueError`` when malformed."""

        session_id = payload.get("session_id")
        actor_id = payload.get("actor_id")
        if not session_id or actor_id is None:
            raise ValueError("turn payload requires session_id and actor_id")
        kind = ActionKind(str(payload.get("action", ActionKind.ROLL.value)))
        raw_value = payload.get("value")
        value = _whole_number(raw_value) if raw_value is not None else None
        if kind is ActionKind.ROLL and value is None:
            raise ValueError("roll payload requires a value")
        return cls(
            session_id=str(session_id),
            actor_id=str(actor_id),
            kind=kind,
            value=value,
        )


@dataclass(frozen=True)
class Participant:
    actor_id: ActorId
    display_name: str


@dataclass(frozen=True)
class SessionSnapshot:
    """Detached, read-only view of a session row.

    The engine only ever sees snapshots; ORM rows never leave
    :mod:`helperapp.session_store`.
    """

    session_id: SessionId
    status: SessionStatus
    game_type: str
    stake_amount: Money
    final_payout: Money
    initiator: Participant
    opponent: Optional[Participant]
    channel_ref: str
    helper_bot_id: Optional[str] = None
    version: int = 0
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def participant(self, actor_id: ActorId) -> Optional[Participant]:
        if self.initiator.actor_id == actor_id:
            return self.initiator
        if self.opponent is not None and self.opponent.actor_id == actor_id:
            return self.opponent
        return None


__all__ = [
    "ActionKind",
    "ActorId",
    "Archetype",
    "Money",
    "Participant",
    "SessionId",
    "SessionSnapshot",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "TurnAction",
]
