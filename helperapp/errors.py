"""Exception hierarchy for the helper workers.

Race losses (a claim or finalize that another worker already performed) are
not exceptions; store operations report them through their return values.
"""

from __future__ import annotations

from typing import Optional


class HelperError(Exception):
    """Base class for all helper worker errors."""


class InvalidTurnError(HelperError):
    """A submitted action cannot be applied to the session in its current state.

    Raised for out-of-turn actors, actions the current phase does not allow,
    and roll values outside the dice alphabet. The session is left untouched.
    """

    def __init__(self, message: str, *, reason: str = "invalid_action") -> None:
        super().__init__(message)
        self.reason = reason


class GameLogicError(HelperError):
    """The session cannot be advanced at all and must be forced to ``error``."""

    def __init__(self, message: str, *, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class UnknownArchetypeError(GameLogicError):
    """The session's ``game_type`` has no registered rule set."""


class StateDocumentError(GameLogicError):
    """The persisted ``state`` document does not match its archetype's shape."""


__all__ = [
    "GameLogicError",
    "HelperError",
    "InvalidTurnError",
    "StateDocumentError",
    "UnknownArchetypeError",
]
