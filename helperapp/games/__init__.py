"""Interactive game archetypes for the helper workers."""

from .base import ArchetypeRules, PromptSnapshot, TurnResult
from .engine import GameEngine, Settlement

__all__ = [
    "ArchetypeRules",
    "GameEngine",
    "PromptSnapshot",
    "Settlement",
    "TurnResult",
]
