"""
Infinite Heroes package exposing the comic generation engine and its collaborators.
"""

from .common import EngineSettings
from .pipeline import (
    BatchOrchestrator,
    ComicEngine,
    LiveAIProvider,
    NarrativeState,
    SessionStatus,
)
from .storage import CharacterLibrary
from .story_generation import Persona, StoryConfig, World

__all__ = [
    "BatchOrchestrator",
    "CharacterLibrary",
    "ComicEngine",
    "EngineSettings",
    "LiveAIProvider",
    "NarrativeState",
    "Persona",
    "SessionStatus",
    "StoryConfig",
    "World",
]
