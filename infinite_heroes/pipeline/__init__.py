"""
Generation orchestration for Infinite Heroes comic sessions.
"""

from .cancellation import CancellationRegistry, GenerationStage
from .continuity_builder import ContinuityContext, build_continuity_context, summarize_page
from .engine import ComicEngine
from .orchestrator import BatchOrchestrator, BatchResult
from .progress import Progress, ProgressReporter, compute_percentage
from .provider import AIProvider, LiveAIProvider, sidekick_description
from .reservations import PageReservationRegistry
from .state import (
    AddPages,
    ClearError,
    ComicPage,
    Event,
    NarrativeState,
    NarrativeStateStore,
    Reset,
    SessionError,
    SessionStatus,
    SetCoStar,
    SetError,
    SetHero,
    SetProgress,
    SetWorld,
    StartAdventure,
    TransitionComplete,
    UpdateConfig,
    UpdatePage,
    transition,
)

__all__ = [
    "AIProvider",
    "AddPages",
    "BatchOrchestrator",
    "BatchResult",
    "CancellationRegistry",
    "ClearError",
    "ComicEngine",
    "ComicPage",
    "ContinuityContext",
    "Event",
    "GenerationStage",
    "LiveAIProvider",
    "NarrativeState",
    "NarrativeStateStore",
    "PageReservationRegistry",
    "Progress",
    "ProgressReporter",
    "Reset",
    "SessionError",
    "SessionStatus",
    "SetCoStar",
    "SetError",
    "SetHero",
    "SetProgress",
    "SetWorld",
    "StartAdventure",
    "TransitionComplete",
    "UpdateConfig",
    "UpdatePage",
    "build_continuity_context",
    "compute_percentage",
    "sidekick_description",
    "summarize_page",
    "transition",
]
