"""
Story generation utilities for scripting comic beats one page at a time.
"""

from .beat_cache import BeatCache
from .beat_service import BeatGenerator, fallback_beat, parse_beat_payload, sanitize_beat
from .models import (
    BACK_COVER_BEAT,
    BACK_COVER_PAGE,
    BATCH_SIZE,
    CONTINUATION_MARKER,
    CUSTOM_GENRE,
    COVER_BEAT,
    DECISION_PAGES,
    GENRES,
    INITIAL_PAGES,
    LANGUAGES,
    MAX_STORY_PAGES,
    TONES,
    TOTAL_PAGES,
    Beat,
    FocusCharacter,
    FocusHint,
    PageKind,
    PageSummary,
    Persona,
    StoryConfig,
    World,
    is_decision_page,
)
from .prompting import BeatPrompt, build_beat_prompt

__all__ = [
    "BACK_COVER_BEAT",
    "BACK_COVER_PAGE",
    "BATCH_SIZE",
    "CONTINUATION_MARKER",
    "CUSTOM_GENRE",
    "COVER_BEAT",
    "DECISION_PAGES",
    "GENRES",
    "INITIAL_PAGES",
    "LANGUAGES",
    "MAX_STORY_PAGES",
    "TONES",
    "TOTAL_PAGES",
    "Beat",
    "BeatCache",
    "BeatGenerator",
    "BeatPrompt",
    "FocusCharacter",
    "FocusHint",
    "PageKind",
    "PageSummary",
    "Persona",
    "StoryConfig",
    "World",
    "build_beat_prompt",
    "fallback_beat",
    "is_decision_page",
    "parse_beat_payload",
    "sanitize_beat",
]
