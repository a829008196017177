"""
Helpers for assembling the narrative context sent with each beat request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from infinite_heroes.story_generation import FocusCharacter, FocusHint, PageKind, PageSummary, Persona

from .state import ComicPage


@dataclass(frozen=True)
class ContinuityContext:
    """
    Result container produced by :func:`build_continuity_context`.

    Attributes
    ----------
    history:
        Prior story pages with a narrative, ordered by page index.
    focus_hint:
        Soft bias for which character the next beat should centre on.
    directive:
        Must-honor director guidance or resolved choice, if the caller passed one.
    """

    history: tuple[PageSummary, ...]
    focus_hint: FocusHint = FocusHint.NONE
    directive: str | None = None


def summarize_page(page: ComicPage) -> PageSummary:
    if page.narrative is None:
        raise ValueError(f"Page {page.page_index} has no narrative to summarize.")
    beat = page.narrative
    return PageSummary(
        page_index=page.page_index,
        scene=beat.scene,
        focus_character=beat.focus_character,
        caption=beat.caption,
        dialogue=beat.dialogue,
        resolved_choice=page.resolved_choice,
    )


def build_continuity_context(
    pages: Iterable[ComicPage],
    target_page: int,
    co_star: Persona | None,
    guidance: str | None = None,
) -> ContinuityContext:
    """
    Combine prior story pages, a focus hint, and optional guidance for ``target_page``.
    """
    prior = sorted(
        (
            page
            for page in pages
            if page.kind is PageKind.STORY
            and page.page_index < target_page
            and page.narrative is not None
        ),
        key=lambda page: page.page_index,
    )
    history = tuple(summarize_page(page) for page in prior)

    focus_hint = FocusHint.NONE
    if co_star is not None:
        last_focus = history[-1].focus_character if history else None
        if last_focus is FocusCharacter.HERO:
            focus_hint = FocusHint.FAVOR_CO_STAR
        else:
            focus_hint = FocusHint.INCLUDE_CO_STAR

    directive = guidance.strip() if guidance and guidance.strip() else None
    return ContinuityContext(history=history, focus_hint=focus_hint, directive=directive)
