"""
Immutable narrative state, the closed set of events that change it, and the store holding it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping

import yaml

from infinite_heroes.common import ComicEngineError, CredentialError, ErrorKind
from infinite_heroes.story_generation import (
    Beat,
    PageKind,
    Persona,
    StoryConfig,
    World,
    is_decision_page,
)

from .progress import Progress

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    SETUP = "setup"
    GENERATING = "generating"
    READING = "reading"


@dataclass(frozen=True)
class ComicPage:
    """
    One face of the comic: the cover, a story page, or the back cover.

    A page starts as a loading placeholder, receives its narrative, then its
    image (which also clears ``is_loading``).
    """

    page_index: int
    kind: PageKind
    id: str
    image_ref: str | None = None
    narrative: Beat | None = None
    choices: tuple[str, ...] = ()
    resolved_choice: str | None = None
    is_loading: bool = False
    is_decision_page: bool = False

    @classmethod
    def placeholder(cls, page_index: int) -> "ComicPage":
        kind = PageKind.for_page(page_index)
        return cls(
            page_index=page_index,
            kind=kind,
            id="cover" if kind is PageKind.COVER else f"page-{page_index}",
            is_loading=True,
            is_decision_page=kind is PageKind.STORY and is_decision_page(page_index),
        )

    @property
    def is_complete(self) -> bool:
        return not self.is_loading

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "page_index": self.page_index,
            "kind": self.kind.value,
            "image_ref": self.image_ref,
            "narrative": self.narrative.to_dict() if self.narrative else None,
            "choices": list(self.choices),
            "resolved_choice": self.resolved_choice,
            "is_loading": self.is_loading,
            "is_decision_page": self.is_decision_page,
        }


@dataclass(frozen=True)
class SessionError:
    """The orthogonal error flag shown to the user."""

    kind: ErrorKind
    message: str
    timestamp: float
    details: str | None = None

    @property
    def is_credential_error(self) -> bool:
        return self.kind is ErrorKind.CREDENTIAL

    @classmethod
    def from_exception(
        cls,
        exc: ComicEngineError,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "SessionError":
        if isinstance(exc, CredentialError):
            return cls(kind=ErrorKind.CREDENTIAL, message="API_KEY_ERROR", timestamp=clock(), details=str(exc))
        return cls(
            kind=exc.kind,
            message=f"Generation stopped: {exc}",
            timestamp=clock(),
            details=type(exc).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "details": self.details,
        }


@dataclass(frozen=True)
class NarrativeState:
    status: SessionStatus = SessionStatus.SETUP
    pages: tuple[ComicPage, ...] = ()
    hero: Persona | None = None
    co_star: Persona | None = None
    world: World | None = None
    config: StoryConfig = field(default_factory=StoryConfig)
    progress: Progress | None = None
    error: SessionError | None = None

    def page(self, page_index: int) -> ComicPage | None:
        for page in self.pages:
            if page.page_index == page_index:
                return page
        return None

    @property
    def max_completed_page(self) -> int | None:
        completed = [page.page_index for page in self.pages if page.is_complete]
        return max(completed) if completed else None

    @property
    def is_loading(self) -> bool:
        return any(page.is_loading for page in self.pages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "hero": self.hero.to_dict() if self.hero else None,
            "co_star": self.co_star.to_dict() if self.co_star else None,
            "world": self.world.to_dict() if self.world else None,
            "config": self.config.to_dict(),
            "progress": self.progress.to_dict() if self.progress else None,
            "error": self.error.to_dict() if self.error else None,
            "pages": [page.to_dict() for page in self.pages],
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)


# Events


@dataclass(frozen=True)
class SetHero:
    hero: Persona | None


@dataclass(frozen=True)
class SetCoStar:
    co_star: Persona | None


@dataclass(frozen=True)
class SetWorld:
    world: World | None


@dataclass(frozen=True)
class UpdateConfig:
    config: StoryConfig


@dataclass(frozen=True)
class StartAdventure:
    pass


@dataclass(frozen=True)
class TransitionComplete:
    pass


@dataclass(frozen=True)
class AddPages:
    pages: tuple[ComicPage, ...]


@dataclass(frozen=True)
class UpdatePage:
    page_index: int
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class SetProgress:
    progress: Progress | None


@dataclass(frozen=True)
class SetError:
    error: SessionError


@dataclass(frozen=True)
class ClearError:
    pass


@dataclass(frozen=True)
class Reset:
    pass


Event = (
    SetHero
    | SetCoStar
    | SetWorld
    | UpdateConfig
    | StartAdventure
    | TransitionComplete
    | AddPages
    | UpdatePage
    | SetProgress
    | SetError
    | ClearError
    | Reset
)


def transition(state: NarrativeState, event: Event) -> NarrativeState:
    """
    Pure transition function: return the state that results from ``event``.
    """
    match event:
        case SetHero(hero=hero):
            return replace(state, hero=hero)
        case SetCoStar(co_star=co_star):
            return replace(state, co_star=co_star)
        case SetWorld(world=world):
            return replace(state, world=world)
        case UpdateConfig(config=config):
            return replace(state, config=config)
        case StartAdventure():
            return replace(state, status=SessionStatus.GENERATING, error=None)
        case TransitionComplete():
            return replace(state, status=SessionStatus.READING, progress=None)
        case AddPages(pages=pages):
            return replace(state, pages=_merge_pages(state.pages, pages))
        case UpdatePage(page_index=page_index, changes=changes):
            return replace(state, pages=_update_page(state.pages, page_index, changes))
        case SetProgress(progress=progress):
            return replace(state, progress=progress)
        case SetError(error=error):
            return replace(state, error=error, progress=None)
        case ClearError():
            return replace(state, error=None)
        case Reset():
            return NarrativeState()
    raise TypeError(f"Unknown event type: {type(event).__name__}")


def _merge_pages(existing: tuple[ComicPage, ...], incoming: tuple[ComicPage, ...]) -> tuple[ComicPage, ...]:
    # Completed pages are never replaced; stale loading placeholders are.
    merged = {page.page_index: page for page in existing}
    for page in incoming:
        current = merged.get(page.page_index)
        if current is None or current.is_loading:
            merged[page.page_index] = page
    return tuple(sorted(merged.values(), key=lambda page: page.page_index))


def _update_page(
    pages: tuple[ComicPage, ...],
    page_index: int,
    changes: Mapping[str, Any],
) -> tuple[ComicPage, ...]:
    return tuple(
        replace(page, **changes) if page.page_index == page_index else page for page in pages
    )


Listener = Callable[[NarrativeState, Event], None]


class NarrativeStateStore:
    """
    Holds the current snapshot and applies events to it.

    Listeners are called synchronously after every event with the new
    snapshot and the event that produced it.
    """

    def __init__(self, initial: NarrativeState | None = None) -> None:
        self._state = initial or NarrativeState()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> NarrativeState:
        return self._state

    def dispatch(self, event: Event) -> NarrativeState:
        self._state = transition(self._state, event)
        logger.debug("Applied %s -> status=%s pages=%d", type(event).__name__, self._state.status.value, len(self._state.pages))
        for listener in list(self._listeners):
            listener(self._state, event)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
