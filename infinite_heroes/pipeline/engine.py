"""
Session facade exposing the user intents: launch, continue, choose, abort, reset.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import replicate

from infinite_heroes.ai_generation import ReferenceArtConfig
from infinite_heroes.common import CompletionCallable, EngineSettings
from infinite_heroes.story_generation import TOTAL_PAGES, BeatCache, Persona, StoryConfig, World

from .orchestrator import BatchOrchestrator, BatchResult
from .progress import ProgressReporter
from .provider import AIProvider, LiveAIProvider
from .state import (
    ClearError,
    Listener,
    NarrativeState,
    NarrativeStateStore,
    Reset,
    SessionStatus,
    SetCoStar,
    SetHero,
    SetProgress,
    SetWorld,
    StartAdventure,
    TransitionComplete,
    UpdateConfig,
    UpdatePage,
)

logger = logging.getLogger(__name__)

LAUNCH_STEPS = 3
CHOICE_GUIDANCE = "user chose: {choice}"


class ComicEngine:
    """
    One comic session.

    Presentation code reads :attr:`state` snapshots (or subscribes to them)
    and calls the intent methods; nothing else mutates the session.

    Parameters
    ----------
    provider:
        Implementation of the AI provider contract.
    settings:
        Engine tunables; defaults are read from the environment.
    beat_cache:
        Cache owned by this engine and cleared on :meth:`reset`. Should be the
        same instance the provider's beat generator uses.
    """

    def __init__(
        self,
        provider: AIProvider,
        *,
        settings: EngineSettings | None = None,
        store: NarrativeStateStore | None = None,
        reporter: ProgressReporter | None = None,
        beat_cache: BeatCache | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._store = store or NarrativeStateStore()
        self._orchestrator = BatchOrchestrator(
            provider=provider,
            store=self._store,
            settings=self._settings,
            reporter=reporter,
        )
        self._beat_cache = beat_cache

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings | None = None,
        *,
        completion_fn: CompletionCallable | None = None,
        replicate_client: replicate.Client | None = None,
        reference_config: ReferenceArtConfig | None = None,
    ) -> "ComicEngine":
        settings = settings or EngineSettings()
        cache = BeatCache(max_size=settings.beat_cache_size, ttl=settings.beat_cache_ttl)
        provider = LiveAIProvider.from_settings(
            settings,
            beat_cache=cache,
            completion_fn=completion_fn,
            replicate_client=replicate_client,
            reference_config=reference_config,
        )
        return cls(provider, settings=settings, beat_cache=cache)

    @property
    def state(self) -> NarrativeState:
        return self._store.state

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def orchestrator(self) -> BatchOrchestrator:
        return self._orchestrator

    def subscribe(self, listener: Listener):
        """Register a listener called after every state change; returns an unsubscribe callable."""
        return self._store.subscribe(listener)

    # Setup

    def set_hero(self, hero: Persona | None) -> None:
        self._store.dispatch(SetHero(hero))

    def set_co_star(self, co_star: Persona | None) -> None:
        self._store.dispatch(SetCoStar(co_star))

    def set_world(self, world: World | None) -> None:
        self._store.dispatch(SetWorld(world))

    def update_config(self, config: StoryConfig | None = None, **changes: Any) -> StoryConfig:
        merged = (config or self.state.config).merged(changes)
        self._store.dispatch(UpdateConfig(merged))
        return merged

    def clear_error(self) -> None:
        self._store.dispatch(ClearError())

    # Intents

    async def launch(self) -> None:
        """
        Start the adventure: render the cover, then hand over to the first batch.

        The first batch runs in the background after ``transition_delay``.
        """
        state = self.state
        if state.hero is None:
            raise ValueError("A hero is required before launching the story.")
        if state.status is not SessionStatus.SETUP:
            logger.warning("Ignoring launch while the session is %s", state.status.value)
            return

        self._store.dispatch(StartAdventure())
        reporter = self._orchestrator.reporter
        started = reporter.now()
        self._store.dispatch(
            SetProgress(
                reporter.report("Painting Cover Art", 1, LAUNCH_STEPS, "Creating epic cover design...", started)
            )
        )

        committed = await self._orchestrator.generate_cover(state.hero, state.co_star, state.config, state.world)
        if not committed:
            return

        self._store.dispatch(
            SetProgress(
                reporter.report("Binding Pages", 2, LAUNCH_STEPS, "Preparing your comic book...", started)
            )
        )
        self._orchestrator.schedule(
            self._settings.transition_delay,
            lambda: self._complete_launch(started),
        )

    def _complete_launch(self, started: float) -> None:
        self._store.dispatch(TransitionComplete())
        state = self.state
        if state.hero is None:
            return
        reporter = self._orchestrator.reporter
        self._store.dispatch(
            SetProgress(
                reporter.report("Starting Issue #1", 3, LAUNCH_STEPS, "Launching your adventure...", started)
            )
        )
        self._orchestrator.spawn(
            self._orchestrator.generate_batch(
                1,
                self._settings.initial_pages,
                state.pages,
                state.hero,
                state.co_star,
                state.config,
                state.world,
                state.config.opening_prompt or None,
            )
        )

    def continue_story(self, guidance: str | None = None) -> asyncio.Task[BatchResult | None] | None:
        """
        Generate the next window of pages, steering its first page with ``guidance``.

        Returns the background task, or ``None`` when the story is already full.
        """
        return self._start_next_batch(guidance.strip() if guidance and guidance.strip() else None)

    def resolve_choice(self, page_index: int, choice: str) -> asyncio.Task[BatchResult | None] | None:
        """
        Record the reader's choice on a decision page and continue the story from it.
        """
        page = self.state.page(page_index)
        if page is None:
            raise ValueError(f"Page {page_index} does not exist.")
        if page.choices and choice not in page.choices:
            logger.warning("Choice %r is not one of page %d's options", choice, page_index)

        self._store.dispatch(UpdatePage(page_index, {"resolved_choice": choice}))
        return self._start_next_batch(CHOICE_GUIDANCE.format(choice=choice))

    def abort(self, reason: str = "Generation aborted by user") -> int:
        """
        Cancel everything in flight. Completed pages and the session status are kept.
        """
        cancelled = self._orchestrator.abort(reason)
        if self.state.progress is not None:
            self._store.dispatch(SetProgress(None))
        logger.info("Abort requested: %d operation(s) cancelled", cancelled)
        return cancelled

    def reset(self) -> None:
        """Abort all work, forget cached beats, and return to an empty setup state."""
        self._orchestrator.abort("Session reset")
        if self._beat_cache is not None:
            self._beat_cache.clear()
        self._store.dispatch(Reset())

    async def wait_idle(self) -> None:
        await self._orchestrator.wait_idle()

    async def aclose(self) -> None:
        await self._orchestrator.aclose()

    def export_yaml(self) -> str:
        return self.state.to_yaml()

    def _next_window_start(self) -> int | None:
        last = self.state.max_completed_page
        start = 1 if last is None else last + 1
        return start if start <= TOTAL_PAGES else None

    def _start_next_batch(self, guidance: str | None) -> asyncio.Task[BatchResult | None] | None:
        state = self.state
        if state.hero is None:
            raise ValueError("A hero is required before generating pages.")
        start = self._next_window_start()
        if start is None:
            logger.info("Story already has all %d pages", TOTAL_PAGES)
            return None
        return self._orchestrator.spawn(
            self._orchestrator.generate_batch(
                start,
                self._settings.batch_size,
                state.pages,
                state.hero,
                state.co_star,
                state.config,
                state.world,
                guidance,
            )
        )
