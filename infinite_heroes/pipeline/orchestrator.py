"""
Batch orchestration: turns reserved page numbers into finished comic pages.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Coroutine, Iterable, TypeVar

from infinite_heroes.common import (
    CancelToken,
    ComicEngineError,
    CredentialError,
    EngineSettings,
    OperationCancelledError,
    classify_error,
    run_with_deadline,
)
from infinite_heroes.story_generation import (
    BACK_COVER_BEAT,
    COVER_BEAT,
    TOTAL_PAGES,
    Beat,
    FocusCharacter,
    PageKind,
    Persona,
    StoryConfig,
    World,
    is_decision_page,
)

from .cancellation import CancellationRegistry, GenerationStage
from .continuity_builder import build_continuity_context
from .progress import (
    CASTING_SUBSTEP,
    INKING_SUBSTEP,
    PREPARING_SUBSTEP,
    WRITING_SUBSTEP,
    Progress,
    ProgressReporter,
    batch_label,
    casting_label,
    inking_label,
    writing_label,
)
from .provider import AIProvider, sidekick_description
from .reservations import PageReservationRegistry
from .state import (
    AddPages,
    ComicPage,
    Event,
    NarrativeStateStore,
    SessionError,
    SetCoStar,
    SetError,
    SetProgress,
    UpdatePage,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one :meth:`BatchOrchestrator.generate_batch` call."""

    requested: tuple[int, ...]
    reserved: tuple[int, ...] = ()
    completed: tuple[int, ...] = ()
    error: ComicEngineError | None = None
    cancelled: bool = False

    @property
    def skipped(self) -> bool:
        return not self.reserved


@dataclass
class _BatchRun:
    token: CancelToken
    pages: tuple[int, ...]
    started: float
    config: StoryConfig
    hero: Persona
    world: World | None
    co_star: Persona | None
    history: dict[int, ComicPage] = field(default_factory=dict)
    last_progress: Progress | None = None

    @property
    def total(self) -> int:
        return len(self.pages)


class BatchOrchestrator:
    """
    Sole writer of page state during generation.

    Owns the page reservations, the cancellation table, and the set of
    pending timers and background tasks for one session.
    """

    def __init__(
        self,
        *,
        provider: AIProvider,
        store: NarrativeStateStore,
        settings: EngineSettings | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._settings = settings or EngineSettings()
        self._reporter = reporter or ProgressReporter()
        self._reservations = PageReservationRegistry()
        self._cancellations = CancellationRegistry()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._timers: set[asyncio.Task[Any]] = set()
        self._epoch = 0

    @property
    def reservations(self) -> PageReservationRegistry:
        return self._reservations

    @property
    def cancellations(self) -> CancellationRegistry:
        return self._cancellations

    @property
    def reporter(self) -> ProgressReporter:
        return self._reporter

    @property
    def pending(self) -> int:
        return len(self._tasks) + len(self._timers)

    @staticmethod
    def target_pages(start_page: int, count: int) -> list[int]:
        return [page for page in range(start_page, start_page + max(0, count)) if 1 <= page <= TOTAL_PAGES]

    async def generate_batch(
        self,
        start_page: int,
        count: int,
        history: Iterable[ComicPage],
        hero: Persona,
        co_star: Persona | None,
        config: StoryConfig,
        world: World | None,
        guidance: str | None = None,
    ) -> BatchResult:
        """
        Generate ``count`` pages starting at ``start_page``, strictly one after another.

        Pages outside the valid range or already reserved by another run are
        dropped. ``guidance`` only reaches the first reserved page. Errors are
        reported through the session error flag, never raised.
        """
        requested = tuple(self.target_pages(start_page, count))
        token = self._cancellations.begin_batch(label=f"batch {start_page}-{start_page + count - 1}")
        reserved = tuple(self._reservations.reserve(requested, owner=token))
        if not reserved:
            self._cancellations.end_batch(token)
            logger.debug("Pages %s already in flight; skipping batch", list(requested))
            return BatchResult(requested=requested)

        placeholders = tuple(ComicPage.placeholder(page) for page in reserved)
        self._store.dispatch(AddPages(placeholders))

        run = _BatchRun(
            token=token,
            pages=reserved,
            started=self._reporter.now(),
            config=config,
            hero=hero,
            world=world,
            co_star=co_star,
        )
        run.history = {page.page_index: page for page in history}
        run.history.update({page.page_index: page for page in placeholders})

        self._set_progress(
            run,
            batch_label(start_page, start_page + count - 1),
            0,
            PREPARING_SUBSTEP,
        )
        logger.info("Starting batch for pages %s (guided: %s)", list(reserved), bool(guidance))

        completed: list[int] = []
        error: ComicEngineError | None = None
        cancelled = False
        batch_started = time.monotonic()
        try:
            for position, page_number in enumerate(reserved):
                page_guidance = guidance if position == 0 else None
                await self._generate_page(run, page_number, position, page_guidance)
                completed.append(page_number)
                self._reservations.release([page_number], owner=token)
        except OperationCancelledError as exc:
            cancelled = True
            logger.info("Batch %s cancelled: %s", list(reserved), exc)
        except Exception as exc:
            error = classify_error(exc)
            if isinstance(error, CredentialError):
                logger.error("Credential error while generating pages %s: %s", list(reserved), error)
            else:
                logger.exception("Batch generation error for pages %s", list(reserved))
            if not token.cancelled:
                self._store.dispatch(SetError(SessionError.from_exception(error)))
        finally:
            self._reservations.release(reserved, owner=token)
            self._cancellations.end_batch(token)
            if not token.cancelled:
                self._schedule_progress_clear(run.last_progress)

        logger.info(
            "Batch for pages %s finished in %.0fms (%d completed)",
            list(reserved),
            (time.monotonic() - batch_started) * 1000,
            len(completed),
        )
        return BatchResult(
            requested=requested,
            reserved=reserved,
            completed=tuple(completed),
            error=error,
            cancelled=cancelled,
        )

    async def generate_cover(
        self,
        hero: Persona,
        co_star: Persona | None,
        config: StoryConfig,
        world: World | None,
    ) -> bool:
        """
        Render page 0. Returns ``True`` when the cover image was committed.
        """
        token = self._cancellations.begin_batch(label="cover")
        if not self._reservations.reserve([0], owner=token):
            self._cancellations.end_batch(token)
            return False

        self._store.dispatch(AddPages((ComicPage.placeholder(0),)))
        try:
            image_ref = await self._run_stage(
                0,
                GenerationStage.IMAGE,
                token,
                lambda cancel: self._provider.generate_image(
                    COVER_BEAT,
                    PageKind.COVER,
                    config=config,
                    hero=hero,
                    co_star=co_star,
                    world=world,
                    cancel=cancel,
                ),
            )
            self._commit(token, UpdatePage(0, {"image_ref": image_ref, "is_loading": False}))
        except OperationCancelledError:
            logger.info("Cover generation cancelled")
            return False
        except Exception as exc:
            error = classify_error(exc)
            logger.error("Cover generation failed: %s", error)
            if not token.cancelled:
                self._store.dispatch(SetError(SessionError.from_exception(error)))
            return False
        finally:
            self._reservations.release([0], owner=token)
            self._cancellations.end_batch(token)
        return True

    async def _generate_page(
        self,
        run: _BatchRun,
        page_number: int,
        position: int,
        guidance: str | None,
    ) -> None:
        step = position + 1
        kind = PageKind.for_page(page_number)
        is_decision = kind is PageKind.STORY and is_decision_page(page_number)

        self._set_progress(run, writing_label(page_number), step, WRITING_SUBSTEP)
        if kind is PageKind.BACK_COVER:
            beat = BACK_COVER_BEAT
        else:
            context = build_continuity_context(
                run.history.values(),
                page_number,
                run.co_star,
                guidance,
            )
            beat = await self._run_stage(
                page_number,
                GenerationStage.BEAT,
                run.token,
                lambda cancel: self._provider.generate_beat(
                    history=context.history,
                    page_number=page_number,
                    is_decision=is_decision,
                    config=run.config,
                    hero=run.hero,
                    co_star=run.co_star,
                    world=run.world,
                    guidance=context.directive,
                    cancel=cancel,
                    focus_hint=context.focus_hint,
                ),
            )

        if beat.focus_character is FocusCharacter.CO_STAR and run.co_star is None and kind is PageKind.STORY:
            beat = await self._cast_co_star(run, page_number, step, beat)

        narrative = {"narrative": beat, "choices": beat.choices, "is_decision_page": is_decision}
        self._commit(run.token, UpdatePage(page_number, narrative))
        run.history[page_number] = _apply(run.history[page_number], narrative)

        self._set_progress(run, inking_label(page_number), step, INKING_SUBSTEP)
        image_ref = await self._run_stage(
            page_number,
            GenerationStage.IMAGE,
            run.token,
            lambda cancel: self._provider.generate_image(
                beat,
                kind,
                config=run.config,
                hero=run.hero,
                co_star=run.co_star,
                world=run.world,
                cancel=cancel,
            ),
        )
        finished = {"image_ref": image_ref, "is_loading": False}
        self._commit(run.token, UpdatePage(page_number, finished))
        run.history[page_number] = _apply(run.history[page_number], finished)

    async def _cast_co_star(self, run: _BatchRun, page_number: int, step: int, beat: Beat) -> Beat:
        self._set_progress(run, casting_label(page_number), step, CASTING_SUBSTEP)
        genre = run.config.genre
        try:
            persona = await self._run_stage(
                page_number,
                GenerationStage.PERSONA,
                run.token,
                lambda cancel: self._provider.generate_persona(
                    sidekick_description(genre),
                    genre,
                    cancel=cancel,
                ),
            )
        except OperationCancelledError:
            raise
        except Exception as exc:
            error = classify_error(exc)
            if isinstance(error, CredentialError):
                if error is exc:
                    raise
                raise error from exc
            logger.warning(
                "Sidekick casting failed for page %d (%s); continuing without a co-star",
                page_number,
                error,
            )
            return beat.with_focus(FocusCharacter.OTHER)

        self._commit(run.token, SetCoStar(persona))
        run.co_star = persona
        return beat

    async def _run_stage(
        self,
        page_number: int,
        stage: GenerationStage,
        parent: CancelToken,
        call: Callable[[CancelToken], Awaitable[T]],
    ) -> T:
        token = self._cancellations.begin(page_number, stage, parent=parent)
        try:
            result = await run_with_deadline(
                lambda: call(token),
                token=token,
                timeout=None,
                label=f"Page {page_number} {stage.value}",
            )
        finally:
            self._cancellations.end(page_number, stage, token)
        # A result that raced an abort is dropped here.
        parent.raise_if_cancelled()
        return result

    def _commit(self, token: CancelToken, event: Event) -> None:
        token.raise_if_cancelled()
        self._store.dispatch(event)

    def _set_progress(self, run: _BatchRun, label: str, current: int, substep: str) -> None:
        if run.token.cancelled:
            return
        progress = self._reporter.report(label, current, run.total, substep, run.started)
        run.last_progress = progress
        self._store.dispatch(SetProgress(progress))

    def _schedule_progress_clear(self, progress: Progress | None) -> None:
        if progress is None:
            return

        def clear() -> None:
            if self._store.state.progress is progress:
                self._store.dispatch(SetProgress(None))

        self.schedule(self._settings.progress_grace_delay, clear)

    # Background work

    def schedule(self, delay: float, callback: Callable[[], None]) -> asyncio.Task[None]:
        """Run ``callback`` after ``delay`` seconds unless cancelled first."""

        async def _timer() -> None:
            await asyncio.sleep(max(0.0, delay))
            callback()

        task = asyncio.get_running_loop().create_task(_timer())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)
        task.add_done_callback(_log_background_failure)
        return task

    def spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T | None]:
        """
        Run ``coro`` in the background, tracked until it finishes.

        Work spawned before an :meth:`abort` that has not started yet is dropped.
        """
        epoch = self._epoch

        async def _run() -> T | None:
            if epoch != self._epoch:
                coro.close()
                return None
            return await coro

        task = asyncio.get_running_loop().create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_log_background_failure)
        return task

    def cancel_timers(self) -> None:
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()

    async def wait_idle(self) -> None:
        """Wait until no background task or timer is pending."""
        while self._tasks or self._timers:
            await asyncio.gather(*self._tasks, *self._timers, return_exceptions=True)

    def abort(self, reason: BaseException | str | None = None) -> int:
        """
        Cancel every in-flight call, release all reservations and drop pending timers.
        """
        self._epoch += 1
        cancelled = self._cancellations.abort_all(reason or "Generation aborted")
        self._reservations.clear()
        self.cancel_timers()
        return cancelled

    async def aclose(self) -> None:
        """Abort everything and wait for background tasks to unwind."""
        self.abort("Engine closed")
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()


def _apply(page: ComicPage, changes: dict[str, Any]) -> ComicPage:
    return replace(page, **changes)


def _log_background_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background generation task failed", exc_info=exc)
