"""
AI provider contract used by the orchestrator, and its live LiteLLM + Replicate implementation.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

import replicate

from infinite_heroes.ai_generation import ReferenceArtConfig, ReplicateImageGenerator
from infinite_heroes.common import (
    CancelToken,
    CompletionCallable,
    EngineSettings,
    RetryPolicy,
    retry_with_backoff,
    run_with_deadline,
)
from infinite_heroes.story_generation import (
    CUSTOM_GENRE,
    Beat,
    BeatCache,
    BeatGenerator,
    FocusHint,
    PageKind,
    PageSummary,
    Persona,
    StoryConfig,
    World,
)

from .cancellation import GenerationStage

T = TypeVar("T")

logger = logging.getLogger(__name__)

SIDEKICK_NAME = "Sidekick"


def sidekick_description(genre: str) -> str:
    if genre == CUSTOM_GENRE:
        return "A fitting sidekick for this story"
    return f"Sidekick for {genre} story."


class AIProvider(Protocol):
    """
    The three cancellable remote operations the orchestrator depends on.

    Implementations must check ``cancel`` before starting network I/O.
    """

    async def generate_persona(self, description: str, genre: str, *, cancel: CancelToken) -> Persona:
        ...

    async def generate_beat(
        self,
        *,
        history: Sequence[PageSummary],
        page_number: int,
        is_decision: bool,
        config: StoryConfig,
        hero: Persona,
        co_star: Persona | None,
        world: World | None,
        guidance: str | None,
        cancel: CancelToken,
        focus_hint: FocusHint = FocusHint.NONE,
    ) -> Beat:
        ...

    async def generate_image(
        self,
        beat: Beat,
        page_kind: PageKind,
        *,
        config: StoryConfig,
        hero: Persona,
        co_star: Persona | None,
        world: World | None,
        cancel: CancelToken,
    ) -> str:
        ...


class LiveAIProvider:
    """
    Provider backed by a LiteLLM chat model for beats and Replicate for art.

    Every call runs under its stage deadline, is retried with backoff on
    transient failures, and has its errors mapped onto the engine taxonomy.
    """

    def __init__(
        self,
        *,
        beat_generator: BeatGenerator,
        image_generator: ReplicateImageGenerator,
        timeouts: Callable[[GenerationStage], float],
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._beat_generator = beat_generator
        self._image_generator = image_generator
        self._timeouts = timeouts
        self._retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        *,
        beat_cache: BeatCache | None = None,
        completion_fn: CompletionCallable | None = None,
        replicate_client: replicate.Client | None = None,
        reference_config: ReferenceArtConfig | None = None,
    ) -> "LiveAIProvider":
        cache = beat_cache if beat_cache is not None else BeatCache(
            max_size=settings.beat_cache_size,
            ttl=settings.beat_cache_ttl,
        )
        beat_generator = BeatGenerator(
            api_key=settings.text_api_key,
            model=settings.text_model,
            completion_fn=completion_fn,
            cache=cache,
        )
        image_generator = ReplicateImageGenerator(
            api_token=settings.replicate_api_token,
            model_identifier=settings.image_model,
            client=replicate_client,
            reference_config=reference_config,
            inline_images=settings.inline_images,
            image_fetch_timeout=settings.image_fetch_timeout,
            max_image_bytes=settings.max_image_bytes,
        )
        return cls(
            beat_generator=beat_generator,
            image_generator=image_generator,
            timeouts=settings.timeout_for,
            retry_policy=settings.retry,
        )

    async def generate_persona(self, description: str, genre: str, *, cancel: CancelToken) -> Persona:
        image_ref = await self._guarded(
            GenerationStage.PERSONA,
            lambda: self._image_generator.render_persona(description, genre),
            cancel=cancel,
            label="Persona generation",
        )
        return Persona(name=SIDEKICK_NAME, description=description, image_ref=image_ref)

    async def generate_beat(
        self,
        *,
        history: Sequence[PageSummary],
        page_number: int,
        is_decision: bool,
        config: StoryConfig,
        hero: Persona,
        co_star: Persona | None,
        world: World | None,
        guidance: str | None,
        cancel: CancelToken,
        focus_hint: FocusHint = FocusHint.NONE,
    ) -> Beat:
        return await self._guarded(
            GenerationStage.BEAT,
            lambda: self._beat_generator.generate_beat(
                history=history,
                page_number=page_number,
                is_decision=is_decision,
                config=config,
                hero=hero,
                co_star=co_star,
                world=world,
                guidance=guidance,
                focus_hint=focus_hint,
            ),
            cancel=cancel,
            label=f"Beat generation for page {page_number}",
        )

    async def generate_image(
        self,
        beat: Beat,
        page_kind: PageKind,
        *,
        config: StoryConfig,
        hero: Persona,
        co_star: Persona | None,
        world: World | None,
        cancel: CancelToken,
    ) -> str:
        return await self._guarded(
            GenerationStage.IMAGE,
            lambda: self._image_generator.render_page(
                beat,
                page_kind,
                config,
                hero=hero,
                co_star=co_star,
                world=world,
            ),
            cancel=cancel,
            label=f"Image generation ({page_kind.value})",
        )

    async def _guarded(
        self,
        stage: GenerationStage,
        factory: Callable[[], Awaitable[T]],
        *,
        cancel: CancelToken,
        label: str,
    ) -> T:
        timeout = self._timeouts(stage)
        return await retry_with_backoff(
            lambda: run_with_deadline(factory, token=cancel, timeout=timeout, label=label),
            policy=self._retry_policy,
            token=cancel,
            label=label,
        )
