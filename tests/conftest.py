import asyncio
from typing import Any

import pytest

from infinite_heroes.common import CancelToken, EngineSettings, RetryPolicy
from infinite_heroes.pipeline import NarrativeStateStore
from infinite_heroes.story_generation import (
    Beat,
    FocusCharacter,
    PageKind,
    Persona,
    StoryConfig,
    is_decision_page,
)


def beat_for(page_number: int, **overrides: Any) -> Beat:
    values: dict[str, Any] = {
        "scene": f"HERO stands on a rooftop, page {page_number}",
        "caption": f"Caption {page_number}",
        "dialogue": f"Line {page_number}",
        "focus_character": FocusCharacter.HERO,
        "choices": ("Forgive", "Avenge") if is_decision_page(page_number) else (),
    }
    values.update(overrides)
    return Beat(**values)


class FakeProvider:
    """
    In-memory AI provider that records every call.

    ``beat_gates`` / ``image_gates`` map a page number to an ``asyncio.Event``
    the call waits on; ``*_errors`` map a page number to an exception raised
    instead of returning.
    """

    def __init__(self) -> None:
        self.beats: dict[int, Beat] = {}
        self.beat_requests: list[dict[str, Any]] = []
        self.image_requests: list[dict[str, Any]] = []
        self.persona_requests: list[tuple[str, str]] = []
        self.beat_errors: dict[int, BaseException] = {}
        self.image_errors: dict[int, BaseException] = {}
        self.persona_error: BaseException | None = None
        self.beat_gates: dict[int, asyncio.Event] = {}
        self.image_gates: dict[int, asyncio.Event] = {}
        self.cover_gate: asyncio.Event | None = None
        self.cover_error: BaseException | None = None

    async def generate_persona(self, description: str, genre: str, *, cancel: CancelToken) -> Persona:
        cancel.raise_if_cancelled()
        self.persona_requests.append((description, genre))
        if self.persona_error is not None:
            raise self.persona_error
        return Persona(name="Sidekick", description=description, image_ref="https://img.test/sidekick.png")

    async def generate_beat(
        self,
        *,
        history,
        page_number,
        is_decision,
        config,
        hero,
        co_star,
        world,
        guidance,
        cancel,
        focus_hint=None,
    ) -> Beat:
        cancel.raise_if_cancelled()
        self.beat_requests.append(
            {
                "page_number": page_number,
                "history": list(history),
                "is_decision": is_decision,
                "guidance": guidance,
                "co_star": co_star,
                "focus_hint": focus_hint,
            }
        )
        gate = self.beat_gates.get(page_number)
        if gate is not None:
            await gate.wait()
        if page_number in self.beat_errors:
            raise self.beat_errors[page_number]
        return self.beats.get(page_number) or beat_for(page_number)

    async def generate_image(self, beat, page_kind, *, config, hero, co_star, world, cancel) -> str:
        cancel.raise_if_cancelled()
        page_number = _page_from_scene(beat, page_kind)
        self.image_requests.append(
            {"page_number": page_number, "kind": page_kind, "beat": beat, "co_star": co_star}
        )
        if page_kind is PageKind.COVER:
            if self.cover_gate is not None:
                await self.cover_gate.wait()
            if self.cover_error is not None:
                raise self.cover_error
            return "https://img.test/cover.png"
        gate = self.image_gates.get(page_number)
        if gate is not None:
            await gate.wait()
        if page_number in self.image_errors:
            raise self.image_errors[page_number]
        return f"https://img.test/page-{page_number}.png"

    @property
    def beat_pages(self) -> list[int]:
        return [request["page_number"] for request in self.beat_requests]


def _page_from_scene(beat: Beat, page_kind: PageKind) -> int:
    if page_kind is PageKind.COVER:
        return 0
    if page_kind is PageKind.BACK_COVER:
        return 11
    return int(beat.scene.rsplit(" ", 1)[-1])


@pytest.fixture
def fast_settings() -> EngineSettings:
    return EngineSettings(
        transition_delay=0.0,
        progress_grace_delay=0.0,
        retry=RetryPolicy(max_retries=1, initial_delay=0.0, max_delay=0.0),
        text_model="test-model",
        text_api_key="test-key",
        image_model="black-forest-labs/flux-kontext-pro",
        replicate_api_token="test-token",
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> NarrativeStateStore:
    return NarrativeStateStore()


@pytest.fixture
def hero() -> Persona:
    return Persona(
        name="Nova",
        description="Teen inventor with a copper jetpack",
        image_ref="https://img.test/nova.png",
        id="nova",
    )


@pytest.fixture
def config() -> StoryConfig:
    return StoryConfig(genre="Superhero Action", opening_prompt="Nova finds a glowing map")


async def until(predicate, attempts: int = 500) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")
