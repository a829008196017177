import json

import pytest

from infinite_heroes.common import ChatResult
from infinite_heroes.story_generation import (
    CONTINUATION_MARKER,
    MAX_STORY_PAGES,
    Beat,
    BeatCache,
    BeatGenerator,
    FocusCharacter,
    FocusHint,
    PageSummary,
    Persona,
    StoryConfig,
    fallback_beat,
    parse_beat_payload,
    sanitize_beat,
)

HERO = Persona(name="Nova", description="Teen inventor")
CONFIG = StoryConfig(genre="Dark Sci-Fi", language="fr-FR")


class FakeCompletion:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def __call__(self, **kwargs):
        self.calls.append(kwargs)
        text = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return ChatResult(text=text, raw=None)


def _payload(**overrides):
    data = {
        "caption": "The city hums.",
        "dialogue": "Nova: We need to move!",
        "scene": "HERO sprints across a neon bridge",
        "focus_char": "hero",
        "choices": [],
    }
    data.update(overrides)
    return json.dumps(data)


def _generator(completion, cache=None):
    return BeatGenerator(api_key="key", model="test-model", completion_fn=completion, cache=cache or BeatCache())


async def _generate(generator, page=2, **kwargs):
    params = dict(
        history=[],
        page_number=page,
        is_decision=False,
        config=CONFIG,
        hero=HERO,
    )
    params.update(kwargs)
    return await generator.generate_beat(**params)


def test_parse_strips_markdown_fences():
    payload = parse_beat_payload("```json\n" + _payload() + "\n```")

    assert payload["scene"] == "HERO sprints across a neon bridge"


@pytest.mark.parametrize("text", ["not json", "[1, 2]", json.dumps({"caption": "no scene"})])
def test_parse_rejects_invalid_payloads(text):
    with pytest.raises(ValueError):
        parse_beat_payload(text)


def test_sanitize_enforces_decision_choices():
    beat = sanitize_beat(Beat(scene="s", choices=("Only one",)), page_number=5, is_decision=True)

    assert beat.choices == ("Option A", "Option B")


def test_sanitize_clears_choices_on_ordinary_pages():
    beat = sanitize_beat(Beat(scene="s", choices=("A", "B")), page_number=3, is_decision=False)

    assert beat.choices == ()


def test_sanitize_appends_continuation_marker_on_final_page():
    beat = sanitize_beat(Beat(scene="s", caption="It ends here."), page_number=10, is_decision=False)
    trailing = sanitize_beat(Beat(scene="s", caption="She vanished into the night..."), page_number=10, is_decision=False)
    marked = sanitize_beat(Beat(scene="s", caption=f"Or does it? {CONTINUATION_MARKER}"), page_number=10, is_decision=False)

    assert beat.caption == f"It ends here. {CONTINUATION_MARKER}"
    assert trailing.caption == f"She vanished into the night... {CONTINUATION_MARKER}"
    assert marked.caption == f"Or does it? {CONTINUATION_MARKER}"


def test_fallback_beat_on_final_page_gets_marker():
    beat = sanitize_beat(fallback_beat(is_decision=False), page_number=MAX_STORY_PAGES, is_decision=False)

    assert beat.caption.endswith(CONTINUATION_MARKER)
    assert beat.choices == ()


def test_fallback_beat_is_schema_valid():
    beat = fallback_beat(is_decision=True)

    assert beat.scene
    assert len(beat.choices) >= 2
    assert beat.focus_character is FocusCharacter.HERO


@pytest.mark.asyncio
async def test_generate_beat_parses_and_sanitizes():
    completion = FakeCompletion(_payload(focus_char="friend"))

    beat = await _generate(_generator(completion))

    assert beat.scene == "HERO sprints across a neon bridge"
    assert beat.dialogue == "We need to move!"
    assert beat.focus_character is FocusCharacter.CO_STAR
    call = completion.calls[0]
    assert call["model"] == "test-model"
    assert call["api_key"] == "key"
    assert "FRENCH (FRANCE)" in call["messages"][1]["content"]


@pytest.mark.asyncio
async def test_unguided_beats_are_cached():
    completion = FakeCompletion(_payload(), _payload(scene="Different"))
    generator = _generator(completion)

    first = await _generate(generator)
    second = await _generate(generator)

    assert first == second
    assert len(completion.calls) == 1


@pytest.mark.asyncio
async def test_guided_beats_bypass_cache_and_carry_directive():
    completion = FakeCompletion(_payload(), _payload(scene="Dragon bursts in"))
    generator = _generator(completion)
    await _generate(generator)

    guided = await _generate(generator, guidance="a dragon crashes through the roof")

    assert guided.scene == "Dragon bursts in"
    prompt = completion.calls[1]["messages"][1]["content"]
    assert "DIRECTIVE FROM THE DIRECTOR" in prompt
    assert "a dragon crashes through the roof" in prompt


@pytest.mark.asyncio
async def test_malformed_response_yields_uncached_fallback():
    completion = FakeCompletion("Sorry, I cannot help with that.")
    generator = _generator(completion)

    beat = await _generate(generator, page=5, is_decision=True)
    await _generate(generator, page=5, is_decision=True)

    assert beat.scene == fallback_beat(is_decision=True).scene
    assert len(beat.choices) >= 2
    assert len(completion.calls) == 2
    assert len(generator.cache) == 0


@pytest.mark.asyncio
async def test_history_and_focus_hint_reach_the_prompt():
    completion = FakeCompletion(_payload())
    history = [
        PageSummary(page_index=1, scene="Rooftop chase", focus_character=FocusCharacter.HERO, caption="Go!"),
    ]

    await _generate(
        _generator(completion),
        history=history,
        co_star=Persona(name="Echo", description="Cyborg cat"),
        focus_hint=FocusHint.FAVOR_CO_STAR,
    )

    prompt = completion.calls[0]["messages"][1]["content"]
    assert "[Page 1] [Focus: hero]" in prompt
    assert 'Name: "Echo"' in prompt
    assert "prefer to focus this panel on the co-star" in prompt
