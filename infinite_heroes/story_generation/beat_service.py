"""
Service layer for producing comic beats via LiteLLM-compatible models.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Mapping, Sequence

from infinite_heroes.common import ChatResult, CompletionCallable, call_chat_completion

from .beat_cache import BeatCache
from .models import (
    CONTINUATION_MARKER,
    MAX_STORY_PAGES,
    Beat,
    FocusCharacter,
    FocusHint,
    PageSummary,
    Persona,
    StoryConfig,
    World,
)
from .prompting import BeatPrompt, build_beat_prompt

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
_SPEAKER_PREFIX = re.compile(r"^[\w\s\-]+:\s*")

DEFAULT_DECISION_CHOICES = ("Option A", "Option B")
FALLBACK_DECISION_CHOICES = ("Push ahead", "Change course")


def fallback_beat(*, is_decision: bool) -> Beat:
    """
    A schema-valid beat used when the model response cannot be parsed.
    """
    return Beat(
        scene="Unexpected twist to keep the story moving forward.",
        caption="The story stumbles but keeps going…",
        dialogue="We improvise when the script goes missing!",
        choices=FALLBACK_DECISION_CHOICES if is_decision else (),
        focus_character=FocusCharacter.HERO,
    )


def parse_beat_payload(text: str) -> Mapping[str, Any]:
    """
    Strip markdown fences and decode the JSON object returned by the model.

    Raises ``ValueError`` when the text is not a JSON object with a scene.
    """
    cleaned = _FENCE_PATTERN.sub("", text or "").strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ValueError("Failed to parse beat response as JSON.") from exc
    if not isinstance(payload, Mapping):
        raise ValueError("Beat response must be a JSON object.")
    scene = payload.get("scene")
    if not isinstance(scene, str) or not scene.strip():
        raise ValueError("Beat response missing 'scene'.")
    choices = payload.get("choices")
    if choices is not None and not isinstance(choices, (list, tuple)):
        raise ValueError("Beat 'choices' must be a list.")
    return payload


def sanitize_beat(beat: Beat, *, page_number: int, is_decision: bool) -> Beat:
    """
    Enforce page rules on a parsed beat.

    Speaker prefixes are stripped, decision pages get at least two choices,
    ordinary pages get none, and the final page ends with a continuation marker.
    """
    is_final = page_number == MAX_STORY_PAGES

    caption = beat.caption
    if caption:
        caption = _SPEAKER_PREFIX.sub("", caption).strip() or None

    dialogue = beat.dialogue
    if dialogue:
        dialogue = _SPEAKER_PREFIX.sub("", dialogue).replace('"', "").strip().strip("'").strip() or None

    choices = tuple(choice for choice in beat.choices if choice.strip())
    if is_decision and not is_final:
        if len(choices) < 2:
            choices = DEFAULT_DECISION_CHOICES
    elif not is_final:
        choices = ()

    if is_final:
        if not caption:
            caption = CONTINUATION_MARKER
        elif not caption.rstrip().endswith(CONTINUATION_MARKER):
            caption = f"{caption.rstrip()} {CONTINUATION_MARKER}"

    return Beat(
        scene=beat.scene.strip(),
        focus_character=beat.focus_character,
        caption=caption,
        dialogue=dialogue,
        choices=choices,
    )


class BeatGenerator:
    """
    High-level helper that asks the configured LLM for the next page's beat.

    Responses for unguided requests are cached in ``cache`` (see
    :class:`BeatCache`). Malformed responses never raise: a fallback beat is
    returned so the batch can continue.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        cache: BeatCache | None = None,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("INFINITE_HEROES_TEXT_MODEL")
            or os.getenv("LITELLM_STORY_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-4.1-mini"
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._cache = cache if cache is not None else BeatCache()

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    @property
    def cache(self) -> BeatCache:
        return self._cache

    async def generate_beat(
        self,
        *,
        history: Sequence[PageSummary],
        page_number: int,
        is_decision: bool,
        config: StoryConfig,
        hero: Persona,
        co_star: Persona | None = None,
        world: World | None = None,
        guidance: str | None = None,
        focus_hint: FocusHint = FocusHint.NONE,
        temperature: float = 0.9,
        max_output_tokens: int = 800,
        **response_kwargs: Any,
    ) -> Beat:
        """
        Invoke the configured LLM to produce the beat for ``page_number``.
        """
        cache_key = None
        if not guidance:
            cache_key = BeatCache.make_key(page_number, len(history), config.genre, config.language)
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Beat cache hit for page %d", page_number)
                return cached

        prompt: BeatPrompt = build_beat_prompt(
            history=history,
            page_number=page_number,
            is_decision=is_decision,
            config=config,
            hero=hero,
            co_star=co_star,
            world=world,
            guidance=guidance,
            focus_hint=focus_hint,
        )

        started = time.monotonic()
        logger.info(
            "Starting beat generation - page %d, model %s, guided: %s",
            page_number,
            self._model,
            bool(guidance),
        )
        result: ChatResult = await self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            temperature=temperature,
            max_tokens=max_output_tokens,
            api_key=self._api_key,
            **response_kwargs,
        )
        logger.info(
            "Beat generation for page %d completed in %.0fms",
            page_number,
            (time.monotonic() - started) * 1000,
        )

        try:
            beat = Beat.from_mapping(parse_beat_payload(result.text))
        except (ValueError, TypeError) as exc:
            logger.warning(
                "Beat parsing failed for page %d; using fallback beat (%s, %d chars)",
                page_number,
                exc,
                len(result.text or ""),
            )
            return sanitize_beat(
                fallback_beat(is_decision=is_decision),
                page_number=page_number,
                is_decision=is_decision,
            )

        beat = sanitize_beat(beat, page_number=page_number, is_decision=is_decision)
        if cache_key is not None:
            self._cache.put(cache_key, beat)
        return beat
