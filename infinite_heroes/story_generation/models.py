"""
Structured representations of the comic's characters, world, configuration, and beats.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Sequence

MAX_STORY_PAGES = 10
BACK_COVER_PAGE = 11
TOTAL_PAGES = 11
INITIAL_PAGES = 2
BATCH_SIZE = 2
DECISION_PAGES: tuple[int, ...] = (5,)
MAX_WORLD_IMAGES = 3

CONTINUATION_MARKER = "TO BE CONTINUED..."

GENRES: tuple[str, ...] = (
    "Classic Horror",
    "Superhero Action",
    "Dark Sci-Fi",
    "High Fantasy",
    "Neon Noir Detective",
    "Wasteland Apocalypse",
    "Lighthearted Comedy",
    "Teen Drama / Slice of Life",
    "Custom",
)

TONES: tuple[str, ...] = (
    "ACTION-HEAVY (Short, punchy dialogue. Focus on kinetics.)",
    "INNER-MONOLOGUE (Heavy captions revealing thoughts.)",
    "QUIPPY (Characters use humor as a defense mechanism.)",
    "OPERATIC (Grand, dramatic declarations and high stakes.)",
    "CASUAL (Natural dialogue, focus on relationships/gossip.)",
    "WHOLESOME (Warm, gentle, optimistic.)",
)

LANGUAGES: dict[str, str] = {
    "en-US": "English (US)",
    "ar-EG": "Arabic (Egypt)",
    "de-DE": "German (Germany)",
    "es-MX": "Spanish (Mexico)",
    "fr-FR": "French (France)",
    "hi-IN": "Hindi (India)",
    "id-ID": "Indonesian (Indonesia)",
    "it-IT": "Italian (Italy)",
    "ja-JP": "Japanese (Japan)",
    "ko-KR": "Korean (South Korea)",
    "pt-BR": "Portuguese (Brazil)",
    "ru-RU": "Russian (Russia)",
    "ua-UA": "Ukrainian (Ukraine)",
    "vi-VN": "Vietnamese (Vietnam)",
    "zh-CN": "Chinese (China)",
}

CUSTOM_GENRE = "Custom"


def language_name(code: str) -> str:
    return LANGUAGES.get(code, "English")


def is_decision_page(page_number: int) -> bool:
    return page_number in DECISION_PAGES


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


class PageKind(str, Enum):
    COVER = "cover"
    STORY = "story"
    BACK_COVER = "back_cover"

    @classmethod
    def for_page(cls, page_index: int) -> "PageKind":
        if page_index == 0:
            return cls.COVER
        if page_index == BACK_COVER_PAGE:
            return cls.BACK_COVER
        return cls.STORY


class FocusCharacter(str, Enum):
    HERO = "hero"
    CO_STAR = "co_star"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "FocusCharacter":
        """
        Normalize model output; anything unrecognised falls back to the hero.
        """
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        if text in {"co_star", "costar", "friend", "sidekick"}:
            return cls.CO_STAR
        if text == "other":
            return cls.OTHER
        return cls.HERO


@dataclass(frozen=True)
class Persona:
    """
    A character with reference art reused across renders for consistency.

    Attributes
    ----------
    name:
        Display name used in prompts.
    description:
        Free-form appearance and personality notes.
    image_ref:
        URL, data URL, or local path of the reference art.
    id:
        Stable identifier used by the character library.
    """

    name: str
    description: str = ""
    image_ref: str | None = None
    id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Persona":
        name = _coerce_optional_str(data.get("name"))
        if not name:
            raise ValueError("Persona data must include a non-empty 'name' field.")
        return cls(
            name=name,
            description=_coerce_optional_str(data.get("description")) or "",
            image_ref=_coerce_optional_str(
                data.get("image_ref") or data.get("image") or data.get("base64")
            ),
            id=_coerce_optional_str(data.get("id")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_ref": self.image_ref,
        }


@dataclass(frozen=True)
class World:
    """A setting with up to three reference images and linked personas."""

    id: str
    name: str
    description: str = ""
    image_refs: tuple[str, ...] = ()
    linked_persona_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Blank refs are dropped before the cap is applied.
        images = tuple(_clean_strings(self.image_refs))[:MAX_WORLD_IMAGES]
        if images != self.image_refs:
            object.__setattr__(self, "image_refs", images)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "World":
        world_id = _coerce_optional_str(data.get("id"))
        name = _coerce_optional_str(data.get("name"))
        if not world_id or not name:
            raise ValueError("World data must include non-empty 'id' and 'name' fields.")
        images = data.get("image_refs") or data.get("images") or ()
        linked = data.get("linked_persona_ids") or data.get("linkedPersonaIds") or ()
        return cls(
            id=world_id,
            name=name,
            description=_coerce_optional_str(data.get("description")) or "",
            image_refs=tuple(_clean_strings(images)),
            linked_persona_ids=tuple(_clean_strings(linked)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_refs": list(self.image_refs),
            "linked_persona_ids": list(self.linked_persona_ids),
        }


@dataclass(frozen=True)
class StoryConfig:
    """
    Story-wide generation parameters chosen during setup.

    Attributes
    ----------
    genre:
        One of :data:`GENRES`; ``"Custom"`` switches to ``custom_premise``.
    tone:
        One of :data:`TONES` (free text is accepted).
    language:
        Language code from :data:`LANGUAGES` for all user-facing text.
    custom_premise:
        Premise used when the genre is ``"Custom"``.
    opening_prompt:
        User-defined start of the story, honoured on every page and used as
        the first batch's guidance.
    rich_mode:
        Longer captions and dialogue.
    preset_prompt:
        Optional guidance from a saved generation preset.
    """

    genre: str = GENRES[0]
    tone: str = TONES[0]
    language: str = "en-US"
    custom_premise: str = ""
    opening_prompt: str = ""
    rich_mode: bool = True
    preset_prompt: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryConfig":
        defaults = cls()
        rich_mode = data.get("rich_mode", data.get("richMode", defaults.rich_mode))
        return cls(
            genre=_coerce_optional_str(data.get("genre")) or defaults.genre,
            tone=_coerce_optional_str(data.get("tone")) or defaults.tone,
            language=_coerce_optional_str(data.get("language")) or defaults.language,
            custom_premise=_coerce_optional_str(
                data.get("custom_premise") or data.get("customPremise")
            )
            or "",
            opening_prompt=_coerce_optional_str(
                data.get("opening_prompt") or data.get("openingPrompt")
            )
            or "",
            rich_mode=bool(rich_mode),
            preset_prompt=_coerce_optional_str(data.get("preset_prompt")),
        )

    def merged(self, updates: Mapping[str, Any]) -> "StoryConfig":
        known = {key: value for key, value in updates.items() if key in self.__dataclass_fields__}
        return replace(self, **known)

    @property
    def language_name(self) -> str:
        return language_name(self.language)

    @property
    def is_custom(self) -> bool:
        return self.genre == CUSTOM_GENRE

    def to_dict(self) -> dict[str, Any]:
        return {
            "genre": self.genre,
            "tone": self.tone,
            "language": self.language,
            "custom_premise": self.custom_premise,
            "opening_prompt": self.opening_prompt,
            "rich_mode": self.rich_mode,
            "preset_prompt": self.preset_prompt,
        }


@dataclass(frozen=True)
class Beat:
    """One page's narrative unit."""

    scene: str
    focus_character: FocusCharacter = FocusCharacter.HERO
    caption: str | None = None
    dialogue: str | None = None
    choices: tuple[str, ...] = field(default_factory=tuple)

    def with_focus(self, focus: FocusCharacter) -> "Beat":
        return replace(self, focus_character=focus)

    def to_dict(self) -> dict[str, Any]:
        return {
            "caption": self.caption,
            "dialogue": self.dialogue,
            "scene": self.scene,
            "focus_character": self.focus_character.value,
            "choices": list(self.choices),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Beat":
        scene = _coerce_optional_str(data.get("scene"))
        if not scene:
            raise ValueError("Beat data must include a non-empty 'scene' field.")
        return cls(
            scene=scene,
            focus_character=FocusCharacter.parse(
                data.get("focus_character") or data.get("focus_char")
            ),
            caption=_coerce_optional_str(data.get("caption")),
            dialogue=_coerce_optional_str(data.get("dialogue")),
            choices=tuple(_clean_strings(data.get("choices") or ())),
        )


class FocusHint(str, Enum):
    """Soft guidance on which character the next beat should centre on."""

    NONE = "none"
    FAVOR_CO_STAR = "favor_co_star"
    INCLUDE_CO_STAR = "include_co_star"


@dataclass(frozen=True)
class PageSummary:
    """Compact record of an earlier story page, as fed to the beat prompt."""

    page_index: int
    scene: str
    focus_character: FocusCharacter
    caption: str | None = None
    dialogue: str | None = None
    resolved_choice: str | None = None

    def render(self) -> str:
        line = (
            f"[Page {self.page_index}] [Focus: {self.focus_character.value}] "
            f'(Caption: "{self.caption or ""}") (Dialogue: "{self.dialogue or ""}") '
            f"(Scene: {self.scene})"
        )
        if self.resolved_choice:
            line += f' -> USER CHOICE: "{self.resolved_choice}"'
        return line


COVER_BEAT = Beat(scene="Cover", focus_character=FocusCharacter.HERO)
BACK_COVER_BEAT = Beat(scene="Thematic teaser image", focus_character=FocusCharacter.OTHER)


def _clean_strings(values: Any) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, Sequence):
        raise TypeError("Expected a string or a sequence of strings.")
    cleaned: list[str] = []
    for item in values:
        text = _coerce_optional_str(item)
        if text:
            cleaned.append(text)
    return cleaned
