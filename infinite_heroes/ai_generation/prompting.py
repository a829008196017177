"""
Prompt construction utilities for comic panel and character-sheet rendering.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from infinite_heroes.story_generation.models import (
    Beat,
    PageKind,
    Persona,
    StoryConfig,
    World,
)

COMIC_TITLE = "INFINITE HEROES"

NEGATIVE_PROMPT = (
    "identity drift, inconsistent character design, extra limbs, garbled lettering, "
    "photorealism, blurry ink, watermark, logo"
)


@dataclass(frozen=True)
class ComicPrompt:
    """Container for the positive and negative prompts passed to the image model."""

    positive: str
    negative: str = NEGATIVE_PROMPT


def style_era(config: StoryConfig) -> str:
    return "Modern American" if config.is_custom else config.genre


def build_persona_prompt(description: str, genre: str) -> ComicPrompt:
    """
    Build the prompt for a full-body character sheet used as reference art.
    """
    if not description or not description.strip():
        raise ValueError("description must be a non-empty string.")
    style = "Modern American comic book art" if genre == "Custom" else f"{genre} comic"
    positive = (
        f"STYLE: Masterpiece {style} character sheet, detailed ink, neutral background. "
        f"FULL BODY. Character: {description.strip()}"
    )
    return ComicPrompt(positive=positive)


def build_panel_prompt(
    beat: Beat,
    kind: PageKind,
    config: StoryConfig,
    *,
    hero: Persona,
    co_star: Persona | None = None,
    world: World | None = None,
    reference_labels: Sequence[str] = (),
) -> ComicPrompt:
    """
    Build the structured prompt for a cover, story panel, or back cover.

    Parameters
    ----------
    beat:
        The page's beat. Only ``scene``, ``caption`` and ``dialogue`` are used.
    kind:
        Cover, story, or back cover; each has its own composition rules.
    config:
        Story configuration (genre drives the art style, language the cover title).
    hero, co_star, world:
        Characters and setting; descriptions are restated to reinforce likeness.
    reference_labels:
        Labels of the reference images attached to the request, in order.
    """
    if kind is PageKind.STORY and (not beat.scene or not beat.scene.strip()):
        raise ValueError("Story panels require a non-empty scene description.")

    header = f"STYLE: {style_era(config)} comic book art, detailed ink, vibrant colors."
    sections: list[str] = [header]

    if kind is PageKind.COVER:
        cover_lines = [
            f'TYPE: Comic Book Cover. TITLE: "{COMIC_TITLE}" (or localized translation in {config.language_name}).',
            "Main visual: dynamic action shot of [HERO] (use REFERENCE [HERO]).",
        ]
        if world is not None:
            cover_lines.append(
                f"Background must match REFERENCE [WORLD ENVIRONMENT] strictly. Setting: {world.name}."
            )
        sections.append(_format_bullet_section("COVER", cover_lines))
    elif kind is PageKind.BACK_COVER:
        sections.append(
            _format_bullet_section(
                "BACK COVER",
                [
                    "TYPE: Comic Back Cover. Full page vertical art.",
                    'Dramatic teaser. Text: "NEXT ISSUE SOON".',
                ],
            )
        )
    else:
        panel_lines = [
            f"TYPE: Vertical comic panel. SCENE: {beat.scene.strip()}",
            "Maintain strict character likeness. If the scene mentions 'HERO', use REFERENCE [HERO]. "
            "If it mentions 'CO-STAR' or 'SIDEKICK', use REFERENCE [CO-STAR].",
        ]
        if world is not None:
            panel_lines.append(
                f"Background must match REFERENCE [WORLD ENVIRONMENT] aesthetic. Setting: {world.name}."
            )
        sections.append(_format_bullet_section("PANEL", panel_lines))

        lettering: list[str] = []
        if beat.caption:
            lettering.append(f'Include caption box: "{beat.caption}"')
        if beat.dialogue:
            lettering.append(f'Include speech bubble: "{beat.dialogue}"')
        if lettering:
            sections.append(_format_bullet_section("LETTERING", lettering))

    cast: dict[str, str] = {}
    if hero.description:
        cast[f"[HERO] {hero.name}"] = hero.description
    if co_star is not None and co_star.description and kind is PageKind.STORY:
        cast[f"[CO-STAR] {co_star.name}"] = co_star.description
    cast_lines = _normalize_note_input(cast)
    if cast_lines:
        sections.append(_format_bullet_section("CHARACTER CONTINUITY", cast_lines))

    reference_lines = _normalize_note_input(list(reference_labels))
    if reference_lines:
        sections.append(_format_bullet_section("ATTACHED REFERENCES (in order)", reference_lines))

    return ComicPrompt(positive="\n\n".join(sections))


def _normalize_note_input(
    value: str | Sequence[str] | Mapping[str, str] | None,
) -> list[str]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        items = [f"{key}: {details}" for key, details in value.items()]
    elif isinstance(value, str):
        items = [value]
    else:
        items = [str(item) for item in value]

    lines: list[str] = []
    for item in items:
        for raw in item.replace("\r", "\n").split("\n"):
            cleaned = raw.strip(" \t-•—")
            if cleaned:
                lines.append(cleaned)
    return lines


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
