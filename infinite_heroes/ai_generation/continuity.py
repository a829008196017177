"""
Continuity helpers to keep comic panels consistent across pages.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Mapping

from infinite_heroes.story_generation.models import MAX_WORLD_IMAGES, PageKind, Persona, StoryConfig, World

_SEED_MOD = 2_147_483_647


@dataclass(frozen=True)
class ReferenceArtConfig:
    """
    Configuration knobs that control reference-art behaviour.

    Attributes
    ----------
    include_co_star_on_covers:
        Whether the co-star's reference is attached to cover renders.
    max_world_images:
        Maximum number of world environment references attached per request.
    locked_seed:
        Optional deterministic seed forwarded to the image model.
    auto_seed:
        When True (default), derive a deterministic seed from the hero and
        story configuration. Ignored if ``locked_seed`` is provided.
    """

    include_co_star_on_covers: bool = False
    max_world_images: int = MAX_WORLD_IMAGES
    locked_seed: int | None = None
    auto_seed: bool = True


@dataclass(frozen=True)
class ReferenceArt:
    """
    Fully-resolved references for a single render request.
    """

    images: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    model_overrides: Mapping[str, Any] = field(default_factory=dict)


def assemble_reference_art(
    kind: PageKind,
    *,
    config: StoryConfig,
    hero: Persona,
    co_star: Persona | None = None,
    world: World | None = None,
    settings: ReferenceArtConfig | None = None,
) -> ReferenceArt:
    """
    Collect hero, co-star, and world references in the order the prompt announces them.
    """
    settings = settings or ReferenceArtConfig()
    images: list[str] = []
    labels: list[str] = []

    if _sanitize(hero.image_ref):
        images.append(hero.image_ref.strip())
        labels.append("REFERENCE [HERO]")

    attach_co_star = kind is PageKind.STORY or (
        kind is PageKind.COVER and settings.include_co_star_on_covers
    )
    if attach_co_star and co_star is not None and _sanitize(co_star.image_ref):
        images.append(co_star.image_ref.strip())
        labels.append("REFERENCE [CO-STAR]")

    if world is not None and kind is not PageKind.BACK_COVER:
        world_images = [ref for ref in world.image_refs if _sanitize(ref)]
        for index, ref in enumerate(world_images[: max(0, settings.max_world_images)], start=1):
            images.append(ref.strip())
            labels.append(f"REFERENCE [WORLD ENVIRONMENT {index}]")

    overrides: dict[str, Any] = {}
    seed = _resolve_seed(settings, hero=hero, config=config)
    if seed is not None:
        overrides["seed"] = seed

    return ReferenceArt(images=tuple(images), labels=tuple(labels), model_overrides=overrides)


def derive_consistent_seed(*, hero: Persona, config: StoryConfig) -> int:
    hasher = hashlib.blake2b(digest_size=8)
    hasher.update(hero.name.strip().lower().encode("utf-8"))

    for value in (hero.description, hero.image_ref, config.genre, config.tone):
        if value:
            hasher.update(str(value).strip().lower().encode("utf-8"))

    seed = int.from_bytes(hasher.digest(), "big") % _SEED_MOD
    return seed or 1


def _resolve_seed(settings: ReferenceArtConfig, *, hero: Persona, config: StoryConfig) -> int | None:
    if settings.locked_seed is not None:
        return int(settings.locked_seed) % _SEED_MOD or 1
    if settings.auto_seed:
        return derive_consistent_seed(hero=hero, config=config)
    return None


def _sanitize(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
