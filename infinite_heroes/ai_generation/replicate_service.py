"""
Integration with Replicate for comic panel and character-sheet rendering.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from contextlib import ExitStack
from pathlib import Path
from typing import Any, BinaryIO, Callable, Sequence

import replicate

from infinite_heroes.common.errors import ConfigurationError
from infinite_heroes.story_generation.models import Beat, PageKind, Persona, StoryConfig, World

from .continuity import ReferenceArtConfig, assemble_reference_art
from .media import DEFAULT_MAX_IMAGE_BYTES, fetch_image_data_url, first_image_ref
from .prompting import ComicPrompt, build_panel_prompt, build_persona_prompt

logger = logging.getLogger(__name__)

PAGE_ASPECT_RATIO = "2:3"
PERSONA_ASPECT_RATIO = "1:1"


def _build_flux_kontext_input(
    *,
    prompt: ComicPrompt,
    images: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt.positive,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
        "aspect_ratio": aspect_ratio,
    }
    if images:
        payload["input_image"] = images[0]
    return payload


def _build_nano_banana_input(
    *,
    prompt: ComicPrompt,
    images: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt.positive,
        "output_format": "png",
        "aspect_ratio": aspect_ratio,
    }
    if images:
        payload["image_input"] = list(images)
    return payload


def _build_flux_pro_input(
    *,
    prompt: ComicPrompt,
    images: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "output_format": "png",
        "aspect_ratio": aspect_ratio,
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "black-forest-labs/flux-kontext-max": _build_flux_kontext_input,
    "google/nano-banana": _build_nano_banana_input,
    "black-forest-labs/flux-1.1-pro": _build_flux_pro_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: ComicPrompt,
    images: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ConfigurationError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, images=images, aspect_ratio=aspect_ratio)


class ReplicateImageGenerator:
    """
    Async wrapper around the Replicate client for comic rendering.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``REPLICATE_MODEL``; must name a model with a configured input builder.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    reference_config:
        Controls which references are attached and how seeds are derived.
    inline_images:
        When True, rendered URLs are downloaded and returned as data URLs.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        reference_config: ReferenceArtConfig | None = None,
        inline_images: bool = False,
        image_fetch_timeout: float = 30.0,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ConfigurationError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = model_identifier or os.getenv("REPLICATE_MODEL")
        if not self._model_identifier:
            raise ConfigurationError(
                "Replicate model identifier is required. "
                "Set REPLICATE_MODEL or pass model_identifier in the form 'owner/model[:version]'."
            )

        self._client = client or replicate.Client(api_token=self._api_token)
        self._reference_config = reference_config or ReferenceArtConfig()
        self._inline_images = inline_images
        self._image_fetch_timeout = image_fetch_timeout
        self._max_image_bytes = max_image_bytes

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def render_page(
        self,
        beat: Beat,
        kind: PageKind,
        config: StoryConfig,
        *,
        hero: Persona,
        co_star: Persona | None = None,
        world: World | None = None,
    ) -> str:
        """
        Render a cover, story panel, or back cover and return its image reference.
        """
        references = assemble_reference_art(
            kind,
            config=config,
            hero=hero,
            co_star=co_star,
            world=world,
            settings=self._reference_config,
        )
        prompt = build_panel_prompt(
            beat,
            kind,
            config,
            hero=hero,
            co_star=co_star,
            world=world,
            reference_labels=references.labels,
        )
        return await self._render(
            prompt,
            images=references.images,
            aspect_ratio=PAGE_ASPECT_RATIO,
            overrides=references.model_overrides,
            label=f"{kind.value} render",
        )

    async def render_persona(self, description: str, genre: str) -> str:
        """
        Render a full-body character sheet and return its image reference.
        """
        prompt = build_persona_prompt(description, genre)
        return await self._render(
            prompt,
            images=(),
            aspect_ratio=PERSONA_ASPECT_RATIO,
            overrides={},
            label="persona render",
        )

    async def _render(
        self,
        prompt: ComicPrompt,
        *,
        images: Sequence[str],
        aspect_ratio: str,
        overrides: dict[str, Any],
        label: str,
    ) -> str:
        started = time.monotonic()
        with ExitStack() as stack:
            prepared = [_prepare_image_input(image, stack=stack) for image in images]
            replicate_input = _build_replicate_input_payload(
                model_identifier=self._model_identifier,
                prompt=prompt,
                images=prepared,
                aspect_ratio=aspect_ratio,
            )
            replicate_input.update(overrides)

            logger.info(
                "Calling Replicate for %s - model %s, %d reference(s)",
                label,
                self._model_identifier,
                len(prepared),
            )
            output = await self._client.async_run(
                self._model_identifier,
                input=replicate_input,
            )

        image_ref = first_image_ref(output, label=f"Image model {self._model_identifier}")
        logger.info("%s completed in %.0fms", label.capitalize(), (time.monotonic() - started) * 1000)

        if self._inline_images:
            image_ref = await asyncio.to_thread(
                fetch_image_data_url,
                image_ref,
                timeout=self._image_fetch_timeout,
                max_bytes=self._max_image_bytes,
            )
        return image_ref


def _prepare_image_input(
    input_image: str | Path | BinaryIO,
    *,
    stack: ExitStack,
) -> str | BinaryIO:
    """
    Normalize the image input so Replicate can consume it, keeping resources open via ExitStack.
    """
    if hasattr(input_image, "read"):
        # Assume file-like object, rely on caller to manage its lifecycle.
        return input_image  # type: ignore[return-value]

    if isinstance(input_image, Path):
        input_path = input_image.expanduser()
    else:
        input_candidate = str(input_image)
        if input_candidate.lower().startswith(("http://", "https://", "data:")):
            return input_candidate
        input_path = Path(input_candidate).expanduser()

    if not input_path.exists():
        raise FileNotFoundError(f"Reference image not found at '{input_path}'.")

    file_handle = stack.enter_context(input_path.open("rb"))
    return file_handle
