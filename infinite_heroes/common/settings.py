"""
Engine settings loaded from defaults, mappings, YAML files, and environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigurationError
from .retry import RetryPolicy

DEFAULT_TEXT_MODEL = "gpt-4.1-mini"
DEFAULT_IMAGE_MODEL = "black-forest-labs/flux-kontext-pro"


def _resolve_text_model(value: str | None = None) -> str:
    return (
        value
        or os.getenv("INFINITE_HEROES_TEXT_MODEL")
        or os.getenv("LITELLM_STORY_MODEL")
        or os.getenv("LITELLM_MODEL")
        or DEFAULT_TEXT_MODEL
    )


def _resolve_image_model(value: str | None = None) -> str:
    return value or os.getenv("INFINITE_HEROES_IMAGE_MODEL") or os.getenv("REPLICATE_MODEL") or DEFAULT_IMAGE_MODEL


@dataclass(frozen=True)
class EngineSettings:
    """
    Tunables for one engine instance.

    Attributes
    ----------
    batch_size:
        Pages generated per ``continue_story`` / ``resolve_choice`` window.
    initial_pages:
        Pages generated by the first batch after launch.
    transition_delay:
        Seconds between the cover finishing and the switch to ``reading``.
    progress_grace_delay:
        Seconds a terminal progress value stays visible before being cleared.
    persona_timeout, beat_timeout, image_timeout:
        Per-stage deadlines in seconds, applied to every attempt.
    retry:
        Backoff policy for transient provider errors.
    beat_cache_ttl, beat_cache_size:
        Lifetime in seconds and capacity of the beat cache.
    text_model, text_api_key:
        LiteLLM model identifier and optional key for beat generation.
    image_model, replicate_api_token:
        Replicate model identifier and token for persona and panel art.
    inline_images:
        Download rendered image URLs and keep them as data URLs.
    image_fetch_timeout, max_image_bytes:
        Limits applied when ``inline_images`` is enabled.
    """

    batch_size: int = 2
    initial_pages: int = 2
    transition_delay: float = 1.1
    progress_grace_delay: float = 1.0
    persona_timeout: float = 90.0
    beat_timeout: float = 45.0
    image_timeout: float = 120.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    beat_cache_ttl: float = 300.0
    beat_cache_size: int = 20
    text_model: str = field(default_factory=_resolve_text_model)
    text_api_key: str | None = field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
    )
    image_model: str = field(default_factory=_resolve_image_model)
    replicate_api_token: str | None = field(default_factory=lambda: os.getenv("REPLICATE_API_TOKEN"))
    inline_images: bool = False
    image_fetch_timeout: float = 30.0
    max_image_bytes: int = 10 * 1024 * 1024

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1.")
        if self.initial_pages < 1:
            raise ConfigurationError("initial_pages must be at least 1.")
        for name in ("persona_timeout", "beat_timeout", "image_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive.")
        if self.beat_cache_size < 0:
            raise ConfigurationError("beat_cache_size cannot be negative.")

    def with_overrides(self, **changes: Any) -> "EngineSettings":
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineSettings":
        """
        Build settings from a dict-like object (e.g., parsed YAML), ignoring unknown keys.
        """
        defaults = cls()
        kwargs: dict[str, Any] = {}

        for name in ("batch_size", "initial_pages", "beat_cache_size", "max_image_bytes"):
            if data.get(name) is not None:
                kwargs[name] = _coerce_int(name, data[name])

        for name in (
            "transition_delay",
            "progress_grace_delay",
            "persona_timeout",
            "beat_timeout",
            "image_timeout",
            "beat_cache_ttl",
            "image_fetch_timeout",
        ):
            if data.get(name) is not None:
                kwargs[name] = _coerce_float(name, data[name])

        timeouts = data.get("timeouts")
        if isinstance(timeouts, Mapping):
            for stage in ("persona", "beat", "image"):
                if timeouts.get(stage) is not None:
                    kwargs[f"{stage}_timeout"] = _coerce_float(stage, timeouts[stage])

        retry = data.get("retry")
        if isinstance(retry, Mapping):
            kwargs["retry"] = RetryPolicy.from_mapping(retry)

        kwargs["text_model"] = _resolve_text_model(_optional_str(data.get("text_model")))
        kwargs["image_model"] = _resolve_image_model(_optional_str(data.get("image_model")))
        kwargs["text_api_key"] = _optional_str(data.get("text_api_key")) or defaults.text_api_key
        kwargs["replicate_api_token"] = (
            _optional_str(data.get("replicate_api_token")) or defaults.replicate_api_token
        )
        if "inline_images" in data:
            kwargs["inline_images"] = bool(data["inline_images"])

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, source: str | Path) -> "EngineSettings":
        path = Path(source)
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, Mapping):
            raise ConfigurationError("Settings YAML must deserialize to a mapping.")
        return cls.from_mapping(data)

    def timeout_for(self, stage: Any) -> float:
        name = getattr(stage, "value", stage)
        try:
            return float(getattr(self, f"{name}_timeout"))
        except AttributeError as exc:
            raise ConfigurationError(f"Unknown generation stage '{stage}'.") from exc


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected an integer for '{name}', got {value!r}") from exc


def _coerce_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Expected a number for '{name}', got {value!r}") from exc
