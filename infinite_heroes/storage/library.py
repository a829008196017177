"""
YAML-backed library of saved characters, worlds, and generation presets.
"""

from __future__ import annotations

import logging
import os
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, TypeVar

import yaml

from infinite_heroes.common import StorageError
from infinite_heroes.story_generation import Persona, World

T = TypeVar("T")

logger = logging.getLogger(__name__)

CHARACTERS_DIR = "characters"
WORLDS_DIR = "worlds"
PRESETS_DIR = "presets"

_UNSAFE_ID = re.compile(r"[^\w\-]+")


def slugify(name: str) -> str:
    slug = _UNSAFE_ID.sub("-", "-".join(name.strip().lower().split()))
    slug = slug.strip("-")
    if not slug:
        raise ValueError(f"Cannot derive an identifier from {name!r}.")
    return slug


@dataclass(frozen=True)
class GenerationPreset:
    """A saved text-model choice plus extra guidance appended to every beat."""

    id: str
    name: str
    model: str
    prompt: str = ""
    is_default: bool = False
    updated_at: float = 0.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GenerationPreset":
        if not data.get("id") or not data.get("name") or not data.get("model"):
            raise ValueError("Preset data must include 'id', 'name', and 'model'.")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            model=str(data["model"]),
            prompt=str(data.get("prompt") or ""),
            is_default=bool(data.get("is_default", False)),
            updated_at=float(data.get("updated_at") or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "model": self.model,
            "prompt": self.prompt,
            "is_default": self.is_default,
            "updated_at": self.updated_at,
        }


class CharacterLibrary:
    """
    Stores each entity as one YAML file under ``directory/<kind>/<id>.yaml``.

    Files that cannot be parsed or normalized are skipped with a warning.
    I/O failures raise :class:`StorageError`; permission problems are marked
    as not retryable.
    """

    def __init__(self, directory: str | Path, *, clock: Callable[[], float] = time.time) -> None:
        self._root = Path(directory).expanduser()
        self._clock = clock

    @property
    def root(self) -> Path:
        return self._root

    # Characters

    def save_character(self, persona: Persona) -> Persona:
        persona_id = persona.id or slugify(persona.name)
        saved = Persona(
            name=persona.name,
            description=persona.description,
            image_ref=persona.image_ref,
            id=persona_id,
        )
        payload = saved.to_dict()
        payload["timestamp"] = self._clock()
        self._write(CHARACTERS_DIR, persona_id, payload)
        return saved

    def list_characters(self) -> list[Persona]:
        return self._list(CHARACTERS_DIR, _normalize_character)

    def get_character(self, persona_id: str) -> Persona | None:
        for persona in self.list_characters():
            if persona.id == persona_id:
                return persona
        return None

    def delete_character(self, persona_id: str) -> bool:
        return self._delete(CHARACTERS_DIR, persona_id)

    # Worlds

    def save_world(self, world: World) -> World:
        payload = world.to_dict()
        payload["timestamp"] = self._clock()
        self._write(WORLDS_DIR, world.id, payload)
        return world

    def list_worlds(self) -> list[World]:
        return self._list(WORLDS_DIR, _normalize_world)

    def get_world(self, world_id: str) -> World | None:
        for world in self.list_worlds():
            if world.id == world_id:
                return world
        return None

    def delete_world(self, world_id: str) -> bool:
        return self._delete(WORLDS_DIR, world_id)

    # Presets

    def save_preset(self, preset: GenerationPreset) -> GenerationPreset:
        payload = preset.to_dict()
        payload["updated_at"] = preset.updated_at or self._clock()
        self._write(PRESETS_DIR, preset.id, payload)
        return GenerationPreset.from_mapping(payload)

    def list_presets(self) -> list[GenerationPreset]:
        return self._list(PRESETS_DIR, _normalize_preset, timestamp_key="updated_at")

    def delete_preset(self, preset_id: str) -> bool:
        return self._delete(PRESETS_DIR, preset_id)

    # Internals

    def _path(self, kind: str, entity_id: str) -> Path:
        safe_id = slugify(entity_id)
        return self._root / kind / f"{safe_id}.yaml"

    def _write(self, kind: str, entity_id: str, payload: Mapping[str, Any]) -> None:
        path = self._path(kind, entity_id)
        text = yaml.safe_dump(dict(payload), sort_keys=False, allow_unicode=True)
        with _storage_errors(f"writing {path}"):
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".yaml.tmp")
            temp_path.write_text(text, encoding="utf-8")
            os.replace(temp_path, path)
        logger.debug("Saved %s entry %s", kind, path.name)

    def _delete(self, kind: str, entity_id: str) -> bool:
        path = self._path(kind, entity_id)
        with _storage_errors(f"deleting {path}"):
            if not path.exists():
                return False
            path.unlink()
        return True

    def _list(
        self,
        kind: str,
        normalize: Callable[[Mapping[str, Any]], T],
        *,
        timestamp_key: str = "timestamp",
    ) -> list[T]:
        directory = self._root / kind
        with _storage_errors(f"reading {directory}"):
            if not directory.exists():
                return []
            files = sorted(directory.glob("*.yaml"))

        entries: list[tuple[float, T]] = []
        for path in files:
            with _storage_errors(f"reading {path}"):
                text = path.read_text(encoding="utf-8")
            try:
                data = yaml.safe_load(text)
                if not isinstance(data, Mapping):
                    raise ValueError("expected a mapping")
                entity = normalize(data)
            except (yaml.YAMLError, ValueError, TypeError) as exc:
                logger.warning("Skipping invalid %s entry %s: %s", kind, path.name, exc)
                continue
            timestamp = data.get(timestamp_key) or 0
            entries.append((float(timestamp), entity))

        entries.sort(key=lambda entry: entry[0], reverse=True)
        return [entity for _, entity in entries]


def _normalize_character(data: Mapping[str, Any]) -> Persona:
    persona = Persona.from_mapping(data)
    if persona.id:
        return persona
    return Persona(
        name=persona.name,
        description=persona.description,
        image_ref=persona.image_ref,
        id=slugify(persona.name),
    )


def _normalize_world(data: Mapping[str, Any]) -> World:
    return World.from_mapping(data)


def _normalize_preset(data: Mapping[str, Any]) -> GenerationPreset:
    return GenerationPreset.from_mapping(data)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except PermissionError as exc:
        raise StorageError(f"Permission denied while {action}: {exc}", retryable=False) from exc
    except OSError as exc:
        raise StorageError(f"Failed {action}: {exc}") from exc
