"""
Persistence of saved characters, worlds, and generation presets.
"""

from .library import CharacterLibrary, GenerationPreset, slugify

__all__ = ["CharacterLibrary", "GenerationPreset", "slugify"]
