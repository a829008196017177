"""
AI image generation helpers for comic panels and character reference art.
"""

from .continuity import ReferenceArt, ReferenceArtConfig, assemble_reference_art, derive_consistent_seed
from .media import fetch_image_data_url, first_image_ref, normalize_image_outputs
from .prompting import ComicPrompt, build_panel_prompt, build_persona_prompt
from .replicate_service import ReplicateImageGenerator

__all__ = [
    "ComicPrompt",
    "ReferenceArt",
    "ReferenceArtConfig",
    "ReplicateImageGenerator",
    "assemble_reference_art",
    "build_panel_prompt",
    "build_persona_prompt",
    "derive_consistent_seed",
    "fetch_image_data_url",
    "first_image_ref",
    "normalize_image_outputs",
]
