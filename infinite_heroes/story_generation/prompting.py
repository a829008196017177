"""
Prompt construction utilities for comic beat generation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .models import (
    CONTINUATION_MARKER,
    MAX_STORY_PAGES,
    FocusHint,
    PageSummary,
    Persona,
    StoryConfig,
    World,
)

GUARDRAILS = (
    "NEGATIVE CONSTRAINTS:\n"
    '1. UNLESS GENRE IS "Dark Sci-Fi" OR "Superhero Action" OR "Custom": do not use technical jargon '
    'like "Quantum", "Timeline", "Portal", "Multiverse", or "Singularity".\n'
    '2. IF GENRE IS "Teen Drama" OR "Lighthearted Comedy": the stakes must be social, emotional, or '
    "personal. Do not make it life-or-death. Keep it grounded.\n"
    '3. Avoid "the artifact" or "the device" unless established earlier.'
)

SYSTEM_PROMPT = """You are the head writer of an ongoing comic book series, scripting one page at a time.
Each page is a single illustrated panel with an optional caption box and an optional speech bubble.

Writing directives:
- Keep continuity with every previous panel; never repeat earlier captions or dialogue.
- Vary the shot: if the previous page was an action shot, prefer a reaction or wide shot.
- When a co-star is active they must appear frequently.
- Never write the words "hero" or "co-star" in captions or dialogue. Use names if established, or generic descriptors.
- Follow any directive from the director above all else.

Output format:
Return strict JSON only (no markdown), with the fields caption, dialogue, scene, focus_char, choices.
"""


@dataclass(frozen=True)
class BeatPrompt:
    """
    Container for the system and user prompts passed to the chat model.
    """

    system: str
    user: str


def story_arc_instruction(page_number: int, *, is_decision: bool) -> str:
    """
    Return the structural beat the page should hit.
    """
    if page_number == MAX_STORY_PAGES:
        return (
            "FINAL PAGE. KARMIC CLIFFHANGER REQUIRED. Reference the reader's earlier choices and show how "
            f"they led here. Text must end with '{CONTINUATION_MARKER}'."
        )
    if is_decision:
        return (
            "End with a PSYCHOLOGICAL choice about VALUES, RELATIONSHIPS, or RISK "
            "(e.g. Truth vs. Safety, Forgive vs. Avenge). The options must NOT be simple physical "
            "actions like 'Go Left'."
        )
    if page_number == 1:
        return "INCITING INCIDENT. An event disrupts the status quo. Establish the genre's intended mood."
    if page_number <= 4:
        return (
            "RISING ACTION. The characters engage with the new situation. Focus on dialogue, "
            "character dynamics, and initial challenges."
        )
    if page_number <= 8:
        return (
            "COMPLICATION. A twist occurs: a secret is revealed, a misunderstanding deepens, "
            "or the path is blocked."
        )
    return "CLIMAX. The confrontation with the main conflict."


def build_beat_prompt(
    *,
    history: Sequence[PageSummary],
    page_number: int,
    is_decision: bool,
    config: StoryConfig,
    hero: Persona,
    co_star: Persona | None,
    world: World | None,
    guidance: str | None = None,
    focus_hint: FocusHint = FocusHint.NONE,
) -> BeatPrompt:
    """
    Build the prompt pair used to solicit the next beat from the LLM.
    """
    language = config.language_name

    if config.is_custom:
        core_driver = (
            f"STORY PREMISE: {config.custom_premise or 'A totally unique, unpredictable adventure'}. "
            "(Follow this premise strictly over standard genre tropes.)"
        )
    else:
        core_driver = f"GENRE: {config.genre}. TONE: {config.tone}."

    hero_line = f'Active. Name: "{hero.name or "Hero"}".'
    if hero.description:
        hero_line += f" Profile: {hero.description}"

    co_star_line = "Not yet introduced."
    if co_star is not None:
        co_star_line = f'ACTIVE. Name: "{co_star.name}". {co_star.description}'.rstrip()
        if focus_hint is FocusHint.FAVOR_CO_STAR:
            co_star_line += " The previous page focused on the hero; prefer to focus this panel on the co-star."
        else:
            co_star_line += " Ensure they are woven into the scene even if not the main focus."

    world_line = "Generic fitting environment."
    if world is not None:
        world_line = f'SETTING: "{world.name}". LORE: {world.description}. THE SCENE MUST TAKE PLACE HERE.'

    instruction = f"Continue the story. ALL OUTPUT TEXT (captions, dialogue, choices) MUST BE IN {language.upper()}. {core_driver}"
    if config.opening_prompt.strip():
        instruction += f" HONOR THE ORIGINAL STORY REQUEST: {config.opening_prompt.strip()}."
    if config.preset_prompt:
        instruction += f" PRESET GUIDANCE: {config.preset_prompt}"
    if config.rich_mode:
        instruction += (
            " RICH/NOVEL MODE ENABLED. Prioritize deeper character thoughts, descriptive captions, "
            "and meaningful dialogue exchanges over short punchlines."
        )
    instruction += " " + story_arc_instruction(page_number, is_decision=is_decision)

    caption_limit = "max 35 words. Detailed narration or internal monologue" if config.rich_mode else "max 15 words"
    dialogue_limit = "max 30 words. Rich, character-driven speech" if config.rich_mode else "max 12 words"

    history_text = "\n".join(summary.render() for summary in history) or "Start the adventure."

    directive_block = ""
    if guidance:
        directive_block = (
            "\nCRITICAL - DIRECTIVE FROM THE DIRECTOR:\n"
            f'The user explicitly demands the following happens on this page: "{guidance}".\n'
            "YOU MUST ADHERE TO THIS DIRECTION ABOVE ALL ELSE. Do not deviate.\n"
        )

    choices_hint = (
        f'["Option A in {language}", "Option B in {language}"]'
        if is_decision
        else "[] (empty: this is not a decision page)"
    )

    user_prompt = f"""You are writing a comic book script. PAGE {page_number} of {MAX_STORY_PAGES}.
TARGET LANGUAGE FOR TEXT: {language} (CRITICAL: CAPTIONS, DIALOGUE, CHOICES MUST BE IN THIS LANGUAGE).
{core_driver}

CHARACTERS:
- HERO: {hero_line}
- CO-STAR: {co_star_line}
- WORLD/SETTING: {world_line}

PREVIOUS PANELS (READ CAREFULLY):
{history_text}
{directive_block}
{GUARDRAILS}

INSTRUCTION: {instruction}

OUTPUT STRICT JSON ONLY (no markdown formatting):
{{
  "caption": "Unique narrator text in {language}. ({caption_limit}).",
  "dialogue": "Unique speech in {language}. ({dialogue_limit}). Optional.",
  "scene": "Vivid visual description (ALWAYS IN ENGLISH for the artist model). MUST mention 'HERO' or 'CO-STAR' if they are present. Describe the background based on the WORLD SETTING.",
  "focus_char": "hero" OR "friend" OR "other",
  "choices": {choices_hint}
}}"""

    return BeatPrompt(system=SYSTEM_PROMPT, user=user_prompt)
