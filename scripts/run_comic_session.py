"""
CLI example to run an Infinite Heroes comic session end-to-end.

Usage:
    python scripts/run_comic_session.py \
        --hero-name "Nova" \
        --hero-description "Teen inventor with a copper jetpack" \
        --hero-image example_images/nova.png \
        --genre "Superhero Action" \
        --guidance "a dragon crashes through the roof" \
        --output comic_session.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from infinite_heroes import CharacterLibrary, ComicEngine, EngineSettings
from infinite_heroes.pipeline import NarrativeState, SetProgress
from infinite_heroes.story_generation import MAX_STORY_PAGES, TOTAL_PAGES, Persona, StoryConfig


class ProgressTracker:
    """
    Mirrors the engine's progress values onto a tqdm bar of finished pages.
    """

    def __init__(self, total: int = TOTAL_PAGES + 1) -> None:
        self._bar: tqdm | None = tqdm(total=total, desc="Comic pages", unit="page")
        self._finished: set[int] = set()
        self._last_label: str | None = None
        self._last_error: Any = None

    def __call__(self, state: NarrativeState, event: Any) -> None:
        if self._bar is None:
            return

        progress = state.progress
        if isinstance(event, SetProgress) and progress is not None and progress.label != self._last_label:
            self._last_label = progress.label
            self._bar.set_description(progress.label)
            if progress.substep:
                self._write(f"  {progress.label}: {progress.substep} ({progress.percentage}%)")

        for page in state.pages:
            if page.is_complete and page.page_index not in self._finished:
                self._finished.add(page.page_index)
                self._bar.update(1)
                if page.narrative and page.narrative.caption:
                    self._write(f"[Page {page.page_index}] {page.narrative.caption}")

        if state.error is not None and state.error is not self._last_error:
            self._write(f"Error: {state.error.message}")
        self._last_error = state.error

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an Infinite Heroes comic session.")
    parser.add_argument("--hero-name", default=None, help="Name of the hero persona.")
    parser.add_argument("--hero-description", default="", help="Appearance and personality notes for the hero.")
    parser.add_argument("--hero-image", default=None, help="Path or URL of the hero's reference art.")
    parser.add_argument(
        "--hero-id",
        default=None,
        help="Load the hero from the character library instead of the --hero-* options.",
    )
    parser.add_argument("--co-star-id", default=None, help="Load a co-star from the character library.")
    parser.add_argument("--world-id", default=None, help="Load a world from the character library.")
    parser.add_argument(
        "--library",
        default="comic_library",
        help="Directory holding saved characters, worlds, and presets.",
    )
    parser.add_argument(
        "--save-hero",
        action="store_true",
        help="Save the hero given on the command line into the library.",
    )
    parser.add_argument("--story-config", default=None, help="YAML file with story configuration.")
    parser.add_argument("--settings", default=None, help="YAML file with engine settings.")
    parser.add_argument("--genre", default=None, help="Override the story genre.")
    parser.add_argument("--tone", default=None, help="Override the story tone.")
    parser.add_argument("--language", default=None, help="Language code, e.g. en-US.")
    parser.add_argument("--opening-prompt", default=None, help="How the story should begin.")
    parser.add_argument("--preset-id", default=None, help="Apply a saved generation preset.")
    parser.add_argument(
        "--guidance",
        action="append",
        default=[],
        help="Director guidance for successive continue steps (repeatable).",
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=MAX_STORY_PAGES,
        help=f"Stop once this many story pages are finished (max {TOTAL_PAGES}).",
    )
    parser.add_argument("--output", default="comic_session.yaml", help="Where to write the session snapshot.")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...).")
    return parser.parse_args()


def load_story_config(args: argparse.Namespace) -> StoryConfig:
    data: dict[str, Any] = {}
    if args.story_config:
        loaded = yaml.safe_load(Path(args.story_config).read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Story config file must deserialize to a mapping.")
        data.update(loaded)
    overrides = {
        "genre": args.genre,
        "tone": args.tone,
        "language": args.language,
        "opening_prompt": args.opening_prompt,
    }
    data.update({key: value for key, value in overrides.items() if value})
    return StoryConfig.from_mapping(data)


def resolve_hero(args: argparse.Namespace, library: CharacterLibrary) -> Persona:
    if args.hero_id:
        hero = library.get_character(args.hero_id)
        if hero is None:
            raise ValueError(f"No saved character with id '{args.hero_id}' in {library.root}.")
        return hero
    if not args.hero_name:
        raise ValueError("Provide --hero-name or --hero-id.")
    hero = Persona(name=args.hero_name, description=args.hero_description, image_ref=args.hero_image)
    if args.save_hero:
        hero = library.save_character(hero)
        tqdm.write(f"Saved hero '{hero.name}' as {hero.id}")
    return hero


async def run_session(engine: ComicEngine, *, guidance: list[str], target_pages: int) -> None:
    await engine.launch()
    await engine.wait_idle()

    pending_guidance = list(guidance)
    while engine.state.error is None:
        state = engine.state
        last = state.max_completed_page or 0
        if last >= min(target_pages, TOTAL_PAGES):
            break

        page = state.page(last)
        if page is not None and page.is_decision_page and page.choices and not page.resolved_choice:
            tqdm.write(f"Page {last} offers: {', '.join(page.choices)}; choosing '{page.choices[0]}'")
            task = engine.resolve_choice(last, page.choices[0])
        else:
            task = engine.continue_story(pending_guidance.pop(0) if pending_guidance else None)
        if task is None:
            break
        await engine.wait_idle()
        if (engine.state.max_completed_page or 0) <= last:
            break


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = EngineSettings.from_yaml(args.settings) if args.settings else EngineSettings()
    library = CharacterLibrary(args.library)
    config = load_story_config(args)
    if args.preset_id:
        preset = next((item for item in library.list_presets() if item.id == args.preset_id), None)
        if preset is None:
            raise ValueError(f"No saved preset with id '{args.preset_id}'.")
        settings = settings.with_overrides(text_model=preset.model)
        config = config.merged({"preset_prompt": preset.prompt or None})

    engine = ComicEngine.from_settings(settings)
    engine.set_hero(resolve_hero(args, library))
    if args.co_star_id:
        engine.set_co_star(library.get_character(args.co_star_id))
    if args.world_id:
        engine.set_world(library.get_world(args.world_id))
    engine.update_config(config)

    tracker = ProgressTracker()
    unsubscribe = engine.subscribe(tracker)

    async def _main() -> None:
        try:
            await run_session(engine, guidance=args.guidance, target_pages=args.pages)
        finally:
            await engine.aclose()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        tqdm.write("Interrupted; in-flight generation abandoned.")
    finally:
        unsubscribe()
        tracker.close()

    output_path = Path(args.output)
    output_path.write_text(engine.export_yaml(), encoding="utf-8")
    print(f"Saved comic session to {output_path}")
    return 1 if engine.state.error is not None else 0


if __name__ == "__main__":
    raise SystemExit(main())
