import asyncio
from dataclasses import replace

import pytest
from conftest import beat_for, until

from infinite_heroes.common import CredentialError, ErrorKind
from infinite_heroes.pipeline import AddPages, ComicEngine, ComicPage, NarrativeState, SessionStatus
from infinite_heroes.story_generation import BeatCache, PageKind, Persona


@pytest.fixture
def engine(provider, store, fast_settings, hero, config):
    engine = ComicEngine(provider, settings=fast_settings, store=store, beat_cache=BeatCache())
    engine.set_hero(hero)
    engine.update_config(config)
    return engine


def _complete(*indices):
    return AddPages(
        tuple(
            replace(
                ComicPage.placeholder(index),
                narrative=beat_for(index),
                image_ref=f"https://img.test/page-{index}.png",
                is_loading=False,
            )
            for index in indices
        )
    )


@pytest.mark.asyncio
async def test_launch_renders_cover_then_reads(engine, store):
    cover_states = []
    statuses = []

    def record(state, event):
        statuses.append(state.status)
        cover = state.page(0)
        if cover is not None:
            cover_states.append((cover.kind, cover.is_loading, cover.image_ref))

    store.subscribe(record)

    await engine.launch()
    await engine.wait_idle()

    assert statuses[0] is SessionStatus.GENERATING
    assert cover_states[0] == (PageKind.COVER, True, None)
    assert cover_states[-1] == (PageKind.COVER, False, "https://img.test/cover.png")
    assert engine.state.status is SessionStatus.READING


@pytest.mark.asyncio
async def test_launch_generates_first_two_pages(engine, provider):
    await engine.launch()
    await engine.wait_idle()

    state = engine.state
    assert [page.page_index for page in state.pages] == [0, 1, 2]
    assert not state.is_loading
    assert provider.beat_pages == [1, 2]
    assert provider.beat_requests[0]["guidance"] == "Nova finds a glowing map"
    assert provider.beat_requests[1]["guidance"] is None
    assert state.progress is None


@pytest.mark.asyncio
async def test_continue_steers_only_the_next_page(engine, provider, store):
    store.dispatch(_complete(1, 2, 3, 4))

    task = engine.continue_story("a dragon crashes through the roof")
    result = await task

    assert result.reserved == (5, 6)
    assert provider.beat_pages == [5, 6]
    assert provider.beat_requests[0]["guidance"] == "a dragon crashes through the roof"
    assert provider.beat_requests[1]["guidance"] is None
    assert [summary.page_index for summary in provider.beat_requests[0]["history"]] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_resolve_choice_records_and_continues(engine, provider, store):
    store.dispatch(_complete(1, 2, 3, 4, 5))

    await engine.resolve_choice(5, "Forgive")

    assert engine.state.page(5).resolved_choice == "Forgive"
    assert provider.beat_pages == [6, 7]
    assert provider.beat_requests[0]["guidance"] == "user chose: Forgive"
    assert provider.beat_requests[0]["history"][-1].resolved_choice == "Forgive"


@pytest.mark.asyncio
async def test_repeated_continue_generates_once(engine, provider, store):
    store.dispatch(_complete(1, 2))

    first = engine.continue_story()
    second = engine.continue_story()
    results = await asyncio.gather(first, second)

    assert results[0].reserved == (3, 4)
    assert results[1].skipped
    assert provider.beat_pages == [3, 4]


@pytest.mark.asyncio
async def test_continue_stops_when_story_is_full(engine, store):
    store.dispatch(_complete(*range(1, 12)))

    assert engine.continue_story() is None


@pytest.mark.asyncio
async def test_abort_keeps_status_and_completed_pages(engine, provider):
    provider.beat_gates[2] = asyncio.Event()
    await engine.launch()
    await until(lambda: provider.beat_pages == [1, 2])

    engine.abort()
    provider.beat_gates[2].set()
    await engine.wait_idle()

    state = engine.state
    assert state.status is SessionStatus.READING
    assert state.progress is None
    assert state.error is None
    assert state.page(1).is_complete
    assert state.page(2).is_loading and state.page(2).narrative is None

    await engine.continue_story()
    assert engine.state.page(2).is_complete
    assert provider.beat_pages == [1, 2, 2, 3]


@pytest.mark.asyncio
async def test_abort_before_transition_drops_first_batch(provider, store, fast_settings, hero):
    engine = ComicEngine(provider, settings=fast_settings.with_overrides(transition_delay=30.0), store=store)
    engine.set_hero(hero)

    await engine.launch()
    engine.abort()
    await engine.wait_idle()

    assert engine.state.status is SessionStatus.GENERATING
    assert provider.beat_requests == []
    assert engine.orchestrator.pending == 0


@pytest.mark.asyncio
async def test_cover_failure_sets_error_and_stays_put(engine, provider):
    provider.cover_error = CredentialError("API_KEY_INVALID")

    await engine.launch()
    await engine.wait_idle()

    state = engine.state
    assert state.error.kind is ErrorKind.CREDENTIAL
    assert state.status is SessionStatus.GENERATING
    assert provider.beat_requests == []


@pytest.mark.asyncio
async def test_launch_requires_a_hero(provider, fast_settings):
    engine = ComicEngine(provider, settings=fast_settings)

    with pytest.raises(ValueError):
        await engine.launch()


@pytest.mark.asyncio
async def test_second_launch_is_ignored(engine, provider):
    await engine.launch()
    await engine.launch()
    await engine.wait_idle()

    assert [request["kind"] for request in provider.image_requests].count(PageKind.COVER) == 1


@pytest.mark.asyncio
async def test_reset_clears_session_and_cache(provider, store, fast_settings, hero):
    cache = BeatCache()
    cache.put("key", beat_for(1))
    engine = ComicEngine(provider, settings=fast_settings, store=store, beat_cache=cache)
    engine.set_hero(hero)
    await engine.launch()
    await engine.wait_idle()

    engine.reset()

    assert engine.state == NarrativeState()
    assert len(cache) == 0
    assert len(engine.orchestrator.reservations) == 0


def test_resolve_choice_on_missing_page(engine):
    with pytest.raises(ValueError):
        engine.resolve_choice(5, "Forgive")


def test_update_config_merges_changes(engine):
    merged = engine.update_config(language="ko-KR", unknown="ignored")

    assert merged.language == "ko-KR"
    assert merged.genre == "Superhero Action"
    assert engine.state.config == merged


def test_setup_intents(engine):
    echo = Persona(name="Echo", description="Cyborg cat")

    engine.set_co_star(echo)
    assert engine.state.co_star == echo

    engine.set_hero(None)
    assert engine.state.hero is None


def test_export_yaml(engine):
    assert "status: setup" in engine.export_yaml()
