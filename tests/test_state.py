import pytest
import yaml

from infinite_heroes.common import CredentialError, ErrorKind, NetworkError
from infinite_heroes.pipeline import (
    AddPages,
    ClearError,
    ComicPage,
    NarrativeState,
    NarrativeStateStore,
    Reset,
    SessionError,
    SessionStatus,
    SetError,
    SetHero,
    SetProgress,
    StartAdventure,
    TransitionComplete,
    UpdatePage,
    transition,
)
from infinite_heroes.pipeline.progress import ProgressReporter
from infinite_heroes.story_generation import Beat, PageKind, Persona

NOVA = Persona(name="Nova", id="nova")


def _progress():
    return ProgressReporter(clock=lambda: 0.0).report("Writing Page 1", 1, 4)


def test_placeholders():
    cover = ComicPage.placeholder(0)
    decision = ComicPage.placeholder(5)
    back = ComicPage.placeholder(11)

    assert cover.id == "cover" and cover.kind is PageKind.COVER
    assert decision.id == "page-5" and decision.is_decision_page
    assert back.kind is PageKind.BACK_COVER and not back.is_decision_page
    assert all(page.is_loading for page in (cover, decision, back))


def test_launch_and_transition():
    state = transition(NarrativeState(hero=NOVA), StartAdventure())
    assert state.status is SessionStatus.GENERATING

    state = transition(state, SetProgress(_progress()))
    state = transition(state, TransitionComplete())

    assert state.status is SessionStatus.READING
    assert state.progress is None


def test_add_pages_keeps_order_and_completed_pages():
    done = ComicPage(page_index=2, kind=PageKind.STORY, id="page-2", image_ref="img", narrative=Beat(scene="x"))
    state = NarrativeState(pages=(done,))

    state = transition(state, AddPages((ComicPage.placeholder(3), ComicPage.placeholder(1), ComicPage.placeholder(2))))

    assert [page.page_index for page in state.pages] == [1, 2, 3]
    assert state.page(2) is done


def test_add_pages_replaces_stale_placeholder():
    stale = ComicPage.placeholder(4)
    state = NarrativeState(pages=(stale,))
    fresh = ComicPage.placeholder(4)

    state = transition(state, AddPages((fresh,)))

    assert state.page(4) is fresh


def test_update_page_touches_only_target():
    state = NarrativeState(pages=(ComicPage.placeholder(1), ComicPage.placeholder(2)))

    state = transition(state, UpdatePage(2, {"image_ref": "img-2", "is_loading": False}))

    assert state.page(2).image_ref == "img-2" and state.page(2).is_complete
    assert state.page(1).is_loading
    assert state.max_completed_page == 2


def test_max_completed_page_without_completed_pages():
    assert NarrativeState(pages=(ComicPage.placeholder(1),)).max_completed_page is None


def test_error_clears_progress_and_start_clears_error():
    error = SessionError.from_exception(NetworkError("socket closed"), clock=lambda: 5.0)
    state = transition(NarrativeState(progress=_progress()), SetError(error))

    assert state.progress is None
    assert state.error.kind is ErrorKind.NETWORK
    assert state.error.message == "Generation stopped: socket closed"

    assert transition(state, ClearError()).error is None
    assert transition(state, StartAdventure()).error is None


def test_credential_error_message():
    error = SessionError.from_exception(CredentialError("API_KEY_INVALID"))

    assert error.message == "API_KEY_ERROR"
    assert error.is_credential_error


def test_reset_returns_initial_state():
    state = NarrativeState(status=SessionStatus.READING, hero=NOVA, pages=(ComicPage.placeholder(1),))

    assert transition(state, Reset()) == NarrativeState()


def test_unknown_event_is_rejected():
    with pytest.raises(TypeError):
        transition(NarrativeState(), object())


def test_store_notifies_until_unsubscribed():
    store = NarrativeStateStore()
    seen = []
    unsubscribe = store.subscribe(lambda state, event: seen.append((state.hero, type(event).__name__)))

    store.dispatch(SetHero(NOVA))
    unsubscribe()
    store.dispatch(SetHero(None))

    assert seen == [(NOVA, "SetHero")]
    assert store.state.hero is None


def test_yaml_export():
    state = NarrativeState(hero=NOVA, pages=(ComicPage.placeholder(0),))

    data = yaml.safe_load(state.to_yaml())

    assert data["status"] == "setup"
    assert data["hero"]["name"] == "Nova"
    assert data["pages"][0]["id"] == "cover"
