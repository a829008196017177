from infinite_heroes.pipeline import CancellationRegistry, GenerationStage


def test_begin_and_end_track_handles():
    registry = CancellationRegistry()

    token = registry.begin(3, GenerationStage.BEAT)
    assert registry.get(3, GenerationStage.BEAT) is token
    assert len(registry) == 1

    registry.end(3, GenerationStage.BEAT, token)
    assert registry.get(3, GenerationStage.BEAT) is None
    assert not token.cancelled


def test_end_with_stale_token_keeps_newer_handle():
    registry = CancellationRegistry()
    stale = registry.begin(4, GenerationStage.IMAGE)
    fresh = registry.begin(4, GenerationStage.IMAGE)

    assert stale.cancelled
    registry.end(4, GenerationStage.IMAGE, stale)

    assert registry.get(4, GenerationStage.IMAGE) is fresh


def test_abort_all_cancels_batches_and_their_stages():
    registry = CancellationRegistry()
    batch = registry.begin_batch()
    beat = registry.begin(1, GenerationStage.BEAT, parent=batch)
    loose = registry.begin(0, GenerationStage.IMAGE)

    cancelled = registry.abort_all("user abort")

    assert cancelled == 2
    assert batch.cancelled and beat.cancelled and loose.cancelled
    assert len(registry) == 0
    assert str(beat.reason) == "user abort"


def test_stage_begun_under_cancelled_batch_is_already_cancelled():
    registry = CancellationRegistry()
    batch = registry.begin_batch()
    batch.cancel()

    assert registry.begin(2, GenerationStage.PERSONA, parent=batch).cancelled


def test_targeted_cancel():
    registry = CancellationRegistry()
    token = registry.begin(7, GenerationStage.IMAGE)

    assert registry.cancel(7, GenerationStage.IMAGE) is True
    assert token.cancelled
    assert registry.cancel(7, GenerationStage.IMAGE) is False
