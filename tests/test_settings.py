import pytest

from infinite_heroes.common import ConfigurationError, EngineSettings
from infinite_heroes.pipeline import GenerationStage


def test_defaults():
    settings = EngineSettings()

    assert settings.batch_size == 2
    assert settings.initial_pages == 2
    assert settings.transition_delay == pytest.approx(1.1)
    assert settings.timeout_for(GenerationStage.PERSONA) == 90.0
    assert settings.timeout_for(GenerationStage.BEAT) == 45.0
    assert settings.timeout_for("image") == 120.0


def test_from_mapping_reads_nested_sections():
    settings = EngineSettings.from_mapping(
        {
            "batch_size": "3",
            "timeouts": {"beat": 10, "image": 20},
            "retry": {"max_retries": 1, "initial_delay": 0.25},
            "inline_images": True,
            "unknown": "ignored",
        }
    )

    assert settings.batch_size == 3
    assert settings.beat_timeout == 10.0
    assert settings.image_timeout == 20.0
    assert settings.persona_timeout == 90.0
    assert settings.retry.max_retries == 1
    assert settings.retry.initial_delay == 0.25
    assert settings.inline_images is True


def test_from_yaml(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("image_model: google/nano-banana\nprogress_grace_delay: 0.5\n", encoding="utf-8")

    settings = EngineSettings.from_yaml(path)

    assert settings.image_model == "google/nano-banana"
    assert settings.progress_grace_delay == 0.5


def test_environment_fallbacks(monkeypatch):
    monkeypatch.delenv("INFINITE_HEROES_IMAGE_MODEL", raising=False)
    monkeypatch.setenv("REPLICATE_MODEL", "black-forest-labs/flux-kontext-max")
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8_env")

    settings = EngineSettings()

    assert settings.image_model == "black-forest-labs/flux-kontext-max"
    assert settings.replicate_api_token == "r8_env"


@pytest.mark.parametrize(
    "changes",
    [{"batch_size": 0}, {"beat_timeout": 0}, {"beat_cache_size": -1}],
)
def test_invalid_values_are_rejected(changes):
    with pytest.raises(ConfigurationError):
        EngineSettings(**changes)


def test_bad_number_in_mapping():
    with pytest.raises(ConfigurationError, match="batch_size"):
        EngineSettings.from_mapping({"batch_size": "many"})


def test_unknown_stage():
    with pytest.raises(ConfigurationError):
        EngineSettings().timeout_for("lettering")
