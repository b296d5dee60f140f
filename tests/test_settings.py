from pathlib import Path

import pytest

from inbox_categorizer.core import settings


def test_read_config_file(tmp_path: Path) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "# tuning\n"
        "AUTO_APPROVE_THRESHOLD: 0.9  # stricter\n"
        "LOG_LEVEL: 'DEBUG'\n"
        "EMPTY:\n"
        "not a pair\n",
        encoding="utf-8",
    )

    assert settings.read_config_file(str(config)) == {
        "AUTO_APPROVE_THRESHOLD": "0.9",
        "LOG_LEVEL": "DEBUG",
    }
    assert settings.read_config_file(str(tmp_path / "missing.yaml")) == {}


def test_invalid_numbers_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECLASSIFY_CHUNK_SIZE", "lots")
    monkeypatch.setenv("AUTO_APPROVE_THRESHOLD", "0")
    monkeypatch.setenv("MODEL_STALE_HOURS", "-3")

    assert settings.reclassify_chunk_size() == settings.DEFAULT_RECLASSIFY_CHUNK_SIZE
    assert settings.auto_approve_threshold() == settings.DEFAULT_AUTO_APPROVE_THRESHOLD
    assert settings.model_stale_hours() == settings.DEFAULT_MODEL_STALE_HOURS


def test_training_options_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRAIN_MAX_ITERATIONS", "250")
    monkeypatch.setenv("TRAIN_LEARNING_RATE", "0.05")
    monkeypatch.setenv("TRAIN_RECENCY_WEIGHTING", "yes")

    options = settings.training_options()

    assert options.max_iterations == 250
    assert options.learning_rate == 0.05
    assert options.use_sample_weights is True
    assert options.regularization == 0.01


def test_env_bool_rejects_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRAIN_RECENCY_WEIGHTING", "maybe")
    assert settings.get_env_bool("TRAIN_RECENCY_WEIGHTING", default=False) is False
