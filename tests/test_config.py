"""
Unit tests for settings loading and typed engine configuration.
"""

import json

import pytest

from trend_pulse.config import (
    EngineConfig,
    get_engine_config,
    get_settings_path,
    load_settings,
)


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    """Point the loader at a temporary settings.json."""
    path = tmp_path / "settings.json"
    monkeypatch.setenv("TREND_PULSE_SETTINGS", str(path))
    yield path
    monkeypatch.undo()
    load_settings(force_reload=True)


def test_defaults():
    """Test the documented default thresholds."""
    config = EngineConfig()

    assert config.scoring.velocity_sentinel == 500.0
    assert config.baseline.z_score_sentinel == 10.0
    assert config.clustering.similarity_threshold == 0.85
    assert config.lifecycle.quiet_period_hours == 48.0
    assert config.alerts.throttle_hours == 4.0
    assert config.jobs.failure_threshold == 5


def test_settings_path_override(settings_file):
    assert get_settings_path() == str(settings_file)


def test_file_values_override_defaults(settings_file):
    """Test values from settings.json are layered over defaults."""
    settings_file.write_text(
        json.dumps({"engine": {"jobs": {"top_k": 50}, "lifecycle": {"blocklist": ["Weather"]}}})
    )

    config = get_engine_config(load_settings(force_reload=True))

    assert config.jobs.top_k == 50
    assert config.jobs.failure_threshold == 5
    assert config.lifecycle.blocklist == ["Weather"]


def test_missing_file_uses_defaults(settings_file):
    settings = load_settings(force_reload=True)

    assert settings == {"engine": {}}
    assert get_engine_config(settings).jobs.top_k == 200


def test_malformed_file_uses_defaults(settings_file):
    """Test a broken settings file does not stop the engine."""
    settings_file.write_text("{not json")

    assert load_settings(force_reload=True) == {"engine": {}}


def test_settings_are_cached(settings_file):
    settings_file.write_text(json.dumps({"engine": {"jobs": {"top_k": 10}}}))
    first = load_settings(force_reload=True)

    settings_file.write_text(json.dumps({"engine": {"jobs": {"top_k": 20}}}))

    assert load_settings() is first
    assert get_engine_config(load_settings(force_reload=True)).jobs.top_k == 20
