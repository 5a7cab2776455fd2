"""Tests for settings loading and YAML overrides."""

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.pipelines.config import (
    CUE_COOLDOWNS_MS,
    PERFORMANCE_MODES,
    CoachSettings,
    load_settings,
)
from src.utils.io_utils import load_config


class TestLoadSettings:

    def test_defaults(self):
        settings = CoachSettings()
        assert settings.display_window_ms == 450
        assert settings.cue_min_switch_ms == 400
        assert settings.depth_smoothing_samples == 5
        assert settings.cue_cooldowns_ms == CUE_COOLDOWNS_MS
        assert settings.performance_modes == {"high": 4, "balanced": 6, "safety": 8}
        assert [limit.joint for limit in settings.guard_limits] == ["knee", "hip", "shoulder", "elbow"]

    def test_no_path_returns_defaults(self, monkeypatch):
        monkeypatch.setattr("src.pipelines.config.CONFIG_PATH", "")
        assert load_settings() == CoachSettings()

    def test_yaml_overrides_merge(self, tmp_path):
        path = tmp_path / "coach.yaml"
        path.write_text(
            "display_window_ms: 600\n"
            "cue_cooldowns_ms:\n"
            "  motivation: 30000\n"
            "performance_modes:\n"
            "  turbo: 2\n"
        )
        settings = load_settings(str(path))
        assert settings.display_window_ms == 600
        assert settings.cue_window_ms == 450
        assert settings.cue_cooldowns_ms == {**CUE_COOLDOWNS_MS, "motivation": 30000}
        assert settings.performance_modes == {**PERFORMANCE_MODES, "turbo": 2}

    def test_guard_limits_from_yaml(self, tmp_path):
        path = tmp_path / "coach.yaml"
        path.write_text("guard_limits:\n  - {joint: knee, min: 40, max: 160}\n")
        settings = load_settings(str(path))
        assert len(settings.guard_limits) == 1
        assert settings.guard_limits[0].max == 160

    def test_invalid_value_is_rejected(self, tmp_path):
        path = tmp_path / "coach.yaml"
        path.write_text("depth_smoothing_samples: many\n")
        with pytest.raises(ValidationError):
            load_settings(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}
        assert load_settings(str(path)) == CoachSettings()

    def test_shipped_config_matches_defaults(self):
        settings = load_settings(str(PROJECT_ROOT / "config" / "coach.yaml"))
        defaults = CoachSettings()
        assert settings.cue_cooldowns_ms == defaults.cue_cooldowns_ms
        assert settings.performance_modes == defaults.performance_modes
        assert settings.guard_limits == defaults.guard_limits
