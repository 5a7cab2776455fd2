"""
Configuration constants for the edge coach pipeline and service.

Centralizes smoothing windows, cue cooldowns, frame-decimation factors,
storage/speech settings and environment variable loading. Tunables can be
overridden from a YAML file through ``load_settings``.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from src.pose.schemas import JointAngleLimit
from src.pose.guard import DEFAULT_LIMITS
from src.utils.io_utils import load_config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_PATH = PROJECT_ROOT / ".env"
load_dotenv(_ENV_PATH)

# ---------------------------------------------------------------------------
# Severity smoothing (display and cue gating use separate windows)
# ---------------------------------------------------------------------------
DISPLAY_WINDOW_MS: float = 450.0
DISPLAY_MIN_SWITCH_MS: float = 400.0
CUE_WINDOW_MS: float = 450.0
CUE_MIN_SWITCH_MS: float = 400.0

# ---------------------------------------------------------------------------
# Kinematics
# ---------------------------------------------------------------------------
DEPTH_SMOOTHING_SAMPLES: int = 5

# ---------------------------------------------------------------------------
# Voice cues
# ---------------------------------------------------------------------------
CUE_COOLDOWNS_MS: dict[str, float] = {
    "safety_alert": 0,
    "form_correction": 5000,
    "tempo_cue": 10000,
    "fatigue_warning": 6000,
    "motivation": 45000,
}
DEFAULT_CUE_COOLDOWN_MS: float = 5000
CUE_PRIORITY_VALUE: dict[str, int] = {"high": 3, "medium": 2, "low": 1}

# Minimum gap between non-safety cue dispatches from the runtime
CUE_DISPATCH_GAP_MS: float = 5000
TRUST_MOTIVATION_MIN: float = 60.0
TRUST_REALTIME_MIN: float = 40.0

# ---------------------------------------------------------------------------
# Frame decimation (process every Nth frame)
# ---------------------------------------------------------------------------
PERFORMANCE_MODES: dict[str, int] = {
    "high": 4,
    "balanced": 6,
    "safety": 8,
}
LATENCY_WINDOW: int = 200

# ---------------------------------------------------------------------------
# Storage / speech (environment)
# ---------------------------------------------------------------------------
STORE_DIR: str = os.environ.get("EDGE_COACH_STORE_DIR", "")
SPEECH_BACKEND: str = os.environ.get("EDGE_COACH_SPEECH_BACKEND", "pyttsx3")
SPEECH_LANGUAGE: str = os.environ.get("EDGE_COACH_SPEECH_LANG", "en-US")
FLUSH_INTERVAL_S: float = float(os.environ.get("EDGE_COACH_FLUSH_INTERVAL_S", "5"))
CONFIG_PATH: str = os.environ.get("EDGE_COACH_CONFIG", "")


class CoachSettings(BaseModel):
    """Per-session tunables; defaults mirror the module constants."""
    display_window_ms: float = DISPLAY_WINDOW_MS
    display_min_switch_ms: float = DISPLAY_MIN_SWITCH_MS
    cue_window_ms: float = CUE_WINDOW_MS
    cue_min_switch_ms: float = CUE_MIN_SWITCH_MS
    depth_smoothing_samples: int = DEPTH_SMOOTHING_SAMPLES
    cue_cooldowns_ms: dict[str, float] = Field(default_factory=lambda: dict(CUE_COOLDOWNS_MS))
    cue_dispatch_gap_ms: float = CUE_DISPATCH_GAP_MS
    performance_modes: dict[str, int] = Field(default_factory=lambda: dict(PERFORMANCE_MODES))
    guard_limits: list[JointAngleLimit] = Field(default_factory=lambda: list(DEFAULT_LIMITS))
    latency_window: int = LATENCY_WINDOW
    flush_interval_s: float = FLUSH_INTERVAL_S
    speech_backend: str = SPEECH_BACKEND
    speech_language: str = SPEECH_LANGUAGE
    store_dir: str = STORE_DIR


def load_settings(config_path: Optional[str] = None) -> CoachSettings:
    """Build settings from defaults, overridden by a YAML file if given.

    Args:
        config_path: YAML path; falls back to ``EDGE_COACH_CONFIG``.

    Returns:
        Validated ``CoachSettings``.
    """
    path = config_path or CONFIG_PATH
    if not path:
        return CoachSettings()

    overrides = load_config(path)
    logger.info("Loaded coach settings overrides from %s: %s", path, sorted(overrides))

    # Cooldowns and modes merge key-by-key instead of replacing the whole map
    defaults = CoachSettings()
    for key in ("cue_cooldowns_ms", "performance_modes"):
        if key in overrides:
            overrides[key] = {**getattr(defaults, key), **overrides[key]}
    return CoachSettings(**{**defaults.model_dump(), **overrides})
