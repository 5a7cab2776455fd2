"""
Shared utilities for the coaching runtime.

- Latency percentile tracker
- Battery-driven performance mode selection
- Rule-based end-of-session summary
"""

import logging
import math
from collections import Counter, deque
from typing import Optional

from pydantic import BaseModel, Field

from .config import LATENCY_WINDOW

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Latency percentiles
# ---------------------------------------------------------------------------

class LatencyTracker:
    """Trailing window of per-frame processing times in milliseconds."""

    def __init__(self, window: int = LATENCY_WINDOW):
        self._samples: deque[float] = deque(maxlen=window)

    def __len__(self) -> int:
        return len(self._samples)

    def add(self, sample_ms: float) -> None:
        self._samples.append(sample_ms)

    def percentiles(self) -> Optional[dict[str, int]]:
        """Return ``{"p50", "p95"}`` rounded to whole ms, or None if empty."""
        if not self._samples:
            return None
        ordered = sorted(self._samples)
        n = len(ordered)
        p50 = ordered[min(n - 1, math.floor(n * 0.5))]
        p95 = ordered[min(n - 1, math.floor(n * 0.95))]
        return {"p50": round(p50), "p95": round(p95)}


# ---------------------------------------------------------------------------
# Performance mode
# ---------------------------------------------------------------------------

def performance_mode_for_battery(level: float, charging: bool) -> str:
    """Pick a decimation mode from battery state (level in [0, 1])."""
    if not charging and level < 0.2:
        return "safety"
    if not charging and level < 0.4:
        return "balanced"
    return "high"


# ---------------------------------------------------------------------------
# Session summary (no LLM)
# ---------------------------------------------------------------------------

class SessionStats(BaseModel):
    """Counters accumulated by the runtime over one session."""
    frames_received: int = 0
    frames_processed: int = 0
    frames_dropped: int = 0
    danger_frames: int = 0
    caution_frames: int = 0
    peak_fatigue: float = 0.0
    cues_spoken: int = 0
    flag_counts: dict[str, int] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    session_id: str
    exercise: str
    frames_processed: int
    frames_dropped: int
    danger_frames: int
    peak_fatigue: float
    cues_spoken: int
    top_flags: list[str]
    latency: Optional[dict[str, int]] = None
    feedback: list[str]


def generate_session_feedback(stats: SessionStats) -> list[str]:
    """Produce rule-based feedback strings for a finished session.

    Args:
        stats: Counters accumulated by the runtime.

    Returns:
        List of human-readable feedback strings.
    """
    tips: list[str] = []

    if stats.frames_processed == 0:
        return ["No frames were analysed in this session."]

    danger_share = stats.danger_frames / stats.frames_processed
    caution_share = stats.caution_frames / stats.frames_processed
    if danger_share == 0 and caution_share < 0.1:
        tips.append("Solid, safe session. Keep it up!")
    elif danger_share < 0.05:
        tips.append(
            f"Mostly safe session; {caution_share:.0%} of analysed frames needed caution."
        )
    else:
        tips.append(
            f"{danger_share:.0%} of analysed frames were flagged as dangerous. "
            "Consider lowering the weight and reviewing technique."
        )

    if stats.flag_counts:
        flag, count = Counter(stats.flag_counts).most_common(1)[0]
        tips.append(f"Most frequent issue: {flag.replace('_', ' ')} ({count} frames).")

    if stats.peak_fatigue > 0.35:
        tips.append(
            f"Fatigue detected (peak index {stats.peak_fatigue:.2f}). "
            "Take longer rest between sets."
        )

    return tips


def summarize_session(session_id: str, exercise: str, stats: SessionStats,
                      latency: Optional[dict[str, int]] = None) -> SessionSummary:
    return SessionSummary(
        session_id=session_id,
        exercise=exercise,
        frames_processed=stats.frames_processed,
        frames_dropped=stats.frames_dropped,
        danger_frames=stats.danger_frames,
        peak_fatigue=stats.peak_fatigue,
        cues_spoken=stats.cues_spoken,
        top_flags=[flag for flag, _ in Counter(stats.flag_counts).most_common(3)],
        latency=latency,
        feedback=generate_session_feedback(stats),
    )
