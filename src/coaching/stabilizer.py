"""
Realtime feedback stabilizer: decides whether a frame warrants a spoken cue.

Owns its own severity window, separate from the one the edge pipeline uses
for display colour, so cue gating and display flicker suppression can be
tuned independently.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from src.pose.schemas import RiskLevel, Severity
from src.pipelines.config import TRUST_REALTIME_MIN
from src.pose.smoothing import SeverityWindow, push_severity

FATIGUE_THRESHOLD: float = 0.35

FeedbackEvent = Literal["technique_error", "fatigue_warning", "overload_stop", "none"]
FeedbackPriority = Literal["high", "medium", "low", "none"]


class FeedbackDecision(BaseModel):
    stable_severity: Severity
    event: FeedbackEvent = "none"
    priority: FeedbackPriority = "none"


class FeedbackInput(BaseModel):
    """One frame's worth of signals for the stabilizer."""
    ts: float = Field(description="Frame timestamp in milliseconds")
    severity: Severity = Field(description="Raw (unsmoothed) technique severity")
    risk_level: RiskLevel
    fatigue_index: Optional[float] = None
    guard_reason: Optional[str] = None
    trust_score: Optional[float] = Field(
        default=None,
        description="External trust score (0-100); unknown counts as 0"
    )
    allow_realtime: bool = True


class RealtimeFeedbackStabilizer:
    def __init__(self, window_ms: float = 450.0, min_switch_ms: float = 400.0,
                 trust_threshold: float = TRUST_REALTIME_MIN):
        self.window = SeverityWindow(window_ms=window_ms, min_switch_ms=min_switch_ms)
        self.trust_threshold = trust_threshold

    def reset(self) -> None:
        self.window.reset()

    def update(self, feedback: FeedbackInput) -> FeedbackDecision:
        """
        Apply the decision rules in order; the first match wins.

        Disabled realtime short-circuits before the window is touched, so a
        paused coaching channel does not accumulate stale samples.
        """
        if not feedback.allow_realtime:
            return FeedbackDecision(stable_severity="green")

        stable, _ = push_severity(self.window, feedback.ts, feedback.severity)

        if feedback.risk_level == "danger":
            return FeedbackDecision(stable_severity=stable, event="overload_stop", priority="high")

        reason = feedback.guard_reason or ""
        if "velocity_drop_risk" in reason or (feedback.fatigue_index or 0.0) > FATIGUE_THRESHOLD:
            return FeedbackDecision(stable_severity=stable, event="fatigue_warning", priority="medium")

        # Untrusted signal is suppressed, not surfaced
        if (feedback.trust_score or 0.0) < self.trust_threshold:
            return FeedbackDecision(stable_severity=stable)

        if stable in ("yellow", "red"):
            return FeedbackDecision(
                stable_severity=stable,
                event="technique_error",
                priority="high" if stable == "red" else "medium",
            )

        return FeedbackDecision(stable_severity=stable)
