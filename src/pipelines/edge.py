"""
Stage 1 — Edge Pipeline.

Turns one detector frame into a full ``PipelineOutput`` snapshot: joint
angles, technique deviations with display-smoothed severity, biomechanics
risk, depth/kinematics and load. All rolling state lives in an explicit
``EdgeSessionState`` owned by the caller, so a scripted frame sequence can be
replayed deterministically.
"""

import logging
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from src.pose.biomechanics import assess_risk, compute_biomechanics
from src.pose.geometry import compute_pose_3d_angles, compute_pose_angles, to_landmark_frame
from src.pose.kinematics import compute_depth_metrics, compute_kinematics, estimate_load
from src.pose.schemas import ExerciseTemplate, PipelineOutput, RiskLevel
from src.pose.smoothing import SeverityWindow, push_severity
from src.pose.templates import aggregate_severity, evaluate_technique

from .config import DEPTH_SMOOTHING_SAMPLES, DISPLAY_MIN_SWITCH_MS, DISPLAY_WINDOW_MS

logger = logging.getLogger(__name__)

# Load flags that lift a ``safe`` verdict to ``caution``
RISK_UPGRADE_FLAGS: tuple[str, ...] = ("velocity_drop_risk", "depth_insufficient")


class EdgeSessionState(BaseModel):
    """Rolling per-session state consumed and updated by ``process_frame``."""
    last_depth: float = 0.0
    last_velocity: float = 0.0
    last_timestamp_ms: Optional[float] = None
    velocity_loss: float = Field(
        default=0.0,
        description="Running maximum absolute velocity observed this session"
    )
    depth_min: Optional[float] = None
    depth_max: Optional[float] = None
    depth_window: list[float] = Field(default_factory=list)
    depth_window_size: int = DEPTH_SMOOTHING_SAMPLES
    severity: SeverityWindow = Field(
        default_factory=lambda: SeverityWindow(
            window_ms=DISPLAY_WINDOW_MS, min_switch_ms=DISPLAY_MIN_SWITCH_MS
        )
    )


def merge_load_risk(risk_level: RiskLevel, guard_reason: Optional[str],
                    load_flags: Sequence[str]) -> tuple[RiskLevel, Optional[str]]:
    """
    Fold load guard flags into the biomechanics verdict.

    ``velocity_drop_risk`` and ``depth_insufficient`` upgrade ``safe`` to
    ``caution`` and are appended to the reason; ``danger`` is never lowered.
    """
    for flag in RISK_UPGRADE_FLAGS:
        if flag not in load_flags:
            continue
        if risk_level != "danger":
            risk_level = "caution"
        guard_reason = f"{guard_reason},{flag}" if guard_reason else flag
    return risk_level, guard_reason


def process_frame(state: EdgeSessionState, landmarks, template: ExerciseTemplate,
                  now_ms: float) -> PipelineOutput:
    """
    Run the per-frame pipeline and advance ``state``.

    Args:
        state: Session state, mutated in place
        landmarks: Detector points (``Joint``, dicts or ``[x, y, z, vis]``)
        template: Active exercise template
        now_ms: Frame timestamp in milliseconds

    Returns:
        PipelineOutput snapshot for this frame
    """
    frame = to_landmark_frame(landmarks)

    angles_2d = compute_pose_angles(frame)
    angles_3d = compute_pose_3d_angles(frame)
    deviations = evaluate_technique(angles_2d, template)
    severity_raw = aggregate_severity(deviations)
    stable_severity, interim_severity = push_severity(state.severity, now_ms, severity_raw)

    biomechanics = compute_biomechanics(frame, angles_3d)
    risk = assess_risk(biomechanics)

    # ROM is measured against the baseline seen so far, then the baseline widens
    depth = compute_depth_metrics(frame, state.depth_min, state.depth_max)
    hip_depth = depth.hip_depth
    state.depth_min = hip_depth if state.depth_min is None else min(state.depth_min, hip_depth)
    state.depth_max = hip_depth if state.depth_max is None else max(state.depth_max, hip_depth)

    if state.last_timestamp_ms is not None:
        dt_seconds = (now_ms - state.last_timestamp_ms) / 1000.0
    else:
        dt_seconds = 0.0
    state.last_timestamp_ms = now_ms

    state.depth_window.append(hip_depth)
    if len(state.depth_window) > state.depth_window_size:
        state.depth_window = state.depth_window[-state.depth_window_size:]
    smoothed_depth = sum(state.depth_window) / len(state.depth_window)

    kinematics = compute_kinematics(smoothed_depth, state.last_depth, state.last_velocity, dt_seconds)
    state.last_depth = smoothed_depth
    state.last_velocity = kinematics.velocity
    state.velocity_loss = max(state.velocity_loss, abs(kinematics.velocity))

    load = estimate_load(
        kinematics.velocity,
        depth.rom_percent,
        biomechanics.asymmetry_index,
        state.velocity_loss,
        biomechanics.lumbar_shear_proxy,
    )

    risk_level, guard_reason = merge_load_risk(risk.risk_level, risk.guard_reason, load.guard_flags)

    return PipelineOutput(
        timestamp_ms=now_ms,
        severity_raw=severity_raw,
        stable_severity=stable_severity,
        interim_severity=interim_severity,
        angles_2d=angles_2d,
        angles_3d=angles_3d,
        deviations=deviations,
        biomechanics=biomechanics,
        risk_level=risk_level,
        guard_flags=[*risk.guard_flags, *load.guard_flags],
        guard_reason=guard_reason,
        depth=depth,
        kinematics=kinematics,
        load=load,
    )


class EdgePipeline:
    """Convenience holder pairing one session state with ``process_frame``."""

    def __init__(self, state: Optional[EdgeSessionState] = None):
        self.state = state or EdgeSessionState()

    def process(self, landmarks, template: ExerciseTemplate, now_ms: float) -> PipelineOutput:
        return process_frame(self.state, landmarks, template, now_ms)

    def reset_severity(self) -> None:
        """Restart display smoothing; depth baseline and velocity history are session-long."""
        self.state.severity.reset()
        logger.debug("Edge pipeline severity window reset")
