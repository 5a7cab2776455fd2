"""
Depth, kinematics and load estimation.

Depth is the average z of paired landmarks; range of motion is measured
against a per-session baseline that only ever widens. Velocity is derived
from a smoothed depth signal by the orchestrator before it reaches
``compute_kinematics``.
"""

from typing import Optional

from .biomechanics import clamp
from .geometry import (
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
)
from .schemas import DepthMetrics, Joint, KinematicMetrics, LoadEstimates


MIN_DEPTH_RANGE: float = 1e-4
BOTTOM_ROM: float = 0.9
PAUSE_VELOCITY: float = 0.01
TEMPO_FLOOR: float = 0.001
MAX_TEMPO_RATIO: float = 3.0

# Load guard thresholds
DEPTH_INSUFFICIENT_ROM: float = 0.3
VELOCITY_DROP_LOSS: float = 0.35
ASYMMETRY_FATIGUE: float = 0.45
SHEAR_UNDER_LOAD_PROXY: float = 0.7
SHEAR_UNDER_LOAD_VELOCITY: float = 0.04


def compute_depth_metrics(
    landmarks: list[Joint],
    min_depth: Optional[float] = None,
    max_depth: Optional[float] = None,
) -> DepthMetrics:
    """
    Depth and ROM for one frame.

    Args:
        landmarks: Normalized 33-slot frame
        min_depth: Session baseline minimum (None -> current hip depth)
        max_depth: Session baseline maximum (None -> current hip depth)

    Returns:
        DepthMetrics with ``rom_percent`` always inside [0, 1]
    """
    l_hip, r_hip = landmarks[LEFT_HIP], landmarks[RIGHT_HIP]
    l_knee, r_knee = landmarks[LEFT_KNEE], landmarks[RIGHT_KNEE]
    l_sh, r_sh = landmarks[LEFT_SHOULDER], landmarks[RIGHT_SHOULDER]

    hip_depth = (l_hip.z + r_hip.z) / 2
    knee_depth = (l_knee.z + r_knee.z) / 2
    shoulder_depth = (l_sh.z + r_sh.z) / 2
    vertical_displacement = abs(l_hip.y - r_hip.y)

    low = hip_depth if min_depth is None else min_depth
    high = hip_depth if max_depth is None else max_depth
    span = max(MIN_DEPTH_RANGE, high - low)
    rom_percent = clamp((hip_depth - low) / span)

    return DepthMetrics(
        hip_depth=hip_depth,
        knee_depth=knee_depth,
        shoulder_depth=shoulder_depth,
        vertical_displacement=vertical_displacement,
        rom_percent=rom_percent,
        bottom_detected=rom_percent > BOTTOM_ROM,
    )


def compute_kinematics(
    current_depth: float,
    prev_depth: float,
    prev_velocity: float,
    dt_seconds: float,
) -> KinematicMetrics:
    """Velocity, acceleration and tempo from consecutive (smoothed) depths."""
    if dt_seconds > 0:
        velocity = (current_depth - prev_depth) / dt_seconds
        acceleration = (velocity - prev_velocity) / dt_seconds
    else:
        velocity = 0.0
        acceleration = 0.0

    eccentric = max(TEMPO_FLOOR, abs(min(velocity, 0.0)))
    concentric = max(TEMPO_FLOOR, abs(max(velocity, 0.0)))

    return KinematicMetrics(
        velocity=velocity,
        acceleration=acceleration,
        tempo_ratio=clamp(eccentric / concentric, 0.0, MAX_TEMPO_RATIO),
        pause_detected=abs(velocity) < PAUSE_VELOCITY,
    )


def estimate_load(
    velocity: float,
    rom_percent: float,
    asymmetry_index: float,
    velocity_loss: float,
    lumbar_shear_proxy: Optional[float] = None,
) -> LoadEstimates:
    """
    Load, fatigue and RPE proxies plus load guard flags.

    ``velocity_loss`` is the running maximum absolute velocity for the session.
    """
    speed = abs(velocity)
    flags: list[str] = []
    if rom_percent < DEPTH_INSUFFICIENT_ROM:
        flags.append("depth_insufficient")
    if velocity_loss > VELOCITY_DROP_LOSS:
        flags.append("velocity_drop_risk")
    if asymmetry_index > ASYMMETRY_FATIGUE:
        flags.append("asymmetry_fatigue")
    if (lumbar_shear_proxy or 0.0) > SHEAR_UNDER_LOAD_PROXY and speed > SHEAR_UNDER_LOAD_VELOCITY:
        flags.append("shear_under_load")

    return LoadEstimates(
        relative_load_proxy=clamp((1 - speed) * rom_percent),
        fatigue_index=clamp(velocity_loss),
        rpe_proxy=clamp(0.6 * velocity_loss + 0.4 * asymmetry_index),
        volume_stress_score=clamp(rom_percent * (1 - speed)),
        guard_flags=flags,
    )
