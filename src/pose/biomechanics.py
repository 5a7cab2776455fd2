"""
Biomechanics scorer.

Pure functions over a normalized 3D landmark frame and its 3D angles. The
risk thresholds here are deliberately separate from the safety guard's
(``src.pose.guard``); the two evaluators are independent opinions.
"""

import math

from .geometry import (
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
)
from .schemas import BiomechanicsMetrics, Joint, PoseAngles, RiskAssessment


NEUTRAL_SPINE_DEG: float = 150.0

# Risk flag thresholds, in evaluation order
KNEE_VALGUS_RISK: float = 0.05
LUMBAR_SHEAR_RISK: float = 0.7
HIP_HINGE_RISK: float = 0.6
ASYMMETRY_RISK: float = 0.4

DANGER_FLAGS = frozenset({"knee_valgus_risk", "lumbar_shear_risk"})


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


def compute_biomechanics(landmarks: list[Joint], angles: PoseAngles) -> BiomechanicsMetrics:
    """
    Derive normalized biomechanics scalars for one frame.

    Args:
        landmarks: Normalized 33-slot frame (3D)
        angles: 3D joint angles for the same frame

    Returns:
        BiomechanicsMetrics snapshot
    """
    l_knee, r_knee = landmarks[LEFT_KNEE], landmarks[RIGHT_KNEE]
    l_ank, r_ank = landmarks[LEFT_ANKLE], landmarks[RIGHT_ANKLE]
    l_hip, r_hip = landmarks[LEFT_HIP], landmarks[RIGHT_HIP]
    l_sh, r_sh = landmarks[LEFT_SHOULDER], landmarks[RIGHT_SHOULDER]

    # Signed per side (left knee vs ankle, right ankle vs knee); magnitude reported
    valgus_left = l_knee.x - l_ank.x
    valgus_right = r_ank.x - r_knee.x
    knee_valgus = max(abs(valgus_left), abs(valgus_right))

    hip_depth = (l_hip.z + r_hip.z) / 2
    shoulder_depth = (l_sh.z + r_sh.z) / 2
    trunk_forward_lean = abs(shoulder_depth - hip_depth)

    spine_offset = abs(angles.spine - NEUTRAL_SPINE_DEG)
    hip_hinge_deviation = spine_offset / 50
    lumbar_shear_proxy = clamp(trunk_forward_lean * 2 + spine_offset / 90)

    asymmetry_index = clamp(
        (abs(angles.left_knee - angles.right_knee) + abs(angles.left_hip - angles.right_hip)) / 180
    )

    bar_path_deviation = None
    shoulder_span = math.hypot(l_sh.x - r_sh.x, l_sh.y - r_sh.y)
    if shoulder_span:
        bar_path_deviation = clamp(abs(l_sh.z - r_sh.z) / shoulder_span)

    return BiomechanicsMetrics(
        knee_valgus=knee_valgus,
        hip_hinge_deviation=clamp(hip_hinge_deviation),
        lumbar_shear_proxy=lumbar_shear_proxy,
        trunk_forward_lean=clamp(trunk_forward_lean),
        asymmetry_index=asymmetry_index,
        bar_path_deviation=bar_path_deviation,
    )


def assess_risk(metrics: BiomechanicsMetrics) -> RiskAssessment:
    """Fixed-threshold risk flags; danger if knee valgus or lumbar shear fired."""
    flags: list[str] = []
    if metrics.knee_valgus > KNEE_VALGUS_RISK:
        flags.append("knee_valgus_risk")
    if metrics.lumbar_shear_proxy > LUMBAR_SHEAR_RISK:
        flags.append("lumbar_shear_risk")
    if metrics.hip_hinge_deviation > HIP_HINGE_RISK:
        flags.append("hip_hinge_deviation")
    if metrics.asymmetry_index > ASYMMETRY_RISK:
        flags.append("asymmetry_overload")

    if any(flag in DANGER_FLAGS for flag in flags):
        risk_level = "danger"
    elif flags:
        risk_level = "caution"
    else:
        risk_level = "safe"

    return RiskAssessment(
        risk_level=risk_level,
        guard_flags=flags,
        guard_reason=",".join(flags) if flags else None,
    )
