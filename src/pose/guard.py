"""
Rule-based safety guard.

A stateless second opinion over joint angles, asymmetry, detector confidence
and raw landmark geometry. It does not share thresholds or inputs with the
biomechanics scorer and must stay independent of it.
"""

import logging
from typing import Optional

from .geometry import (
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_KNEE,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_KNEE,
)
from .schemas import GuardFlag, GuardInput, GuardResult, JointAngleLimit

logger = logging.getLogger(__name__)


DEFAULT_LIMITS: list[JointAngleLimit] = [
    JointAngleLimit(joint="knee", min=30, max=170),
    JointAngleLimit(joint="hip", min=30, max=170),
    JointAngleLimit(joint="shoulder", min=10, max=170),
    JointAngleLimit(joint="elbow", min=20, max=170),
]

CONFIDENCE_THRESHOLD: float = 0.6
JOINT_LIMIT_HIGH_MARGIN: float = 10.0
ASYMMETRY_THRESHOLD: float = 0.25
ASYMMETRY_HIGH: float = 0.4
KNEE_VALGUS_THRESHOLD: float = 0.04
BACK_HYPEREXTENSION_DEG: float = 140.0


def _check_knee_valgus(guard_input: GuardInput) -> list[GuardFlag]:
    landmarks = guard_input.landmarks
    if not landmarks or len(landmarks) <= RIGHT_ANKLE:
        return []

    flags = []
    l_knee, l_ank, l_hip = landmarks[LEFT_KNEE], landmarks[LEFT_ANKLE], landmarks[LEFT_HIP]
    if l_knee.x < l_ank.x - KNEE_VALGUS_THRESHOLD:
        flags.append(GuardFlag(
            flag_type="knee_valgus",
            severity="high",
            details={"side": "left", "knee_x": l_knee.x, "ankle_x": l_ank.x, "hip_x": l_hip.x},
        ))

    r_knee, r_ank, r_hip = landmarks[RIGHT_KNEE], landmarks[RIGHT_ANKLE], landmarks[RIGHT_HIP]
    if r_knee.x > r_ank.x + KNEE_VALGUS_THRESHOLD:
        flags.append(GuardFlag(
            flag_type="knee_valgus",
            severity="high",
            details={"side": "right", "knee_x": r_knee.x, "ankle_x": r_ank.x, "hip_x": r_hip.x},
        ))
    return flags


def evaluate_safety(
    guard_input: GuardInput,
    limits: Optional[list[JointAngleLimit]] = None,
) -> GuardResult:
    """
    Evaluate one frame against the guard rules.

    Args:
        guard_input: Angles plus optional asymmetry, confidence and landmarks
        limits: Per-joint angle limits (defaults to ``DEFAULT_LIMITS``)

    Returns:
        GuardResult; ``safe`` is False iff any flag has ``high`` severity
    """
    limits = DEFAULT_LIMITS if limits is None else limits
    flags: list[GuardFlag] = []

    if guard_input.confidence is not None and guard_input.confidence < CONFIDENCE_THRESHOLD:
        flags.append(GuardFlag(
            flag_type="low_confidence",
            severity="high",
            details={"confidence": guard_input.confidence},
        ))

    for limit in limits:
        value = guard_input.angles.get(limit.joint)
        if value is None:
            continue
        if value < limit.min or value > limit.max:
            far = (value < limit.min - JOINT_LIMIT_HIGH_MARGIN
                   or value > limit.max + JOINT_LIMIT_HIGH_MARGIN)
            flags.append(GuardFlag(
                flag_type="joint_limit",
                severity="high" if far else "medium",
                details={"joint": limit.joint, "value": value, "min": limit.min, "max": limit.max},
            ))

    for axis, value in (guard_input.asymmetry or {}).items():
        if value > ASYMMETRY_THRESHOLD:
            flags.append(GuardFlag(
                flag_type="asymmetry",
                severity="high" if value > ASYMMETRY_HIGH else "medium",
                details={"axis": axis, "value": value},
            ))

    flags.extend(_check_knee_valgus(guard_input))

    back_angle = guard_input.angles.get("spine", guard_input.angles.get("back"))
    if back_angle is not None and back_angle < BACK_HYPEREXTENSION_DEG:
        flags.append(GuardFlag(
            flag_type="lower_back_hyperextension",
            severity="high",
            details={"angle": back_angle},
        ))

    safe = not any(flag.severity == "high" for flag in flags)
    if not safe:
        logger.debug("Guard verdict unsafe: %s", [f.flag_type for f in flags])
    return GuardResult(flags=flags, safe=safe)
