"""
Joint-angle geometry for the 33-point landmark skeleton.

Angles are measured at the middle point of a triplet between the vectors
B->A and B->C. A zero-length vector yields 0 degrees instead of an error.
"""

from typing import Sequence

import numpy as np

from .schemas import Joint, PoseAngles


# ---------------------------------------------------------------------------
# Landmark layout
# ---------------------------------------------------------------------------
POSE_LANDMARK_COUNT: int = 33

NOSE = 0
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
LEFT_ELBOW = 13
RIGHT_ELBOW = 14
LEFT_WRIST = 15
RIGHT_WRIST = 16
LEFT_HIP = 23
RIGHT_HIP = 24
LEFT_KNEE = 25
RIGHT_KNEE = 26
LEFT_ANKLE = 27
RIGHT_ANKLE = 28

LANDMARK_NAMES: list[str] = [
    "nose", "left_eye_inner", "left_eye", "left_eye_outer",
    "right_eye_inner", "right_eye", "right_eye_outer",
    "left_ear", "right_ear", "mouth_left", "mouth_right",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_pinky", "right_pinky",
    "left_index", "right_index", "left_thumb", "right_thumb",
    "left_hip", "right_hip", "left_knee", "right_knee",
    "left_ankle", "right_ankle", "left_heel", "right_heel",
    "left_foot_index", "right_foot_index",
]


def to_landmark_frame(points: Sequence) -> list[Joint]:
    """Normalize detector output to exactly 33 ``Joint`` slots.

    Accepts ``Joint`` objects, dicts with x/y/z/visibility keys, or
    ``[x, y, z, visibility]`` sequences. Missing slots are zero points with
    visibility 0 so downstream math degrades instead of failing.
    """
    frame: list[Joint] = []
    for idx in range(POSE_LANDMARK_COUNT):
        name = LANDMARK_NAMES[idx]
        if idx >= len(points) or points[idx] is None:
            frame.append(Joint(name=name, visibility=0.0))
            continue

        raw = points[idx]
        if isinstance(raw, Joint):
            frame.append(raw if raw.name else raw.model_copy(update={"name": name}))
        elif isinstance(raw, dict):
            frame.append(Joint(
                name=raw.get("name") or name,
                x=raw.get("x", 0.0),
                y=raw.get("y", 0.0),
                z=raw.get("z") or 0.0,
                visibility=raw.get("visibility"),
            ))
        else:
            values = list(raw)
            frame.append(Joint(
                name=name,
                x=values[0],
                y=values[1],
                z=values[2] if len(values) > 2 and values[2] is not None else 0.0,
                visibility=values[3] if len(values) > 3 else None,
            ))
    return frame


def _angle_between(ba: np.ndarray, bc: np.ndarray) -> float:
    denom = float(np.linalg.norm(ba) * np.linalg.norm(bc))
    if denom == 0.0:
        return 0.0
    cos = np.clip(np.dot(ba, bc) / denom, -1.0, 1.0)
    return float(np.degrees(np.arccos(cos)))


def calc_angle(a: Joint, b: Joint, c: Joint) -> float:
    """Angle at ``b`` in the image plane (x, y), in degrees."""
    ba = np.array([a.x - b.x, a.y - b.y], dtype=np.float64)
    bc = np.array([c.x - b.x, c.y - b.y], dtype=np.float64)
    return _angle_between(ba, bc)


def calc_angle_3d(a: Joint, b: Joint, c: Joint) -> float:
    """Angle at ``b`` using x, y and z, in degrees."""
    ba = np.array([a.x - b.x, a.y - b.y, a.z - b.z], dtype=np.float64)
    bc = np.array([c.x - b.x, c.y - b.y, c.z - b.z], dtype=np.float64)
    return _angle_between(ba, bc)


def _midpoint(p: Joint, q: Joint) -> Joint:
    return Joint(x=(p.x + q.x) / 2, y=(p.y + q.y) / 2, z=(p.z + q.z) / 2)


def _compute_angles(landmarks: list[Joint], angle_fn) -> PoseAngles:
    l_sh, r_sh = landmarks[LEFT_SHOULDER], landmarks[RIGHT_SHOULDER]
    l_el, r_el = landmarks[LEFT_ELBOW], landmarks[RIGHT_ELBOW]
    l_wr, r_wr = landmarks[LEFT_WRIST], landmarks[RIGHT_WRIST]
    l_hip, r_hip = landmarks[LEFT_HIP], landmarks[RIGHT_HIP]
    l_knee, r_knee = landmarks[LEFT_KNEE], landmarks[RIGHT_KNEE]
    l_ank, r_ank = landmarks[LEFT_ANKLE], landmarks[RIGHT_ANKLE]

    # Spine: shoulder midpoint -> hip midpoint -> knee midpoint
    spine = angle_fn(
        _midpoint(l_sh, r_sh), _midpoint(l_hip, r_hip), _midpoint(l_knee, r_knee)
    )

    return PoseAngles(
        left_knee=angle_fn(l_hip, l_knee, l_ank),
        right_knee=angle_fn(r_hip, r_knee, r_ank),
        left_hip=angle_fn(l_sh, l_hip, l_knee),
        right_hip=angle_fn(r_sh, r_hip, r_knee),
        left_shoulder=angle_fn(l_el, l_sh, l_hip),
        right_shoulder=angle_fn(r_el, r_sh, r_hip),
        left_elbow=angle_fn(l_sh, l_el, l_wr),
        right_elbow=angle_fn(r_sh, r_el, r_wr),
        spine=spine,
    )


def compute_pose_angles(landmarks: list[Joint]) -> PoseAngles:
    """2D joint angles for a normalized 33-slot frame."""
    return _compute_angles(landmarks, calc_angle)


def compute_pose_3d_angles(landmarks: list[Joint]) -> PoseAngles:
    """3D joint angles for a normalized 33-slot frame."""
    return _compute_angles(landmarks, calc_angle_3d)


def compute_confidence(landmarks: list[Joint]) -> float:
    """Mean visibility over the skeleton; a missing visibility counts as 1."""
    if not landmarks:
        return 0.0
    vis = [1.0 if lm.visibility is None else lm.visibility for lm in landmarks]
    return float(np.mean(vis))
