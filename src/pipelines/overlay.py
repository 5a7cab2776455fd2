"""
Spatial overlay state: EMA-smoothed anchors plus risk zones.

Produces plain normalized coordinates; drawing is the caller's concern.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from src.pose.geometry import (
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
)
from src.pose.schemas import Joint, RiskLevel, Severity

EMA_ALPHA: float = 0.3


class SpatialAnchor(BaseModel):
    id: Literal["left_knee", "right_knee", "hip", "spine", "bar_path"]
    x: float
    y: float
    z: Optional[float] = None


class RiskZone(BaseModel):
    id: str
    severity: Literal["yellow", "red"]
    points: list[tuple[float, float]]


class OverlayState(BaseModel):
    anchors: list[SpatialAnchor] = Field(default_factory=list)
    color: Severity = "green"
    risk_zones: list[RiskZone] = Field(default_factory=list)


DANGER_FIELD = RiskZone(
    id="danger_field", severity="red",
    points=[(0.05, 0.05), (0.95, 0.05), (0.95, 0.95), (0.05, 0.95)],
)
KNEE_COLLAPSE_CONE = RiskZone(
    id="knee_collapse_cone", severity="red",
    points=[(0.35, 0.6), (0.65, 0.6), (0.5, 0.95)],
)
LUMBAR_PLANE = RiskZone(
    id="lumbar_plane", severity="red",
    points=[(0.2, 0.4), (0.8, 0.4), (0.8, 0.5), (0.2, 0.5)],
)


def anchors_from_landmarks(landmarks: list[Joint]) -> list[SpatialAnchor]:
    l_hip, r_hip = landmarks[LEFT_HIP], landmarks[RIGHT_HIP]
    l_sh, r_sh = landmarks[LEFT_SHOULDER], landmarks[RIGHT_SHOULDER]
    return [
        SpatialAnchor(id="left_knee", x=landmarks[LEFT_KNEE].x, y=landmarks[LEFT_KNEE].y),
        SpatialAnchor(id="right_knee", x=landmarks[RIGHT_KNEE].x, y=landmarks[RIGHT_KNEE].y),
        SpatialAnchor(id="hip", x=(l_hip.x + r_hip.x) / 2, y=(l_hip.y + r_hip.y) / 2),
        SpatialAnchor(id="spine", x=(l_sh.x + r_sh.x) / 2, y=(l_sh.y + r_sh.y) / 2),
    ]


def build_risk_zones(risk_level: RiskLevel, guard_reason: Optional[str] = None) -> list[RiskZone]:
    zones = []
    reason = guard_reason or ""
    if risk_level == "danger":
        zones.append(DANGER_FIELD)
    if "knee_valgus" in reason:
        zones.append(KNEE_COLLAPSE_CONE)
    if "shear" in reason:
        zones.append(LUMBAR_PLANE)
    return zones


class SpatialOverlay:
    def __init__(self, alpha: float = EMA_ALPHA):
        self.alpha = alpha
        self._ema: dict[str, SpatialAnchor] = {}

    def update_anchors(self, anchors: list[SpatialAnchor]) -> list[SpatialAnchor]:
        smoothed = []
        for anchor in anchors:
            prev = self._ema.get(anchor.id)
            if prev is None:
                nxt = anchor.model_copy()
            else:
                z = anchor.z
                if anchor.z is not None and prev.z is not None:
                    z = prev.z + self.alpha * (anchor.z - prev.z)
                nxt = SpatialAnchor(
                    id=anchor.id,
                    x=prev.x + self.alpha * (anchor.x - prev.x),
                    y=prev.y + self.alpha * (anchor.y - prev.y),
                    z=z,
                )
            self._ema[anchor.id] = nxt
            smoothed.append(nxt)
        return smoothed

    def build_state(self, landmarks: list[Joint], color: Severity, risk_level: RiskLevel,
                    guard_reason: Optional[str] = None) -> OverlayState:
        return OverlayState(
            anchors=self.update_anchors(anchors_from_landmarks(landmarks)),
            color=color,
            risk_zones=build_risk_zones(risk_level, guard_reason),
        )

    def reset(self) -> None:
        self._ema.clear()
