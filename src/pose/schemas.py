"""
Data models for the real-time pose pipeline.

Every per-frame value that flows from the landmark detector through the
orchestrator, the stabilizer and the persistence buffer is described here as
a Pydantic model, so snapshots can be validated, dumped and replayed in tests.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field


Severity = Literal["green", "yellow", "red"]
RiskLevel = Literal["safe", "caution", "danger"]
GuardSeverity = Literal["low", "medium", "high"]


# ============================================================================
# Detector input
# ============================================================================

class Joint(BaseModel):
    """One detector landmark in normalized image space."""
    name: str = ""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    visibility: Optional[float] = Field(
        default=None,
        description="Detection confidence (0-1); None when the detector omits it"
    )


# ============================================================================
# Templates and technique
# ============================================================================

class AngleRange(BaseModel):
    """Inclusive expected angle range in degrees."""
    min: float
    max: float


class TemplateRanges(BaseModel):
    knee: AngleRange
    hip: AngleRange
    spine: AngleRange
    shoulder: AngleRange


class ExerciseTemplate(BaseModel):
    """Immutable expected-angle template for one exercise."""
    name: str
    ranges: TemplateRanges

    model_config = {"frozen": True}


class TechniqueDeviation(BaseModel):
    """Observed joint angle compared against a template range."""
    joint: Literal["knee", "hip", "spine", "shoulder"]
    observed_angle: float
    expected_min: float
    expected_max: float
    severity: Severity


class PoseAngles(BaseModel):
    """Joint angles (degrees) for one frame, 2D or 3D."""
    left_knee: float = 0.0
    right_knee: float = 0.0
    left_hip: float = 0.0
    right_hip: float = 0.0
    left_shoulder: float = 0.0
    right_shoulder: float = 0.0
    left_elbow: float = 0.0
    right_elbow: float = 0.0
    spine: float = 0.0

    @property
    def knee(self) -> float:
        return (self.left_knee + self.right_knee) / 2

    @property
    def hip(self) -> float:
        return (self.left_hip + self.right_hip) / 2

    @property
    def shoulder(self) -> float:
        return (self.left_shoulder + self.right_shoulder) / 2

    @property
    def elbow(self) -> float:
        return (self.left_elbow + self.right_elbow) / 2


# ============================================================================
# Biomechanics and risk
# ============================================================================

class BiomechanicsMetrics(BaseModel):
    """Derived snapshot; every value except knee_valgus is clamped to [0, 1]."""
    knee_valgus: float
    hip_hinge_deviation: float
    lumbar_shear_proxy: float
    trunk_forward_lean: float
    asymmetry_index: float
    bar_path_deviation: Optional[float] = None


class RiskAssessment(BaseModel):
    risk_level: RiskLevel = "safe"
    guard_flags: list[str] = Field(default_factory=list)
    guard_reason: Optional[str] = None


# ============================================================================
# Depth, kinematics and load
# ============================================================================

class DepthMetrics(BaseModel):
    hip_depth: float
    knee_depth: float
    shoulder_depth: float
    vertical_displacement: float
    rom_percent: float = Field(ge=0.0, le=1.0)
    bottom_detected: bool


class KinematicMetrics(BaseModel):
    velocity: float
    acceleration: float
    tempo_ratio: float = Field(ge=0.0, le=3.0)
    pause_detected: bool


class LoadEstimates(BaseModel):
    relative_load_proxy: float
    fatigue_index: float
    rpe_proxy: float
    volume_stress_score: float
    guard_flags: list[str] = Field(default_factory=list)


# ============================================================================
# Safety guard
# ============================================================================

class JointAngleLimit(BaseModel):
    joint: str
    min: float
    max: float


class GuardInput(BaseModel):
    """Inputs for the rule-based safety guard."""
    angles: dict[str, float]
    asymmetry: Optional[dict[str, float]] = None
    confidence: Optional[float] = None
    landmarks: Optional[list[Joint]] = None


class GuardFlag(BaseModel):
    flag_type: str
    severity: GuardSeverity
    details: dict = Field(default_factory=dict)


class GuardResult(BaseModel):
    flags: list[GuardFlag] = Field(default_factory=list)
    safe: bool = True


# ============================================================================
# Orchestrator output
# ============================================================================

class PipelineOutput(BaseModel):
    """Complete per-frame snapshot handed to the stabilizer and the buffer."""
    timestamp_ms: float
    severity_raw: Severity
    stable_severity: Severity = Field(
        description="Last accepted severity tier; changes at most once per switch interval"
    )
    interim_severity: Severity = Field(
        description="Tier of the most recent sample while the switch gate is closed"
    )
    angles_2d: PoseAngles
    angles_3d: PoseAngles
    deviations: list[TechniqueDeviation]
    biomechanics: BiomechanicsMetrics
    risk_level: RiskLevel
    guard_flags: list[str] = Field(default_factory=list)
    guard_reason: Optional[str] = None
    depth: DepthMetrics
    kinematics: KinematicMetrics
    load: LoadEstimates
