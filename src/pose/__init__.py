"""
Pose module for the edge coach.

Pure per-frame computations over detector landmarks: joint geometry,
technique evaluation against exercise templates, biomechanics risk,
depth/kinematics/load estimation, the safety guard and severity smoothing.
"""

from .schemas import (
    Joint,
    ExerciseTemplate,
    TechniqueDeviation,
    PoseAngles,
    BiomechanicsMetrics,
    RiskAssessment,
    DepthMetrics,
    KinematicMetrics,
    LoadEstimates,
    GuardInput,
    GuardFlag,
    GuardResult,
    JointAngleLimit,
    PipelineOutput,
)
from .geometry import (
    calc_angle,
    calc_angle_3d,
    compute_pose_angles,
    compute_pose_3d_angles,
    compute_confidence,
    to_landmark_frame,
)
from .templates import (
    EXERCISE_TEMPLATES,
    UnknownExerciseError,
    get_exercise_template,
    evaluate_technique,
    aggregate_severity,
)
from .biomechanics import compute_biomechanics, assess_risk
from .kinematics import compute_depth_metrics, compute_kinematics, estimate_load
from .guard import evaluate_safety, DEFAULT_LIMITS
from .smoothing import SeverityWindow, push_severity

__all__ = [
    "Joint",
    "ExerciseTemplate",
    "TechniqueDeviation",
    "PoseAngles",
    "BiomechanicsMetrics",
    "RiskAssessment",
    "DepthMetrics",
    "KinematicMetrics",
    "LoadEstimates",
    "GuardInput",
    "GuardFlag",
    "GuardResult",
    "JointAngleLimit",
    "PipelineOutput",
    "calc_angle",
    "calc_angle_3d",
    "compute_pose_angles",
    "compute_pose_3d_angles",
    "compute_confidence",
    "to_landmark_frame",
    "EXERCISE_TEMPLATES",
    "UnknownExerciseError",
    "get_exercise_template",
    "evaluate_technique",
    "aggregate_severity",
    "compute_biomechanics",
    "assess_risk",
    "compute_depth_metrics",
    "compute_kinematics",
    "estimate_load",
    "evaluate_safety",
    "DEFAULT_LIMITS",
    "SeverityWindow",
    "push_severity",
]
