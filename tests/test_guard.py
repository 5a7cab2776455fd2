"""Tests for the rule-based safety guard."""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.pipelines.session import build_guard_input
from src.pose.geometry import compute_pose_angles, to_landmark_frame
from src.pose.guard import evaluate_safety
from src.pose.schemas import GuardInput, JointAngleLimit

from conftest import make_pose, make_valgus_pose


def _flag_types(result):
    return [flag.flag_type for flag in result.flags]


def _guard_for(pose):
    frame = to_landmark_frame(pose)
    return evaluate_safety(build_guard_input(compute_pose_angles(frame), frame))


class TestGuardScenarios:

    def test_standing_pose_is_clean(self):
        result = _guard_for(make_pose())
        assert result.safe is True
        assert result.flags == []

    def test_knee_valgus_is_high(self):
        result = _guard_for(make_valgus_pose())
        valgus = [f for f in result.flags if f.flag_type == "knee_valgus"]
        assert len(valgus) == 1
        assert valgus[0].severity == "high"
        assert valgus[0].details["side"] == "left"
        assert result.safe is False

    def test_right_knee_valgus_is_mirrored(self):
        from src.pose.geometry import RIGHT_ANKLE, RIGHT_KNEE
        result = _guard_for(make_pose({RIGHT_KNEE: (0.70, 0.75, 0.0), RIGHT_ANKLE: (0.60, 0.95, 0.0)}))
        assert any(f.flag_type == "knee_valgus" and f.details["side"] == "right"
                   for f in result.flags)

    def test_lower_back_hyperextension(self):
        result = evaluate_safety(GuardInput(angles={"spine": 130}))
        assert _flag_types(result) == ["lower_back_hyperextension"]
        assert result.safe is False

    def test_back_key_is_accepted(self):
        result = evaluate_safety(GuardInput(angles={"back": 130}))
        assert _flag_types(result) == ["lower_back_hyperextension"]

    def test_low_confidence(self):
        result = _guard_for(make_pose(visibility=0.4))
        assert "low_confidence" in _flag_types(result)
        assert result.safe is False


class TestGuardRules:

    @pytest.mark.parametrize("knee,severity", [
        (175, "medium"),   # 5 beyond max
        (185, "high"),     # 15 beyond max
        (25, "medium"),
        (15, "high"),
    ])
    def test_joint_limit_margin(self, knee, severity):
        result = evaluate_safety(GuardInput(angles={"knee": knee}))
        assert _flag_types(result) == ["joint_limit"]
        assert result.flags[0].severity == severity
        assert result.safe is (severity != "high")

    def test_elbow_limit_is_checked(self):
        result = evaluate_safety(GuardInput(angles={"elbow": 5}))
        assert result.flags[0].details["joint"] == "elbow"

    def test_custom_limits(self):
        limits = [JointAngleLimit(joint="knee", min=90, max=100)]
        result = evaluate_safety(GuardInput(angles={"knee": 120, "hip": 5}), limits=limits)
        assert _flag_types(result) == ["joint_limit"]
        assert result.flags[0].severity == "high"

    @pytest.mark.parametrize("value,expected", [
        (0.2, None),
        (0.3, "medium"),
        (0.5, "high"),
    ])
    def test_asymmetry_severity(self, value, expected):
        result = evaluate_safety(GuardInput(angles={}, asymmetry={"knee": value}))
        if expected is None:
            assert result.flags == []
        else:
            assert result.flags[0].flag_type == "asymmetry"
            assert result.flags[0].severity == expected

    def test_medium_flags_alone_are_safe(self):
        result = evaluate_safety(GuardInput(angles={"knee": 175}, asymmetry={"hip": 0.3}))
        assert len(result.flags) == 2
        assert result.safe is True

    def test_guard_input_assembly(self):
        frame = to_landmark_frame(make_valgus_pose())
        guard_input = build_guard_input(compute_pose_angles(frame), frame)
        assert set(guard_input.angles) == {"knee", "hip", "spine", "shoulder", "elbow"}
        assert guard_input.confidence == pytest.approx(0.95)
        assert guard_input.asymmetry["knee"] == pytest.approx(0.30, abs=0.01)
        assert guard_input.asymmetry["shoulder"] == pytest.approx(0.0, abs=1e-9)
