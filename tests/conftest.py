"""Shared fixtures and test doubles for the edge coach tests."""

import asyncio
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.coaching.speech import SpeechEngine
from src.pipelines.config import PERFORMANCE_MODES, CoachSettings
from src.pose.geometry import (
    LEFT_ANKLE,
    LEFT_ELBOW,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    LEFT_WRIST,
    POSE_LANDMARK_COUNT,
    RIGHT_ANKLE,
    RIGHT_ELBOW,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
    RIGHT_WRIST,
)
from src.pose.schemas import AngleRange, ExerciseTemplate, TemplateRanges
from src.storage.errors import PersistenceError
from src.storage.store import InMemoryFrameStore


# ============================================================================
# Synthetic poses
# ============================================================================

# Front view, mirrored left/right. 2D angles: knee ~168.7, hip ~161.8,
# spine 180, shoulder ~47.6, elbow ~144. Shoulders lean forward in z so the
# 3D spine (~168.7) stays clear of the biomechanics hinge threshold.
_STANDING = {
    LEFT_SHOULDER: (0.44, 0.30, -0.05),
    RIGHT_SHOULDER: (0.56, 0.30, -0.05),
    LEFT_ELBOW: (0.30, 0.40, 0.0),
    RIGHT_ELBOW: (0.70, 0.40, 0.0),
    LEFT_WRIST: (0.25, 0.55, 0.0),
    RIGHT_WRIST: (0.75, 0.55, 0.0),
    LEFT_HIP: (0.41, 0.55, 0.0),
    RIGHT_HIP: (0.59, 0.55, 0.0),
    LEFT_KNEE: (0.45, 0.75, 0.0),
    RIGHT_KNEE: (0.55, 0.75, 0.0),
    LEFT_ANKLE: (0.45, 0.95, 0.0),
    RIGHT_ANKLE: (0.55, 0.95, 0.0),
}


def make_pose(overrides: dict | None = None, visibility: float = 0.95,
              hip_z: float | None = None, shift_z: float = 0.0) -> list[dict]:
    """33 landmark dicts; ``overrides`` maps index -> (x, y, z).

    ``hip_z`` moves only the hips; ``shift_z`` moves the whole body in depth.
    """
    points = dict(_STANDING)
    points.update(overrides or {})
    pose = []
    for idx in range(POSE_LANDMARK_COUNT):
        x, y, z = points.get(idx, (0.5, 0.1, 0.0))
        if hip_z is not None and idx in (LEFT_HIP, RIGHT_HIP):
            z = hip_z
        z += shift_z
        pose.append({"x": x, "y": y, "z": z, "visibility": visibility})
    return pose


def make_valgus_pose() -> list[dict]:
    """Left knee caves inward: knee x=0.3, ankle x=0.4."""
    return make_pose({
        LEFT_KNEE: (0.30, 0.75, 0.0),
        LEFT_ANKLE: (0.40, 0.95, 0.0),
    })


def as_rows(pose: list[dict]) -> list[list[float]]:
    return [[p["x"], p["y"], p["z"], p["visibility"]] for p in pose]


# Wide-open ranges: every realistic angle is green
LENIENT_TEMPLATE = ExerciseTemplate(
    name="Lenient",
    ranges=TemplateRanges(
        knee=AngleRange(min=-100, max=400),
        hip=AngleRange(min=-100, max=400),
        spine=AngleRange(min=-100, max=400),
        shoulder=AngleRange(min=-100, max=400),
    ),
)

# Unreachable ranges: every angle is red
STRICT_TEMPLATE = ExerciseTemplate(
    name="Strict",
    ranges=TemplateRanges(
        knee=AngleRange(min=500, max=600),
        hip=AngleRange(min=500, max=600),
        spine=AngleRange(min=500, max=600),
        shoulder=AngleRange(min=500, max=600),
    ),
)


# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSpeaker(SpeechEngine):
    """Records utterances; an utterance whose text is in ``hold`` blocks until released."""

    def __init__(self):
        self.spoken: list[tuple[str, float]] = []
        self.cancelled = 0
        self.hold: set[str] = set()
        self._release: asyncio.Event | None = None

    @property
    def texts(self) -> list[str]:
        return [text for text, _ in self.spoken]

    def release(self) -> None:
        if self._release is not None:
            self._release.set()

    async def speak(self, text, language, rate=1.0, pitch=1.0, volume=1.0):
        self.spoken.append((text, volume))
        if text in self.hold:
            self._release = asyncio.Event()
            await self._release.wait()

    def cancel(self):
        self.cancelled += 1


class FailingStore(InMemoryFrameStore):
    """In-memory store whose writes to ``fail_tables`` raise PersistenceError."""

    def __init__(self, fail_tables=()):
        super().__init__()
        self.fail_tables = set(fail_tables)

    async def _insert(self, table, row):
        if table in self.fail_tables:
            raise PersistenceError(f"{table} unavailable")
        await super()._insert(table, row)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def standing_pose():
    return make_pose()


@pytest.fixture
def valgus_pose():
    return make_valgus_pose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def speaker():
    return RecordingSpeaker()


@pytest.fixture
def settings():
    """No background flush timer; adds an ``every_frame`` mode for cue tests."""
    return CoachSettings(
        flush_interval_s=0,
        performance_modes={**PERFORMANCE_MODES, "every_frame": 1},
    )
