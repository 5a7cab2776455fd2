"""
Edge buffer: accumulate computed frame records in memory, flush to the store.

Flushing is opportunistic (on an interval, on reconnect, at session close)
and an empty buffer is a no-op. Each record is written as four related
inserts: joints, angles, biomechanics + risk, kinematics + load. Records are
removed only after the whole batch has been submitted, so a failed flush is
retried in full next time (at-least-once; ``record_id`` lets readers dedupe).
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from src.pose.schemas import Joint, PipelineOutput

from .store import FrameStore

logger = logging.getLogger(__name__)


class FrameRecord(BaseModel):
    """One fully computed frame, ready for persistence."""
    record_id: str
    frame_index: int
    ts: str
    joints: list[dict]
    angles: dict[str, float]
    deviations: list[dict] = Field(default_factory=list)
    biomechanics: dict
    risk: dict
    kinematics: dict
    estimates: dict


def build_frame_record(session_id: str, frame_index: int, ts: str,
                       landmarks: list[Joint], output: PipelineOutput) -> FrameRecord:
    """Flatten a pipeline snapshot into the persisted record layout."""
    angles_3d = output.angles_3d
    return FrameRecord(
        record_id=f"{session_id}:{frame_index}",
        frame_index=frame_index,
        ts=ts,
        joints=[
            {
                "joint_name": f"lm_{idx}",
                "x": lm.x,
                "y": lm.y,
                "z": lm.z,
                "confidence": lm.visibility,
            }
            for idx, lm in enumerate(landmarks)
        ],
        angles={
            "knee_3d": angles_3d.knee,
            "hip_3d": angles_3d.hip,
            "spine_3d": angles_3d.spine,
            "shoulder_3d": angles_3d.shoulder,
        },
        deviations=[dev.model_dump() for dev in output.deviations],
        biomechanics=output.biomechanics.model_dump(),
        risk={
            "risk_level": output.risk_level,
            "guard_flags": list(output.guard_flags),
            "guard_reason": output.guard_reason,
        },
        kinematics={
            "hip_depth": output.depth.hip_depth,
            "knee_depth": output.depth.knee_depth,
            "shoulder_depth": output.depth.shoulder_depth,
            "vertical_displacement": output.depth.vertical_displacement,
            "rom_percent": output.depth.rom_percent,
            "velocity": output.kinematics.velocity,
            "acceleration": output.kinematics.acceleration,
            "tempo_ratio": output.kinematics.tempo_ratio,
            "pause_detected": 1 if output.kinematics.pause_detected else 0,
        },
        estimates={
            "relative_load_proxy": output.load.relative_load_proxy,
            "fatigue_index": output.load.fatigue_index,
            "rpe_proxy": output.load.rpe_proxy,
            "volume_stress_score": output.load.volume_stress_score,
            "guard_flags": list(output.load.guard_flags),
        },
    )


class EdgeBuffer:
    """Append-only in-memory record list for one session."""

    def __init__(self, store: FrameStore, owner_id: str, session_id: Optional[str] = None):
        self.store = store
        self.owner_id = owner_id
        self.session_id = session_id
        self._records: list[FrameRecord] = []
        self._flushing = False

    def __len__(self) -> int:
        return len(self._records)

    def buffer_frame(self, record: FrameRecord) -> None:
        self._records.append(record)

    async def _write_record(self, record: FrameRecord) -> None:
        store, owner, session = self.store, self.owner_id, self.session_id
        await store.add_joints(owner, session, record.frame_index, record.ts,
                               record.joints, record_id=record.record_id)
        await store.add_angles(owner, session, record.frame_index, record.ts,
                               record.angles, record.deviations, record_id=record.record_id)
        await store.add_biomechanics(owner, session, record.frame_index, record.ts,
                                     record.biomechanics, record.risk, record_id=record.record_id)
        await store.add_kinematics(owner, session, record.frame_index, record.ts,
                                   record.kinematics, record.estimates, record_id=record.record_id)

    async def flush(self) -> int:
        """
        Persist every buffered record in order.

        Returns:
            Number of records flushed (0 for an empty buffer or a flush
            already in progress)

        Raises:
            PersistenceError: A write failed; the batch stays buffered
            SessionError: The session is closed or owned by someone else
        """
        if not self._records or self._flushing or self.session_id is None:
            return 0

        self._flushing = True
        batch = list(self._records)
        try:
            for record in batch:
                await self._write_record(record)
            # Records buffered while awaiting stay for the next flush
            del self._records[:len(batch)]
        finally:
            self._flushing = False

        logger.debug("Flushed %d frame records for session %s", len(batch), self.session_id)
        return len(batch)
