"""
Stage 2 — Coaching Session Runtime.

Drives one live session: every accepted frame goes through the edge
pipeline for display; every Nth frame (performance mode) additionally runs
the safety guard, the feedback stabilizer, frame buffering and cue dispatch.
A frame that arrives while that heavier work is still in flight is dropped,
not queued. Storage failures on this path are logged and never reach the
caller; session/ownership errors always do.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel

from src.coaching.cues import STATUS_ADJUST, STATUS_GOOD, build_cue
from src.coaching.speech import SpeechEngine
from src.coaching.stabilizer import FeedbackDecision, FeedbackInput, RealtimeFeedbackStabilizer
from src.coaching.voice_queue import VoiceCueScheduler, monotonic_ms
from src.pose.geometry import compute_confidence, to_landmark_frame
from src.pose.guard import evaluate_safety
from src.pose.schemas import GuardInput, GuardResult, Joint, PipelineOutput, PoseAngles
from src.pose.smoothing import SeverityWindow
from src.pose.templates import get_exercise_template
from src.storage.buffer import EdgeBuffer, build_frame_record
from src.storage.errors import NoActiveSessionError, PersistenceError
from src.storage.store import FrameStore, utc_now_iso

from .config import TRUST_MOTIVATION_MIN, CoachSettings
from .edge import EdgePipeline, EdgeSessionState
from .overlay import OverlayState, SpatialOverlay
from .utils import (
    LatencyTracker,
    SessionStats,
    SessionSummary,
    performance_mode_for_battery,
    summarize_session,
)

logger = logging.getLogger(__name__)

DEFAULT_PERFORMANCE_MODE = "balanced"


class SessionStatus(BaseModel):
    """Read-only observational outputs for the UI."""
    session_id: Optional[str]
    exercise: str
    performance_mode: str
    process_every: int
    paused: bool
    online: bool
    stable_severity: Optional[str] = None
    risk_level: Optional[str] = None
    fatigue_index: Optional[float] = None
    latency: Optional[dict[str, int]] = None
    last_cue: Optional[str] = None
    status_text: Optional[str] = None
    buffered_frames: int = 0
    overlay: Optional[OverlayState] = None


def _asymmetry(left: float, right: float) -> float:
    return abs(left - right) / max(1.0, (left + right) / 2)


def build_guard_input(angles: PoseAngles, landmarks: list[Joint]) -> GuardInput:
    """Assemble guard input from averaged 2D angles and the raw frame."""
    return GuardInput(
        angles={
            "knee": angles.knee,
            "hip": angles.hip,
            "spine": angles.spine,
            "shoulder": angles.shoulder,
            "elbow": angles.elbow,
        },
        asymmetry={
            "knee": _asymmetry(angles.left_knee, angles.right_knee),
            "hip": _asymmetry(angles.left_hip, angles.right_hip),
            "shoulder": _asymmetry(angles.left_shoulder, angles.right_shoulder),
        },
        confidence=compute_confidence(landmarks),
        landmarks=landmarks,
    )


class PoseCoachSession:
    def __init__(
        self,
        store: FrameStore,
        speaker: SpeechEngine,
        owner_id: str,
        exercise: str = "squat",
        settings: Optional[CoachSettings] = None,
        clock: Callable[[], float] = monotonic_ms,
        trust_score: Optional[float] = None,
        performance_mode: str = DEFAULT_PERFORMANCE_MODE,
    ):
        self.settings = settings or CoachSettings()
        self.store = store
        self.owner_id = owner_id
        self.clock = clock

        self.exercise = exercise.lower()
        self.template = get_exercise_template(exercise)
        self.pipeline = EdgePipeline(self._new_edge_state())
        self.stabilizer = RealtimeFeedbackStabilizer(
            window_ms=self.settings.cue_window_ms,
            min_switch_ms=self.settings.cue_min_switch_ms,
        )
        self.scheduler = VoiceCueScheduler(
            speaker,
            store=store,
            clock=clock,
            cooldowns_ms=self.settings.cue_cooldowns_ms,
            language=self.settings.speech_language,
        )
        self.overlay = SpatialOverlay()
        self.latency = LatencyTracker(self.settings.latency_window)
        self.stats = SessionStats()

        self.performance_mode: str = ""
        self.process_every: int = 1
        self.set_performance_mode(performance_mode)

        self.session_id: Optional[str] = None
        self.buffer: Optional[EdgeBuffer] = None
        self.trust_score = trust_score
        self.allow_realtime = True
        self.paused = False
        self.online = True

        self.last_output: Optional[PipelineOutput] = None
        self.last_guard: Optional[GuardResult] = None
        self.last_cue_text: Optional[str] = None
        self.overlay_state: Optional[OverlayState] = None

        self._frame_index = 0
        self._processing = False
        self._last_cue_ms: Optional[float] = None
        self._flush_task: Optional[asyncio.Task] = None

    def _new_edge_state(self) -> EdgeSessionState:
        return EdgeSessionState(
            depth_window_size=self.settings.depth_smoothing_samples,
            severity=SeverityWindow(
                window_ms=self.settings.display_window_ms,
                min_switch_ms=self.settings.display_min_switch_ms,
            ),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, metadata: Optional[dict] = None) -> str:
        """Open the session record and start the periodic flush timer."""
        meta = {"exercise": self.exercise, **(metadata or {})}
        self.session_id = await self.store.start_session(self.owner_id, meta)
        self.buffer = EdgeBuffer(self.store, self.owner_id, self.session_id)
        if self.settings.flush_interval_s > 0:
            self._flush_task = asyncio.create_task(self._flush_loop())
            self._flush_task.add_done_callback(self._on_flush_done)
        logger.info("Session %s started (owner=%s, exercise=%s)",
                    self.session_id, self.owner_id, self.exercise)
        return self.session_id

    async def close(self) -> SessionSummary:
        """
        Stop timers and playback, flush buffered frames and close the record.

        Records that still fail to flush here are lost.

        Raises:
            SessionError: The session is not active or owned by someone else
        """
        session_id = self._require_session()
        if self._flush_task is not None:
            self._flush_task.cancel()
            await asyncio.wait({self._flush_task})
            self._flush_task = None

        await self.scheduler.close()
        await self._flush_quietly()
        if self.buffer:
            logger.warning("Session %s closed with %d unflushed frame(s)",
                           session_id, len(self.buffer))
        await self.store.close_session(self.owner_id, session_id)

        self.stats.cues_spoken = len(self.scheduler.played)
        summary = summarize_session(session_id, self.exercise, self.stats,
                                    self.latency.percentiles())
        logger.info("Session %s closed: %d frames processed, %d dropped",
                    session_id, self.stats.frames_processed, self.stats.frames_dropped)
        return summary

    def _require_session(self) -> str:
        if self.session_id is None:
            raise NoActiveSessionError("Session has not been started")
        return self.session_id

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.flush_interval_s)
            if self.online:
                await self._flush_quietly()

    @staticmethod
    def _on_flush_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Periodic flush stopped: %r", error)

    async def _flush_quietly(self) -> int:
        if self.buffer is None:
            return 0
        try:
            return await self.buffer.flush()
        except PersistenceError as e:
            logger.warning("Frame flush failed, %d record(s) kept: %s", len(self.buffer), e)
            return 0

    # ------------------------------------------------------------------
    # Caller controls
    # ------------------------------------------------------------------

    def select_exercise_template(self, key: str) -> None:
        """
        Switch template mid-session.

        Only severity smoothing (display and cue) and the overlay restart. The
        depth baseline and velocity loss carry over for the whole session.
        """
        self.template = get_exercise_template(key)
        self.exercise = key.lower()
        self.pipeline.reset_severity()
        self.stabilizer.reset()
        self.overlay.reset()
        logger.info("Session %s switched to exercise '%s'", self.session_id, self.exercise)

    def set_performance_mode(self, mode: str) -> None:
        if mode not in self.settings.performance_modes:
            raise ValueError(
                f"Unknown performance mode '{mode}'. "
                f"Expected one of {sorted(self.settings.performance_modes)}"
            )
        self.performance_mode = mode
        self.process_every = self.settings.performance_modes[mode]

    def apply_battery_state(self, level: float, charging: bool) -> str:
        """Drop to a cheaper decimation mode as the battery drains; returns the mode."""
        mode = performance_mode_for_battery(level, charging)
        if mode != self.performance_mode:
            logger.info("Session %s battery at %.0f%% (charging=%s): switching to '%s' mode",
                        self.session_id, level * 100, charging, mode)
        self.set_performance_mode(mode)
        return mode

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def set_trust_score(self, trust_score: Optional[float]) -> None:
        self.trust_score = trust_score

    def set_allow_realtime(self, allow: bool) -> None:
        self.allow_realtime = allow

    async def set_online(self, online: bool) -> None:
        """Track connectivity; coming back online triggers a flush."""
        was_online, self.online = self.online, online
        if online and not was_online:
            logger.info("Session %s back online, flushing buffer", self.session_id)
            await self._flush_quietly()

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    async def on_frame(self, landmarks: Any, now_ms: Optional[float] = None) -> Optional[PipelineOutput]:
        """
        Feed one detector frame.

        Args:
            landmarks: 33 detector points (``Joint``, dicts or ``[x, y, z, vis]``)
            now_ms: Frame timestamp; defaults to the session clock

        Returns:
            The edge pipeline snapshot, or None while paused
        """
        session_id = self._require_session()
        if self.paused:
            return None

        now = self.clock() if now_ms is None else now_ms
        self.stats.frames_received += 1

        frame = to_landmark_frame(landmarks)
        output = self.pipeline.process(frame, self.template, now)
        self.last_output = output
        self.overlay_state = self.overlay.build_state(
            frame, output.stable_severity, output.risk_level, output.guard_reason
        )

        if self._processing:
            self.stats.frames_dropped += 1
            logger.debug("Dropping frame for session %s: previous frame in flight", session_id)
            return output

        self._frame_index += 1
        if self._frame_index % self.process_every != 0:
            return output

        self._processing = True
        try:
            await self._process_sampled_frame(session_id, self._frame_index, frame, output, now)
        finally:
            self._processing = False
        return output

    async def _process_sampled_frame(self, session_id: str, frame_index: int,
                                     frame: list[Joint], output: PipelineOutput,
                                     now: float) -> None:
        started = time.perf_counter()

        guard = evaluate_safety(build_guard_input(output.angles_2d, frame),
                                self.settings.guard_limits)
        self.last_guard = guard
        if not guard.safe:
            try:
                await self.store.add_guard_flags(
                    self.owner_id, session_id, frame_index,
                    [flag.model_dump() for flag in guard.flags],
                )
            except PersistenceError as e:
                logger.warning("Failed to persist guard flags for frame %d: %s", frame_index, e)

        decision = self.stabilizer.update(FeedbackInput(
            ts=now,
            severity=output.severity_raw,
            risk_level=output.risk_level,
            fatigue_index=output.load.fatigue_index,
            guard_reason=output.guard_reason,
            trust_score=self.trust_score,
            allow_realtime=self.allow_realtime,
        ))

        self._record_stats(output, guard)
        self.buffer.buffer_frame(
            build_frame_record(session_id, frame_index, utc_now_iso(), frame, output)
        )

        if self.allow_realtime:
            await self._dispatch_cue(session_id, decision, output.guard_reason)

        self.latency.add((time.perf_counter() - started) * 1000.0)

    async def _dispatch_cue(self, session_id: str, decision: FeedbackDecision,
                           guard_reason: Optional[str]) -> None:
        now = self.clock()
        is_safety = decision.event == "overload_stop"
        gate_open = (
            self._last_cue_ms is None
            or now - self._last_cue_ms > self.settings.cue_dispatch_gap_ms
        )
        if not (is_safety or gate_open):
            return

        cue = build_cue(
            decision, session_id, self.owner_id, guard_reason,
            online=self.online,
            trust_score=self.trust_score,
            motivation_trust=TRUST_MOTIVATION_MIN,
        )
        if cue is not None:
            if cue.type == "safety_alert":
                accepted = await self.scheduler.enqueue_preempt(cue)
            else:
                accepted = await self.scheduler.enqueue(cue)
            if accepted:
                self.last_cue_text = cue.message
        self._last_cue_ms = now

    def _record_stats(self, output: PipelineOutput, guard: GuardResult) -> None:
        stats = self.stats
        stats.frames_processed += 1
        if output.risk_level == "danger":
            stats.danger_frames += 1
        elif output.risk_level == "caution":
            stats.caution_frames += 1
        stats.peak_fatigue = max(stats.peak_fatigue, output.load.fatigue_index)
        for flag in [*output.guard_flags, *(f.flag_type for f in guard.flags)]:
            stats.flag_counts[flag] = stats.flag_counts.get(flag, 0) + 1

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def status(self) -> SessionStatus:
        output = self.last_output
        return SessionStatus(
            session_id=self.session_id,
            exercise=self.exercise,
            performance_mode=self.performance_mode,
            process_every=self.process_every,
            paused=self.paused,
            online=self.online,
            stable_severity=output.stable_severity if output else None,
            risk_level=output.risk_level if output else None,
            fatigue_index=output.load.fatigue_index if output else None,
            latency=self.latency.percentiles(),
            last_cue=self.last_cue_text,
            status_text=(
                (STATUS_GOOD if output.stable_severity == "green" else STATUS_ADJUST)
                if output else None
            ),
            buffered_frames=len(self.buffer) if self.buffer is not None else 0,
            overlay=self.overlay_state,
        )
