"""
FastAPI entry point for the edge coach service.

Endpoints:
    GET    /health
    GET    /api/exercises                              available exercise templates
    POST   /api/sessions                               start a coaching session
    POST   /api/sessions/{session_id}/frames           feed one detector frame
    PUT    /api/sessions/{session_id}/exercise         switch exercise template
    PUT    /api/sessions/{session_id}/performance-mode set frame decimation
    POST   /api/sessions/{session_id}/battery          pick decimation from battery state
    POST   /api/sessions/{session_id}/pause | resume
    POST   /api/sessions/{session_id}/connectivity     report online/offline
    GET    /api/sessions/{session_id}/status           observational outputs
    DELETE /api/sessions/{session_id}                  flush, close, summarize

Run:
    cd <project_root>
    uvicorn src.pipelines.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Ensure project root is on sys.path so ``src.*`` imports work when running
# with ``uvicorn src.pipelines.main:app`` from the project root.
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from src.coaching.speech import SpeechEngine, create_speaker
from src.pipelines.config import CoachSettings, load_settings
from src.pipelines.session import PoseCoachSession, SessionStatus
from src.pipelines.utils import SessionSummary
from src.pose.templates import UnknownExerciseError, get_all_templates
from src.storage.errors import (
    NoActiveSessionError,
    SessionError,
    SessionOwnerMismatchError,
)
from src.storage.store import FrameStore, InMemoryFrameStore, JsonlFrameStore
from src.utils.io_utils import setup_logging

setup_logging()
logger = logging.getLogger("edge_coach")


# ============================================================================
# Pydantic request / response models
# ============================================================================

class StartSessionRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    exercise: str = "squat"
    performance_mode: str = "balanced"
    trust_score: Optional[float] = Field(default=None, ge=0, le=100)
    metadata: dict = Field(default_factory=dict)


class StartSessionResponse(BaseModel):
    session_id: str
    exercise: str
    performance_mode: str


class FrameRequest(BaseModel):
    landmarks: list[list[float]] = Field(
        ..., description="33 landmarks × (x, y, z[, visibility])"
    )
    timestamp_ms: Optional[float] = Field(
        default=None, description="Capture time; defaults to the server clock"
    )
    trust_score: Optional[float] = Field(default=None, ge=0, le=100)


class FrameResponse(BaseModel):
    accepted: bool
    severity_raw: Optional[str] = None
    stable_severity: Optional[str] = None
    interim_severity: Optional[str] = None
    risk_level: Optional[str] = None
    guard_reason: Optional[str] = None
    guard_flags: list[str] = Field(default_factory=list)
    fatigue_index: Optional[float] = None
    rom_percent: Optional[float] = None


class ExerciseRequest(BaseModel):
    exercise: str


class PerformanceModeRequest(BaseModel):
    mode: str


class BatteryRequest(BaseModel):
    level: float = Field(..., ge=0, le=1, description="Battery charge in [0, 1]")
    charging: bool = False


class ExerciseInfo(BaseModel):
    key: str
    name: str


class ConnectivityRequest(BaseModel):
    online: bool


class ErrorResponse(BaseModel):
    error_code: str
    message: str


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error_code": code, "message": message})


# ============================================================================
# App factory
# ============================================================================

def _default_store(settings: CoachSettings) -> FrameStore:
    if settings.store_dir:
        return JsonlFrameStore(settings.store_dir)
    return InMemoryFrameStore()


def create_app(
    store: Optional[FrameStore] = None,
    speaker_factory: Optional[Callable[[], SpeechEngine]] = None,
    settings: Optional[CoachSettings] = None,
) -> FastAPI:
    """Build the service around one store; each session gets its own speaker."""
    settings = settings or load_settings()
    store = store or _default_store(settings)
    speaker_factory = speaker_factory or (lambda: create_speaker(settings.speech_backend))
    sessions: dict[str, PoseCoachSession] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting edge coach service (store=%s, speech=%s) …",
                    type(store).__name__, settings.speech_backend)
        yield
        for session_id, session in list(sessions.items()):
            try:
                await session.close()
            except SessionError as exc:
                logger.error("Could not close session %s on shutdown: %s", session_id, exc)
        sessions.clear()
        logger.info("Shutting down.")

    app = FastAPI(
        title="Edge Coach API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.sessions = sessions

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(NoActiveSessionError)
    async def _no_session(request: Request, exc: NoActiveSessionError):
        return _error(404, "SESSION_NOT_FOUND", str(exc))

    @app.exception_handler(SessionOwnerMismatchError)
    async def _owner_mismatch(request: Request, exc: SessionOwnerMismatchError):
        return _error(403, "OWNER_MISMATCH", str(exc))

    @app.exception_handler(UnknownExerciseError)
    async def _unknown_exercise(request: Request, exc: UnknownExerciseError):
        return _error(400, "UNKNOWN_EXERCISE", str(exc))

    def _get_session(session_id: str, owner_id: Optional[str]) -> PoseCoachSession:
        session = sessions.get(session_id)
        if session is None:
            raise NoActiveSessionError(f"No active session '{session_id}'")
        if owner_id is not None and owner_id != session.owner_id:
            raise SessionOwnerMismatchError(
                f"Session '{session_id}' does not belong to owner '{owner_id}'"
            )
        return session

    # ------------------------------------------------------------------
    # Health-check
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_sessions": len(sessions)}

    @app.get("/api/exercises", response_model=list[ExerciseInfo])
    async def list_exercises():
        return [ExerciseInfo(key=key, name=name) for key, name in get_all_templates()]

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @app.post(
        "/api/sessions",
        response_model=StartSessionResponse,
        status_code=201,
        responses={400: {"model": ErrorResponse}},
    )
    async def start_session(request: StartSessionRequest):
        try:
            session = PoseCoachSession(
                store,
                speaker_factory(),
                request.owner_id,
                exercise=request.exercise,
                settings=settings,
                trust_score=request.trust_score,
                performance_mode=request.performance_mode,
            )
        except UnknownExerciseError:
            raise
        except ValueError as exc:
            return _error(400, "INVALID_PERFORMANCE_MODE", str(exc))

        session_id = await session.start(request.metadata)
        sessions[session_id] = session
        return StartSessionResponse(
            session_id=session_id,
            exercise=session.exercise,
            performance_mode=session.performance_mode,
        )

    @app.delete(
        "/api/sessions/{session_id}",
        response_model=SessionSummary,
        responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    async def close_session(session_id: str, x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        summary = await session.close()
        sessions.pop(session_id, None)
        return summary

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    @app.post(
        "/api/sessions/{session_id}/frames",
        response_model=FrameResponse,
        responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    async def post_frame(session_id: str, request: FrameRequest,
                         x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        if request.trust_score is not None:
            session.set_trust_score(request.trust_score)

        output = await session.on_frame(request.landmarks, request.timestamp_ms)
        if output is None:
            return FrameResponse(accepted=False)
        return FrameResponse(
            accepted=True,
            severity_raw=output.severity_raw,
            stable_severity=output.stable_severity,
            interim_severity=output.interim_severity,
            risk_level=output.risk_level,
            guard_reason=output.guard_reason,
            guard_flags=output.guard_flags,
            fatigue_index=output.load.fatigue_index,
            rom_percent=output.depth.rom_percent,
        )

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    @app.put("/api/sessions/{session_id}/exercise", response_model=SessionStatus)
    async def select_exercise(session_id: str, request: ExerciseRequest,
                              x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        session.select_exercise_template(request.exercise)
        return session.status()

    @app.put("/api/sessions/{session_id}/performance-mode", response_model=SessionStatus)
    async def set_performance_mode(session_id: str, request: PerformanceModeRequest,
                                   x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        try:
            session.set_performance_mode(request.mode)
        except ValueError as exc:
            return _error(400, "INVALID_PERFORMANCE_MODE", str(exc))
        return session.status()

    @app.post("/api/sessions/{session_id}/battery", response_model=SessionStatus)
    async def report_battery(session_id: str, request: BatteryRequest,
                             x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        session.apply_battery_state(request.level, request.charging)
        return session.status()

    @app.post("/api/sessions/{session_id}/pause", response_model=SessionStatus)
    async def pause_session(session_id: str, x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        session.pause()
        return session.status()

    @app.post("/api/sessions/{session_id}/resume", response_model=SessionStatus)
    async def resume_session(session_id: str, x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        session.resume()
        return session.status()

    @app.post("/api/sessions/{session_id}/connectivity", response_model=SessionStatus)
    async def set_connectivity(session_id: str, request: ConnectivityRequest,
                               x_owner_id: Optional[str] = Header(default=None)):
        session = _get_session(session_id, x_owner_id)
        await session.set_online(request.online)
        return session.status()

    @app.get("/api/sessions/{session_id}/status", response_model=SessionStatus)
    async def get_status(session_id: str, x_owner_id: Optional[str] = Header(default=None)):
        return _get_session(session_id, x_owner_id).status()

    return app


app = create_app()
