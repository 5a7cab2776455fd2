"""
Append-only frame store.

``FrameStore`` is the async interface the pipeline writes to: session
lifecycle plus one insert per record kind (joints, angles, biomechanics,
risk, kinematics, load, guard flags, voice cues). Two implementations ship:

- ``InMemoryFrameStore`` for tests and offline runs
- ``JsonlFrameStore`` which appends one JSON line per row to
  ``<directory>/<table>.jsonl``
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import NoActiveSessionError, PersistenceError, SessionOwnerMismatchError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FrameStore(ABC):
    """
    Base class for append-only stores keyed by session id.

    Subclasses implement ``_insert`` (one row into one table). Session
    ownership is tracked here so every write is checked the same way.
    """

    def __init__(self):
        self._owners: dict[str, str] = {}
        self._closed: set[str] = set()

    # ------------------------------------------------------------------
    # Backend hook
    # ------------------------------------------------------------------

    @abstractmethod
    async def _insert(self, table: str, row: dict) -> None:
        """Append one row; raise ``PersistenceError`` on failure."""

    async def _insert_many(self, table: str, rows: list[dict]) -> None:
        for row in rows:
            await self._insert(table, row)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def _check_session(self, owner_id: str, session_id: str) -> None:
        owner = self._owners.get(session_id)
        if owner is None or session_id in self._closed:
            raise NoActiveSessionError(f"No active session '{session_id}'")
        if owner != owner_id:
            raise SessionOwnerMismatchError(
                f"Session '{session_id}' is not owned by '{owner_id}'"
            )

    def is_active(self, session_id: str) -> bool:
        return session_id in self._owners and session_id not in self._closed

    async def start_session(self, owner_id: str, metadata: Optional[dict] = None) -> str:
        """Open a session record and return its id."""
        if not owner_id:
            raise SessionOwnerMismatchError("An owner id is required to start a session")
        session_id = uuid.uuid4().hex
        await self._insert("sessions", {
            "id": session_id,
            "user_id": owner_id,
            "metadata": metadata or {},
            "started_at": utc_now_iso(),
        })
        self._owners[session_id] = owner_id
        logger.info("Started session %s for owner %s", session_id, owner_id)
        return session_id

    async def close_session(self, owner_id: str, session_id: str) -> None:
        """Record the end timestamp; further writes to the session are rejected."""
        self._check_session(owner_id, session_id)
        await self._insert("session_ends", {
            "session_id": session_id,
            "ended_at": utc_now_iso(),
        })
        self._closed.add(session_id)
        logger.info("Closed session %s", session_id)

    # ------------------------------------------------------------------
    # Frame data
    # ------------------------------------------------------------------

    async def add_joints(self, owner_id: str, session_id: str, frame_index: int,
                         ts: str, joints: list[dict], record_id: Optional[str] = None) -> None:
        self._check_session(owner_id, session_id)
        if not joints:
            return
        await self._insert_many("joints", [
            {
                "session_id": session_id,
                "record_id": record_id,
                "frame_index": frame_index,
                "ts": ts,
                **joint,
            }
            for joint in joints
        ])

    async def add_angles(self, owner_id: str, session_id: str, frame_index: int, ts: str,
                         angles: dict, deviations: Optional[list[dict]] = None,
                         record_id: Optional[str] = None) -> None:
        self._check_session(owner_id, session_id)
        await self._insert("angles", {
            "session_id": session_id,
            "record_id": record_id,
            "frame_index": frame_index,
            "ts": ts,
            "angles": angles,
            "deviations": deviations or [],
        })

    async def add_biomechanics(self, owner_id: str, session_id: str, frame_index: int,
                               ts: str, metrics: dict, risk: dict,
                               record_id: Optional[str] = None) -> None:
        """Biomechanics metrics and the risk assessment are written together."""
        self._check_session(owner_id, session_id)
        await asyncio.gather(
            self._insert("biomechanics", {
                "session_id": session_id,
                "record_id": record_id,
                "frame_index": frame_index,
                "ts": ts,
                "metrics": metrics,
            }),
            self._insert("risk_assessments", {
                "session_id": session_id,
                "record_id": record_id,
                "frame_index": frame_index,
                "ts": ts,
                "risk_level": risk.get("risk_level"),
                "guard_flags": risk.get("guard_flags", []),
                "guard_reason": risk.get("guard_reason"),
            }),
        )

    async def add_kinematics(self, owner_id: str, session_id: str, frame_index: int,
                             ts: str, metrics: dict, estimates: dict,
                             record_id: Optional[str] = None) -> None:
        """Kinematics metrics and load estimates are written together."""
        self._check_session(owner_id, session_id)
        await asyncio.gather(
            self._insert("kinematics", {
                "session_id": session_id,
                "record_id": record_id,
                "frame_index": frame_index,
                "ts": ts,
                "metrics": metrics,
            }),
            self._insert("load_estimates", {
                "session_id": session_id,
                "record_id": record_id,
                "frame_index": frame_index,
                "ts": ts,
                "estimates": estimates,
            }),
        )

    async def add_guard_flags(self, owner_id: str, session_id: str, frame_index: int,
                              flags: list[dict]) -> None:
        self._check_session(owner_id, session_id)
        if not flags:
            return
        await self._insert_many("guard_flags", [
            {
                "session_id": session_id,
                "frame_index": frame_index,
                "flag_type": flag.get("flag_type"),
                "severity": flag.get("severity"),
                "details": flag.get("details"),
            }
            for flag in flags
        ])

    async def add_voice_cue(self, owner_id: str, session_id: str, cue_type: str,
                            priority: str, message: str) -> None:
        self._check_session(owner_id, session_id)
        await self._insert("voice_cues", {
            "session_id": session_id,
            "cue_type": cue_type,
            "priority": priority,
            "message": message,
            "ts": utc_now_iso(),
        })


class InMemoryFrameStore(FrameStore):
    """Keeps every table as a list of rows."""

    def __init__(self):
        super().__init__()
        self.tables: dict[str, list[dict]] = {}

    async def _insert(self, table: str, row: dict) -> None:
        self.tables.setdefault(table, []).append(row)

    def rows(self, table: str) -> list[dict]:
        return list(self.tables.get(table, []))


class JsonlFrameStore(FrameStore):
    """
    Durable local store: one ``<table>.jsonl`` file per table.

    Session ownership is rebuilt from ``sessions.jsonl`` and
    ``session_ends.jsonl`` on construction so a restarted process keeps
    rejecting writes to closed sessions.
    """

    def __init__(self, directory):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._load_sessions()

    def _table_path(self, table: str) -> Path:
        return self.directory / f"{table}.jsonl"

    def _read_rows(self, table: str) -> list[dict]:
        path = self._table_path(table)
        if not path.exists():
            return []
        rows = []
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError as e:
                    # A write interrupted by a crash leaves a torn line
                    logger.warning("Skipping unreadable row %s:%d: %s", path.name, lineno, e)
        return rows

    def _load_sessions(self) -> None:
        for row in self._read_rows("sessions"):
            self._owners[row["id"]] = row["user_id"]
        for row in self._read_rows("session_ends"):
            self._closed.add(row["session_id"])

    @staticmethod
    def _ends_mid_line(path: Path) -> bool:
        if not path.exists() or path.stat().st_size == 0:
            return False
        with open(path, "rb") as f:
            f.seek(-1, 2)
            return f.read(1) != b"\n"

    def _append(self, table: str, rows: list[dict]) -> None:
        path = self._table_path(table)
        torn = self._ends_mid_line(path)
        with open(path, "a", encoding="utf-8") as f:
            if torn:
                f.write("\n")
            for row in rows:
                f.write(json.dumps(row, default=str) + "\n")

    async def _insert(self, table: str, row: dict) -> None:
        await self._insert_many(table, [row])

    async def _insert_many(self, table: str, rows: list[dict]) -> None:
        try:
            await asyncio.to_thread(self._append, table, rows)
        except OSError as exc:
            raise PersistenceError(f"Failed to append to '{table}': {exc}") from exc

    def rows(self, table: str) -> list[dict]:
        return self._read_rows(table)
