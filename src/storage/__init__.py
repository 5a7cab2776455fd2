"""
Storage module for the edge coach.

Append-only store interface and implementations, the offline-tolerant
frame buffer, and the error taxonomy.
"""

from .errors import (
    EdgeCoachError,
    PersistenceError,
    SessionError,
    NoActiveSessionError,
    SessionOwnerMismatchError,
)
from .store import FrameStore, InMemoryFrameStore, JsonlFrameStore
from .buffer import EdgeBuffer, FrameRecord, build_frame_record

__all__ = [
    "EdgeCoachError",
    "PersistenceError",
    "SessionError",
    "NoActiveSessionError",
    "SessionOwnerMismatchError",
    "FrameStore",
    "InMemoryFrameStore",
    "JsonlFrameStore",
    "EdgeBuffer",
    "FrameRecord",
    "build_frame_record",
]
