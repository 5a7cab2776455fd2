"""
Voice cue scheduler.

Single-flight playback queue: cues are ordered by priority (stable for equal
priorities), rate-limited per ``(session, type)`` cooldown and played one at
a time by a background pump task. Every played cue is logged to the store
before it is spoken. ``enqueue_preempt`` is the only operation that may
interrupt the utterance in flight.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from src.pipelines.config import (
    CUE_COOLDOWNS_MS,
    CUE_PRIORITY_VALUE,
    DEFAULT_CUE_COOLDOWN_MS,
    SPEECH_LANGUAGE,
)
from src.storage.errors import PersistenceError
from src.storage.store import FrameStore

from .cues import Cue
from .speech import SpeechEngine, mixdown_volume

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class VoiceCueScheduler:
    def __init__(
        self,
        speaker: SpeechEngine,
        store: Optional[FrameStore] = None,
        clock: Callable[[], float] = monotonic_ms,
        cooldowns_ms: Optional[dict[str, float]] = None,
        language: str = SPEECH_LANGUAGE,
    ):
        self.speaker = speaker
        self.store = store
        self.clock = clock
        self.cooldowns_ms = dict(CUE_COOLDOWNS_MS if cooldowns_ms is None else cooldowns_ms)
        self.language = language

        self._queue: list[Cue] = []
        self._last_cue_at: dict[tuple[str, str], float] = {}
        self._pump: Optional[asyncio.Task] = None
        self.played: list[Cue] = []

    @property
    def pending(self) -> list[Cue]:
        return list(self._queue)

    @property
    def is_speaking(self) -> bool:
        return self._pump is not None and not self._pump.done()

    def _cooldown_for(self, cue_type: str) -> float:
        return self.cooldowns_ms.get(cue_type, DEFAULT_CUE_COOLDOWN_MS)

    def _insert_by_priority(self, cue: Cue) -> None:
        value = CUE_PRIORITY_VALUE[cue.priority]
        index = len(self._queue)
        for i, queued in enumerate(self._queue):
            if CUE_PRIORITY_VALUE[queued.priority] < value:
                index = i
                break
        self._queue.insert(index, cue)

    async def enqueue(self, cue: Cue) -> bool:
        """
        Queue a cue unless its ``(session, type)`` cooldown is still running.

        Returns:
            True if the cue was accepted
        """
        key = (cue.session_id, cue.type)
        now = self.clock()
        last = self._last_cue_at.get(key)
        if last is not None and now - last < self._cooldown_for(cue.type):
            logger.debug("Cue %s rejected by cooldown (%.0f ms since last)", cue.type, now - last)
            return False

        self._last_cue_at[key] = now
        self._insert_by_priority(cue)

        if not self.is_speaking:
            self._pump = asyncio.create_task(self._play_queue())
            self._pump.add_done_callback(self._on_pump_done)
        return True

    @staticmethod
    def _on_pump_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Voice cue playback stopped: %r", error)

    async def enqueue_preempt(self, cue: Cue) -> bool:
        """Drop everything pending, silence the current utterance, then enqueue."""
        dropped = len(self._queue)
        self._queue.clear()
        await self._stop_playback()
        if dropped:
            logger.info("Preempted %d pending cue(s) for %s", dropped, cue.type)
        return await self.enqueue(cue)

    async def _stop_playback(self) -> None:
        self.speaker.cancel()
        pump, self._pump = self._pump, None
        if pump is not None and not pump.done():
            pump.cancel()
            await asyncio.wait({pump})

    async def _log_cue(self, cue: Cue) -> None:
        if self.store is None:
            return
        try:
            await self.store.add_voice_cue(cue.owner_id, cue.session_id, cue.type,
                                           cue.priority, cue.message)
        except PersistenceError as e:
            logger.warning("Failed to log voice cue %s: %s", cue.type, e)

    async def _play_queue(self) -> None:
        while self._queue:
            cue = self._queue.pop(0)
            await self._log_cue(cue)
            self.played.append(cue)
            await self.speaker.speak(
                cue.message,
                self.language,
                rate=1.0,
                pitch=1.0,
                volume=mixdown_volume(cue.spatial_pan),
            )

    async def wait_idle(self) -> None:
        """Wait until the queue has drained and nothing is being spoken."""
        while self.is_speaking:
            await asyncio.wait({self._pump})

    async def close(self) -> None:
        self._queue.clear()
        await self._stop_playback()
