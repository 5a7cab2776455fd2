"""
Speech capability interface and backends.

The voice cue scheduler is the only caller. Backends speak one utterance per
``speak`` call and must make ``cancel`` stop the utterance in flight.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import pyttsx3

logger = logging.getLogger(__name__)

MIN_MIXDOWN_VOLUME: float = 0.2
BASE_WORDS_PER_MINUTE: int = 165


def mixdown_volume(spatial_pan: Optional[float]) -> float:
    """Loudness proxy for a stereo pan when no directional output exists."""
    if spatial_pan is None:
        return 1.0
    return max(MIN_MIXDOWN_VOLUME, 1.0 - abs(spatial_pan))


class SpeechEngine(ABC):
    """Single-utterance speech output."""

    @abstractmethod
    async def speak(self, text: str, language: str, rate: float = 1.0,
                    pitch: float = 1.0, volume: float = 1.0) -> None:
        """Speak ``text`` and return when the utterance has finished."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the utterance in flight, if any."""


class SilentSpeaker(SpeechEngine):
    """Logs utterances instead of playing them (headless deployments)."""

    async def speak(self, text: str, language: str, rate: float = 1.0,
                    pitch: float = 1.0, volume: float = 1.0) -> None:
        logger.info("Cue [%s, vol=%.2f]: %s", language, volume, text)

    def cancel(self) -> None:
        pass


class Pyttsx3Speaker(SpeechEngine):
    """
    Offline text-to-speech through pyttsx3.

    A fresh engine is created per utterance and driven from a worker thread
    so the event loop never blocks on ``runAndWait``. pyttsx3 has no pitch
    control; the argument is accepted and ignored.
    """

    def __init__(self, driver_name: Optional[str] = None):
        self.driver_name = driver_name
        self._engine = None

    def _select_voice(self, engine, language: str) -> None:
        prefix = language.lower().replace("-", "_").split("_")[0]
        for voice in engine.getProperty("voices") or []:
            languages = [
                lang.decode(errors="ignore") if isinstance(lang, bytes) else str(lang)
                for lang in (getattr(voice, "languages", None) or [])
            ]
            if any(prefix in lang.lower() for lang in languages):
                engine.setProperty("voice", voice.id)
                return

    def _run(self, text: str, language: str, rate: float, volume: float) -> None:
        engine = pyttsx3.init(self.driver_name) if self.driver_name else pyttsx3.init()
        self._engine = engine
        try:
            self._select_voice(engine, language)
            engine.setProperty("rate", int(BASE_WORDS_PER_MINUTE * rate))
            engine.setProperty("volume", volume)
            engine.say(text)
            engine.runAndWait()
        finally:
            self._engine = None
            engine.stop()

    async def speak(self, text: str, language: str, rate: float = 1.0,
                    pitch: float = 1.0, volume: float = 1.0) -> None:
        if not text:
            return
        try:
            await asyncio.to_thread(self._run, text, language, rate, volume)
        except (RuntimeError, OSError) as e:
            logger.warning("TTS error: %s", e)

    def cancel(self) -> None:
        engine = self._engine
        if engine is not None:
            engine.stop()


def create_speaker(backend: str) -> SpeechEngine:
    if backend == "silent":
        return SilentSpeaker()
    if backend == "pyttsx3":
        return Pyttsx3Speaker()
    raise ValueError(f"Unknown speech backend: {backend!r}")
