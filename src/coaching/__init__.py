"""
Coaching module for the edge coach.

Decides when a frame deserves a spoken cue, turns that decision into a cue,
and plays cues one at a time through a speech capability.
"""

from .stabilizer import FeedbackDecision, FeedbackInput, RealtimeFeedbackStabilizer
from .cues import Cue, MESSAGES, build_cue, safety_message, spatial_pan_for
from .speech import (
    SpeechEngine,
    SilentSpeaker,
    Pyttsx3Speaker,
    create_speaker,
    mixdown_volume,
)
from .voice_queue import VoiceCueScheduler

__all__ = [
    "FeedbackDecision",
    "FeedbackInput",
    "RealtimeFeedbackStabilizer",
    "Cue",
    "MESSAGES",
    "build_cue",
    "safety_message",
    "spatial_pan_for",
    "SpeechEngine",
    "SilentSpeaker",
    "Pyttsx3Speaker",
    "create_speaker",
    "mixdown_volume",
    "VoiceCueScheduler",
]
