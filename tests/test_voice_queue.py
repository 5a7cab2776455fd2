"""Tests for cue construction, speech backends and the voice cue scheduler.

Covers:
  - Decision -> cue mapping, spatial pan and message selection
  - Per-type cooldowns and priority ordering
  - Preemption of pending and in-flight cues
  - Cue logging, including a failing store
"""

import asyncio
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.coaching.cues import (
    ASYMMETRY_PAN,
    KNEE_VALGUS_PAN,
    MESSAGES,
    Cue,
    build_cue,
    safety_message,
    spatial_pan_for,
)
from src.coaching.speech import Pyttsx3Speaker, SilentSpeaker, create_speaker, mixdown_volume
from src.coaching.stabilizer import FeedbackDecision
from src.coaching.voice_queue import VoiceCueScheduler
from src.storage.store import InMemoryFrameStore

from conftest import FailingStore, FakeClock, RecordingSpeaker


def _cue(cue_type="form_correction", priority="medium", session_id="s1",
         message=None, spatial_pan=None) -> Cue:
    return Cue(session_id=session_id, owner_id="u1", type=cue_type, priority=priority,
               message=message or f"{cue_type} cue", spatial_pan=spatial_pan)


# ============================================================================
# Test: Cue construction
# ============================================================================

class TestBuildCue:

    def test_overload_stop_is_safety_alert(self):
        decision = FeedbackDecision(stable_severity="green", event="overload_stop", priority="high")
        cue = build_cue(decision, "s1", "u1", "knee_valgus_risk", online=False, trust_score=None)
        assert cue.type == "safety_alert"
        assert cue.priority == "high"
        assert cue.message == MESSAGES["safety_knee_valgus"]
        assert cue.spatial_pan == KNEE_VALGUS_PAN

    def test_fatigue_is_spoken_offline(self):
        decision = FeedbackDecision(stable_severity="yellow", event="fatigue_warning",
                                    priority="medium")
        cue = build_cue(decision, "s1", "u1", "velocity_drop_risk", online=False, trust_score=0)
        assert cue.type == "fatigue_warning"
        assert cue.priority == "medium"
        assert cue.message == MESSAGES["fatigue"]

    def test_form_correction_needs_connectivity(self):
        decision = FeedbackDecision(stable_severity="red", event="technique_error", priority="high")
        assert build_cue(decision, "s1", "u1", None, online=False, trust_score=90) is None

    @pytest.mark.parametrize("severity,priority,message", [
        ("red", "high", MESSAGES["form_red"]),
        ("yellow", "medium", MESSAGES["form_yellow"]),
    ])
    def test_form_correction(self, severity, priority, message):
        decision = FeedbackDecision(stable_severity=severity, event="technique_error",
                                    priority=priority)
        cue = build_cue(decision, "s1", "u1", None, online=True, trust_score=90)
        assert cue.type == "form_correction"
        assert cue.priority == priority
        assert cue.message == message

    def test_motivation_needs_trust(self):
        decision = FeedbackDecision(stable_severity="green")
        cue = build_cue(decision, "s1", "u1", "asymmetry_fatigue", online=True, trust_score=60)
        assert cue.type == "motivation"
        assert cue.priority == "low"
        assert cue.spatial_pan is None
        assert build_cue(decision, "s1", "u1", None, online=True, trust_score=59) is None

    def test_yellow_without_event_is_silent(self):
        decision = FeedbackDecision(stable_severity="yellow")
        assert build_cue(decision, "s1", "u1", None, online=True, trust_score=90) is None


class TestCueHelpers:

    @pytest.mark.parametrize("reason,pan", [
        ("knee_valgus_risk", KNEE_VALGUS_PAN),
        ("hip_hinge_deviation,asymmetry_overload", ASYMMETRY_PAN),
        ("lumbar_shear_risk", None),
        (None, None),
    ])
    def test_spatial_pan(self, reason, pan):
        assert spatial_pan_for(reason) == pan

    @pytest.mark.parametrize("reason,key", [
        ("knee_valgus_risk,lumbar_shear_risk", "safety_knee_valgus"),
        ("lumbar_shear_risk", "safety_shear"),
        ("hip_hinge_deviation", "safety_generic"),
        (None, "safety_generic"),
    ])
    def test_safety_message(self, reason, key):
        assert safety_message(reason) == MESSAGES[key]

    def test_pan_is_bounded(self):
        with pytest.raises(ValidationError):
            _cue(spatial_pan=1.5)

    @pytest.mark.parametrize("pan,volume", [
        (None, 1.0),
        (0.0, 1.0),
        (-0.4, 0.6),
        (0.9, 0.2),
        (1.0, 0.2),
    ])
    def test_mixdown_volume(self, pan, volume):
        assert mixdown_volume(pan) == pytest.approx(volume)


# ============================================================================
# Test: Speech backends
# ============================================================================

class _FakeEngine:
    def __init__(self):
        self.properties = {}
        self.said = []
        self.ran = False
        self.stopped = False

    def getProperty(self, name):
        return []

    def setProperty(self, name, value):
        self.properties[name] = value

    def say(self, text):
        self.said.append(text)

    def runAndWait(self):
        self.ran = True

    def stop(self):
        self.stopped = True


class TestSpeechBackends:

    def test_factory(self):
        assert isinstance(create_speaker("silent"), SilentSpeaker)
        assert isinstance(create_speaker("pyttsx3"), Pyttsx3Speaker)
        with pytest.raises(ValueError, match="Unknown speech backend"):
            create_speaker("espeak-cloud")

    def test_pyttsx3_drives_engine(self, monkeypatch):
        engine = _FakeEngine()
        monkeypatch.setattr("src.coaching.speech.pyttsx3.init", lambda *args: engine)
        asyncio.run(Pyttsx3Speaker().speak("Knees out", "en-US", rate=1.0, volume=0.6))
        assert engine.said == ["Knees out"]
        assert engine.properties["rate"] == 165
        assert engine.properties["volume"] == pytest.approx(0.6)
        assert engine.ran is True
        assert engine.stopped is True

    def test_pyttsx3_failure_is_logged(self, monkeypatch, caplog):
        def broken_init(*args):
            raise RuntimeError("no audio device")

        monkeypatch.setattr("src.coaching.speech.pyttsx3.init", broken_init)
        asyncio.run(Pyttsx3Speaker().speak("Knees out", "en-US"))
        assert "TTS error" in caplog.text


# ============================================================================
# Test: Scheduler
# ============================================================================

class TestCooldown:

    def test_cooldown_per_type(self):
        async def scenario():
            clock = FakeClock()
            scheduler = VoiceCueScheduler(RecordingSpeaker(), clock=clock)
            results = [await scheduler.enqueue(_cue())]
            clock.advance(2000)
            results.append(await scheduler.enqueue(_cue()))
            clock.advance(4000)
            results.append(await scheduler.enqueue(_cue()))
            await scheduler.wait_idle()
            return results

        assert asyncio.run(scenario()) == [True, False, True]

    def test_cooldown_is_keyed_by_session_and_type(self):
        async def scenario():
            scheduler = VoiceCueScheduler(RecordingSpeaker(), clock=FakeClock())
            results = [
                await scheduler.enqueue(_cue()),
                await scheduler.enqueue(_cue(session_id="s2")),
                await scheduler.enqueue(_cue("fatigue_warning")),
            ]
            await scheduler.wait_idle()
            return results

        assert asyncio.run(scenario()) == [True, True, True]

    def test_safety_alerts_have_no_cooldown(self):
        async def scenario():
            scheduler = VoiceCueScheduler(RecordingSpeaker(), clock=FakeClock())
            first = await scheduler.enqueue(_cue("safety_alert", "high"))
            second = await scheduler.enqueue(_cue("safety_alert", "high"))
            await scheduler.wait_idle()
            return first, second

        assert asyncio.run(scenario()) == (True, True)


class TestPlayback:

    def test_priority_order_and_sequential_playback(self):
        async def scenario():
            speaker = RecordingSpeaker()
            speaker.hold.add("motivation cue")
            scheduler = VoiceCueScheduler(speaker)
            await scheduler.enqueue(_cue("motivation", "low"))
            await asyncio.sleep(0)

            await scheduler.enqueue(_cue("tempo_cue", "low"))
            await scheduler.enqueue(_cue("fatigue_warning", "medium"))
            await scheduler.enqueue(_cue("form_correction", "high"))
            pending = [cue.type for cue in scheduler.pending]

            speaker.release()
            await scheduler.wait_idle()
            return pending, speaker.texts

        pending, spoken = asyncio.run(scenario())
        assert pending == ["form_correction", "fatigue_warning", "tempo_cue"]
        assert spoken == ["motivation cue", "form_correction cue",
                          "fatigue_warning cue", "tempo_cue cue"]

    def test_equal_priority_keeps_arrival_order(self):
        async def scenario():
            speaker = RecordingSpeaker()
            speaker.hold.add("safety_alert cue")
            scheduler = VoiceCueScheduler(speaker)
            await scheduler.enqueue(_cue("safety_alert", "high"))
            await asyncio.sleep(0)
            await scheduler.enqueue(_cue("form_correction", "medium", session_id="a"))
            await scheduler.enqueue(_cue("form_correction", "medium", session_id="b"))
            order = [cue.session_id for cue in scheduler.pending]
            speaker.release()
            await scheduler.wait_idle()
            return order

        assert asyncio.run(scenario()) == ["a", "b"]

    def test_volume_is_mixed_down_from_pan(self):
        async def scenario():
            speaker = RecordingSpeaker()
            scheduler = VoiceCueScheduler(speaker)
            await scheduler.enqueue(_cue("safety_alert", "high", spatial_pan=KNEE_VALGUS_PAN))
            await scheduler.wait_idle()
            return speaker.spoken

        assert asyncio.run(scenario()) == [("safety_alert cue", pytest.approx(0.6))]


class TestPreemption:

    def test_preempt_drops_pending(self):
        async def scenario():
            speaker = RecordingSpeaker()
            scheduler = VoiceCueScheduler(speaker)
            await scheduler.enqueue(_cue("motivation", "low"))
            await scheduler.enqueue_preempt(_cue("safety_alert", "high"))
            await scheduler.wait_idle()
            return speaker, scheduler

        speaker, scheduler = asyncio.run(scenario())
        assert speaker.texts == ["safety_alert cue"]
        assert [cue.type for cue in scheduler.played] == ["safety_alert"]

    def test_preempt_cancels_utterance_in_flight(self):
        async def scenario():
            speaker = RecordingSpeaker()
            speaker.hold.add("motivation cue")
            scheduler = VoiceCueScheduler(speaker)
            await scheduler.enqueue(_cue("motivation", "low"))
            await asyncio.sleep(0)
            assert scheduler.is_speaking

            await scheduler.enqueue_preempt(_cue("safety_alert", "high"))
            await scheduler.wait_idle()
            return speaker, scheduler

        speaker, scheduler = asyncio.run(scenario())
        assert speaker.cancelled == 1
        assert speaker.texts == ["motivation cue", "safety_alert cue"]
        assert scheduler.is_speaking is False

    def test_close_clears_queue(self):
        async def scenario():
            speaker = RecordingSpeaker()
            speaker.hold.add("motivation cue")
            scheduler = VoiceCueScheduler(speaker)
            await scheduler.enqueue(_cue("motivation", "low"))
            await asyncio.sleep(0)
            await scheduler.enqueue(_cue("fatigue_warning", "medium"))
            await scheduler.close()
            return speaker, scheduler

        speaker, scheduler = asyncio.run(scenario())
        assert scheduler.pending == []
        assert scheduler.is_speaking is False
        assert speaker.texts == ["motivation cue"]


class TestCueLogging:

    def test_played_cues_are_logged(self):
        async def scenario():
            store = InMemoryFrameStore()
            sid = await store.start_session("u1")
            scheduler = VoiceCueScheduler(RecordingSpeaker(), store=store)
            await scheduler.enqueue(_cue("fatigue_warning", "medium", session_id=sid))
            await scheduler.wait_idle()
            return store.rows("voice_cues")

        rows = asyncio.run(scenario())
        assert len(rows) == 1
        assert rows[0]["cue_type"] == "fatigue_warning"
        assert rows[0]["priority"] == "medium"
        assert rows[0]["message"] == "fatigue_warning cue"

    def test_log_failure_still_plays(self, caplog):
        async def scenario():
            store = FailingStore(["voice_cues"])
            sid = await store.start_session("u1")
            speaker = RecordingSpeaker()
            scheduler = VoiceCueScheduler(speaker, store=store)
            await scheduler.enqueue(_cue("safety_alert", "high", session_id=sid))
            await scheduler.wait_idle()
            return speaker

        speaker = asyncio.run(scenario())
        assert speaker.texts == ["safety_alert cue"]
        assert "Failed to log voice cue" in caplog.text
