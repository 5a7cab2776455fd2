"""
Voice cue model and the English message catalog.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from .stabilizer import FeedbackDecision

CueType = Literal["safety_alert", "form_correction", "tempo_cue", "fatigue_warning", "motivation"]
CuePriority = Literal["high", "medium", "low"]

# Stereo balance hints (-1 left .. 1 right)
KNEE_VALGUS_PAN: float = -0.4
ASYMMETRY_PAN: float = 0.4

MESSAGES: dict[str, str] = {
    "safety_knee_valgus": "Knees out. Stop and correct your position.",
    "safety_shear": "Reduce the load and keep a neutral spine.",
    "safety_generic": "Stop now and return to a safe position.",
    "fatigue": "Your speed is dropping. Pause and recover.",
    "form_red": "Technique has broken down. Stop and reset your position.",
    "form_yellow": "Adjust your technique and stay in control.",
    "motivation": "Great technique. Keep the pace.",
}

STATUS_GOOD = "Great technique"
STATUS_ADJUST = "Adjust technique"


class Cue(BaseModel):
    """A spoken coaching cue bound to one session."""
    session_id: str
    owner_id: str
    type: CueType
    priority: CuePriority
    message: str
    spatial_pan: Optional[float] = Field(
        default=None, ge=-1.0, le=1.0,
        description="Stereo balance hint; mixed down to volume when unsupported"
    )


def spatial_pan_for(guard_reason: Optional[str]) -> Optional[float]:
    if not guard_reason:
        return None
    if "knee_valgus" in guard_reason:
        return KNEE_VALGUS_PAN
    if "asymmetry" in guard_reason:
        return ASYMMETRY_PAN
    return None


def safety_message(guard_reason: Optional[str]) -> str:
    reason = guard_reason or ""
    if "knee_valgus" in reason:
        return MESSAGES["safety_knee_valgus"]
    if "shear" in reason:
        return MESSAGES["safety_shear"]
    return MESSAGES["safety_generic"]


def build_cue(decision: FeedbackDecision, session_id: str, owner_id: str,
              guard_reason: Optional[str], online: bool,
              trust_score: Optional[float], motivation_trust: float = 60.0) -> Optional[Cue]:
    """
    Map a stabilizer decision to the cue to dispatch, if any.

    Safety and fatigue cues are always eligible. Form corrections and
    motivation are only spoken while online; motivation additionally needs a
    green stable severity and a trust score of at least ``motivation_trust``.
    """
    pan = spatial_pan_for(guard_reason)
    common = {"session_id": session_id, "owner_id": owner_id}

    if decision.event == "overload_stop":
        return Cue(**common, type="safety_alert", priority="high",
                   message=safety_message(guard_reason), spatial_pan=pan)
    if decision.event == "fatigue_warning":
        return Cue(**common, type="fatigue_warning", priority="medium",
                   message=MESSAGES["fatigue"], spatial_pan=pan)
    if not online:
        return None
    if decision.event == "technique_error":
        red = decision.stable_severity == "red"
        return Cue(**common, type="form_correction", priority="high" if red else "medium",
                   message=MESSAGES["form_red"] if red else MESSAGES["form_yellow"],
                   spatial_pan=pan)
    if decision.stable_severity == "green" and (trust_score or 0.0) >= motivation_trust:
        return Cue(**common, type="motivation", priority="low", message=MESSAGES["motivation"])
    return None
