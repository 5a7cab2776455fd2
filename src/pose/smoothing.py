"""
Severity smoothing with a time window and a minimum switch interval.

The rolling state lives in a ``SeverityWindow`` model owned by the caller.
The orchestrator (display colour) and the realtime feedback stabilizer
(whether to speak) each own a separate window so they can be tuned and
tested independently.
"""

from typing import Optional
from pydantic import BaseModel, Field

from .schemas import Severity


SEVERITY_VALUE: dict[str, float] = {"green": 0.0, "yellow": 0.5, "red": 1.0}

RED_AVERAGE: float = 0.7
YELLOW_AVERAGE: float = 0.35


class SeverityWindow(BaseModel):
    """Rolling severity samples plus the last accepted tier."""
    window_ms: float = 450.0
    min_switch_ms: float = 400.0
    samples: list[tuple[float, float]] = Field(
        default_factory=list,
        description="(timestamp_ms, numeric severity) pairs inside the window"
    )
    stable: Optional[Severity] = None
    last_switch_ms: Optional[float] = None

    def reset(self) -> None:
        self.samples = []
        self.stable = None
        self.last_switch_ms = None


def severity_value(severity: Severity) -> float:
    return SEVERITY_VALUE[severity]


def severity_from_average(avg: float) -> Severity:
    if avg > RED_AVERAGE:
        return "red"
    if avg > YELLOW_AVERAGE:
        return "yellow"
    return "green"


def push_severity(window: SeverityWindow, now_ms: float,
                  severity: Severity) -> tuple[Severity, Severity]:
    """
    Add one raw sample and return ``(stable, interim)``.

    The window average is the candidate tier. A change of the stable tier is
    accepted only when ``min_switch_ms`` has elapsed since the last accepted
    change. While that gate is closed, ``interim`` is the tier of the most
    recent sample; otherwise it equals the stable tier.
    """
    window.samples = [
        (ts, value) for ts, value in window.samples if now_ms - ts < window.window_ms
    ]
    window.samples.append((now_ms, severity_value(severity)))

    avg = sum(value for _, value in window.samples) / len(window.samples)
    candidate = severity_from_average(avg)

    gate_open = (
        window.last_switch_ms is None
        or now_ms - window.last_switch_ms >= window.min_switch_ms
    )

    if window.stable is None or (candidate != window.stable and gate_open):
        window.stable = candidate
        window.last_switch_ms = now_ms

    interim = window.stable if gate_open else severity
    return window.stable, interim
