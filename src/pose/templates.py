"""
Exercise templates and the technique evaluator.

Each template maps the four tracked joints to an inclusive expected angle
range. An observed angle outside the range is ``red``; inside but within
``TEMPLATE_BUFFER_DEG`` of either bound is ``yellow``; otherwise ``green``.
"""

from typing import Optional

from .schemas import (
    AngleRange,
    ExerciseTemplate,
    PoseAngles,
    Severity,
    TechniqueDeviation,
    TemplateRanges,
)


TEMPLATE_BUFFER_DEG: float = 10.0

SEVERITY_RANK: dict[str, int] = {"green": 0, "yellow": 1, "red": 2}


class UnknownExerciseError(ValueError):
    """Raised when a template key is not in the catalog."""


# Template key -> expected ranges (degrees)
EXERCISE_TEMPLATES: dict[str, ExerciseTemplate] = {
    "squat": ExerciseTemplate(
        name="Squat",
        ranges=TemplateRanges(
            knee=AngleRange(min=70, max=140),
            hip=AngleRange(min=60, max=140),
            spine=AngleRange(min=140, max=180),
            shoulder=AngleRange(min=40, max=120),
        ),
    ),
    "deadlift": ExerciseTemplate(
        name="Deadlift",
        ranges=TemplateRanges(
            knee=AngleRange(min=120, max=175),
            hip=AngleRange(min=80, max=160),
            spine=AngleRange(min=150, max=180),
            shoulder=AngleRange(min=40, max=120),
        ),
    ),
    "bench": ExerciseTemplate(
        name="Bench Press",
        ranges=TemplateRanges(
            knee=AngleRange(min=150, max=180),
            hip=AngleRange(min=150, max=180),
            spine=AngleRange(min=150, max=180),
            shoulder=AngleRange(min=40, max=110),
        ),
    ),
}


def get_exercise_template(key: str) -> ExerciseTemplate:
    """
    Look up a template by key (case-insensitive).

    Raises:
        UnknownExerciseError: If the key is not in the catalog
    """
    template = EXERCISE_TEMPLATES.get(key.strip().lower())
    if template is None:
        raise UnknownExerciseError(
            f"Exercise template '{key}' not found. "
            f"Valid keys: {', '.join(sorted(EXERCISE_TEMPLATES))}"
        )
    return template


def get_all_templates() -> list[tuple[str, str]]:
    """List of (key, display name) for every template."""
    return [(key, tpl.name) for key, tpl in EXERCISE_TEMPLATES.items()]


def classify_angle(observed: float, expected: AngleRange,
                   buffer: float = TEMPLATE_BUFFER_DEG) -> Severity:
    """Severity of one observed angle against an inclusive range."""
    if observed < expected.min or observed > expected.max:
        return "red"
    if observed < expected.min + buffer or observed > expected.max - buffer:
        return "yellow"
    return "green"


def evaluate_technique(angles: PoseAngles, template: ExerciseTemplate) -> list[TechniqueDeviation]:
    """
    Compare averaged joint angles with the template ranges.

    Args:
        angles: Per-frame 2D angles (paired joints are averaged)
        template: Selected exercise template

    Returns:
        Deviations in fixed order: knee, hip, spine, shoulder
    """
    ranges = template.ranges
    observed = {
        "knee": (angles.knee, ranges.knee),
        "hip": (angles.hip, ranges.hip),
        "spine": (angles.spine, ranges.spine),
        "shoulder": (angles.shoulder, ranges.shoulder),
    }
    return [
        TechniqueDeviation(
            joint=joint,
            observed_angle=value,
            expected_min=rng.min,
            expected_max=rng.max,
            severity=classify_angle(value, rng),
        )
        for joint, (value, rng) in observed.items()
    ]


def aggregate_severity(deviations: list[TechniqueDeviation]) -> Severity:
    """Worst severity wins: red > yellow > green."""
    worst: Optional[Severity] = None
    for dev in deviations:
        if worst is None or SEVERITY_RANK[dev.severity] > SEVERITY_RANK[worst]:
            worst = dev.severity
    return worst or "green"
