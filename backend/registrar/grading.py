"""Letter grade and GPA calculations.

Everything here is a pure function over plain Python values so it can be
shared by the grade-entry routes, the transcript report and the tests without
touching MongoDB.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple

from .config import MAX_EXAM_WEIGHT_TOTAL

FAILING_GRADE = "FF"

# Lower bounds are inclusive; anything below the last threshold is FF.
GRADE_SCALE: Tuple[Tuple[float, str], ...] = (
    (90.0, "AA"),
    (85.0, "BA"),
    (80.0, "BB"),
    (75.0, "CB"),
    (70.0, "CC"),
    (65.0, "DC"),
    (60.0, "DD"),
)

GRADE_POINTS: Dict[str, float] = {
    "AA": 4.0,
    "BA": 3.5,
    "BB": 3.0,
    "CB": 2.5,
    "CC": 2.0,
    "DC": 1.5,
    "DD": 1.0,
    "FF": 0.0,
}

GRADE_ORDER: Tuple[str, ...] = tuple(GRADE_POINTS)
GRADE_ORDER_INDEX = {grade: index for index, grade in enumerate(GRADE_ORDER)}


def weighted_score(
    scores: Mapping[str, float], weights: Mapping[str, float]
) -> float | None:
    """Return the weight-normalised score, or ``None`` when nothing counts.

    Only exam types present in ``scores`` contribute. A type with no entry in
    ``weights`` carries zero weight.
    """

    weighted_sum = 0.0
    weight_total = 0.0

    for exam_type, score in scores.items():
        weight = weights.get(exam_type) or 0
        weighted_sum += score * (weight / 100)
        weight_total += weight / 100

    if weight_total == 0:
        return None
    return weighted_sum / weight_total


def letter_for_score(final_score: float) -> str:
    for threshold, letter in GRADE_SCALE:
        if final_score >= threshold:
            return letter
    return FAILING_GRADE


def calculate_letter_grade(
    scores: Mapping[str, float], weights: Mapping[str, float]
) -> str:
    """Map raw exam scores to a letter grade using the exam weights."""

    final_score = weighted_score(scores, weights)
    if final_score is None:
        return FAILING_GRADE
    return letter_for_score(final_score)


def grade_points(letter: str | None) -> float:
    return GRADE_POINTS.get(letter or "", 0.0)


def is_passing(letter: str | None) -> bool:
    return letter in GRADE_POINTS and letter != FAILING_GRADE


def _entry_parts(entry: Any) -> Tuple[str | None, float]:
    if isinstance(entry, Mapping):
        letter = entry.get("letter_grade", entry.get("letter"))
        credits = entry.get("credits")
    else:
        letter, credits = entry
    return letter, float(credits or 0)


def calculate_gpa(entries: Iterable[Any]) -> float:
    """Credit-weighted average of grade points on the 4.0 scale.

    ``entries`` holds ``(letter, credits)`` pairs or mappings with
    ``letter_grade`` and ``credits`` keys. Unknown letters count as 0.0 and
    the result is not rounded.
    """

    total_points = 0.0
    total_credits = 0.0

    for entry in entries:
        letter, credits = _entry_parts(entry)
        total_points += grade_points(letter) * credits
        total_credits += credits

    if total_credits == 0:
        return 0
    return total_points / total_credits


@dataclass(frozen=True)
class ExamWeightSummary:
    total: float
    exam_count: int

    @property
    def over_limit(self) -> bool:
        return self.total > MAX_EXAM_WEIGHT_TOTAL

    @property
    def remaining(self) -> float:
        return max(0.0, MAX_EXAM_WEIGHT_TOTAL - self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "exam_count": self.exam_count,
            "remaining": self.remaining,
            "over_limit": self.over_limit,
        }


def total_exam_weight(exams: Sequence[Mapping[str, Any]]) -> ExamWeightSummary:
    """Sum exam weights for one course offering.

    Totals above 100 are reported through ``over_limit`` and never rejected.
    """

    total = 0.0
    for exam in exams:
        total += float(exam.get("weight_pct") or 0)
    return ExamWeightSummary(total=total, exam_count=len(exams))


def exam_weights(exams: Iterable[Mapping[str, Any]]) -> Dict[str, float]:
    """Build the ``exam_type -> weight`` mapping used for letter grades."""

    weights: Dict[str, float] = {}
    for exam in exams:
        exam_type = exam.get("exam_type")
        if exam_type:
            weights[exam_type] = float(exam.get("weight_pct") or 0)
    return weights


__all__ = [
    "FAILING_GRADE",
    "GRADE_SCALE",
    "GRADE_POINTS",
    "GRADE_ORDER",
    "ExamWeightSummary",
    "weighted_score",
    "letter_for_score",
    "calculate_letter_grade",
    "grade_points",
    "is_passing",
    "calculate_gpa",
    "total_exam_weight",
    "exam_weights",
]
