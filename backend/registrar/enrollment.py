"""Enrollment rules for adding courses to a student's schedule.

The checks run cheapest first: set lookups, then the credit sum, then
prerequisites and finally the per-course occupancy count, which usually needs
a database query. A single violation rejects the whole batch so a student is
never left partially enrolled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import DEFAULT_QUOTA, MAX_CREDITS

RULE_NO_NEW_COURSES = "no_new_courses"
RULE_CREDIT_LIMIT = "credit_limit"
RULE_PREREQUISITES = "prerequisites"
RULE_QUOTA = "quota"


@dataclass(frozen=True)
class CandidateCourse:
    code: str
    name: str
    credits: int
    quota: int = DEFAULT_QUOTA
    prerequisites: Tuple[str, ...] = ()
    semester: Optional[str] = None
    enrolled_count: Optional[int] = None

    @classmethod
    def from_document(
        cls, document: Mapping[str, Any], enrolled_count: Optional[int] = None
    ) -> "CandidateCourse":
        code = document.get("code") or document.get("_id")
        quota = document.get("quota")
        return cls(
            code=str(code),
            name=document.get("name") or str(code),
            credits=int(document.get("credits") or 0),
            quota=DEFAULT_QUOTA if quota is None else int(quota),
            prerequisites=tuple(document.get("prerequisites") or ()),
            semester=document.get("semester"),
            enrolled_count=enrolled_count,
        )


@dataclass(frozen=True)
class StudentState:
    student_no: str
    enrolled_courses: frozenset = field(default_factory=frozenset)
    enrolled_credits: int = 0
    catalog: frozenset = field(default_factory=frozenset)


@dataclass
class EnrollmentDecision:
    accepted: List[CandidateCourse] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    rejected_reason: Optional[str] = None
    rule: Optional[str] = None
    total_credits: int = 0

    @property
    def ok(self) -> bool:
        return self.rejected_reason is None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "accepted": [course.code for course in self.accepted],
            "skipped": list(self.skipped),
            "total_credits": self.total_credits,
        }
        if self.rejected_reason is not None:
            payload["rejected_reason"] = self.rejected_reason
            payload["rule"] = self.rule
        return payload


OccupancyLookup = Callable[[CandidateCourse], int]


def _reject(
    rule: str,
    reason: str,
    *,
    skipped: List[str],
    total_credits: int,
) -> EnrollmentDecision:
    return EnrollmentDecision(
        skipped=skipped,
        rejected_reason=reason,
        rule=rule,
        total_credits=total_credits,
    )


def missing_prerequisites(
    course: CandidateCourse, catalog: frozenset
) -> List[str]:
    return [code for code in course.prerequisites if code not in catalog]


def quota_reason(course: CandidateCourse) -> str:
    return f"Course {course.name} is full (Quota: {course.quota})."


def evaluate_enrollment(
    student: StudentState,
    candidates: Sequence[CandidateCourse],
    *,
    credit_limit: int = MAX_CREDITS,
    occupancy: Optional[OccupancyLookup] = None,
) -> EnrollmentDecision:
    """Decide whether ``student`` may add every course in ``candidates``.

    Courses the student is already enrolled in are dropped without error.
    ``occupancy`` is only consulted for candidates without an
    ``enrolled_count`` and only once every cheaper rule has passed.
    """

    remaining: List[CandidateCourse] = []
    skipped: List[str] = []
    seen = set()
    for course in candidates:
        if course.code in student.enrolled_courses:
            skipped.append(course.code)
            continue
        if course.code in seen:
            continue
        seen.add(course.code)
        remaining.append(course)

    if not remaining:
        return _reject(
            RULE_NO_NEW_COURSES,
            "No new courses to enroll.",
            skipped=skipped,
            total_credits=student.enrolled_credits,
        )

    total_credits = student.enrolled_credits + sum(c.credits for c in remaining)
    if total_credits > credit_limit:
        return _reject(
            RULE_CREDIT_LIMIT,
            f"Total ECTS ({total_credits}) exceeds {credit_limit} limit.",
            skipped=skipped,
            total_credits=total_credits,
        )

    for course in remaining:
        missing = missing_prerequisites(course, student.catalog)
        if missing:
            return _reject(
                RULE_PREREQUISITES,
                f"Cannot enroll in {course.name}. "
                f"Missing prerequisites: {', '.join(missing)}",
                skipped=skipped,
                total_credits=total_credits,
            )

    for course in remaining:
        count = course.enrolled_count
        if count is None:
            count = occupancy(course) if occupancy is not None else 0
        if count >= course.quota:
            return _reject(
                RULE_QUOTA,
                quota_reason(course),
                skipped=skipped,
                total_credits=total_credits,
            )

    return EnrollmentDecision(
        accepted=remaining, skipped=skipped, total_credits=total_credits
    )


__all__ = [
    "RULE_NO_NEW_COURSES",
    "RULE_CREDIT_LIMIT",
    "RULE_PREREQUISITES",
    "RULE_QUOTA",
    "CandidateCourse",
    "StudentState",
    "EnrollmentDecision",
    "evaluate_enrollment",
    "missing_prerequisites",
    "quota_reason",
]
