"""Transcript assembly from grade and course documents."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

from .config import SEMESTERS
from .grading import FAILING_GRADE, calculate_gpa

SEMESTER_ORDER = {semester: index for index, semester in enumerate(SEMESTERS)}


def build_transcript(
    student: Mapping[str, Any],
    grades: Iterable[Mapping[str, Any]],
    courses: Mapping[str, Mapping[str, Any]],
) -> Dict[str, Any]:
    """Group a student's grades by semester with per-semester GPA.

    Grades for courses missing from ``courses`` are left out. Semesters are
    listed Fall, Spring, Summer, then anything else alphabetically.
    """

    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for grade in grades:
        course = courses.get(grade.get("course_code"))
        if not course:
            continue
        grouped.setdefault(grade.get("semester") or "", []).append(
            {
                "code": grade.get("course_code"),
                "name": course.get("name"),
                "credits": int(course.get("credits") or 0),
                "letter_grade": grade.get("letter_grade") or FAILING_GRADE,
                "scores": dict(grade.get("scores") or {}),
            }
        )

    semesters = []
    all_rows: List[Dict[str, Any]] = []
    for semester in sorted(
        grouped, key=lambda name: (SEMESTER_ORDER.get(name, len(SEMESTER_ORDER)), name)
    ):
        rows = sorted(grouped[semester], key=lambda row: row["code"] or "")
        all_rows.extend(rows)
        semesters.append(
            {
                "semester": semester,
                "courses": rows,
                "credits": sum(row["credits"] for row in rows),
                "gpa": calculate_gpa(rows),
            }
        )

    return {
        "student_no": student.get("student_no") or student.get("_id"),
        "full_name": student.get("full_name"),
        "semesters": semesters,
        "total_credits": sum(row["credits"] for row in all_rows),
        "gpa": calculate_gpa(all_rows) if all_rows else float(student.get("gpa") or 0),
        "cached_gpa": float(student.get("gpa") or 0),
    }


__all__ = ["build_transcript", "SEMESTER_ORDER"]
