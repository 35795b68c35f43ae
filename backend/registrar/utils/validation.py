"""Request payload validation shared by the API routes.

Each ``validate_*`` function returns ``(cleaned, errors)``. ``errors`` maps a
field name to a user-facing message; ``_global`` is used when the body itself
is unusable.
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Dict, List, Tuple

from ..config import COURSE_TYPES, SEMESTERS
from ..grading import GRADE_POINTS

TIME_PATTERN = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$")

_SEMESTER_LOOKUP = {semester.lower(): semester for semester in SEMESTERS}
_COURSE_TYPE_LOOKUP = {value.lower(): value for value in COURSE_TYPES}


def clean_string(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def normalize_semester(value: Any) -> str | None:
    """Return the canonical semester name, or ``None`` if unrecognised."""

    return _SEMESTER_LOOKUP.get(clean_string(value).lower())


def parse_score(value: Any) -> float:
    """Parse a score or weight percentage in the closed range [0, 100]."""

    if isinstance(value, bool) or value in (None, ""):
        raise ValueError
    number = float(value)
    if not math.isfinite(number) or number < 0 or number > 100:
        raise ValueError
    return number


def parse_code_list(value: Any) -> List[str] | None:
    """Accept a JSON array or comma separated string of course codes."""

    if value in (None, ""):
        return []
    if isinstance(value, list):
        return [clean_string(item) for item in value if clean_string(item)]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return None


def _valid_exam_type(exam_type: str) -> bool:
    # Exam types become keys of the stored ``scores`` document.
    return bool(exam_type) and "." not in exam_type and not exam_type.startswith("$")


def validate_student_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    def require_field(field: str, message: str) -> bool:
        if field not in payload or clean_string(payload.get(field)) == "":
            errors[field] = message
            return False
        return True

    if require_all or "student_no" in payload:
        if require_field("student_no", "Student number is required."):
            cleaned["student_no"] = clean_string(payload.get("student_no"))

    if require_all or "full_name" in payload:
        if require_field("full_name", "Full name is required."):
            cleaned["full_name"] = clean_string(payload.get("full_name"))

    if require_all or "email" in payload:
        if require_field("email", "Email is required."):
            email = clean_string(payload.get("email"))
            if "@" not in email or "." not in email.split("@")[-1]:
                errors["email"] = "Enter a valid email address."
            else:
                cleaned["email"] = email.lower()

    if "department" in payload:
        cleaned["department"] = clean_string(payload.get("department"))

    if "state" in payload:
        cleaned["state"] = clean_string(payload.get("state")) or "Active"

    return cleaned, errors


def validate_course_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    def require_field(field: str, message: str) -> bool:
        if field not in payload or clean_string(payload.get(field)) == "":
            errors[field] = message
            return False
        return True

    if require_all or "code" in payload:
        if require_field("code", "Course code is required."):
            cleaned["code"] = clean_string(payload.get("code")).upper()

    if require_all or "name" in payload:
        if require_field("name", "Course name is required."):
            cleaned["name"] = clean_string(payload.get("name"))

    if require_all or "department" in payload:
        if require_field("department", "Department is required."):
            cleaned["department"] = clean_string(payload.get("department"))

    if require_all or "credits" in payload:
        try:
            credits_value = float(payload.get("credits"))
            if credits_value <= 0 or not credits_value.is_integer():
                raise ValueError
            cleaned["credits"] = int(credits_value)
        except (TypeError, ValueError):
            errors["credits"] = "Credits must be a positive integer."

    if "quota" in payload and payload.get("quota") not in (None, ""):
        try:
            quota_value = float(payload.get("quota"))
            if quota_value < 0 or not quota_value.is_integer():
                raise ValueError
            cleaned["quota"] = int(quota_value)
        except (TypeError, ValueError):
            errors["quota"] = "Quota must be a non-negative integer."

    if require_all or "semester" in payload:
        semester = normalize_semester(payload.get("semester"))
        if semester is None:
            errors["semester"] = "Semester must be one of: " + ", ".join(SEMESTERS) + "."
        else:
            cleaned["semester"] = semester

    if "prerequisites" in payload:
        prereqs = parse_code_list(payload.get("prerequisites"))
        if prereqs is None:
            errors["prerequisites"] = "Prerequisites must be an array of course codes."
        else:
            cleaned["prerequisites"] = [code.upper() for code in prereqs]

    if "course_type" in payload:
        course_type = _COURSE_TYPE_LOOKUP.get(clean_string(payload.get("course_type")).lower())
        if course_type is None:
            errors["course_type"] = "Course type must be Mandatory or Elective."
        else:
            cleaned["course_type"] = course_type

    for optional in ("language", "lecturer", "schedule", "info"):
        if optional in payload:
            cleaned[optional] = clean_string(payload.get(optional))

    return cleaned, errors


def validate_enrollment_payload(
    payload: Dict[str, Any] | None,
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    codes = parse_code_list(payload.get("course_codes"))
    if codes is None:
        return {}, {"course_codes": "Course codes must be an array of course codes."}
    if not codes:
        return {}, {"course_codes": "Select at least one course."}
    return {"course_codes": [code.upper() for code in codes]}, {}


def validate_exam_payload(
    payload: Dict[str, Any] | None, *, require_all: bool
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    if require_all:
        course_code = clean_string(payload.get("course_code")).upper()
        if not course_code:
            errors["course_code"] = "Course code is required."
        else:
            cleaned["course_code"] = course_code

        semester = normalize_semester(payload.get("semester"))
        if semester is None:
            errors["semester"] = "Semester must be one of: " + ", ".join(SEMESTERS) + "."
        else:
            cleaned["semester"] = semester
    else:
        for fixed in ("course_code", "semester"):
            if fixed in payload:
                errors[fixed] = "Course and semester of an exam cannot be changed."

    if require_all or "exam_type" in payload:
        exam_type = clean_string(payload.get("exam_type"))
        if not exam_type:
            errors["exam_type"] = "Exam type is required."
        elif not _valid_exam_type(exam_type):
            errors["exam_type"] = "Exam type cannot contain '.' or start with '$'."
        else:
            cleaned["exam_type"] = exam_type

    if require_all or "weight_pct" in payload:
        try:
            cleaned["weight_pct"] = parse_score(payload.get("weight_pct"))
        except (TypeError, ValueError):
            errors["weight_pct"] = "Percentage must be between 0 and 100."

    if require_all or "exam_date" in payload:
        try:
            cleaned["exam_date"] = datetime.strptime(
                clean_string(payload.get("exam_date")), "%Y-%m-%d"
            )
        except ValueError:
            errors["exam_date"] = "Valid exam date is required (YYYY-MM-DD)."

    if require_all or "time" in payload:
        time_value = clean_string(payload.get("time"))
        if not TIME_PATTERN.match(time_value):
            errors["time"] = "Valid time is required (HH:MM format)."
        else:
            cleaned["time"] = time_value

    if require_all or "duration_min" in payload:
        duration = payload.get("duration_min")
        try:
            if isinstance(duration, bool):
                raise ValueError
            duration_value = float(duration)
            if duration_value < 1 or not duration_value.is_integer():
                raise ValueError
            cleaned["duration_min"] = int(duration_value)
        except (TypeError, ValueError):
            errors["duration_min"] = "Duration must be a whole number of minutes, at least 1."

    if "lecturer_name" in payload:
        cleaned["lecturer_name"] = clean_string(payload.get("lecturer_name")) or None

    return cleaned, errors


def _validate_scores(raw: Any, errors: Dict[str, str], field: str) -> Dict[str, float]:
    if not isinstance(raw, dict):
        errors[field] = "Scores must be an object of exam type to score."
        return {}

    scores: Dict[str, float] = {}
    for exam_type, value in raw.items():
        label = clean_string(exam_type)
        if not _valid_exam_type(label):
            errors[field] = f"Invalid exam type '{exam_type}'."
            continue
        try:
            scores[label] = parse_score(value)
        except (TypeError, ValueError):
            errors[field] = f"Invalid score for {label}. Must be between 0-100."
    return scores


def validate_grade_batch_payload(
    payload: Dict[str, Any] | None,
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    course_code = clean_string(payload.get("course_code")).upper()
    semester = normalize_semester(payload.get("semester"))
    if not course_code:
        errors["course_code"] = "Course code is required."
    if semester is None:
        errors["semester"] = "Semester must be one of: " + ", ".join(SEMESTERS) + "."

    entries = payload.get("grades")
    if not isinstance(entries, list) or not entries:
        errors["grades"] = "Grades must be a non-empty array."
        entries = []

    cleaned_entries = []
    seen = set()
    for index, entry in enumerate(entries):
        field = f"grades[{index}]"
        if not isinstance(entry, dict):
            errors[field] = "Grade entries must be objects."
            continue
        student_no = clean_string(entry.get("student_no"))
        if not student_no:
            errors[field] = "Student number is required."
            continue
        if student_no in seen:
            errors[field] = f"Duplicate entry for student {student_no}."
            continue
        seen.add(student_no)
        scores = _validate_scores(entry.get("scores"), errors, field)
        if field not in errors:
            cleaned_entries.append({"student_no": student_no, "scores": scores})

    cleaned["course_code"] = course_code
    cleaned["semester"] = semester
    cleaned["grades"] = cleaned_entries
    cleaned["entered_by"] = clean_string(payload.get("entered_by")) or None
    return cleaned, errors


def validate_grade_update_payload(
    payload: Dict[str, Any] | None,
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    if payload is None:
        return {}, {"_global": "Request body must be JSON."}

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {
        "updated_by": clean_string(payload.get("updated_by")) or None
    }

    if "scores" in payload:
        cleaned["scores"] = _validate_scores(payload.get("scores"), errors, "scores")
    elif "letter_grade" in payload:
        letter = clean_string(payload.get("letter_grade")).upper()
        if letter not in GRADE_POINTS:
            errors["letter_grade"] = "Letter grade must be one of: " + ", ".join(GRADE_POINTS) + "."
        else:
            cleaned["letter_grade"] = letter
    else:
        errors["_global"] = "Provide scores or a letter grade."

    return cleaned, errors


__all__ = [
    "TIME_PATTERN",
    "clean_string",
    "normalize_semester",
    "parse_score",
    "parse_code_list",
    "validate_student_payload",
    "validate_course_payload",
    "validate_enrollment_payload",
    "validate_exam_payload",
    "validate_grade_batch_payload",
    "validate_grade_update_payload",
]
