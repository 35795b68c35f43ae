"""Read-modify-write flows that span several collections.

Route handlers call into this module for anything that touches more than one
document per student. Every student's writes go through ``write_scope`` so
they are grouped in a transaction when one is available.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .db import (
    get_courses_collection,
    get_enrollments_collection,
    get_exams_collection,
    get_grades_collection,
    get_students_collection,
    serialize_grade,
    write_scope,
)
from .enrollment import (
    RULE_QUOTA,
    CandidateCourse,
    EnrollmentDecision,
    StudentState,
    evaluate_enrollment,
    quota_reason,
)
from .grading import (
    FAILING_GRADE,
    GRADE_POINTS,
    calculate_gpa,
    calculate_letter_grade,
    exam_weights,
    is_passing,
)

logger = logging.getLogger(__name__)

PASSING_LETTERS = [letter for letter in GRADE_POINTS if letter != FAILING_GRADE]

COMMIT_ATTEMPTS = 3


class RecordNotFound(LookupError):
    """Raised when a student, course, grade or exam does not exist."""


class RecordInUse(Exception):
    """Raised when a record cannot be removed because others depend on it."""


class _Overbooked(Exception):
    def __init__(self, course: CandidateCourse):
        super().__init__(quota_reason(course))
        self.course = course


def id_filters(record_id: str) -> List[Dict[str, Any]]:
    """Candidate ``_id`` filters for ids that may be strings or ObjectIds."""

    filters: List[Dict[str, Any]] = [{"_id": record_id}]
    try:
        filters.append({"_id": ObjectId(record_id)})
    except (InvalidId, TypeError):
        pass
    return filters


def find_by_id(collection, record_id: str):
    for candidate in id_filters(record_id):
        document = collection.find_one(candidate)
        if document:
            return document
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_student(student_no: str, session=None) -> Dict[str, Any]:
    student = get_students_collection().find_one({"_id": student_no}, session=session)
    if not student:
        raise RecordNotFound("Student not found.")
    return student


def load_student_state(student: Mapping[str, Any]) -> StudentState:
    enrolled = [code for code in student.get("enrolled_courses") or [] if code]
    enrolled_credits = 0
    if enrolled:
        cursor = get_courses_collection().find(
            {"_id": {"$in": enrolled}}, projection={"credits": 1}
        )
        enrolled_credits = sum(int(doc.get("credits") or 0) for doc in cursor)

    return StudentState(
        student_no=str(student.get("_id")),
        enrolled_courses=frozenset(enrolled),
        enrolled_credits=enrolled_credits,
        catalog=frozenset(student.get("catalog") or []),
    )


def count_enrolled(course_code: str, semester: str | None, session=None) -> int:
    return get_enrollments_collection().count_documents(
        {"course_code": course_code, "semester": semester}, session=session
    )


def enroll_student(student_no: str, course_codes: Sequence[str]) -> EnrollmentDecision:
    """Run the enrollment rules for ``student_no`` and commit on success.

    Raises ``RecordNotFound`` for an unknown student or course code. Rule
    violations come back as a rejected decision.
    """

    student = _get_student(student_no)
    state = load_student_state(student)

    requested = list(dict.fromkeys(code for code in course_codes if code))
    documents = {
        doc["_id"]: doc
        for doc in get_courses_collection().find({"_id": {"$in": requested}})
    }
    unknown = [
        code
        for code in requested
        if code not in documents and code not in state.enrolled_courses
    ]
    if unknown:
        raise RecordNotFound(f"Course not found: {', '.join(unknown)}")

    candidates = [
        CandidateCourse.from_document(documents[code])
        if code in documents
        else CandidateCourse(code=code, name=code, credits=0)
        for code in requested
    ]

    decision = evaluate_enrollment(
        state,
        candidates,
        occupancy=lambda course: count_enrolled(course.code, course.semester),
    )
    if not decision.ok:
        logger.info(
            "Enrollment rejected for %s (%s): %s",
            student_no,
            decision.rule,
            decision.rejected_reason,
        )
        return decision

    try:
        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            try:
                with write_scope() as session:
                    _commit_enrollment(student_no, decision.accepted, session)
                break
            except PyMongoError as exc:
                if attempt == COMMIT_ATTEMPTS or not exc.has_error_label(
                    "TransientTransactionError"
                ):
                    raise
                logger.info(
                    "Retrying enrollment for %s after write conflict (attempt %s)",
                    student_no,
                    attempt,
                )
    except _Overbooked as exc:
        logger.info("Enrollment for %s lost a seat race on %s", student_no, exc.course.code)
        return EnrollmentDecision(
            skipped=decision.skipped,
            rejected_reason=str(exc),
            rule=RULE_QUOTA,
            total_credits=decision.total_credits,
        )

    logger.info(
        "Enrolled %s in %s (total credits %s)",
        student_no,
        ", ".join(course.code for course in decision.accepted),
        decision.total_credits,
    )
    return decision


def _commit_enrollment(
    student_no: str, courses: List[CandidateCourse], session
) -> None:
    enrollments = get_enrollments_collection()
    inserted = []
    try:
        # Concurrent transactions on one course write-conflict on its document.
        for course in courses:
            get_courses_collection().update_one(
                {"_id": course.code}, {"$inc": {"seat_claims": 1}}, session=session
            )

        for course in courses:
            result = enrollments.insert_one(
                {
                    "student_no": student_no,
                    "course_code": course.code,
                    "semester": course.semester,
                },
                session=session,
            )
            inserted.append(result.inserted_id)

        # Seats may have been taken since the rule check ran.
        for course in courses:
            if count_enrolled(course.code, course.semester, session) > course.quota:
                raise _Overbooked(course)

        get_students_collection().update_one(
            {"_id": student_no},
            {"$addToSet": {"enrolled_courses": {"$each": [c.code for c in courses]}}},
            session=session,
        )
    except (_Overbooked, PyMongoError):
        if inserted and session is None:
            enrollments.delete_many({"_id": {"$in": inserted}})
        raise


def drop_enrollment(student_no: str, course_code: str, semester: str | None = None) -> int:
    """Remove a student's seat in a course and return the records deleted."""

    _get_student(student_no)
    match: Dict[str, Any] = {"student_no": student_no, "course_code": course_code}
    if semester:
        match["semester"] = semester

    with write_scope() as session:
        result = get_enrollments_collection().delete_many(match, session=session)
        pulled = get_students_collection().update_one(
            {"_id": student_no},
            {"$pull": {"enrolled_courses": course_code}},
            session=session,
        )

    if result.deleted_count == 0 and pulled.modified_count == 0:
        raise RecordNotFound("Enrollment not found.")
    return result.deleted_count


def delete_student(student_no: str) -> Dict[str, int]:
    """Delete a student together with the seats and grades they hold."""

    with write_scope() as session:
        result = get_students_collection().delete_one({"_id": student_no}, session=session)
        if result.deleted_count == 0:
            raise RecordNotFound("Student not found.")
        seats = get_enrollments_collection().delete_many(
            {"student_no": student_no}, session=session
        )
        grades = get_grades_collection().delete_many(
            {"student_no": student_no}, session=session
        )

    logger.info(
        "Deleted student %s (%s enrollment(s), %s grade(s))",
        student_no,
        seats.deleted_count,
        grades.deleted_count,
    )
    return {"enrollments": seats.deleted_count, "grades": grades.deleted_count}


def delete_course(course_code: str) -> Dict[str, int]:
    """Delete a course, its seats and exams, and drop it from enrolled lists.

    Courses with recorded grades are kept for the transcript; ``RecordInUse``
    is raised instead.
    """

    if get_grades_collection().count_documents({"course_code": course_code}, limit=1):
        raise RecordInUse("Course has recorded grades and cannot be deleted.")

    with write_scope() as session:
        result = get_courses_collection().delete_one({"_id": course_code}, session=session)
        if result.deleted_count == 0:
            raise RecordNotFound("Course not found.")
        seats = get_enrollments_collection().delete_many(
            {"course_code": course_code}, session=session
        )
        exams = get_exams_collection().delete_many(
            {"course_code": course_code}, session=session
        )
        get_students_collection().update_many(
            {"enrolled_courses": course_code},
            {"$pull": {"enrolled_courses": course_code}},
            session=session,
        )

    logger.info(
        "Deleted course %s (%s enrollment(s), %s exam(s))",
        course_code,
        seats.deleted_count,
        exams.deleted_count,
    )
    return {"enrollments": seats.deleted_count, "exams": exams.deleted_count}


def course_weights(course_code: str, semester: str) -> Dict[str, float]:
    exams = get_exams_collection().find(
        {"course_code": course_code, "semester": semester},
        projection={"exam_type": 1, "weight_pct": 1},
    )
    return exam_weights(exams)


def _sync_catalog(student_no: str, course_code: str, letter: str, session) -> None:
    students = get_students_collection()
    if is_passing(letter):
        students.update_one(
            {"_id": student_no},
            {
                "$addToSet": {"catalog": course_code},
                "$pull": {"enrolled_courses": course_code},
            },
            session=session,
        )
        return

    still_passed = get_grades_collection().count_documents(
        {
            "student_no": student_no,
            "course_code": course_code,
            "letter_grade": {"$in": PASSING_LETTERS},
        },
        session=session,
    )
    if not still_passed:
        students.update_one(
            {"_id": student_no}, {"$pull": {"catalog": course_code}}, session=session
        )


def gpa_entries(
    grades: Iterable[Mapping[str, Any]], credits_by_course: Mapping[str, Any]
) -> List[tuple]:
    """Pair each passing letter with its course credits."""

    return [
        (grade.get("letter_grade"), credits_by_course.get(grade.get("course_code")) or 0)
        for grade in grades
        if is_passing(grade.get("letter_grade"))
    ]


def recompute_student_gpa(student_no: str, session=None) -> float:
    """Recalculate the cached GPA from every grade the student holds."""

    grades = list(
        get_grades_collection().find(
            {"student_no": student_no},
            projection={"course_code": 1, "letter_grade": 1},
            session=session,
        )
    )
    codes = list({grade.get("course_code") for grade in grades if grade.get("course_code")})
    credits_by_course = {}
    if codes:
        credits_by_course = {
            doc["_id"]: doc.get("credits")
            for doc in get_courses_collection().find(
                {"_id": {"$in": codes}}, projection={"credits": 1}, session=session
            )
        }

    gpa = calculate_gpa(gpa_entries(grades, credits_by_course))
    get_students_collection().update_one(
        {"_id": student_no}, {"$set": {"gpa": gpa}}, session=session
    )
    logger.debug("Recomputed GPA for %s: %s", student_no, gpa)
    return gpa


def save_grades(
    course_code: str,
    semester: str,
    entries: Sequence[Mapping[str, Any]],
    entered_by: str | None,
) -> List[Dict[str, Any]]:
    """Upsert one grade per student for a course offering.

    Students are committed one at a time. A failure part way leaves earlier
    students saved; running the same batch again is safe because grades are
    keyed by student, course and semester.
    """

    if not get_courses_collection().find_one({"_id": course_code}, projection={"_id": 1}):
        raise RecordNotFound("Course not found.")

    student_nos = [entry["student_no"] for entry in entries]
    known = {
        doc["_id"]
        for doc in get_students_collection().find(
            {"_id": {"$in": student_nos}}, projection={"_id": 1}
        )
    }
    unknown = [no for no in student_nos if no not in known]
    if unknown:
        raise RecordNotFound(f"Student not found: {', '.join(unknown)}")

    weights = course_weights(course_code, semester)
    grades = get_grades_collection()
    results = []

    for entry in entries:
        student_no = entry["student_no"]
        scores = dict(entry["scores"])
        letter = calculate_letter_grade(scores, weights)
        now = _utcnow()

        with write_scope() as session:
            document = grades.find_one_and_update(
                {"student_no": student_no, "course_code": course_code, "semester": semester},
                {
                    "$set": {
                        "scores": scores,
                        "letter_grade": letter,
                        "updated_by": entered_by,
                        "updated_at": now,
                    },
                    "$setOnInsert": {"entered_by": entered_by, "entered_at": now},
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            _sync_catalog(student_no, course_code, letter, session)
            gpa = recompute_student_gpa(student_no, session=session)

        results.append(
            {
                "student_no": student_no,
                "letter_grade": letter,
                "gpa": gpa,
                "_id": str(document.get("_id", "")) if document else "",
            }
        )

    logger.info(
        "Saved %s grade(s) for %s %s", len(results), course_code, semester
    )
    return results


def update_grade(
    grade_id: str,
    *,
    scores: Mapping[str, float] | None = None,
    letter_grade: str | None = None,
    updated_by: str | None = None,
) -> Dict[str, Any]:
    """Change a single grade by new scores or by overriding the letter."""

    grades = get_grades_collection()
    existing = find_by_id(grades, grade_id)
    if not existing:
        raise RecordNotFound("Grade not found.")

    changes: Dict[str, Any] = {"updated_by": updated_by, "updated_at": _utcnow()}
    if scores is not None:
        weights = course_weights(existing["course_code"], existing["semester"])
        changes["scores"] = dict(scores)
        changes["letter_grade"] = calculate_letter_grade(scores, weights)
    elif letter_grade is not None:
        changes["letter_grade"] = letter_grade

    student_no = existing["student_no"]
    letter = changes.get("letter_grade", existing.get("letter_grade"))

    with write_scope() as session:
        updated = grades.find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        _sync_catalog(student_no, existing["course_code"], letter, session)
        recompute_student_gpa(student_no, session=session)

    if updated is None:
        raise RecordNotFound("Grade not found.")
    return serialize_grade(updated)


__all__ = [
    "RecordNotFound",
    "RecordInUse",
    "id_filters",
    "find_by_id",
    "load_student_state",
    "count_enrolled",
    "enroll_student",
    "drop_enrollment",
    "delete_student",
    "delete_course",
    "course_weights",
    "gpa_entries",
    "recompute_student_gpa",
    "save_grades",
    "update_grade",
]
