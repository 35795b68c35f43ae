"""MongoDB helpers for the application."""

from contextlib import contextmanager
from datetime import date, datetime

from pymongo import ASCENDING, DESCENDING, IndexModel, MongoClient
from pymongo.collection import Collection

from .config import DEFAULT_QUOTA, get_db_name, get_mongo_uri, transactions_enabled

_MONGO_CLIENT = None
_MONGO_DB = None


def _get_client():
    """Create (or reuse) a MongoDB client using the configured URI."""

    global _MONGO_CLIENT

    if _MONGO_CLIENT is None:
        _MONGO_CLIENT = MongoClient(get_mongo_uri(), serverSelectionTimeoutMS=5000)
    return _MONGO_CLIENT


def get_db():
    """Return the application's MongoDB database instance."""

    global _MONGO_DB

    if _MONGO_DB is None:
        _MONGO_DB = _get_client()[get_db_name()]
    return _MONGO_DB


@contextmanager
def write_scope():
    """Yield a session that groups one student's writes.

    With ``MONGODB_TRANSACTIONS`` enabled the session runs a transaction that
    commits on exit and aborts on error. Otherwise ``None`` is yielded and the
    writes are applied one by one.
    """

    if not transactions_enabled():
        yield None
        return

    with _get_client().start_session() as session:
        with session.start_transaction():
            yield session


_indexes_created = set()


def _ensure_indexes(collection: Collection, name: str, indexes) -> None:
    if name in _indexes_created:
        return
    collection.create_indexes(indexes)
    _indexes_created.add(name)


def get_students_collection() -> Collection:
    """Return the collection that stores student documents."""

    collection = get_db()["students"]
    _ensure_indexes(
        collection,
        "students",
        [
            IndexModel([("email", ASCENDING)], name="unique_email", unique=True),
            IndexModel(
                [("department", ASCENDING), ("gpa", DESCENDING)],
                name="department_gpa",
                background=True,
            ),
            IndexModel(
                [("full_name", ASCENDING)],
                name="full_name_asc",
                background=True,
            ),
        ],
    )
    return collection


def serialize_student(document):
    """Convert a MongoDB student document into a JSON-serialisable dict."""

    gpa = document.get("gpa")
    try:
        gpa_value = float(gpa) if gpa is not None else 0.0
    except (TypeError, ValueError):
        gpa_value = 0.0

    student_no = document.get("student_no") or document.get("_id")
    return {
        "_id": str(document.get("_id", "")),
        "student_no": str(student_no) if student_no is not None else "",
        "full_name": document.get("full_name"),
        "email": document.get("email"),
        "department": document.get("department"),
        "enrolled_courses": _string_list(document.get("enrolled_courses")),
        "catalog": _string_list(document.get("catalog")),
        "gpa": gpa_value,
        "state": document.get("state") or "Active",
    }


def get_courses_collection() -> Collection:
    """Return the courses collection and ensure supporting indexes."""

    collection = get_db()["courses"]
    _ensure_indexes(
        collection,
        "courses",
        [
            IndexModel([("department", ASCENDING)], name="department_idx", background=True),
            IndexModel([("semester", ASCENDING)], name="semester_idx", background=True),
            IndexModel([("name", ASCENDING)], name="name_idx", background=True),
        ],
    )
    return collection


def serialize_course(document):
    """Serialize a raw Mongo course document to JSON-friendly dict."""

    def _int_or_none(value):
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    quota = _int_or_none(document.get("quota"))
    code = document.get("code") or document.get("_id")
    course = {
        "_id": str(document.get("_id", "")),
        "code": str(code) if code is not None else "",
        "name": document.get("name"),
        "credits": _int_or_none(document.get("credits")),
        "quota": DEFAULT_QUOTA if quota is None else quota,
        "prerequisites": _string_list(document.get("prerequisites")),
        "semester": document.get("semester"),
        "department": document.get("department"),
        "course_type": document.get("course_type") or "Mandatory",
        "language": document.get("language") or "English",
    }
    for optional in ("lecturer", "schedule", "info"):
        if optional in document:
            course[optional] = document.get(optional)
    if "enrolled_count" in document:
        course["enrolled_count"] = _int_or_none(document.get("enrolled_count")) or 0
    return course


def get_enrollments_collection() -> Collection:
    """Return the enrollments collection ensuring indexes exist."""

    collection = get_db()["enrollments"]
    _ensure_indexes(
        collection,
        "enrollments",
        [
            IndexModel(
                [("course_code", ASCENDING), ("semester", ASCENDING)],
                name="course_semester",
                background=True,
            ),
            IndexModel(
                [
                    ("student_no", ASCENDING),
                    ("course_code", ASCENDING),
                    ("semester", ASCENDING),
                ],
                name="unique_student_course_semester",
                unique=True,
            ),
        ],
    )
    return collection


def serialize_enrollment(document):
    """Serialize an enrollment document for JSON responses."""

    return {
        "_id": str(document.get("_id", "")),
        "student_no": document.get("student_no"),
        "course_code": document.get("course_code"),
        "semester": document.get("semester"),
    }


def get_exams_collection() -> Collection:
    """Return the exams collection ensuring indexes exist."""

    collection = get_db()["exams"]
    _ensure_indexes(
        collection,
        "exams",
        [
            IndexModel(
                [
                    ("course_code", ASCENDING),
                    ("semester", ASCENDING),
                    ("exam_type", ASCENDING),
                ],
                name="unique_course_semester_type",
                unique=True,
            ),
            IndexModel(
                [("exam_date", ASCENDING), ("time", ASCENDING)],
                name="exam_date_time",
                background=True,
            ),
        ],
    )
    return collection


def _iso_date(value):
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value or None


def serialize_exam(document):
    """Serialize an exam document; dates become ``YYYY-MM-DD`` strings."""

    weight = document.get("weight_pct")
    try:
        weight_value = float(weight) if weight is not None else 0.0
    except (TypeError, ValueError):
        weight_value = 0.0

    return {
        "_id": str(document.get("_id", "")),
        "course_code": document.get("course_code"),
        "semester": document.get("semester"),
        "exam_type": document.get("exam_type"),
        "weight_pct": weight_value,
        "exam_date": _iso_date(document.get("exam_date")),
        "time": document.get("time") or "",
        "duration_min": document.get("duration_min") or 0,
        "lecturer_name": document.get("lecturer_name"),
    }


def get_grades_collection() -> Collection:
    """Return the grades collection ensuring indexes exist."""

    collection = get_db()["grades"]
    _ensure_indexes(
        collection,
        "grades",
        [
            IndexModel(
                [
                    ("student_no", ASCENDING),
                    ("course_code", ASCENDING),
                    ("semester", ASCENDING),
                ],
                name="unique_student_course_semester",
                unique=True,
            ),
            IndexModel(
                [("course_code", ASCENDING), ("semester", ASCENDING)],
                name="course_semester",
                background=True,
            ),
        ],
    )
    return collection


def serialize_grade(document):
    """Serialize a grade document; ``scores`` is always a plain dict."""

    scores = document.get("scores")
    if not isinstance(scores, dict):
        scores = {}

    grade = {
        "_id": str(document.get("_id", "")),
        "student_no": document.get("student_no"),
        "course_code": document.get("course_code"),
        "semester": document.get("semester"),
        "scores": {str(k): v for k, v in scores.items()},
        "letter_grade": document.get("letter_grade"),
        "entered_by": document.get("entered_by"),
        "updated_by": document.get("updated_by"),
    }
    for stamp in ("entered_at", "updated_at"):
        value = document.get(stamp)
        grade[stamp] = value.isoformat() if isinstance(value, datetime) else value
    return grade


def _string_list(value):
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item not in (None, "")]


__all__ = [
    "get_db",
    "write_scope",
    "get_students_collection",
    "serialize_student",
    "get_courses_collection",
    "serialize_course",
    "get_enrollments_collection",
    "serialize_enrollment",
    "get_exams_collection",
    "serialize_exam",
    "get_grades_collection",
    "serialize_grade",
]
