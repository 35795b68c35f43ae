"""Grade entry endpoints."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pymongo.errors import PyMongoError

from ..config import ConfigError
from ..db import get_grades_collection, get_students_collection, serialize_grade
from ..records import RecordNotFound, save_grades, update_grade
from ..utils.responses import handle_config_error, handle_db_error, json_error, validation_error
from ..utils.validation import (
    clean_string,
    normalize_semester,
    validate_grade_batch_payload,
    validate_grade_update_payload,
)
from .auth_simple import current_username, require_admin

grades_bp = Blueprint("grades", __name__, url_prefix="/api")


@grades_bp.post("/grades")
@require_admin
def save_course_grades():
    cleaned, errors = validate_grade_batch_payload(request.get_json(silent=True))
    if errors:
        return validation_error(errors)

    try:
        results = save_grades(
            cleaned["course_code"],
            cleaned["semester"],
            cleaned["grades"],
            cleaned["entered_by"] or current_username(),
        )
        return jsonify({"ok": True, "data": results})
    except RecordNotFound as exc:
        return json_error(str(exc), 404)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to save grades", exc)


@grades_bp.put("/grades/<grade_id>")
@require_admin
def edit_grade(grade_id: str):
    cleaned, errors = validate_grade_update_payload(request.get_json(silent=True))
    if errors:
        return validation_error(errors)

    try:
        grade = update_grade(
            grade_id,
            scores=cleaned.get("scores"),
            letter_grade=cleaned.get("letter_grade"),
            updated_by=cleaned["updated_by"] or current_username(),
        )
        return jsonify({"ok": True, "data": grade})
    except RecordNotFound as exc:
        return json_error(str(exc), 404)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to update grade", exc)


@grades_bp.get("/grades")
def course_grades():
    course_code = clean_string(request.args.get("course_code")).upper()
    semester = normalize_semester(request.args.get("semester"))
    if not course_code or semester is None:
        return json_error("course_code and semester are required.", 400)

    try:
        cursor = get_grades_collection().find(
            {"course_code": course_code, "semester": semester},
            sort=[("student_no", 1)],
        )
        return jsonify([serialize_grade(doc) for doc in cursor])
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list grades", exc)


@grades_bp.get("/students/<student_no>/grades")
def student_grades(student_no: str):
    student_no_clean = clean_string(student_no)
    try:
        if not get_students_collection().find_one({"_id": student_no_clean}, {"_id": 1}):
            return json_error("Student not found.", 404)

        cursor = get_grades_collection().find(
            {"student_no": student_no_clean},
            sort=[("semester", 1), ("course_code", 1)],
        )
        return jsonify([serialize_grade(doc) for doc in cursor])
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list student grades", exc)


__all__ = ["grades_bp"]
