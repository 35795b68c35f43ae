"""Course selection endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import Blueprint, jsonify, request
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..config import ConfigError
from ..db import (
    get_enrollments_collection,
    get_students_collection,
    serialize_enrollment,
    serialize_student,
)
from ..records import RecordNotFound, drop_enrollment, enroll_student
from ..utils.responses import (
    handle_config_error,
    handle_db_error,
    json_error,
    rule_violation,
    validation_error,
)
from ..utils.validation import (
    clean_string,
    normalize_semester,
    validate_enrollment_payload,
)
from .auth_simple import current_username

enrollments_bp = Blueprint("enrollments", __name__)

logger = logging.getLogger(__name__)


@enrollments_bp.post("/api/students/<student_no>/enrollments")
def enroll(student_no: str):
    cleaned, errors = validate_enrollment_payload(request.get_json(silent=True))
    if errors:
        return validation_error(errors)

    logger.info(
        "Enrollment of %s in %s requested by %s",
        student_no,
        ", ".join(cleaned["course_codes"]),
        current_username() or "anonymous",
    )
    try:
        decision = enroll_student(clean_string(student_no), cleaned["course_codes"])
    except RecordNotFound as exc:
        return json_error(str(exc), 404)
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        logger.exception("Duplicate enrollment for %s", student_no)
        return json_error("Enrollment already exists for this student and course.", 409)
    except PyMongoError as exc:
        return handle_db_error("Failed to enroll student", exc)

    if not decision.ok:
        return rule_violation(
            decision.rejected_reason,
            decision.rule,
            total_credits=decision.total_credits,
        )

    payload = decision.to_dict()
    payload["ok"] = True
    payload["message"] = "Successfully enrolled."
    return jsonify(payload), 201


@enrollments_bp.delete("/api/students/<student_no>/enrollments/<course_code>")
def drop(student_no: str, course_code: str):
    semester = normalize_semester(request.args.get("semester"))
    logger.info(
        "Drop of %s for %s requested by %s",
        course_code,
        student_no,
        current_username() or "anonymous",
    )
    try:
        deleted = drop_enrollment(
            clean_string(student_no), clean_string(course_code).upper(), semester
        )
        return jsonify({"ok": True, "deleted": deleted})
    except RecordNotFound as exc:
        return json_error(str(exc), 404)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to drop enrollment", exc)


@enrollments_bp.get("/api/enrollments")
def list_enrollments():
    filters: Dict[str, Any] = {}

    student_no = clean_string(request.args.get("student_no"))
    course_code = clean_string(request.args.get("course_code")).upper()
    semester_raw = request.args.get("semester")

    if student_no:
        filters["student_no"] = student_no
    if course_code:
        filters["course_code"] = course_code
    if semester_raw:
        semester = normalize_semester(semester_raw)
        if semester is None:
            return json_error("Unknown semester.", 400)
        filters["semester"] = semester

    try:
        cursor = get_enrollments_collection().find(
            filters, sort=[("semester", 1), ("course_code", 1), ("student_no", 1)]
        )
        return jsonify([serialize_enrollment(doc) for doc in cursor.limit(500)])
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list enrollments", exc)


@enrollments_bp.get("/api/courses/<course_code>/students")
def course_students(course_code: str):
    semester = normalize_semester(request.args.get("semester"))
    if semester is None:
        return json_error("semester is required.", 400)

    try:
        enrollments = get_enrollments_collection().find(
            {"course_code": clean_string(course_code).upper(), "semester": semester},
            projection={"student_no": 1},
        )
        student_nos = [doc.get("student_no") for doc in enrollments]
        if not student_nos:
            return jsonify([])

        cursor = get_students_collection().find(
            {"_id": {"$in": student_nos}}, sort=[("full_name", 1)]
        )
        return jsonify([serialize_student(doc) for doc in cursor])
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list enrolled students", exc)


__all__ = ["enrollments_bp"]
