"""Exam scheduling endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from flask import Blueprint, jsonify, request
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..config import ConfigError
from ..db import (
    get_courses_collection,
    get_exams_collection,
    get_students_collection,
    serialize_exam,
)
from ..grading import total_exam_weight
from ..records import find_by_id, id_filters
from ..utils.responses import (
    handle_config_error,
    handle_db_error,
    json_error,
    rule_violation,
    validation_error,
)
from ..utils.validation import clean_string, normalize_semester, validate_exam_payload
from .auth_simple import require_admin

exams_bp = Blueprint("exams", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)

_EXAM_SORT = [("exam_date", 1), ("time", 1)]
DUPLICATE_EXAM = "An exam of this type already exists for this course and semester."


def _offering_args():
    course_code = clean_string(request.args.get("course_code")).upper()
    semester = normalize_semester(request.args.get("semester"))
    return course_code, semester


def _weight_summary(course_code: str, semester: str) -> Dict[str, Any]:
    exams = list(
        get_exams_collection().find(
            {"course_code": course_code, "semester": semester},
            projection={"weight_pct": 1},
        )
    )
    summary = total_exam_weight(exams).to_dict()
    summary.update({"course_code": course_code, "semester": semester})
    return summary


@exams_bp.get("/exams")
def list_exams():
    course_code, semester = _offering_args()
    if not course_code or semester is None:
        return json_error("course_code and semester are required.", 400)

    try:
        cursor = get_exams_collection().find(
            {"course_code": course_code, "semester": semester}, sort=_EXAM_SORT
        )
        return jsonify([serialize_exam(doc) for doc in cursor])
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list exams", exc)


@exams_bp.get("/exams/weight-total")
def weight_total():
    course_code, semester = _offering_args()
    if not course_code or semester is None:
        return json_error("course_code and semester are required.", 400)

    try:
        return jsonify(_weight_summary(course_code, semester))
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to total exam weights", exc)


@exams_bp.post("/exams")
@require_admin
def create_exam():
    cleaned, errors = validate_exam_payload(request.get_json(silent=True), require_all=True)
    if errors:
        return validation_error(errors)

    try:
        course = get_courses_collection().find_one(
            {"_id": cleaned["course_code"]}, projection={"_id": 1}
        )
        if not course:
            return json_error(
                "Course not found.", 404, {"course_code": "Select an existing course."}
            )

        now = datetime.now(timezone.utc)
        document = dict(cleaned, created_at=now, updated_at=now)
        result = get_exams_collection().insert_one(document)
        document["_id"] = result.inserted_id

        payload = serialize_exam(document)
        payload["weight_total"] = _weight_summary(cleaned["course_code"], cleaned["semester"])
        if payload["weight_total"]["over_limit"]:
            logger.warning(
                "Exam weights for %s %s total %s",
                cleaned["course_code"],
                cleaned["semester"],
                payload["weight_total"]["total"],
            )
        return jsonify(payload), 201
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        return rule_violation(DUPLICATE_EXAM, "duplicate_exam")
    except PyMongoError as exc:
        return handle_db_error("Failed to create exam", exc)


@exams_bp.put("/exams/<exam_id>")
@require_admin
def update_exam(exam_id: str):
    cleaned, errors = validate_exam_payload(request.get_json(silent=True), require_all=False)
    if errors:
        return validation_error(errors)
    if not cleaned:
        return json_error("No changes supplied.", 400)

    try:
        collection = get_exams_collection()
        existing = find_by_id(collection, exam_id)
        if not existing:
            return json_error("Exam not found.", 404)

        cleaned["updated_at"] = datetime.now(timezone.utc)
        updated = collection.find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": cleaned},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            return json_error("Exam not found.", 404)
        return jsonify(serialize_exam(updated))
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        return rule_violation(DUPLICATE_EXAM, "duplicate_exam")
    except PyMongoError as exc:
        return handle_db_error("Failed to update exam", exc)


@exams_bp.delete("/exams/<exam_id>")
@require_admin
def delete_exam(exam_id: str):
    try:
        collection = get_exams_collection()
        for candidate in id_filters(exam_id):
            if collection.delete_one(candidate).deleted_count:
                return jsonify({"ok": True})
        return json_error("Exam not found.", 404)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete exam", exc)


@exams_bp.get("/students/<student_no>/exams")
def student_exams(student_no: str):
    """Exam schedule across the courses a student is enrolled in."""

    try:
        student = get_students_collection().find_one(
            {"_id": clean_string(student_no)}, projection={"enrolled_courses": 1}
        )
        if not student:
            return json_error("Student not found.", 404)

        codes: List[str] = student.get("enrolled_courses") or []
        if not codes:
            return jsonify([])

        names = {
            doc["_id"]: doc.get("name")
            for doc in get_courses_collection().find(
                {"_id": {"$in": codes}}, projection={"name": 1}
            )
        }
        cursor = get_exams_collection().find({"course_code": {"$in": codes}}, sort=_EXAM_SORT)

        schedule = []
        for doc in cursor:
            exam = serialize_exam(doc)
            exam["course_name"] = names.get(exam["course_code"]) or "Unknown Course"
            schedule.append(exam)
        return jsonify(schedule)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load exam schedule", exc)


__all__ = ["exams_bp"]
