from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from flask import Flask, jsonify, request
from pymongo.errors import DuplicateKeyError, PyMongoError

from registrar import config, records
from registrar.config import ConfigError
from registrar.db import (
    get_courses_collection,
    get_db,
    get_enrollments_collection,
    get_students_collection,
    serialize_course,
    serialize_student,
)
from registrar.routes import (
    auth_simple_bp,
    enrollments_bp,
    exams_bp,
    grades_bp,
    reports_bp,
    require_admin,
)
from registrar.utils.paging import PagingParamError, parse_page_request
from registrar.utils.responses import (
    handle_config_error,
    handle_db_error,
    json_error,
    validation_error,
)
from registrar.utils.validation import (
    clean_string,
    normalize_semester,
    validate_course_payload,
    validate_student_payload,
)

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.config["SESSION_COOKIE_NAME"] = config.SESSION_COOKIE_NAME

app.register_blueprint(auth_simple_bp)
app.register_blueprint(enrollments_bp)
app.register_blueprint(exams_bp)
app.register_blueprint(grades_bp)
app.register_blueprint(reports_bp)

logger = logging.getLogger(__name__)


def _parse_limit_arg(limit_arg: str | None, *, default: int) -> int:
    if not limit_arg:
        return default
    try:
        value = int(limit_arg)
    except (TypeError, ValueError):
        raise ValueError("limit must be a positive integer.")
    if value <= 0:
        raise ValueError("limit must be a positive integer.")
    return value


@app.get("/api/health")
def health():
    return jsonify({"ok": True})


@app.get("/api/students")
def list_students():
    try:
        paging = parse_page_request(
            request.args,
            sort_fields={
                "full_name": "full_name",
                "student_no": "_id",
                "gpa": "gpa",
            },
            default_sort="full_name",
        )
    except PagingParamError as exc:
        return json_error(str(exc), 400)

    filters: Dict[str, Any] = {}
    query = clean_string(request.args.get("q"))
    department = clean_string(request.args.get("department"))

    if query:
        pattern = re.escape(query)
        filters["$or"] = [
            {"full_name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
            {"_id": {"$regex": pattern, "$options": "i"}},
        ]
    if department:
        filters["department"] = department

    try:
        collection = get_students_collection()
        window = paging.window(collection.count_documents(filters))
        cursor = (
            collection.find(filters)
            .sort([paging.sort])
            .skip(window.skip)
            .limit(window.page_size)
        )
        return jsonify(window.envelope([serialize_student(doc) for doc in cursor]))
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list students", exc)


@app.get("/api/students/<student_no>")
def get_student(student_no: str):
    try:
        document = get_students_collection().find_one({"_id": clean_string(student_no)})
        if not document:
            return json_error("Student not found.", 404)
        return jsonify(serialize_student(document))
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load student", exc)


@app.post("/api/students")
@require_admin
def create_student():
    cleaned, errors = validate_student_payload(request.get_json(silent=True), require_all=True)
    if errors:
        return validation_error(errors)

    document = {
        "_id": cleaned["student_no"],
        "department": None,
        "enrolled_courses": [],
        "catalog": [],
        "gpa": 0.0,
        "state": "Active",
    }
    document.update(cleaned)

    try:
        get_students_collection().insert_one(document)
        return jsonify({"ok": True, "student": serialize_student(document)}), 201
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        logger.exception("Duplicate key error while creating student")
        return json_error(
            "A student with this number or email already exists.",
            409,
            {"email": "Email or student number already in use."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to create student", exc)


@app.put("/api/students/<student_no>")
@require_admin
def update_student(student_no: str):
    cleaned, errors = validate_student_payload(request.get_json(silent=True), require_all=False)

    if "student_no" in cleaned and cleaned["student_no"] != student_no:
        errors["student_no"] = "Student number cannot be changed."
    cleaned.pop("student_no", None)

    if errors:
        return json_error("Validation failed.", 400, errors)
    if not cleaned:
        return json_error("No changes supplied.", 400)

    try:
        result = get_students_collection().update_one({"_id": student_no}, {"$set": cleaned})
        if result.matched_count == 0:
            return json_error("Student not found.", 404)
        return jsonify({"ok": True})
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        logger.exception("Duplicate key error while updating student")
        return json_error(
            "A student with this email already exists.",
            409,
            {"email": "Email already in use."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to update student", exc)


@app.delete("/api/students/<student_no>")
@require_admin
def delete_student(student_no: str):
    try:
        removed = records.delete_student(clean_string(student_no))
        return jsonify({"ok": True, **removed})
    except records.RecordNotFound as exc:
        return json_error(str(exc), 404)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete student", exc)


def _course_catalog_pipeline(filters: Dict[str, Any], limit: int) -> List[Dict[str, Any]]:
    """Courses matching ``filters`` with seats taken in their own semester."""

    return [
        {"$match": filters},
        {"$sort": {"_id": 1}},
        {"$limit": limit},
        {
            "$lookup": {
                "from": "enrollments",
                "let": {"code": "$_id", "semester": "$semester"},
                "pipeline": [
                    {
                        "$match": {
                            "$expr": {
                                "$and": [
                                    {"$eq": ["$course_code", "$$code"]},
                                    {"$eq": ["$semester", "$$semester"]},
                                ]
                            }
                        }
                    },
                    {"$count": "count"},
                ],
                "as": "seats",
            }
        },
        {
            "$addFields": {
                "enrolled_count": {"$ifNull": [{"$first": "$seats.count"}, 0]}
            }
        },
        {"$project": {"seats": 0}},
    ]


@app.get("/api/courses")
def list_courses():
    filters: Dict[str, Any] = {}

    query = clean_string(request.args.get("q"))
    department = clean_string(request.args.get("department"))
    semester_raw = request.args.get("semester")

    if query:
        pattern = re.escape(query)
        filters["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"_id": {"$regex": pattern, "$options": "i"}},
        ]
    if department:
        filters["department"] = department
    if semester_raw:
        semester = normalize_semester(semester_raw)
        if semester is None:
            return json_error("Unknown semester.", 400)
        filters["semester"] = semester

    try:
        limit_value = _parse_limit_arg(request.args.get("limit"), default=200)
    except ValueError as exc:
        return json_error(str(exc), 400)

    try:
        cursor = get_courses_collection().aggregate(
            _course_catalog_pipeline(filters, limit_value)
        )
        return jsonify([serialize_course(doc) for doc in cursor])
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to list courses", exc)


@app.post("/api/courses")
@require_admin
def create_course():
    cleaned, errors = validate_course_payload(request.get_json(silent=True), require_all=True)
    if errors:
        return validation_error(errors)

    document = {
        "_id": cleaned["code"],
        "quota": config.DEFAULT_QUOTA,
        "prerequisites": [],
        "course_type": "Mandatory",
        "language": "English",
    }
    document.update(cleaned)

    if document["code"] in document["prerequisites"]:
        return json_error(
            "Validation failed.", 400, {"prerequisites": "A course cannot require itself."}
        )

    try:
        get_courses_collection().insert_one(document)
        return jsonify({"ok": True, "course": serialize_course(document)}), 201
    except ConfigError as exc:
        return handle_config_error(exc)
    except DuplicateKeyError:
        return json_error(
            "Course with this code already exists.",
            409,
            {"code": "Choose a different course code."},
        )
    except PyMongoError as exc:
        return handle_db_error("Failed to create course", exc)


@app.put("/api/courses/<course_code>")
@require_admin
def update_course(course_code: str):
    course_code = clean_string(course_code).upper()
    cleaned, errors = validate_course_payload(request.get_json(silent=True), require_all=False)

    if "code" in cleaned and cleaned["code"] != course_code:
        errors["code"] = "Course code cannot be changed."
    cleaned.pop("code", None)
    if course_code in cleaned.get("prerequisites", []):
        errors["prerequisites"] = "A course cannot require itself."

    if errors:
        return json_error("Validation failed.", 400, errors)
    if not cleaned:
        return json_error("No changes supplied.", 400)

    try:
        collection = get_courses_collection()
        if "semester" in cleaned:
            existing = collection.find_one({"_id": course_code}, projection={"semester": 1})
            if not existing:
                return json_error("Course not found.", 404)
            if existing.get("semester") != cleaned["semester"]:
                return json_error(
                    "Validation failed.",
                    400,
                    {"semester": "Semester of a course cannot be changed."},
                )

        result = collection.update_one({"_id": course_code}, {"$set": cleaned})
        if result.matched_count == 0:
            return json_error("Course not found.", 404)
        return jsonify({"ok": True})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to update course", exc)


@app.delete("/api/courses/<course_code>")
@require_admin
def delete_course(course_code: str):
    try:
        removed = records.delete_course(clean_string(course_code).upper())
        return jsonify({"deleted": True, **removed})
    except records.RecordNotFound as exc:
        return json_error(str(exc), 404)
    except records.RecordInUse as exc:
        return json_error(str(exc), 409)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to delete course", exc)


@app.get("/api/stats")
def stats():
    try:
        get_db()

        students_by_department = list(
            get_students_collection().aggregate(
                [
                    {
                        "$group": {
                            "_id": {"$ifNull": ["$department", "UNDECLARED"]},
                            "count": {"$sum": 1},
                            "avg_gpa": {"$avg": "$gpa"},
                        }
                    },
                    {
                        "$project": {
                            "_id": 0,
                            "department": "$_id",
                            "count": 1,
                            "avg_gpa": {"$round": ["$avg_gpa", 2]},
                        }
                    },
                    {"$sort": {"count": -1, "department": 1}},
                ]
            )
        )

        enrollments_collection = get_enrollments_collection()
        enrollments_by_semester = list(
            enrollments_collection.aggregate(
                [
                    {
                        "$group": {
                            "_id": {"$ifNull": ["$semester", "UNKNOWN"]},
                            "count": {"$sum": 1},
                        }
                    },
                    {"$project": {"_id": 0, "semester": "$_id", "count": 1}},
                    {"$sort": {"semester": 1}},
                ]
            )
        )

        top_courses_by_enrollment = list(
            enrollments_collection.aggregate(
                [
                    {"$group": {"_id": "$course_code", "count": {"$sum": 1}}},
                    {"$sort": {"count": -1}},
                    {"$limit": 5},
                    {
                        "$lookup": {
                            "from": "courses",
                            "localField": "_id",
                            "foreignField": "_id",
                            "as": "course",
                        }
                    },
                    {"$unwind": {"path": "$course", "preserveNullAndEmptyArrays": True}},
                    {
                        "$project": {
                            "_id": 0,
                            "course_code": "$_id",
                            "count": 1,
                            "name": {"$ifNull": ["$course.name", "$_id"]},
                        }
                    },
                ]
            )
        )

        return jsonify(
            {
                "students_by_department": students_by_department,
                "enrollments_by_semester": enrollments_by_semester,
                "top_courses_by_enrollment": top_courses_by_enrollment,
            }
        )
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to load stats", exc)


if __name__ == "__main__":
    app.run(debug=True)
