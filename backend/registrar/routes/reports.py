"""Reports and analytics endpoints."""

from __future__ import annotations

import csv
import io
from typing import Any, Dict, List

from flask import Blueprint, Response, jsonify, request
from pymongo.errors import PyMongoError

from ..config import ConfigError
from ..db import (
    get_courses_collection,
    get_grades_collection,
    get_students_collection,
)
from ..grading import GRADE_ORDER_INDEX, calculate_gpa, grade_points
from ..records import gpa_entries
from ..transcript import build_transcript
from ..utils.responses import handle_config_error, handle_db_error, json_error
from ..utils.validation import clean_string, normalize_semester

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _student_grade_context(student_no: str):
    student = get_students_collection().find_one({"_id": student_no})
    if not student:
        return None, [], {}

    grades = list(get_grades_collection().find({"student_no": student_no}))
    codes = list({grade.get("course_code") for grade in grades if grade.get("course_code")})
    courses: Dict[str, Dict[str, Any]] = {}
    if codes:
        courses = {
            doc["_id"]: doc
            for doc in get_courses_collection().find(
                {"_id": {"$in": codes}}, projection={"name": 1, "credits": 1}
            )
        }
    return student, grades, courses


@reports_bp.get("/transcript/<student_no>")
def transcript(student_no: str):
    try:
        student, grades, courses = _student_grade_context(clean_string(student_no))
        if not student:
            return json_error("Student not found.", 404)
        return jsonify(build_transcript(student, grades, courses))
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to build transcript", exc)


@reports_bp.get("/gpa/<student_no>")
def student_gpa(student_no: str):
    semester_raw = request.args.get("semester")
    semester = normalize_semester(semester_raw)
    if semester_raw and semester is None:
        return json_error("Unknown semester.", 400)

    try:
        student, grades, courses = _student_grade_context(clean_string(student_no))
        if not student:
            return json_error("Student not found.", 404)

        if semester:
            grades = [grade for grade in grades if grade.get("semester") == semester]

        credits_by_course = {code: doc.get("credits") for code, doc in courses.items()}
        details: List[Dict[str, Any]] = []
        for grade in grades:
            letter = grade.get("letter_grade")
            credits = int(credits_by_course.get(grade.get("course_code")) or 0)
            details.append(
                {
                    "course_code": grade.get("course_code"),
                    "semester": grade.get("semester"),
                    "credits": credits,
                    "letter_grade": letter,
                    "points": grade_points(letter),
                }
            )
        details.sort(key=lambda item: (item["semester"] or "", item["course_code"] or ""))

        entries = gpa_entries(grades, credits_by_course)
        gpa_value = calculate_gpa(entries)

        payload: Dict[str, Any] = {
            "student_no": student["_id"],
            "total_credits": sum(credits for _, credits in entries),
            "gpa": round(gpa_value, 2),
            "details": details,
        }
        if semester:
            payload["semester"] = semester
        return jsonify(payload)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to generate GPA report", exc)


@reports_bp.get("/grade-distribution/<course_code>")
def grade_distribution(course_code: str):
    course_code_clean = clean_string(course_code).upper()
    semester = normalize_semester(request.args.get("semester"))

    try:
        course_doc = get_courses_collection().find_one(
            {"_id": course_code_clean}, {"_id": 1, "name": 1}
        )
        if not course_doc:
            return json_error("Course not found.", 404)

        match_stage: Dict[str, Any] = {"course_code": course_code_clean}
        if semester:
            match_stage["semester"] = semester

        pipeline: List[Dict[str, Any]] = [
            {"$match": match_stage},
            {
                "$group": {
                    "_id": {"$ifNull": ["$letter_grade", ""]},
                    "count": {"$sum": 1},
                }
            },
            {"$project": {"_id": 0, "letter_grade": "$_id", "count": 1}},
        ]
        rows = list(get_grades_collection().aggregate(pipeline))

        distribution = [
            {
                "letter_grade": clean_string(row.get("letter_grade")) or "N/A",
                "count": int(row.get("count", 0) or 0),
            }
            for row in rows
        ]
        distribution.sort(
            key=lambda entry: GRADE_ORDER_INDEX.get(entry["letter_grade"], len(GRADE_ORDER_INDEX))
        )

        payload: Dict[str, Any] = {
            "course_code": course_code_clean,
            "course_name": course_doc.get("name"),
            "count": sum(entry["count"] for entry in distribution),
            "distribution": distribution,
        }
        if semester:
            payload["semester"] = semester
        return jsonify(payload)
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to generate grade distribution", exc)


@reports_bp.get("/grades.csv")
def export_grades_csv():
    semester = normalize_semester(request.args.get("semester"))

    try:
        match_stage: Dict[str, Any] = {}
        if semester:
            match_stage["semester"] = semester

        rows = list(
            get_grades_collection().find(
                match_stage, sort=[("course_code", 1), ("student_no", 1)]
            )
        )

        exam_types = sorted({key for row in rows for key in (row.get("scores") or {})})
        fieldnames = ["student_no", "course_code", "semester", *exam_types, "letter_grade"]

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            scores = row.get("scores") or {}
            record = {
                "student_no": row.get("student_no", ""),
                "course_code": row.get("course_code", ""),
                "semester": row.get("semester", ""),
                "letter_grade": row.get("letter_grade", ""),
            }
            for exam_type in exam_types:
                record[exam_type] = scores.get(exam_type, "")
            writer.writerow(record)

        filename = "grades.csv" if not semester else f"grades_{semester}.csv"
        response = Response(output.getvalue(), mimetype="text/csv")
        response.headers["Content-Disposition"] = f"attachment; filename={filename}"
        return response
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError as exc:
        return handle_db_error("Failed to export grades", exc)


__all__ = ["reports_bp"]
