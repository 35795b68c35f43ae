"""HTTP behaviour of the record, enrollment, exam, grade and report endpoints."""

from __future__ import annotations

import sys
import unittest
from contextlib import nullcontext
from pathlib import Path
from unittest import mock

from pymongo.errors import DuplicateKeyError, PyMongoError

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app import app
from registrar.enrollment import (
    RULE_CREDIT_LIMIT,
    CandidateCourse,
    EnrollmentDecision,
)
from registrar.records import RecordNotFound

VALID_EXAM = {
    "course_code": "cse101",
    "semester": "fall",
    "exam_type": "Midterm",
    "weight_pct": 40,
    "exam_date": "2024-11-12",
    "time": "10:00",
    "duration_min": 90,
}


class RouteTestCase(unittest.TestCase):
    def setUp(self) -> None:
        app.config["TESTING"] = True
        self.client = app.test_client()

    def login_as_admin(self) -> None:
        with self.client.session_transaction() as sess:
            sess["is_admin"] = True
            sess["username"] = "admin"


class EnrollmentRouteTestCase(RouteTestCase):
    def test_accepted_batch_returns_created(self) -> None:
        decision = EnrollmentDecision(
            accepted=[CandidateCourse(code="MTH101", name="Calculus I", credits=7)],
            total_credits=13,
        )
        with mock.patch(
            "registrar.routes.enrollments.enroll_student", return_value=decision
        ) as enroll:
            response = self.client.post(
                "/api/students/2023001/enrollments", json={"course_codes": ["mth101"]}
            )

        enroll.assert_called_once_with("2023001", ["MTH101"])
        self.assertEqual(201, response.status_code)
        body = response.get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(["MTH101"], body["accepted"])
        self.assertEqual(13, body["total_credits"])

    def test_rule_violation_returns_conflict(self) -> None:
        decision = EnrollmentDecision(
            rejected_reason="Total ECTS (48) exceeds 45 limit.",
            rule=RULE_CREDIT_LIMIT,
            total_credits=48,
        )
        with mock.patch("registrar.routes.enrollments.enroll_student", return_value=decision):
            response = self.client.post(
                "/api/students/2023001/enrollments", json={"course_codes": ["LAB"]}
            )

        self.assertEqual(409, response.status_code)
        self.assertEqual(
            {
                "error": "Total ECTS (48) exceeds 45 limit.",
                "rule": RULE_CREDIT_LIMIT,
                "total_credits": 48,
            },
            response.get_json(),
        )

    def test_unknown_student_returns_not_found(self) -> None:
        with mock.patch(
            "registrar.routes.enrollments.enroll_student",
            side_effect=RecordNotFound("Student not found."),
        ):
            response = self.client.post(
                "/api/students/nope/enrollments", json={"course_codes": ["CSE101"]}
            )
        self.assertEqual(404, response.status_code)
        self.assertEqual({"error": "Student not found."}, response.get_json())

    def test_empty_selection_is_invalid(self) -> None:
        response = self.client.post(
            "/api/students/2023001/enrollments", json={"course_codes": []}
        )
        self.assertEqual(400, response.status_code)
        self.assertIn("course_codes", response.get_json()["details"])

    def test_database_outage_returns_service_unavailable(self) -> None:
        with mock.patch(
            "registrar.routes.enrollments.enroll_student", side_effect=PyMongoError("down")
        ), self.assertLogs("registrar.utils.responses", level="ERROR"):
            response = self.client.post(
                "/api/students/2023001/enrollments", json={"course_codes": ["CSE101"]}
            )
        self.assertEqual(503, response.status_code)

    def test_enrollment_request_logs_caller(self) -> None:
        self.login_as_admin()
        decision = EnrollmentDecision(
            accepted=[CandidateCourse(code="MTH101", name="Calculus I", credits=7)],
            total_credits=7,
        )
        with mock.patch(
            "registrar.routes.enrollments.enroll_student", return_value=decision
        ), self.assertLogs("registrar.routes.enrollments", level="INFO") as logs:
            self.client.post(
                "/api/students/2023001/enrollments", json={"course_codes": ["MTH101"]}
            )
        self.assertIn("requested by admin", logs.output[0])

    def test_anonymous_drop_is_logged(self) -> None:
        with mock.patch(
            "registrar.routes.enrollments.drop_enrollment", return_value=1
        ), self.assertLogs("registrar.routes.enrollments", level="INFO") as logs:
            response = self.client.delete("/api/students/2023001/enrollments/CSE101")
        self.assertEqual(200, response.status_code)
        self.assertIn("requested by anonymous", logs.output[0])


class ExamRouteTestCase(RouteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as_admin()
        self.courses = mock.MagicMock(name="courses")
        self.exams = mock.MagicMock(name="exams")
        self.courses.find_one.return_value = {"_id": "CSE101"}
        for target, collection in [
            ("registrar.routes.exams.get_courses_collection", self.courses),
            ("registrar.routes.exams.get_exams_collection", self.exams),
        ]:
            patcher = mock.patch(target, return_value=collection)
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_invalid_time_is_rejected(self) -> None:
        payload = dict(VALID_EXAM, time="25:00")
        response = self.client.post("/api/exams", json=payload)

        self.assertEqual(400, response.status_code)
        self.assertEqual(
            "Valid time is required (HH:MM format).",
            response.get_json()["details"]["time"],
        )
        self.exams.insert_one.assert_not_called()

    def test_invalid_duration_is_rejected(self) -> None:
        response = self.client.post("/api/exams", json=dict(VALID_EXAM, duration_min=0))
        self.assertEqual(400, response.status_code)
        self.assertIn("duration_min", response.get_json()["details"])

    def test_created_exam_reports_weight_total(self) -> None:
        self.exams.insert_one.return_value = mock.Mock(inserted_id="exam-1")
        self.exams.find.return_value = [{"weight_pct": 40}]

        response = self.client.post("/api/exams", json=VALID_EXAM)

        self.assertEqual(201, response.status_code)
        body = response.get_json()
        self.assertEqual("CSE101", body["course_code"])
        self.assertEqual("Fall", body["semester"])
        self.assertEqual("2024-11-12", body["exam_date"])
        self.assertEqual(40, body["weight_total"]["total"])
        self.assertFalse(body["weight_total"]["over_limit"])

    def test_duplicate_exam_type_conflicts(self) -> None:
        self.exams.insert_one.side_effect = DuplicateKeyError("duplicate key")

        response = self.client.post("/api/exams", json=VALID_EXAM)

        self.assertEqual(409, response.status_code)
        self.assertEqual("duplicate_exam", response.get_json()["rule"])

    def test_exam_for_unknown_course(self) -> None:
        self.courses.find_one.return_value = None
        response = self.client.post("/api/exams", json=VALID_EXAM)
        self.assertEqual(404, response.status_code)

    def test_weight_total_over_limit_is_flagged(self) -> None:
        self.exams.find.return_value = [{"weight_pct": 70}, {"weight_pct": 50}]

        response = self.client.get("/api/exams/weight-total?course_code=CSE101&semester=Fall")

        self.assertEqual(200, response.status_code)
        body = response.get_json()
        self.assertEqual(120, body["total"])
        self.assertTrue(body["over_limit"])
        self.assertEqual(0, body["remaining"])

    def test_weight_total_needs_offering(self) -> None:
        response = self.client.get("/api/exams/weight-total?course_code=CSE101")
        self.assertEqual(400, response.status_code)

    def test_offering_cannot_be_moved(self) -> None:
        response = self.client.put(
            "/api/exams/507f1f77bcf86cd799439011", json={"semester": "Spring"}
        )
        self.assertEqual(400, response.status_code)
        self.assertIn("semester", response.get_json()["details"])


class GradeRouteTestCase(RouteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as_admin()

    def test_out_of_range_score_is_rejected(self) -> None:
        with mock.patch("registrar.routes.grades.save_grades") as save:
            response = self.client.post(
                "/api/grades",
                json={
                    "course_code": "CSE101",
                    "semester": "Fall",
                    "grades": [{"student_no": "2023001", "scores": {"Final": 101}}],
                },
            )

        self.assertEqual(400, response.status_code)
        self.assertEqual(
            "Invalid score for Final. Must be between 0-100.",
            response.get_json()["details"]["grades[0]"],
        )
        save.assert_not_called()

    def test_batch_defaults_entered_by_to_session_user(self) -> None:
        results = [{"student_no": "2023001", "letter_grade": "AA", "gpa": 4.0, "_id": "g1"}]
        with mock.patch("registrar.routes.grades.save_grades", return_value=results) as save:
            response = self.client.post(
                "/api/grades",
                json={
                    "course_code": "cse101",
                    "semester": "Fall",
                    "grades": [{"student_no": "2023001", "scores": {"Midterm": 95, "Final": 92}}],
                },
            )

        self.assertEqual(200, response.status_code)
        self.assertEqual({"ok": True, "data": results}, response.get_json())
        save.assert_called_once_with(
            "CSE101",
            "Fall",
            [{"student_no": "2023001", "scores": {"Midterm": 95.0, "Final": 92.0}}],
            "admin",
        )

    def test_unknown_student_in_batch(self) -> None:
        with mock.patch(
            "registrar.routes.grades.save_grades",
            side_effect=RecordNotFound("Student not found: 9999999"),
        ):
            response = self.client.post(
                "/api/grades",
                json={
                    "course_code": "CSE101",
                    "semester": "Fall",
                    "grades": [{"student_no": "9999999", "scores": {"Final": 50}}],
                },
            )
        self.assertEqual(404, response.status_code)

    def test_update_needs_scores_or_letter(self) -> None:
        response = self.client.put("/api/grades/g1", json={})
        self.assertEqual(400, response.status_code)
        self.assertEqual("Provide scores or a letter grade.", response.get_json()["error"])

    def test_letter_override(self) -> None:
        updated = {"_id": "g1", "letter_grade": "BA"}
        with mock.patch("registrar.routes.grades.update_grade", return_value=updated) as update:
            response = self.client.put("/api/grades/g1", json={"letter_grade": "ba"})

        self.assertEqual(200, response.status_code)
        update.assert_called_once_with(
            "g1", scores=None, letter_grade="BA", updated_by="admin"
        )


class RecordDeletionRouteTestCase(RouteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as_admin()
        self.collections = {
            name: mock.MagicMock(name=name)
            for name in ("students", "courses", "enrollments", "exams", "grades")
        }
        patches = [
            mock.patch(f"registrar.records.get_{name}_collection", return_value=collection)
            for name, collection in self.collections.items()
        ]
        patches.append(mock.patch("registrar.records.write_scope", nullcontext))
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_deleting_student_releases_their_seats(self) -> None:
        self.collections["students"].delete_one.return_value = mock.Mock(deleted_count=1)
        self.collections["enrollments"].delete_many.return_value = mock.Mock(deleted_count=2)
        self.collections["grades"].delete_many.return_value = mock.Mock(deleted_count=0)

        response = self.client.delete("/api/students/2023001")

        self.assertEqual(200, response.status_code)
        self.assertEqual({"ok": True, "enrollments": 2, "grades": 0}, response.get_json())
        self.collections["enrollments"].delete_many.assert_called_once_with(
            {"student_no": "2023001"}, session=None
        )

    def test_deleting_unknown_student(self) -> None:
        self.collections["students"].delete_one.return_value = mock.Mock(deleted_count=0)
        response = self.client.delete("/api/students/missing")
        self.assertEqual(404, response.status_code)

    def test_deleting_course_pulls_it_from_students(self) -> None:
        self.collections["grades"].count_documents.return_value = 0
        self.collections["courses"].delete_one.return_value = mock.Mock(deleted_count=1)
        self.collections["enrollments"].delete_many.return_value = mock.Mock(deleted_count=1)
        self.collections["exams"].delete_many.return_value = mock.Mock(deleted_count=0)

        response = self.client.delete("/api/courses/cse101")

        self.assertEqual(200, response.status_code)
        self.collections["students"].update_many.assert_called_once_with(
            {"enrolled_courses": "CSE101"},
            {"$pull": {"enrolled_courses": "CSE101"}},
            session=None,
        )

    def test_course_with_grades_cannot_be_deleted(self) -> None:
        self.collections["grades"].count_documents.return_value = 4

        response = self.client.delete("/api/courses/CSE101")

        self.assertEqual(409, response.status_code)
        self.collections["courses"].delete_one.assert_not_called()


class CourseUpdateRouteTestCase(RouteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as_admin()
        self.courses = mock.MagicMock(name="courses")
        self.courses.find_one.return_value = {"_id": "CSE101", "semester": "Fall"}
        self.courses.update_one.return_value = mock.Mock(matched_count=1)
        patcher = mock.patch("app.get_courses_collection", return_value=self.courses)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_semester_cannot_move(self) -> None:
        response = self.client.put("/api/courses/CSE101", json={"semester": "Spring"})

        self.assertEqual(400, response.status_code)
        self.assertEqual(
            "Semester of a course cannot be changed.",
            response.get_json()["details"]["semester"],
        )
        self.courses.update_one.assert_not_called()

    def test_same_semester_is_accepted(self) -> None:
        response = self.client.put(
            "/api/courses/CSE101", json={"semester": "fall", "quota": 70}
        )

        self.assertEqual(200, response.status_code)
        self.courses.update_one.assert_called_once_with(
            {"_id": "CSE101"}, {"$set": {"semester": "Fall", "quota": 70}}
        )

    def test_other_fields_skip_semester_lookup(self) -> None:
        response = self.client.put("/api/courses/CSE101", json={"quota": 70})
        self.assertEqual(200, response.status_code)
        self.courses.find_one.assert_not_called()


class ReportRouteTestCase(RouteTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.students = mock.MagicMock(name="students")
        self.courses = mock.MagicMock(name="courses")
        self.grades = mock.MagicMock(name="grades")
        for target, collection in [
            ("registrar.routes.reports.get_students_collection", self.students),
            ("registrar.routes.reports.get_courses_collection", self.courses),
            ("registrar.routes.reports.get_grades_collection", self.grades),
        ]:
            patcher = mock.patch(target, return_value=collection)
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_gpa_report_is_rounded_for_display(self) -> None:
        self.students.find_one.return_value = {"_id": "2023001", "gpa": 24 / 7}
        self.grades.find.return_value = [
            {"course_code": "CSE101", "semester": "Fall", "letter_grade": "AA"},
            {"course_code": "MTH101", "semester": "Fall", "letter_grade": "BB"},
            {"course_code": "PHY101", "semester": "Fall", "letter_grade": "FF"},
        ]
        self.courses.find.return_value = [
            {"_id": "CSE101", "credits": 3},
            {"_id": "MTH101", "credits": 4},
            {"_id": "PHY101", "credits": 6},
        ]

        response = self.client.get("/api/reports/gpa/2023001")

        self.assertEqual(200, response.status_code)
        body = response.get_json()
        self.assertEqual(3.43, body["gpa"])
        self.assertEqual(7, body["total_credits"])
        self.assertEqual(3, len(body["details"]))

    def test_gpa_report_for_unknown_student(self) -> None:
        self.students.find_one.return_value = None
        response = self.client.get("/api/reports/gpa/missing")
        self.assertEqual(404, response.status_code)

    def test_grade_distribution_in_scale_order(self) -> None:
        self.courses.find_one.return_value = {"_id": "CSE101", "name": "Introduction to Programming"}
        self.grades.aggregate.return_value = [
            {"letter_grade": "FF", "count": 1},
            {"letter_grade": "CC", "count": 3},
            {"letter_grade": "AA", "count": 2},
        ]

        response = self.client.get("/api/reports/grade-distribution/cse101?semester=Fall")

        self.assertEqual(200, response.status_code)
        body = response.get_json()
        self.assertEqual(
            ["AA", "CC", "FF"], [row["letter_grade"] for row in body["distribution"]]
        )
        self.assertEqual(6, body["count"])
        self.assertEqual("Fall", body["semester"])

    def test_grades_csv_export(self) -> None:
        self.grades.find.return_value = [
            {
                "student_no": "2023001",
                "course_code": "CSE101",
                "semester": "Fall",
                "scores": {"Midterm": 95, "Final": 92},
                "letter_grade": "AA",
            },
            {
                "student_no": "2023002",
                "course_code": "CSE101",
                "semester": "Fall",
                "scores": {"Final": 40},
                "letter_grade": "FF",
            },
        ]

        response = self.client.get("/api/reports/grades.csv?semester=Fall")

        self.assertEqual(200, response.status_code)
        self.assertEqual("text/csv", response.mimetype)
        self.assertIn("grades_Fall.csv", response.headers["Content-Disposition"])
        lines = response.get_data(as_text=True).splitlines()
        self.assertEqual(
            [
                "student_no,course_code,semester,Final,Midterm,letter_grade",
                "2023001,CSE101,Fall,92,95,AA",
                "2023002,CSE101,Fall,40,,FF",
            ],
            lines,
        )


if __name__ == "__main__":
    unittest.main()
