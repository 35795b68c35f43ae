"""Semester grouping and GPA on the transcript."""

from __future__ import annotations

import sys
import unittest
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from registrar.transcript import build_transcript

STUDENT = {"_id": "2023001", "full_name": "Zeynep Acar", "gpa": 4.0}
COURSES = {
    "CSE101": {"_id": "CSE101", "name": "Introduction to Programming", "credits": 6},
    "MTH101": {"_id": "MTH101", "name": "Calculus I", "credits": 7},
    "CSE102": {"_id": "CSE102", "name": "Object Oriented Programming", "credits": 6},
    "HIS150": {"_id": "HIS150", "name": "History of Science", "credits": 3},
}


class TranscriptTestCase(unittest.TestCase):
    def test_semesters_in_academic_order(self) -> None:
        grades = [
            {"course_code": "HIS150", "semester": "Summer", "letter_grade": "BB"},
            {"course_code": "CSE102", "semester": "Spring", "letter_grade": "BA"},
            {"course_code": "MTH101", "semester": "Fall", "letter_grade": "FF"},
            {"course_code": "CSE101", "semester": "Fall", "letter_grade": "AA"},
        ]

        transcript = build_transcript(STUDENT, grades, COURSES)

        self.assertEqual(
            ["Fall", "Spring", "Summer"],
            [block["semester"] for block in transcript["semesters"]],
        )
        fall = transcript["semesters"][0]
        self.assertEqual(["CSE101", "MTH101"], [row["code"] for row in fall["courses"]])
        self.assertEqual(13, fall["credits"])
        self.assertAlmostEqual(24 / 13, fall["gpa"])

    def test_overall_gpa_counts_failed_courses(self) -> None:
        grades = [
            {"course_code": "CSE101", "semester": "Fall", "letter_grade": "AA"},
            {"course_code": "MTH101", "semester": "Fall", "letter_grade": "FF"},
        ]

        transcript = build_transcript(STUDENT, grades, COURSES)

        self.assertEqual("2023001", transcript["student_no"])
        self.assertEqual(13, transcript["total_credits"])
        self.assertAlmostEqual(24 / 13, transcript["gpa"])
        self.assertEqual(4.0, transcript["cached_gpa"])

    def test_grades_for_missing_courses_are_left_out(self) -> None:
        grades = [
            {"course_code": "GONE1", "semester": "Fall", "letter_grade": "AA"},
            {"course_code": "CSE101", "semester": "Fall", "letter_grade": "CC"},
        ]
        transcript = build_transcript(STUDENT, grades, COURSES)
        self.assertEqual(1, len(transcript["semesters"][0]["courses"]))
        self.assertEqual(2.0, transcript["gpa"])

    def test_no_grades_falls_back_to_cached_gpa(self) -> None:
        transcript = build_transcript({"_id": "2024001", "gpa": 0}, [], COURSES)
        self.assertEqual([], transcript["semesters"])
        self.assertEqual(0, transcript["gpa"])
        self.assertEqual(0, transcript["total_credits"])


if __name__ == "__main__":
    unittest.main()
