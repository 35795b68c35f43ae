"""Page and sort parsing for list endpoints."""

from __future__ import annotations

import sys
import unittest
from pathlib import Path

from pymongo import ASCENDING, DESCENDING

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from registrar.utils.paging import PagingParamError, parse_page_request

SORT_FIELDS = {"full_name": "full_name", "student_no": "_id", "gpa": "gpa"}


class PageRequestTestCase(unittest.TestCase):
    def test_defaults(self) -> None:
        paging = parse_page_request({}, sort_fields=SORT_FIELDS, default_sort="full_name")
        self.assertEqual(1, paging.page)
        self.assertEqual(20, paging.page_size)
        self.assertEqual(("full_name", ASCENDING), paging.sort)

    def test_descending_sort_maps_field(self) -> None:
        paging = parse_page_request(
            {"sort": "-student_no", "page": "3", "page_size": "5"},
            sort_fields=SORT_FIELDS,
            default_sort="full_name",
        )
        self.assertEqual(("_id", DESCENDING), paging.sort)
        self.assertEqual("-student_no", paging.sort_key)
        self.assertEqual(3, paging.page)

    def test_invalid_values(self) -> None:
        for args in ({"page": "0"}, {"page": "x"}, {"page_size": "500"}, {"sort": "email"}):
            with self.subTest(args=args):
                with self.assertRaises(PagingParamError):
                    parse_page_request(args, sort_fields=SORT_FIELDS, default_sort="gpa")

    def test_window_clamps_to_last_page(self) -> None:
        paging = parse_page_request(
            {"page": "9", "page_size": "10"}, sort_fields=SORT_FIELDS, default_sort="gpa"
        )
        window = paging.window(25)
        self.assertEqual(3, window.page)
        self.assertEqual(20, window.skip)
        envelope = window.envelope([])
        self.assertFalse(envelope["has_next"])
        self.assertTrue(envelope["has_prev"])

    def test_window_for_empty_result(self) -> None:
        paging = parse_page_request({"page": "4"}, sort_fields=SORT_FIELDS, default_sort="gpa")
        window = paging.window(0)
        self.assertEqual((1, 0), (window.page, window.skip))
        self.assertFalse(window.envelope([])["has_next"])


if __name__ == "__main__":
    unittest.main()
