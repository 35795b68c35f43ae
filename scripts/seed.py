"""Seed helper that loads sample registrar documents into MongoDB."""

from __future__ import annotations

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List

from pymongo.errors import PyMongoError

BACKEND_DIR = Path(__file__).resolve().parent.parent / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from registrar.config import ConfigError, get_db_name
from registrar.db import (
    get_courses_collection,
    get_enrollments_collection,
    get_exams_collection,
    get_grades_collection,
    get_students_collection,
)
from registrar.records import recompute_student_gpa

SEED_PATH = Path(__file__).resolve().parent / "seed.json"

COLLECTIONS: Dict[str, Callable[[], Any]] = {
    "courses": get_courses_collection,
    "students": get_students_collection,
    "enrollments": get_enrollments_collection,
    "exams": get_exams_collection,
    "grades": get_grades_collection,
}


def read_seed_file() -> Dict[str, List[Dict[str, Any]]]:
    with SEED_PATH.open("r", encoding="utf-8") as seed_file:
        data = json.load(seed_file)
    if not isinstance(data, dict):
        raise ValueError("Seed file must contain an object of collections")
    return data


def _prepare(collection_name: str, document: Dict[str, Any]) -> Dict[str, Any]:
    if collection_name == "exams" and isinstance(document.get("exam_date"), str):
        document = dict(document, exam_date=datetime.strptime(document["exam_date"], "%Y-%m-%d"))
    return document


def main() -> None:
    try:
        db_name = get_db_name()
    except ConfigError as exc:  # pragma: no cover - simple CLI utility
        print(f"Configuration error: {exc}")
        raise SystemExit(1)

    try:
        seed_data = read_seed_file()

        for collection_name, documents in seed_data.items():
            if collection_name not in COLLECTIONS:
                raise ValueError(f"Unknown collection '{collection_name}' in seed file")
            if not isinstance(documents, list):
                raise ValueError(
                    f"Seed data for collection '{collection_name}' must be a list"
                )

            collection = COLLECTIONS[collection_name]()
            collection.delete_many({})
            if documents:
                collection.insert_many([_prepare(collection_name, doc) for doc in documents])

            print(
                f"Loaded {len(documents)} document(s) into '{collection_name}' collection"
            )

        for student in seed_data.get("students", []):
            recompute_student_gpa(student["_id"])

        print(f"Seeding complete for database '{db_name}'.")
    except PyMongoError as exc:  # pragma: no cover - requires Mongo connection
        print(f"MongoDB error: {exc}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
