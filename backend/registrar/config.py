"""Application configuration helpers."""

import os

from dotenv import load_dotenv

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_DOTENV_PATH = os.path.join(_BASE_DIR, ".env")

if os.path.exists(_DOTENV_PATH):
    load_dotenv(_DOTENV_PATH)


class ConfigError(RuntimeError):
    """Raised when configuration values are missing or invalid."""


# Registrar policy
MAX_CREDITS = 45
DEFAULT_QUOTA = 50
MAX_EXAM_WEIGHT_TOTAL = 100
SEMESTERS = ("Fall", "Spring", "Summer")
COURSE_TYPES = ("Mandatory", "Elective")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "registrar_session")
ADMIN_USER = os.getenv("ADMIN_USER", "admin")
ADMIN_PASS = os.getenv("ADMIN_PASS", "admin")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_TRUTHY = {"1", "true", "yes", "on"}

_MONGO_URI_CACHE = None
_DB_NAME_CACHE = None


def get_mongo_uri():
    """Return the MongoDB connection string from the environment."""

    global _MONGO_URI_CACHE

    if _MONGO_URI_CACHE:
        return _MONGO_URI_CACHE

    uri = os.getenv("MONGODB_URI")
    if not uri:
        raise ConfigError("MONGODB_URI is not set. Define it in backend/.env.")

    _MONGO_URI_CACHE = uri
    return uri


def get_db_name():
    """Return the database name derived from the MongoDB URI or env var."""

    global _DB_NAME_CACHE

    if _DB_NAME_CACHE:
        return _DB_NAME_CACHE

    db_name = os.getenv("MONGODB_DB")
    if db_name:
        _DB_NAME_CACHE = db_name
        return db_name

    main = get_mongo_uri().split("?", 1)[0].rstrip("/")
    after_scheme = main.split("://", 1)[1] if "://" in main else main
    candidate = after_scheme.split("/", 1)[1] if "/" in after_scheme else ""
    if not candidate:
        raise ConfigError(
            "Database name not found. Provide it via MONGODB_URI or MONGODB_DB."
        )

    _DB_NAME_CACHE = candidate
    return candidate


def transactions_enabled():
    """Whether per-student writes run inside a MongoDB transaction.

    Transactions need a replica set, so they are opt-in via
    ``MONGODB_TRANSACTIONS``.
    """

    return os.getenv("MONGODB_TRANSACTIONS", "").strip().lower() in _TRUTHY


__all__ = [
    "ConfigError",
    "get_mongo_uri",
    "get_db_name",
    "transactions_enabled",
    "MAX_CREDITS",
    "DEFAULT_QUOTA",
    "MAX_EXAM_WEIGHT_TOTAL",
    "SEMESTERS",
    "COURSE_TYPES",
    "SECRET_KEY",
    "SESSION_COOKIE_NAME",
    "ADMIN_USER",
    "ADMIN_PASS",
    "LOG_LEVEL",
]
