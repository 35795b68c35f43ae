"""JSON error responses shared by the route modules."""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import jsonify

logger = logging.getLogger(__name__)


def json_error(message: str, status: int, details: Dict[str, Any] | None = None):
    payload: Dict[str, Any] = {"error": message}
    if details:
        payload["details"] = details
    return jsonify(payload), status


def validation_error(errors: Dict[str, str]):
    details = {k: v for k, v in errors.items() if k != "_global"}
    message = errors.get("_global", "Validation failed.")
    return json_error(message, 400, details if details else None)


def rule_violation(reason: str, rule: str, **extra: Any):
    payload: Dict[str, Any] = {"error": reason, "rule": rule}
    payload.update(extra)
    return jsonify(payload), 409


def handle_config_error(exc: Exception):
    logger.exception("Missing configuration for MongoDB")
    return json_error(str(exc), 500)


def handle_db_error(action: str, exc: Exception):
    logger.exception("%s due to MongoDB error", action)
    return json_error("Database unavailable. Please try again later.", 503)


__all__ = [
    "json_error",
    "validation_error",
    "rule_violation",
    "handle_config_error",
    "handle_db_error",
]
