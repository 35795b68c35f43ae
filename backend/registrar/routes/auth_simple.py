"""Session login for registrar staff.

A single staff account is configured through ``ADMIN_USER`` and
``ADMIN_PASS``. Catalog, exam and grade changes are wrapped in
:func:`require_admin`; reads and student course selection are open.
"""

from __future__ import annotations

import hmac
import logging
from functools import wraps
from typing import Any, Callable, TypeVar, cast

from flask import Blueprint, jsonify, request, session

from .. import config

auth_simple_bp = Blueprint("auth_simple", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])


def require_admin(func: _F) -> _F:
    """Reject the request with 403 unless a staff session is active."""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        if not session.get("is_admin"):
            return jsonify({"error": "forbidden"}), 403
        return func(*args, **kwargs)

    return cast(_F, wrapper)


def current_username() -> str | None:
    return session.get("username")


def _credentials_match(username: str, password: str) -> bool:
    user_ok = hmac.compare_digest(username.encode(), config.ADMIN_USER.encode())
    pass_ok = hmac.compare_digest(password.encode(), config.ADMIN_PASS.encode())
    return user_ok and pass_ok


@auth_simple_bp.post("/login")
def login():
    body = request.get_json(silent=True) or {}
    username = str(body.get("username", "")).strip()

    session.clear()
    if not _credentials_match(username, str(body.get("password", ""))):
        logger.warning("Rejected staff login for %r", username)
        return jsonify({"error": "invalid_credentials"}), 401

    session.update(is_admin=True, username=username)
    return jsonify({"ok": True, "user": {"username": username, "role": "staff"}})


@auth_simple_bp.post("/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_simple_bp.get("/me")
def me():
    return jsonify(
        {"is_admin": bool(session.get("is_admin")), "username": current_username()}
    )


__all__ = ["auth_simple_bp", "require_admin", "current_username"]
