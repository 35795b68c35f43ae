"""Application route blueprints and helpers."""

from .auth_simple import auth_simple_bp, current_username, require_admin
from .enrollments import enrollments_bp
from .exams import exams_bp
from .grades import grades_bp
from .reports import reports_bp

__all__ = [
    "auth_simple_bp",
    "enrollments_bp",
    "exams_bp",
    "grades_bp",
    "reports_bp",
    "current_username",
    "require_admin",
]
