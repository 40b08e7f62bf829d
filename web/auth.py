"""Authentication utilities for the lottery admin API.

Admins are rows of the ``admins`` table; the session only remembers the
admin id and everything else is reloaded per request.
"""

from __future__ import annotations

import logging
from typing import Optional

from flask import jsonify
from flask_login import LoginManager, UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from core.constants import AdminRole
from database.admin_queries import LotteryReportDatabase

logger = logging.getLogger(__name__)

login_manager = LoginManager()


class AdminUser(UserMixin):
    """Represents an authenticated admin user."""

    def __init__(self, admin_id: int, school_id: int, username: str, role: AdminRole) -> None:
        self.id = str(admin_id)
        self.admin_id = admin_id
        self.school_id = school_id
        self.username = username
        self.role = AdminRole(role)

    @property
    def can_modify(self) -> bool:
        return self.role is AdminRole.FULL

    @classmethod
    def from_row(cls, row) -> "AdminUser":
        return cls(
            admin_id=row["id"],
            school_id=row["school_id"],
            username=row["username"],
            role=row["role"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.admin_id,
            "schoolId": self.school_id,
            "username": self.username,
            "role": self.role.value,
        }


def init_login_manager(app, reports: LotteryReportDatabase) -> None:
    """Initialize the Flask-Login manager against the admins table.

    Args:
        app: Flask application instance
        reports: Read-only database used to load admins
    """
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> Optional[AdminUser]:
        if not user_id.isdigit():
            return None
        row = reports.get_admin(int(user_id))
        return AdminUser.from_row(row) if row else None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def validate_credentials(reports: LotteryReportDatabase, username: str, password: str) -> Optional[AdminUser]:
    """Check a username/password pair.

    Args:
        reports: Database holding the admins table
        username: Username provided by user, matched case-insensitively
        password: Password provided by user

    Returns:
        The admin on success, None otherwise
    """
    row = reports.get_admin_by_username(username)
    if row is None or not row["password_hash"]:
        logger.info("Login rejected for unknown admin '%s'", username)
        return None
    if not check_password_hash(row["password_hash"], password):
        logger.info("Login rejected for admin '%s': wrong password", username)
        return None
    return AdminUser.from_row(row)
