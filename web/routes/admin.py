"""Admin session endpoints."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from core.exceptions import AuthenticationError
from database.admin_queries import LotteryReportDatabase
from web.auth import validate_credentials


admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header of session-protected POSTs."""
    if not current_app.config.get("WTF_CSRF_ENABLED", True):
        return jsonify({"csrfToken": ""})
    return jsonify({"csrfToken": generate_csrf()})


@admin_bp.route("/login", methods=["POST"])
def login_page():
    """Authenticate an admin by username and password.

    Accepts either a JSON body or a form post.
    """
    payload = request.get_json(silent=True) or request.form
    username = str(payload.get("username", ""))
    password = str(payload.get("password", ""))

    reports = LotteryReportDatabase(current_app.config["DATABASE_PATH"])
    user = validate_credentials(reports, username, password)
    if user is None:
        raise AuthenticationError("Invalid admin credentials")

    login_user(user)
    current_app.logger.info("Admin '%s' logged in", user.username)
    return jsonify(user.to_dict())


@admin_bp.route("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())


@admin_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})
