from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request, session
from flask.views import MethodView
from flask_login import login_user, logout_user, current_user
from flask_wtf.csrf import generate_csrf

from ..errors import AlreadySpun, ValidationFailed
from ..policies import ADMIN_SESSION_KEY
from ..security import check_admin_passkey
from ..store import require_by_external_id

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


def _field(name: str) -> str:
    payload = request.get_json(silent=True) or request.form
    return str(payload.get(name) or "").strip()


class CsrfTokenView(MethodView):
    def get(self):
        return jsonify({"success": True, "csrfToken": generate_csrf()})


class LoginView(MethodView):
    """Staff log in with their employee ID only."""

    def post(self):
        employee_id = _field("employeeId")
        if not employee_id:
            raise ValidationFailed("Employee ID is required")

        staff = require_by_external_id(employee_id)
        if staff.has_spun and not staff.can_replay:
            raise AlreadySpun("You have already spun!")

        login_user(staff)
        return jsonify({"success": True, "staff": staff.to_dict()})


class LogoutView(MethodView):
    def post(self):
        if current_user.is_authenticated:
            logout_user()
        return jsonify({"success": True})


class AdminLoginView(MethodView):
    def post(self):
        if not check_admin_passkey(_field("passphrase")):
            logger.warning("Rejected admin login from %s", request.remote_addr)
            return jsonify({"success": False, "message": "Invalid passphrase."}), 401

        session[ADMIN_SESSION_KEY] = True
        logger.info("Admin logged in from %s", request.remote_addr)
        return jsonify({"success": True})


class AdminLogoutView(MethodView):
    def post(self):
        session.pop(ADMIN_SESSION_KEY, None)
        return jsonify({"success": True})


auth_bp.add_url_rule("/csrf-token", view_func=CsrfTokenView.as_view("csrf_token"), methods=["GET"])
auth_bp.add_url_rule("/login", view_func=LoginView.as_view("login"), methods=["POST"])
auth_bp.add_url_rule("/logout", view_func=LogoutView.as_view("logout"), methods=["POST"])
auth_bp.add_url_rule("/admin/login", view_func=AdminLoginView.as_view("admin_login"), methods=["POST"])
auth_bp.add_url_rule("/admin/logout", view_func=AdminLogoutView.as_view("admin_logout"), methods=["POST"])
