from __future__ import annotations

from flask import jsonify, session
from flask.views import MethodView
from flask_login import current_user

ADMIN_SESSION_KEY = "santa_admin"


def is_admin_user() -> bool:
    return bool(session.get(ADMIN_SESSION_KEY))


def _denied(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


class LoginRequiredMixin(MethodView):
    def dispatch_request(self, *args, **kwargs):
        if not current_user.is_authenticated:
            return _denied("Please log in with your employee ID.", 401)
        return super().dispatch_request(*args, **kwargs)


class AdminRequiredMixin(MethodView):
    def dispatch_request(self, *args, **kwargs):
        if not is_admin_user():
            return _denied("Not authorized.", 403)
        return super().dispatch_request(*args, **kwargs)
