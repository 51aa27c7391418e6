from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask.views import MethodView
from flask_login import current_user

from ..extensions import broadcaster
from ..policies import LoginRequiredMixin
from ..services.admin import lookup, remind
from ..services.assignments import engine_rng, spin
from ..services.dashboard import list_departments, search_names

santa_bp = Blueprint("santa", __name__, url_prefix="/api")


class LookupEmployeeView(MethodView):
    def get(self, employee_id: str):
        return jsonify({"success": True, **lookup(employee_id)})


class RemindMeView(MethodView):
    def get(self, employee_id: str):
        return jsonify({"success": True, "spinResult": remind(employee_id)})


class SpinView(LoginRequiredMixin):
    def post(self):
        result = spin(current_user.id, rng=engine_rng(), notifier=broadcaster)
        return jsonify({"success": True, **result.to_dict()})


class SearchNamesView(MethodView):
    def get(self):
        return jsonify({"success": True, "names": search_names(request.args.get("query", ""))})


class DepartmentsView(MethodView):
    def get(self):
        return jsonify({"success": True, "departments": list_departments()})


santa_bp.add_url_rule("/lookup-employee/<employee_id>", view_func=LookupEmployeeView.as_view("lookup_employee"))
santa_bp.add_url_rule("/remind-me/<employee_id>", view_func=RemindMeView.as_view("remind_me"))
santa_bp.add_url_rule("/spin", view_func=SpinView.as_view("spin"), methods=["POST"])
santa_bp.add_url_rule("/search-names", view_func=SearchNamesView.as_view("search_names"))
santa_bp.add_url_rule("/departments", view_func=DepartmentsView.as_view("departments"))
