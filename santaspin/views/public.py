from __future__ import annotations

from flask import Blueprint, jsonify
from flask.views import MethodView

from ..models import Participant


public_bp = Blueprint("public", __name__)


class LandingView(MethodView):
    def get(self):
        return jsonify({
            "success": True,
            "service": "santaspin",
            "num_participants": Participant.query.count(),
        })


class HealthView(MethodView):
    def get(self):
        return jsonify({"status": "healthy"})


public_bp.add_url_rule("/", view_func=LandingView.as_view("landing"))
public_bp.add_url_rule("/health", view_func=HealthView.as_view("health"))
