from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify, request
from flask.views import MethodView

from ..errors import ValidationFailed
from ..extensions import broadcaster
from ..policies import AdminRequiredMixin
from ..services import admin as admin_service
from ..services.assignments import engine_rng
from ..services.dashboard import get_stats, list_spun
from ..services.imports import import_rows, read_rows
from ..services.repair import repair_unmatched

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _required(payload: dict, *names: str) -> list[str]:
    values = [str(payload.get(name) or "").strip() for name in names]
    missing = [name for name, value in zip(names, values) if not value]
    if missing:
        raise ValidationFailed(f"Missing {', '.join(missing)}")
    return values


class UploadView(AdminRequiredMixin):
    def post(self, group: str):
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            raise ValidationFailed("No file uploaded")

        rows = read_rows(upload.read(), upload.filename)
        report = import_rows(rows, group, key=current_app.config["SANTA_IMPORT_KEY"])
        return jsonify({"success": True, **report.to_dict()})


class GenerateIdView(AdminRequiredMixin):
    def post(self):
        payload = _payload()
        participant, new_id = admin_service.generate_identifier(
            payload.get("name"), payload.get("department"), payload.get("group"),
        )
        return jsonify({
            "success": True,
            "message": "One-time ID generated successfully",
            "oneTimeId": new_id,
            "staff": participant.to_dict(),
        })


class StaffListView(AdminRequiredMixin):
    def get(self):
        page = request.args.get("page", 1, type=int)
        search = request.args.get("search", "")
        listing = list_spun(page=page, search=search, per_page=current_app.config["SANTA_PAGE_SIZE"])
        return jsonify({"success": True, **listing})


class StatsView(AdminRequiredMixin):
    def get(self):
        return jsonify({"success": True, "stats": get_stats()})


class GiftStatusView(AdminRequiredMixin):
    def put(self, participant_id: int):
        participant = admin_service.set_gift_shared(participant_id, _payload().get("giftShared"))
        return jsonify({"success": True, "staff": participant.to_dict()})


class ResetSpinView(AdminRequiredMixin):
    def post(self, participant_id: int):
        admin_service.reset_spin(participant_id)
        return jsonify({"success": True, "message": "Spin reset successfully"})


class ResetParticipantView(AdminRequiredMixin):
    def post(self, employee_id: str):
        admin_service.reset_participant(employee_id)
        return jsonify({"success": True, "message": "Spin reset successfully"})


class ResetRecipientFlagsView(AdminRequiredMixin):
    def post(self):
        count = admin_service.reset_all_recipient_flags()
        return jsonify({"success": True, "count": count})


class ReplaysView(AdminRequiredMixin):
    def post(self, employee_id: str):
        participant = admin_service.grant_replays(employee_id, _payload().get("count"))
        return jsonify({"success": True, "staff": participant.to_dict()})


class AssignView(AdminRequiredMixin):
    def post(self):
        spinner_id, recipient_id = _required(_payload(), "spinner", "recipient")
        spinner, recipient = admin_service.assign_directly(spinner_id, recipient_id, notifier=broadcaster)
        return jsonify({"success": True, "spinner": spinner.to_dict(), "recipient": recipient.to_dict()})


class PreAssignmentsView(AdminRequiredMixin):
    def get(self):
        return jsonify({"success": True, "preAssignments": admin_service.list_pre_assignments()})

    def post(self):
        spinner_id, recipient_id = _required(_payload(), "spinner", "recipient")
        admin_service.set_pre_assignment(spinner_id, recipient_id)
        return jsonify({"success": True, "preAssignments": admin_service.list_pre_assignments()})

    def delete(self):
        (spinner_id,) = _required(_payload(), "spinner")
        removed = admin_service.clear_pre_assignment(spinner_id)
        return jsonify({"success": True, "removed": removed})


class ChangeIdView(AdminRequiredMixin):
    def post(self):
        current_id, new_id = _required(_payload(), "employeeId", "newEmployeeId")
        participant = admin_service.change_external_id(current_id, new_id)
        return jsonify({"success": True, "staff": participant.to_dict()})


class RepairView(AdminRequiredMixin):
    def post(self):
        report = repair_unmatched(rng=engine_rng(), notifier=broadcaster)
        return jsonify({"success": True, **report.to_dict()})


class EventsView(AdminRequiredMixin):
    """Server-Sent Events feed of spins, replays and repairs."""

    def get(self):
        subscription = broadcaster.subscribe()
        return Response(
            broadcaster.stream(subscription),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )


admin_bp.add_url_rule("/upload/<group>", view_func=UploadView.as_view("upload"), methods=["POST"])
admin_bp.add_url_rule("/generate-id", view_func=GenerateIdView.as_view("generate_id"), methods=["POST"])
admin_bp.add_url_rule("/staff", view_func=StaffListView.as_view("staff"))
admin_bp.add_url_rule("/stats", view_func=StatsView.as_view("stats"))
admin_bp.add_url_rule("/gift-status/<int:participant_id>", view_func=GiftStatusView.as_view("gift_status"), methods=["PUT"])
admin_bp.add_url_rule("/reset-spin/<int:participant_id>", view_func=ResetSpinView.as_view("reset_spin"), methods=["POST"])
admin_bp.add_url_rule("/reset/<employee_id>", view_func=ResetParticipantView.as_view("reset_participant"), methods=["POST"])
admin_bp.add_url_rule(
    "/reset-recipient-flags",
    view_func=ResetRecipientFlagsView.as_view("reset_recipient_flags"),
    methods=["POST"],
)
admin_bp.add_url_rule("/replays/<employee_id>", view_func=ReplaysView.as_view("replays"), methods=["POST"])
admin_bp.add_url_rule("/assign", view_func=AssignView.as_view("assign"), methods=["POST"])
admin_bp.add_url_rule(
    "/pre-assignments",
    view_func=PreAssignmentsView.as_view("pre_assignments"),
    methods=["GET", "POST", "DELETE"],
)
admin_bp.add_url_rule("/change-id", view_func=ChangeIdView.as_view("change_id"), methods=["POST"])
admin_bp.add_url_rule("/repair", view_func=RepairView.as_view("repair"), methods=["POST"])
admin_bp.add_url_rule("/events", view_func=EventsView.as_view("events"))
