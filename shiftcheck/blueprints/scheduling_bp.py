"""
Scheduling Blueprint — shifts and leave requests.

  GET   /api/v1/shifts                      — List (?status=&department=&assigned_to=&mine=1)
  POST  /api/v1/shifts                      — Create (admin)
  PATCH /api/v1/shifts/<id>                 — Update (admin); time change notifies assignee
  DELETE /api/v1/shifts/<id>                — Delete (admin)
  POST  /api/v1/shifts/<id>/assign          — Assign { user_id } (admin)
  POST  /api/v1/shifts/<id>/decline         — Decline (assignee)
  POST  /api/v1/shifts/<id>/pickup          — Pick up an open shift
  GET   /api/v1/shifts/<id>/suggestions     — Ranked staff for a shift (admin)
  POST  /api/v1/shifts/<id>/auto-assign     — Assign the best suggestion (admin)
  GET   /api/v1/leave-requests              — Own requests, or all for admins
  POST  /api/v1/leave-requests              — Submit { leave_type, start_date, end_date, reason? }
  POST  /api/v1/leave-requests/<id>/decide  — Approve / reject (admin)
  DELETE /api/v1/leave-requests/<id>        — Withdraw own pending request, or delete (admin)
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.auth import require_admin, require_signed_in
from shiftcheck.blueprints import json_body
from shiftcheck.services import scheduling_service
from shiftcheck.utils.errors import E, api_error, register_service_error_handlers
from shiftcheck.utils.store_errors import handle_store_error, pending_notices

logger = logging.getLogger(__name__)

scheduling_bp = Blueprint("scheduling_bp", __name__, url_prefix="/api/v1")
register_service_error_handlers(scheduling_bp)

_ACTION_TO_OUTCOME = {"approve": "approved", "reject": "rejected"}


# ═══════════════════════════════════════════════════════════════════════════
#  SHIFTS
# ═══════════════════════════════════════════════════════════════════════════

@scheduling_bp.route("/shifts", methods=["GET"])
@require_signed_in
def list_shifts(session):
    assigned_to = request.args.get("assigned_to", type=int)
    if request.args.get("mine", "").lower() in ("1", "true", "yes"):
        assigned_to = session.user_id
    try:
        shifts = scheduling_service.list_shifts(
            status=request.args.get("status") or None,
            department=request.args.get("department") or None,
            assigned_to=assigned_to,
        )
    except SQLAlchemyError as exc:
        shifts = handle_store_error(exc, "Fetching shifts", fallback=[])
    return jsonify({
        "items": [s.to_dict() for s in shifts],
        "total": len(shifts),
        "notices": pending_notices(),
    }), 200


@scheduling_bp.route("/shifts", methods=["POST"])
@require_admin
def create_shift(session):
    shift = scheduling_service.create_shift(json_body(), session.profile)
    return jsonify(shift.to_dict()), 201


@scheduling_bp.route("/shifts/<int:shift_id>", methods=["PATCH"])
@require_admin
def update_shift(shift_id, session):
    shift = scheduling_service.update_shift(shift_id, json_body(), session.profile)
    return jsonify(shift.to_dict()), 200


@scheduling_bp.route("/shifts/<int:shift_id>", methods=["DELETE"])
@require_admin
def delete_shift(shift_id, session):
    scheduling_service.delete_shift(shift_id, session.profile)
    return jsonify({"message": "Shift deleted"}), 200


def _suggestion_dict(suggestion):
    return {
        "user": suggestion["user"].to_dict(),
        "score": suggestion["score"],
        "reason": suggestion["reason"],
        "weekly_hours": suggestion["weekly_hours"],
    }


@scheduling_bp.route("/shifts/<int:shift_id>/suggestions", methods=["GET"])
@require_admin
def shift_suggestions(shift_id, session):
    suggestions = scheduling_service.assignment_suggestions(shift_id)
    return jsonify({
        "items": [_suggestion_dict(s) for s in suggestions],
        "total": len(suggestions),
    }), 200


@scheduling_bp.route("/shifts/<int:shift_id>/auto-assign", methods=["POST"])
@require_admin
def auto_assign_shift(shift_id, session):
    shift, best = scheduling_service.auto_assign_shift(shift_id, session.profile)
    return jsonify({"shift": shift.to_dict(), "assigned": _suggestion_dict(best)}), 200


@scheduling_bp.route("/shifts/<int:shift_id>/assign", methods=["POST"])
@require_admin
def assign_shift(shift_id, session):
    data = json_body()
    user_id = data.get("user_id")
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "user_id must be an integer")
    shift = scheduling_service.assign_shift(shift_id, user_id, session.profile)
    return jsonify(shift.to_dict()), 200


@scheduling_bp.route("/shifts/<int:shift_id>/decline", methods=["POST"])
@require_signed_in
def decline_shift(shift_id, session):
    shift = scheduling_service.decline_shift(shift_id, session.profile)
    return jsonify(shift.to_dict()), 200


@scheduling_bp.route("/shifts/<int:shift_id>/pickup", methods=["POST"])
@require_signed_in
def pickup_shift(shift_id, session):
    shift = scheduling_service.pickup_shift(shift_id, session.profile)
    return jsonify(shift.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  LEAVE REQUESTS
# ═══════════════════════════════════════════════════════════════════════════

@scheduling_bp.route("/leave-requests", methods=["GET"])
@require_signed_in
def list_leaves(session):
    try:
        leaves = scheduling_service.list_leaves(session.profile, status=request.args.get("status") or None)
    except SQLAlchemyError as exc:
        leaves = handle_store_error(exc, "Fetching leave requests", fallback=[])
    return jsonify({
        "items": [lr.to_dict() for lr in leaves],
        "total": len(leaves),
        "notices": pending_notices(),
    }), 200


@scheduling_bp.route("/leave-requests", methods=["POST"])
@require_signed_in
def submit_leave(session):
    leave = scheduling_service.submit_leave(session.profile, json_body())
    return jsonify(leave.to_dict()), 201


@scheduling_bp.route("/leave-requests/<int:leave_id>/decide", methods=["POST"])
@require_admin
def decide_leave(leave_id, session):
    """Body: { "decision": "approve" | "reject", "notes"?: "..." }"""
    data = json_body()
    outcome = data.get("outcome") or _ACTION_TO_OUTCOME.get(data.get("decision", ""))
    if not outcome:
        return api_error(E.VALIDATION_REQUIRED, "decision must be 'approve' or 'reject'")
    leave = scheduling_service.decide_leave(leave_id, outcome, session.profile, notes=data.get("notes"))
    return jsonify(leave.to_dict()), 200


@scheduling_bp.route("/leave-requests/<int:leave_id>", methods=["DELETE"])
@require_signed_in
def delete_leave(leave_id, session):
    scheduling_service.delete_leave(leave_id, session.profile)
    return jsonify({"message": "Leave request deleted"}), 200
