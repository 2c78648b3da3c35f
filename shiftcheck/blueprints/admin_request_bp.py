"""
Admin Request Blueprint — staff requests for admin access.

  POST /api/v1/admin-requests                — Submit a request (signed in)
  GET  /api/v1/admin-requests                — List (admin); ?status=pending|approved|rejected|all&search=
  GET  /api/v1/admin-requests/<id>           — One request (admin or owner)
  POST /api/v1/admin-requests/<id>/decide    — Approve / reject (admin)

Deciding an already-decided request returns 409 ERR_ALREADY_PROCESSED with
the current status in ``details``.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.auth import require_admin, require_signed_in
from shiftcheck.blueprints import json_body
from shiftcheck.services import admin_request_service
from shiftcheck.utils.errors import E, api_error, register_service_error_handlers
from shiftcheck.utils.store_errors import handle_store_error, pending_notices

logger = logging.getLogger(__name__)

admin_request_bp = Blueprint("admin_request_bp", __name__, url_prefix="/api/v1/admin-requests")
register_service_error_handlers(admin_request_bp)

_ACTION_TO_OUTCOME = {"approve": "approved", "reject": "rejected"}


@admin_request_bp.route("", methods=["POST"])
@require_signed_in
def submit_request(session):
    """Body: { "reason": "..." }"""
    data = json_body()
    req = admin_request_service.submit(session.profile, data.get("reason", ""))
    return jsonify(req.to_dict()), 201


@admin_request_bp.route("", methods=["GET"])
@require_admin
def list_requests(session):
    status = request.args.get("status", "pending")
    search = request.args.get("search", "")
    try:
        items = admin_request_service.list_requests(status=status, search=search)
    except SQLAlchemyError as exc:
        items = handle_store_error(exc, "Fetching admin requests", fallback=[])
    return jsonify({
        "items": [r.to_dict() for r in items],
        "total": len(items),
        "notices": pending_notices(),
    }), 200


@admin_request_bp.route("/<int:request_id>", methods=["GET"])
@require_signed_in
def get_request(request_id, session):
    return jsonify(admin_request_service.get_request(request_id, session.profile).to_dict()), 200


@admin_request_bp.route("/<int:request_id>/decide", methods=["POST"])
@require_admin
def decide(request_id, session):
    """
    Body: { "decision": "approve" | "reject", "reason"?: "..." }

    ``outcome: "approved" | "rejected"`` is accepted too.
    """
    data = json_body()
    outcome = data.get("outcome") or _ACTION_TO_OUTCOME.get(data.get("decision", ""))
    if not outcome:
        return api_error(E.VALIDATION_REQUIRED, "decision must be 'approve' or 'reject'")

    req = admin_request_service.decide(request_id, outcome, session.profile, reason=data.get("reason"))
    return jsonify(req.to_dict()), 200
