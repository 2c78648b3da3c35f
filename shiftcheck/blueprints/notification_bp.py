"""
ShiftCheck
Notification Blueprint.

Provides:
    - Per-user notification inbox (list, unread count, read, delete)
    - Push token registration and notification settings
    - Notification routing: action list + deep link for an inbound event,
      click resolution, and action dispatch
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.auth import require_signed_in
from shiftcheck.blueprints import json_body, page_params
from shiftcheck.core.exceptions import ValidationError
from shiftcheck.services import notification_router, user_service
from shiftcheck.services.notification import NotificationService
from shiftcheck.utils.errors import register_service_error_handlers
from shiftcheck.utils.store_errors import handle_store_error, pending_notices

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")
register_service_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  INBOX
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("", methods=["GET"])
@require_signed_in
def list_notifications(session):
    """List own notifications, newest first. Query: unread_only, limit, offset."""
    unread_only = request.args.get("unread_only", "").lower() in ("1", "true", "yes")
    limit, offset = page_params(default_limit=50, max_limit=200)
    try:
        items, total = NotificationService.list_for_user(
            session.user_id, unread_only=unread_only, limit=limit, offset=offset,
        )
    except SQLAlchemyError as exc:
        items, total = handle_store_error(exc, "Fetching notifications", fallback=([], 0))
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "notices": pending_notices(),
    }), 200


@notification_bp.route("/unread-count", methods=["GET"])
@require_signed_in
def unread_count(session):
    try:
        count = NotificationService.unread_count(session.user_id)
    except SQLAlchemyError as exc:
        count = handle_store_error(exc, "Counting unread notifications", fallback=0)
    return jsonify({"unread_count": count, "notices": pending_notices()}), 200


@notification_bp.route("/<int:nid>/read", methods=["POST"])
@require_signed_in
def mark_read(nid, session):
    notif = NotificationService.mark_read(nid, session.user_id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/read-all", methods=["POST"])
@require_signed_in
def mark_all_read(session):
    count = NotificationService.mark_all_read(session.user_id)
    return jsonify({"marked_read": count}), 200


@notification_bp.route("/<int:nid>", methods=["DELETE"])
@require_signed_in
def delete_notification(nid, session):
    NotificationService.delete(nid, session.user_id)
    return jsonify({"deleted": True, "id": nid}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  PUSH TOKEN & SETTINGS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/push-token", methods=["PUT"])
@require_signed_in
def register_push_token(session):
    """Body: { "token": "..." }"""
    data = json_body()
    user_service.set_push_token(session.profile, data.get("token", ""))
    return jsonify({"registered": True}), 200


@notification_bp.route("/push-token", methods=["DELETE"])
@require_signed_in
def remove_push_token(session):
    user_service.clear_push_token(session.profile)
    return jsonify({"registered": False}), 200


@notification_bp.route("/settings", methods=["GET"])
@require_signed_in
def get_settings(session):
    return jsonify(session.profile.settings()), 200


@notification_bp.route("/settings", methods=["PUT"])
@require_signed_in
def update_settings(session):
    """Body: any subset of { "email": bool, "push": bool, "sms": bool }"""
    settings = user_service.update_notification_settings(session.profile, json_body())
    return jsonify(settings), 200


# ═══════════════════════════════════════════════════════════════════════════
#  ROUTING
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/route", methods=["POST"])
def route_event():
    """
    Resolve an inbound event to its presentation.

    Body: a push payload { "notification": {...}, "data": {"type", "priority", ...} }
    """
    event = notification_router.NotificationEvent.from_payload(json_body())
    return jsonify(notification_router.route(event).to_dict()), 200


@notification_bp.route("/click", methods=["POST"])
def click():
    """
    Body: { "data": {...}, "open_windows": [{"id", "url"}, ...] }

    Focuses the first open window on the app origin, else opens the destination.
    """
    data = json_body()
    open_windows = data.get("open_windows") or []
    if not isinstance(open_windows, list):
        raise ValidationError("open_windows must be a list", details={"open_windows": "invalid"})
    resolution = notification_router.resolve_click(
        data.get("data") or {}, open_windows, current_app.config.get("APP_ORIGIN"),
    )
    return jsonify(resolution.to_dict()), 200


@notification_bp.route("/actions", methods=["POST"])
@require_signed_in
def dispatch_action(session):
    """
    Body: { "action": "view|approve|reject|decline", "data": {...}, "open_windows"?: [...] }
    """
    data = json_body()
    result = notification_router.dispatch(
        data.get("action") or "",
        data.get("data") or {},
        session,
        open_windows=data.get("open_windows") or [],
        origin=current_app.config.get("APP_ORIGIN"),
    )
    return jsonify(result), 200
