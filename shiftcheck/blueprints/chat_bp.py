"""
Chat Blueprint — team chat.

  GET    /api/v1/chat/messages            — Chronological window (?category=)
  POST   /api/v1/chat/messages            — Send { text, category?, attachments? }
  DELETE /api/v1/chat/messages/<id>       — Delete (sender or admin)
  POST   /api/v1/chat/messages/<id>/read  — Mark read for the caller
  GET    /api/v1/chat/stream              — Server-Sent Events; full window per change
  GET    /api/v1/chat/stats               — Counts by category / sender
  GET    /api/v1/chat/search?q=           — Case-insensitive text / sender search
  GET    /api/v1/chat/templates           — Canned texts per category
"""

import json
import logging
import queue

from flask import Blueprint, Response, jsonify, request, stream_with_context
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.auth import require_signed_in
from shiftcheck.blueprints import json_body
from shiftcheck.core.exceptions import ValidationError
from shiftcheck.models.chat import CHAT_CATEGORIES
from shiftcheck.services import chat_service
from shiftcheck.utils.errors import register_service_error_handlers
from shiftcheck.utils.store_errors import handle_store_error, pending_notices

logger = logging.getLogger(__name__)

chat_bp = Blueprint("chat_bp", __name__, url_prefix="/api/v1/chat")
register_service_error_handlers(chat_bp)

STREAM_HEARTBEAT_SECONDS = 15


def _category_arg():
    category = request.args.get("category") or None
    if category and category not in CHAT_CATEGORIES:
        raise ValidationError("Invalid category", details={"category": category})
    return category


def _sse(event, payload):
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


# ═══════════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════════
@chat_bp.route("/messages", methods=["GET"])
@require_signed_in
def list_messages(session):
    category = _category_arg()
    try:
        messages = chat_service.recent_window(category)
    except SQLAlchemyError as exc:
        messages = handle_store_error(exc, "Loading chat messages", fallback=[])
    return jsonify({
        "items": [chat_service.format_message(m) for m in messages],
        "notices": pending_notices(),
    }), 200


@chat_bp.route("/messages", methods=["POST"])
@require_signed_in
def send_message(session):
    data = json_body()
    msg = chat_service.send_message(
        session,
        data.get("text") or "",
        data.get("category") or "general",
        data.get("attachments") or [],
    )
    return jsonify(chat_service.format_message(msg)), 201


@chat_bp.route("/messages/<int:message_id>", methods=["DELETE"])
@require_signed_in
def delete_message(message_id, session):
    chat_service.delete_message(message_id, session)
    return jsonify({"deleted": True, "id": message_id}), 200


@chat_bp.route("/messages/<int:message_id>/read", methods=["POST"])
@require_signed_in
def mark_read(message_id, session):
    msg = chat_service.mark_as_read(message_id, session.user_id)
    return jsonify(chat_service.format_message(msg)), 200


# ═══════════════════════════════════════════════════════════════
# Live stream
# ═══════════════════════════════════════════════════════════════
@chat_bp.route("/stream", methods=["GET"])
@require_signed_in
def stream(session):
    """
    Server-Sent Events. The first frame is the current window; each change
    pushes the whole window again. The subscription is closed when the client
    disconnects and the generator is torn down.
    """
    category = _category_arg()
    updates = queue.Queue()
    subscription = chat_service.chat_feed.subscribe(updates.put, category)
    try:
        initial = [m.to_dict() for m in chat_service.recent_window(category)]
    except SQLAlchemyError as exc:
        subscription.close()
        initial = handle_store_error(exc, "Opening chat stream", fallback=[])
        return jsonify({"items": initial, "notices": pending_notices()}), 200

    def generate():
        try:
            yield _sse("messages", initial)
            while True:
                try:
                    window = updates.get(timeout=STREAM_HEARTBEAT_SECONDS)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse("messages", window)
        finally:
            subscription.close()
            logger.debug("Chat stream closed for user %s", session.user_id)

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ═══════════════════════════════════════════════════════════════
# Read helpers
# ═══════════════════════════════════════════════════════════════
@chat_bp.route("/stats", methods=["GET"])
@require_signed_in
def stats(session):
    try:
        result = chat_service.message_stats()
    except SQLAlchemyError as exc:
        result = handle_store_error(
            exc, "Computing chat stats",
            fallback={"total": 0, "by_category": {}, "by_sender": {}, "recent_activity": 0},
        )
    result["notices"] = pending_notices()
    return jsonify(result), 200


@chat_bp.route("/search", methods=["GET"])
@require_signed_in
def search(session):
    category = _category_arg()
    try:
        messages = chat_service.search_messages(request.args.get("q", ""), category)
    except SQLAlchemyError as exc:
        messages = handle_store_error(exc, "Searching chat messages", fallback=[])
    return jsonify({
        "items": [chat_service.format_message(m) for m in messages],
        "notices": pending_notices(),
    }), 200


@chat_bp.route("/templates", methods=["GET"])
@require_signed_in
def templates(session):
    return jsonify(chat_service.message_templates()), 200
