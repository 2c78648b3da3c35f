"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/signup      — Create a staff account (+ optional admin request) → JWT pair
  POST /api/v1/auth/login       — Email + password → JWT pair
  POST /api/v1/auth/refresh     — Refresh token → new token pair (rotation)
  POST /api/v1/auth/logout      — Revoke refresh token
  GET  /api/v1/auth/me          — Current session and profile
  POST /api/v1/auth/password    — Change password
  GET  /api/v1/auth/activities  — Own activity log
"""

import logging

from flask import Blueprint, jsonify, request

from shiftcheck.auth import current_session, require_signed_in
from shiftcheck.blueprints import json_body
from shiftcheck.services import jwt_service, user_service
from shiftcheck.utils.errors import E, api_error, register_service_error_handlers

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")
register_service_error_handlers(auth_bp)


def _client():
    return request.remote_addr, request.headers.get("User-Agent", "")


def _issue_tokens(user):
    return dict(jwt_service.issue_session(user, *_client()), user=user.to_dict())


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/signup
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/signup", methods=["POST"])
def signup():
    """
    Body: { "email", "password", "name", "department"?, "phone_number"?,
            "skills"?, "admin_request_reason"? }
    """
    data = json_body()
    user = user_service.signup(
        email=data.get("email", ""),
        password=data.get("password", ""),
        name=data.get("name", ""),
        department=data.get("department", ""),
        phone_number=data.get("phone_number", ""),
        skills=data.get("skills") or [],
        admin_request_reason=data.get("admin_request_reason"),
    )
    return jsonify(_issue_tokens(user)), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """Body: { "email": "...", "password": "..." }"""
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    user = user_service.authenticate(email, password)
    user_service.record_login(user, request.remote_addr, request.headers.get("User-Agent", ""))
    return jsonify(_issue_tokens(user)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new token pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    data = json_body()
    refresh_token = data.get("refresh_token", "")

    if not refresh_token:
        return api_error(E.VALIDATION_REQUIRED, "Refresh token is required")

    return jsonify(jwt_service.refresh_session(refresh_token, *_client())), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """
    Revoke the refresh token (or every session with ``"all": true``).

    Always answers 200: a stale or unknown token means the caller is already
    logged out.
    """
    data = json_body()
    refresh_token = data.get("refresh_token", "")
    revoked = False
    if isinstance(refresh_token, str) and refresh_token:
        revoked = jwt_service.revoke_session(refresh_token)

    session = current_session()
    if data.get("all") and session.is_signed_in:
        jwt_service.revoke_user_sessions(session.user_id)
        revoked = True

    return jsonify({"message": "Logged out", "revoked": revoked}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_signed_in
def me(session):
    return jsonify(session.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/password", methods=["POST"])
@require_signed_in
def change_password(session):
    """Body: { "current_password": "...", "new_password": "..." }"""
    data = json_body()
    user_service.change_password(
        session.profile,
        data.get("current_password", ""),
        data.get("new_password", ""),
    )
    return jsonify({"message": "Password updated"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/activities
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/activities", methods=["GET"])
@require_signed_in
def activities(session):
    items = user_service.list_activities(session.user_id)
    return jsonify({"items": [a.to_dict() for a in items], "total": len(items)}), 200
