"""
Users Blueprint — staff directory and account management.

  GET    /api/v1/users              — List users (admin); filters role, department, active
  POST   /api/v1/users              — Create an account (admin)
  GET    /api/v1/users/<id>         — One profile (admin or self)
  PATCH  /api/v1/users/<id>/status  — Enable / disable { is_active } (admin)
  PATCH  /api/v1/users/<id>/role    — Change role { role } (admin)
  DELETE /api/v1/users/<id>         — Delete account and owned data (admin)

The acting admin's own account is off limits to the status, role and delete writes.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.auth import require_admin, require_signed_in
from shiftcheck.blueprints import json_body
from shiftcheck.core.exceptions import PermissionDeniedError
from shiftcheck.services import user_service
from shiftcheck.utils.errors import E, api_error, register_service_error_handlers
from shiftcheck.utils.store_errors import handle_store_error, pending_notices

logger = logging.getLogger(__name__)

users_bp = Blueprint("users_bp", __name__, url_prefix="/api/v1/users")
register_service_error_handlers(users_bp)


@users_bp.route("", methods=["GET"])
@require_admin
def list_users(session):
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    try:
        users = user_service.list_users(
            role=request.args.get("role") or None,
            department=request.args.get("department") or None,
            active_only=active_only,
        )
    except SQLAlchemyError as exc:
        users = handle_store_error(exc, "Listing users", fallback=[])
    return jsonify({
        "items": [u.to_dict() for u in users],
        "total": len(users),
        "notices": pending_notices(),
    }), 200


@users_bp.route("/<int:user_id>", methods=["GET"])
@require_signed_in
def get_user(user_id, session):
    if not session.is_admin and session.user_id != user_id:
        raise PermissionDeniedError("You can only view your own profile")
    return jsonify(user_service.get_user_or_404(user_id).to_dict()), 200


@users_bp.route("", methods=["POST"])
@require_admin
def create_user(session):
    """Body: { "email", "password", "name", "role"?, "department"?, "phone_number"?, "skills"? }"""
    user = user_service.create_staff(json_body(), session.profile)
    return jsonify(user.to_dict()), 201


@users_bp.route("/<int:user_id>/status", methods=["PATCH"])
@require_admin
def set_status(user_id, session):
    is_active = json_body().get("is_active")
    if not isinstance(is_active, bool):
        return api_error(E.VALIDATION_INVALID, "is_active must be true or false")
    user = user_service.set_active(user_id, is_active, session.profile)
    return jsonify(user.to_dict()), 200


@users_bp.route("/<int:user_id>/role", methods=["PATCH"])
@require_admin
def set_role(user_id, session):
    role = json_body().get("role")
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    user = user_service.set_role(user_id, role, session.profile)
    return jsonify(user.to_dict()), 200


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@require_admin
def delete_user(user_id, session):
    user_service.delete_user(user_id, session.profile)
    return jsonify({"message": "User deleted"}), 200
