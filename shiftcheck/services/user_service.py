"""
User Service — signup, login, profile, activity log, notification settings,
and the admin side of the staff directory (create, enable/disable, role, delete).

Login side effects (last-login timestamp, activity row) are best-effort: a
store failure there is logged and skipped so that the login still succeeds.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
    ValidationError,
)
from shiftcheck.models import db
from shiftcheck.models.admin_request import AdminRequest
from shiftcheck.models.auth import ADMIN_ROLES, DEFAULT_NOTIFICATION_SETTINGS, USER_ROLES, Session, User, UserActivity
from shiftcheck.models.chat import ChatMessage
from shiftcheck.models.notification import Notification
from shiftcheck.models.scheduling import LeaveRequest, Shift
from shiftcheck.services import jwt_service
from shiftcheck.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
DEFAULT_ACTIVITY_LOG_LIMIT = 50


def _normalise_email(email: str) -> str:
    if not isinstance(email, str):
        raise ValidationError("Please enter a valid email address", details={"email": "invalid"})
    try:
        return validate_email(email, check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError("Please enter a valid email address", details={"email": str(e)})


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password should be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": "too short"},
        )


# ═══════════════════════════════════════════════════════════════
# Signup / login
# ═══════════════════════════════════════════════════════════════
def signup(
    email: str,
    password: str,
    name: str,
    department: str = "",
    phone_number: str = "",
    skills: list[str] | None = None,
    admin_request_reason: str | None = None,
) -> User:
    """Create a staff account, plus a pending admin request when a reason is given."""
    email = _normalise_email(email)
    _check_password(password)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required", details={"name": "required"})

    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name,
        role="staff",
        department=department or "",
        phone_number=phone_number or "",
        skills=list(skills or []),
        is_active=True,
        notification_settings=dict(DEFAULT_NOTIFICATION_SETTINGS),
    )
    db.session.add(user)
    db.session.flush()

    if admin_request_reason and admin_request_reason.strip():
        db.session.add(AdminRequest(
            user_id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone_number,
            department=user.department,
            reason=admin_request_reason.strip(),
            status="pending",
        ))

    db.session.add(UserActivity(
        user_id=user.id,
        type="account_created",
        details={"email": user.email, "role": user.role, "has_admin_request": bool(admin_request_reason)},
    ))
    db.session.commit()
    logger.info("User %s signed up (admin_request=%s)", user.id, bool(admin_request_reason))
    return user


def authenticate(email: str, password: str) -> User:
    """Check credentials; raises UnauthenticatedError / PermissionDeniedError."""
    email = (email or "").strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not verify_password(password or "", user.password_hash):
        raise UnauthenticatedError("Invalid email or password")
    if not user.is_active:
        raise PermissionDeniedError("This account has been disabled")
    return user


def record_login(user: User, ip_address: str | None = None, user_agent: str | None = None) -> None:
    """Best-effort: stamp last_login_at and append a login activity."""
    try:
        user.last_login_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Could not update login timestamp for user %s: %s", user.id, exc)

    log_activity(user.id, "login", {"ip": ip_address, "user_agent": (user_agent or "")[:200]})


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise UnauthenticatedError("Current password is incorrect")
    _check_password(new_password)
    user.password_hash = hash_password(new_password)
    db.session.commit()
    log_activity(user.id, "password_changed", {})


# ═══════════════════════════════════════════════════════════════
# Activity log
# ═══════════════════════════════════════════════════════════════
def _activity_limit() -> int:
    try:
        return int(current_app.config.get("ACTIVITY_LOG_LIMIT", DEFAULT_ACTIVITY_LOG_LIMIT))
    except RuntimeError:
        return DEFAULT_ACTIVITY_LOG_LIMIT


def log_activity(user_id: int, activity_type: str, details: dict | None = None) -> UserActivity | None:
    """Best-effort append; keeps only the newest ACTIVITY_LOG_LIMIT rows per user."""
    try:
        activity = UserActivity(user_id=user_id, type=activity_type, details=details or {})
        db.session.add(activity)
        db.session.flush()

        limit = _activity_limit()
        stale = (
            UserActivity.query.filter_by(user_id=user_id)
            .order_by(UserActivity.timestamp.desc(), UserActivity.id.desc())
            .offset(limit)
            .all()
        )
        for row in stale:
            db.session.delete(row)
        db.session.commit()
        return activity
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Could not log user activity %s for user %s: %s", activity_type, user_id, exc)
        return None


def list_activities(user_id: int) -> list[UserActivity]:
    return (
        UserActivity.query.filter_by(user_id=user_id)
        .order_by(UserActivity.timestamp.desc(), UserActivity.id.desc())
        .all()
    )


# ═══════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════
def get_user_by_id(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def list_users(role: str | None = None, department: str | None = None, active_only: bool = False) -> list[User]:
    q = User.query
    if role:
        q = q.filter_by(role=role)
    if department:
        q = q.filter_by(department=department)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(User.name).all()


def admin_user_ids() -> list[int]:
    rows = User.query.filter(User.role.in_(ADMIN_ROLES), User.is_active.is_(True)).all()
    return [u.id for u in rows]


# ═══════════════════════════════════════════════════════════════
# Staff management (admin)
# ═══════════════════════════════════════════════════════════════
def _check_not_self(user_id: int, actor: User, action: str) -> None:
    if user_id == actor.id:
        raise ValidationError(f"You cannot {action} your own account", details={"user_id": "self"})


def _check_role(role) -> str:
    if not isinstance(role, str) or role not in USER_ROLES:
        raise ValidationError(f"role must be one of {sorted(USER_ROLES)}", details={"role": "invalid"})
    return role


def create_staff(data: dict, actor: User) -> User:
    """Admin-created account; the admin hands the initial password over."""
    email = _normalise_email(data.get("email"))
    password = data.get("password")
    if not isinstance(password, str):
        password = ""
    _check_password(password)
    name = data.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("Name is required", details={"name": "required"})
    role = _check_role(data.get("role") or "staff")
    skills = data.get("skills") or []
    if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
        raise ValidationError("skills must be a list of strings", details={"skills": "invalid"})

    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    now = datetime.now(timezone.utc)
    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name,
        role=role,
        department=data.get("department") or "",
        phone_number=data.get("phone_number") or "",
        skills=skills,
        is_active=True,
        notification_settings=dict(DEFAULT_NOTIFICATION_SETTINGS),
        approved_by=actor.id if role in ADMIN_ROLES else None,
        approved_at=now if role in ADMIN_ROLES else None,
    )
    db.session.add(user)
    db.session.flush()
    db.session.add(UserActivity(
        user_id=user.id,
        type="account_created",
        details={"email": user.email, "role": role, "created_by": actor.id},
    ))
    db.session.commit()
    logger.info("User %s created by admin %s (role=%s)", user.id, actor.id, role)
    return user


def set_active(user_id: int, active: bool, actor: User) -> User:
    """Enable or disable an account. Disabling also ends every refresh session."""
    _check_not_self(user_id, actor, "disable" if not active else "re-enable")
    user = get_user_or_404(user_id)
    user.is_active = bool(active)
    db.session.commit()
    if not user.is_active:
        jwt_service.revoke_user_sessions(user.id)
    logger.info("User %s %s by admin %s", user.id, "enabled" if user.is_active else "disabled", actor.id)
    log_activity(user.id, "account_enabled" if user.is_active else "account_disabled", {"by": actor.id})
    return user


def set_role(user_id: int, role: str, actor: User) -> User:
    _check_not_self(user_id, actor, "change the role of")
    role = _check_role(role)
    user = get_user_or_404(user_id)
    previous = user.role
    user.role = role
    if role in ADMIN_ROLES and previous not in ADMIN_ROLES:
        user.approved_by = actor.id
        user.approved_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("User %s role %s -> %s by admin %s", user.id, previous, role, actor.id)
    log_activity(user.id, "role_changed", {"from": previous, "to": role, "by": actor.id})
    return user


def delete_user(user_id: int, actor: User) -> None:
    """Remove an account and everything it owns.

    Scheduled shifts held by the user go back to open; shifts they created
    or decisions they made keep their rows.
    """
    _check_not_self(user_id, actor, "delete")
    user = get_user_or_404(user_id)
    try:
        Shift.query.filter(Shift.assigned_to == user.id).update(
            {"assigned_to": None, "status": "open"}, synchronize_session=False,
        )
        for model, column in (
            (Notification, Notification.user_id),
            (ChatMessage, ChatMessage.sender_id),
            (LeaveRequest, LeaveRequest.user_id),
            (AdminRequest, AdminRequest.user_id),
            (UserActivity, UserActivity.user_id),
            (Session, Session.user_id),
        ):
            model.query.filter(column == user.id).delete(synchronize_session=False)
        db.session.delete(user)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Deleting user %s failed; nothing removed", user_id)
        raise
    logger.info("User %s deleted by admin %s", user_id, actor.id)


# ═══════════════════════════════════════════════════════════════
# Notification settings / push token
# ═══════════════════════════════════════════════════════════════
def update_notification_settings(user: User, settings: dict) -> dict:
    unknown = set(settings) - set(DEFAULT_NOTIFICATION_SETTINGS)
    if unknown:
        raise ValidationError(
            f"Unknown notification channels: {sorted(unknown)}",
            details={k: "unknown channel" for k in sorted(unknown)},
        )
    merged = user.settings()
    merged.update({k: bool(v) for k, v in settings.items()})
    user.notification_settings = merged
    db.session.commit()
    return merged


def set_push_token(user: User, token: str) -> None:
    token = (token or "").strip()
    if not token:
        raise ValidationError("token is required", details={"token": "required"})
    user.fcm_token = token
    db.session.commit()


def clear_push_token(user: User) -> None:
    user.fcm_token = None
    db.session.commit()
