"""
Store error taxonomy — classify persistence failures and degrade gracefully.

Every call site that reads from or writes to the database on behalf of a
view traps its own failure through ``handle_store_error``: the failure is
logged with its context, the session is rolled back, a transient user notice
is queued for the current request, and a safe fallback (empty list, None) is
returned instead of a 500.

``cancelled`` is treated as expected: it is logged but never surfaced.

Usage:
    try:
        items = NotificationService.list_for_user(user.id)
    except SQLAlchemyError as exc:
        items = handle_store_error(exc, "Fetching notifications", fallback=[])
    return jsonify({"items": items, "notices": pending_notices()})
"""

from __future__ import annotations

import logging

from flask import g, has_request_context
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)

from shiftcheck.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)

logger = logging.getLogger(__name__)


# ── Codes ─────────────────────────────────────────────────────────────
class StoreErrorCode:
    PERMISSION_DENIED = "permission-denied"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not-found"
    ALREADY_EXISTS = "already-exists"
    UNAVAILABLE = "unavailable"
    QUOTA_EXCEEDED = "resource-exhausted"
    FAILED_PRECONDITION = "failed-precondition"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[str, str] = {
    StoreErrorCode.PERMISSION_DENIED: "You do not have permission to perform this action",
    StoreErrorCode.UNAUTHENTICATED: "Please log in to continue",
    StoreErrorCode.NOT_FOUND: "The requested resource was not found",
    StoreErrorCode.ALREADY_EXISTS: "This resource already exists",
    StoreErrorCode.UNAVAILABLE: "Service temporarily unavailable. Please try again later",
    StoreErrorCode.QUOTA_EXCEEDED: "Service quota exceeded. Please try again later",
    StoreErrorCode.FAILED_PRECONDITION: "Database index required. Please contact support",
    StoreErrorCode.CANCELLED: "Operation was cancelled",
}

DEFAULT_USER_MESSAGE = "An unexpected error occurred"

SUPPRESSED_CODES = frozenset({StoreErrorCode.CANCELLED})


class StoreCancelledError(Exception):
    """Raised when a store operation is abandoned (client went away, stream closed)."""


class QuotaExceededError(Exception):
    """Raised when the store refuses work because a quota is exhausted."""


def classify(exc: BaseException) -> str:
    """Map an exception to a store error code."""
    if isinstance(exc, StoreCancelledError):
        return StoreErrorCode.CANCELLED
    if isinstance(exc, QuotaExceededError):
        return StoreErrorCode.QUOTA_EXCEEDED
    if isinstance(exc, IntegrityError):
        return StoreErrorCode.ALREADY_EXISTS
    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return StoreErrorCode.UNAVAILABLE
    if isinstance(exc, PermissionDeniedError):
        return StoreErrorCode.PERMISSION_DENIED
    if isinstance(exc, UnauthenticatedError):
        return StoreErrorCode.UNAUTHENTICATED
    if isinstance(exc, NotFoundError):
        return StoreErrorCode.NOT_FOUND
    if isinstance(exc, ConflictError):
        return StoreErrorCode.ALREADY_EXISTS
    return StoreErrorCode.UNKNOWN


def user_message(code: str, exc: BaseException | None = None, fallback_message: str | None = None) -> str:
    """User-facing text for a code; unknown errors fall back to the exception text."""
    if code in USER_MESSAGES:
        return USER_MESSAGES[code]
    if fallback_message:
        return fallback_message
    if exc is not None and str(exc):
        return str(exc)
    return DEFAULT_USER_MESSAGE


# ── Transient notices ─────────────────────────────────────────────────

def push_notice(message: str, level: str = "error") -> None:
    """Queue a notice for the current request (no-op outside a request)."""
    if not has_request_context():
        return
    notices = getattr(g, "user_notices", None)
    if notices is None:
        notices = []
        g.user_notices = notices
    notices.append({"level": level, "message": message})


def pending_notices() -> list[dict]:
    if not has_request_context():
        return []
    return list(getattr(g, "user_notices", None) or [])


# ── Trap ──────────────────────────────────────────────────────────────

def handle_store_error(
    exc: BaseException,
    context: str = "Store operation",
    *,
    fallback=None,
    notify: bool = True,
    fallback_message: str | None = None,
):
    """Log, roll back, queue a user notice, and return ``fallback``."""
    from shiftcheck.models import db

    code = classify(exc)
    extra = {"store_code": code}
    if code == StoreErrorCode.UNKNOWN:
        logger.error("Error in %s: %s", context, exc, exc_info=exc, extra=extra)
    else:
        logger.warning("Error in %s [%s]: %s", context, code, exc, extra=extra)

    try:
        db.session.rollback()
    except Exception:
        logger.exception("Rollback failed after error in %s", context)

    if notify and code not in SUPPRESSED_CODES:
        push_notice(user_message(code, exc, fallback_message))

    return fallback


def init_store_notices(app):
    """Start every request with an empty notice list."""

    @app.before_request
    def _reset_user_notices():
        g.user_notices = []
