"""
Admin Request Service — staff asking to be promoted to admin.

Design decisions:
    - The pending check lives in the database: the decision is one
      conditional UPDATE (``WHERE id = :id AND status = 'pending'``). Zero
      affected rows means someone else decided first.
    - On approval the requester's promotion is written in the same
      transaction as the status change, so either both land or neither does.
    - Exactly one notification is created for the requester, after commit.
    - A process-local in-flight guard rejects a repeated submission of the
      same decision while the first is still running.
    - No automatic retry on failure.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_

from shiftcheck.core.exceptions import (
    AlreadyProcessedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from shiftcheck.models import db
from shiftcheck.models.admin_request import ADMIN_REQUEST_STATUSES, DECISION_OUTCOMES, AdminRequest
from shiftcheck.models.auth import User
from shiftcheck.services import user_service
from shiftcheck.services.notification import NotificationService
from shiftcheck.utils.in_flight import decision_guard

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Admin approval required"


# ── Submit / read ──────────────────────────────────────────────────────────────


def submit(user: User, reason: str) -> AdminRequest:
    """Open a pending admin request for ``user``."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Please explain why you need admin access", details={"reason": "required"})
    if user.is_admin:
        raise ValidationError("You already have admin access", details={"role": user.role})

    existing = AdminRequest.query.filter_by(user_id=user.id, status="pending").first()
    if existing:
        raise ConflictError("AdminRequest", "status", "pending")

    req = AdminRequest(
        user_id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone_number or "",
        department=user.department or "",
        reason=reason,
        status="pending",
    )
    db.session.add(req)
    db.session.commit()
    user_service.log_activity(user.id, "admin_request_submitted", {"request_id": req.id})
    logger.info("Admin request %s submitted by user %s", req.id, user.id)
    return req


def list_requests(status: str | None = "pending", search: str = "") -> list[AdminRequest]:
    """Requests newest first; ``search`` matches name or email, case-insensitive."""
    q = AdminRequest.query
    if status and status != "all":
        if status not in ADMIN_REQUEST_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"status": "invalid"})
        q = q.filter(AdminRequest.status == status)
    term = (search or "").strip().lower()
    if term:
        like = f"%{term}%"
        q = q.filter(or_(func.lower(AdminRequest.name).like(like), func.lower(AdminRequest.email).like(like)))
    return q.order_by(AdminRequest.requested_at.desc(), AdminRequest.id.desc()).all()


def get_request(request_id: int, viewer: User) -> AdminRequest:
    req = db.session.get(AdminRequest, request_id)
    if not req:
        raise NotFoundError("AdminRequest", request_id)
    if not viewer.is_admin and req.user_id != viewer.id:
        raise PermissionDeniedError("You can only view your own admin requests")
    return req


# ── Decide ─────────────────────────────────────────────────────────────────────


def decide(request_id: int, outcome: str, actor: User, reason: str | None = None) -> AdminRequest:
    """Approve or reject a pending request exactly once.

    Raises:
        ValidationError: outcome not approved/rejected.
        AlreadyProcessedError: the same decision is already running here
            (raised as its ``OperationInFlightError`` subclass).
        NotFoundError: no such request.
        AlreadyProcessedError: request is no longer pending.
    """
    if outcome not in DECISION_OUTCOMES:
        raise ValidationError(
            f"outcome must be one of {list(DECISION_OUTCOMES)}", details={"outcome": "invalid"},
        )

    operation_id = f"admin-request:{request_id}"
    log_extra = {"operation_id": operation_id, "user_id": actor.id}
    with decision_guard.hold(operation_id):
        now = datetime.now(timezone.utc)
        values = {
            "status": outcome,
            "decided_by": actor.id,
            "decided_by_name": actor.name,
            "decided_at": now,
        }
        if outcome == "rejected":
            values["rejection_reason"] = (reason or "").strip() or DEFAULT_REJECTION_REASON

        try:
            updated = (
                AdminRequest.query
                .filter(AdminRequest.id == request_id, AdminRequest.status == "pending")
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                db.session.rollback()
                current = db.session.get(AdminRequest, request_id)
                if current is None:
                    raise NotFoundError("AdminRequest", request_id)
                db.session.refresh(current)
                raise AlreadyProcessedError("AdminRequest", request_id, current.status)

            req = db.session.get(AdminRequest, request_id)
            db.session.refresh(req)
            if outcome == "approved":
                requester = db.session.get(User, req.user_id)
                if requester is None:
                    raise NotFoundError("User", req.user_id)
                requester.role = "admin"
                requester.is_active = True
                requester.approved_by = actor.id
                requester.approved_at = now
            db.session.commit()
        except (NotFoundError, AlreadyProcessedError):
            db.session.rollback()
            raise
        except Exception:
            db.session.rollback()
            logger.exception("Admin request %s decision failed; nothing written", request_id, extra=log_extra)
            raise

    logger.info("Admin request %s %s by user %s", request_id, outcome, actor.id, extra=log_extra)
    NotificationService.notify_admin_request_decision(req)
    user_service.log_activity(
        actor.id, f"admin_request_{outcome}", {"request_id": req.id, "user_id": req.user_id},
    )
    return req
