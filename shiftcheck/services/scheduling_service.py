"""
Scheduling Service — shifts and leave requests.

Shift transitions:
    create            → open
    assign / pickup   open → scheduled (assigned_to set)
    decline           scheduled → open (assigned_to cleared; assignee only)
    auto-assign       open → scheduled (best-scoring eligible staff member)

``assigned_to`` is set exactly when the status is ``scheduled``; every write
path below keeps that true.

Leave decisions use the same conditional-update pattern as admin requests:
the pending check happens in the store, and a second decision on the same
request raises ``AlreadyProcessedError`` without a second notification.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from shiftcheck.core.exceptions import (
    AlreadyProcessedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from shiftcheck.models import db
from shiftcheck.models.auth import User
from shiftcheck.models.scheduling import (
    LEAVE_STATUSES,
    LEAVE_TYPES,
    SHIFT_STATUSES,
    SHIFT_TYPES,
    LeaveRequest,
    Shift,
)
from shiftcheck.services import user_service
from shiftcheck.services.notification import NotificationService
from shiftcheck.utils.in_flight import decision_guard

logger = logging.getLogger(__name__)

DECISION_OUTCOMES = ("approved", "rejected")

MAX_WEEKLY_HOURS = 40
AUTO_ASSIGN_MIN_SCORE = 20


# ── Parsing helpers ────────────────────────────────────────────────────────────


def _parse_datetime(value, field: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be an ISO-8601 datetime", details={field: "invalid"})
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date(value, field: str) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 date", details={field: "invalid"})


def _get_shift(shift_id: int) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise NotFoundError("Shift", shift_id)
    return shift


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_skills(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(s, str) for s in value):
        raise ValidationError("required_skills must be a list of strings", details={"required_skills": "invalid"})
    return [s.strip() for s in value if s.strip()]


# ═══════════════════════════════════════════════════════════════
# Shifts
# ═══════════════════════════════════════════════════════════════
def create_shift(data: dict, actor: User) -> Shift:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if not data.get("start_time") or not data.get("end_time"):
        raise ValidationError("start_time and end_time are required", details={"start_time": "required"})
    start = _parse_datetime(data["start_time"], "start_time")
    end = _parse_datetime(data["end_time"], "end_time")
    if end <= start:
        raise ValidationError("end_time must be after start_time", details={"end_time": "before start"})
    shift_type = data.get("shift_type") or "morning"
    if shift_type not in SHIFT_TYPES:
        raise ValidationError(f"Invalid shift_type: {shift_type}", details={"shift_type": "invalid"})

    shift = Shift(
        title=title,
        department=data.get("department") or "",
        shift_type=shift_type,
        start_time=start,
        end_time=end,
        status="open",
        required_skills=_parse_skills(data.get("required_skills")),
        notes=data.get("notes") or "",
        created_by=actor.id,
    )
    db.session.add(shift)
    db.session.commit()

    if data.get("assigned_to"):
        return assign_shift(shift.id, int(data["assigned_to"]), actor)
    return shift


def list_shifts(status: str | None = None, department: str | None = None, assigned_to: int | None = None) -> list[Shift]:
    q = Shift.query
    if status:
        if status not in SHIFT_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"status": "invalid"})
        q = q.filter(Shift.status == status)
    if department:
        q = q.filter(Shift.department == department)
    if assigned_to:
        q = q.filter(Shift.assigned_to == assigned_to)
    return q.order_by(Shift.start_time.asc(), Shift.id.asc()).all()


def assign_shift(shift_id: int, user_id: int, actor: User) -> Shift:
    """Admin assigns an open shift; the assignee gets a shift_assigned notification."""
    shift = _get_shift(shift_id)
    if shift.status != "open":
        raise ValidationError(f"Shift is {shift.status}, only open shifts can be assigned", details={"status": shift.status})
    assignee = user_service.get_user_or_404(user_id)
    if not assignee.is_active:
        raise ValidationError("Cannot assign a shift to a disabled account", details={"assigned_to": "inactive"})

    shift.assigned_to = assignee.id
    shift.status = "scheduled"
    db.session.commit()
    logger.info("Shift %s assigned to user %s by %s", shift.id, assignee.id, actor.id)
    NotificationService.notify_shift_assigned(shift)
    return shift


def decline_shift(shift_id: int, user: User) -> Shift:
    """Only the current assignee may decline a scheduled shift; it goes back to open."""
    shift = _get_shift(shift_id)
    if shift.assigned_to != user.id:
        raise PermissionDeniedError("You can only decline shifts assigned to you")
    if shift.status != "scheduled":
        raise ValidationError(f"Shift is {shift.status}, only scheduled shifts can be declined", details={"status": shift.status})
    shift.assigned_to = None
    shift.status = "open"
    db.session.commit()
    logger.info("Shift %s declined by user %s", shift.id, user.id)
    user_service.log_activity(user.id, "shift_declined", {"shift_id": shift.id})
    return shift


def pickup_shift(shift_id: int, user: User) -> Shift:
    shift = _get_shift(shift_id)
    if shift.status != "open":
        raise ValidationError("Only open shifts can be picked up", details={"status": shift.status})
    shift.assigned_to = user.id
    shift.status = "scheduled"
    db.session.commit()
    logger.info("Shift %s picked up by user %s", shift.id, user.id)
    NotificationService.notify_shift_picked_up(shift)
    return shift


def update_shift(shift_id: int, data: dict, actor: User) -> Shift:
    """Admin edit; a time change on an assigned shift notifies the assignee.

    Status edits keep the assignment consistent: only an assigned shift may
    be marked ``scheduled``, and any other status clears the assignee. Use
    ``assign_shift`` to staff an open shift.
    """
    shift = _get_shift(shift_id)
    times_changed = False

    status = data.get("status")
    if "status" in data:
        if not isinstance(status, str) or status not in SHIFT_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"status": "invalid"})
        if status == "scheduled" and shift.assigned_to is None:
            raise ValidationError(
                "Only an assigned shift can be scheduled; assign it instead",
                details={"status": "unassigned"},
            )
    required_skills = _parse_skills(data.get("required_skills")) if "required_skills" in data else None

    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title cannot be empty", details={"title": "required"})
        shift.title = title
    if "department" in data:
        shift.department = data.get("department") or ""
    if "notes" in data:
        shift.notes = data.get("notes") or ""
    if required_skills is not None:
        shift.required_skills = required_skills
    if "status" in data:
        shift.status = status
        if status != "scheduled":
            shift.assigned_to = None

    for field in ("start_time", "end_time"):
        if data.get(field):
            new_value = _parse_datetime(data[field], field)
            current = getattr(shift, field)
            if current is not None:
                current = _as_utc(current)
            if current != new_value:
                setattr(shift, field, new_value)
                times_changed = True

    if _as_utc(shift.end_time) <= _as_utc(shift.start_time):
        db.session.rollback()
        raise ValidationError("end_time must be after start_time", details={"end_time": "before start"})

    db.session.commit()
    logger.info("Shift %s updated by %s (times_changed=%s)", shift.id, actor.id, times_changed)
    if times_changed and shift.assigned_to:
        NotificationService.notify_schedule_change(shift)
    return shift


def delete_shift(shift_id: int, actor: User) -> None:
    shift = _get_shift(shift_id)
    db.session.delete(shift)
    db.session.commit()
    logger.info("Shift %s deleted by %s", shift_id, actor.id)


# ── Auto-assignment ────────────────────────────────────────────────────────────
#
# Score out of 90: availability 30 (unavailable staff are skipped), skills 25,
# weekly workload 20, department 15.


def _is_available(shift: Shift, user: User) -> bool:
    start, end = _as_utc(shift.start_time), _as_utc(shift.end_time)
    booked = Shift.query.filter(
        Shift.assigned_to == user.id, Shift.status == "scheduled", Shift.id != shift.id,
    ).all()
    for other in booked:
        if start < _as_utc(other.end_time) and end > _as_utc(other.start_time):
            return False
    on_leave = LeaveRequest.query.filter(
        LeaveRequest.user_id == user.id,
        LeaveRequest.status == "approved",
        LeaveRequest.start_date <= start.date(),
        LeaveRequest.end_date >= start.date(),
    ).first()
    return on_leave is None


def _skills_score(shift: Shift, user: User) -> tuple[int, int]:
    """(score, matched skill count)."""
    required = shift.required_skills or []
    if not required:
        return 15, 0
    have = set(user.skills or [])
    matched = sum(1 for skill in required if skill in have)
    return round(matched / len(required) * 25), matched


def _weekly_hours(shift: Shift, user: User) -> float:
    start = _as_utc(shift.start_time)
    week_start = datetime.combine(start.date() - timedelta(days=start.weekday()), time.min, tzinfo=timezone.utc)
    week_end = week_start + timedelta(days=7)
    rows = Shift.query.filter(
        Shift.assigned_to == user.id,
        Shift.status.in_(("scheduled", "completed")),
        Shift.id != shift.id,
    ).all()
    hours = 0.0
    for row in rows:
        row_start = _as_utc(row.start_time)
        if week_start <= row_start < week_end:
            hours += (_as_utc(row.end_time) - row_start).total_seconds() / 3600
    return hours


def _workload_score(hours: float) -> int:
    load = hours / MAX_WEEKLY_HOURS
    if load >= 1:
        return 0
    if load >= 0.8:
        return 5
    if load >= 0.6:
        return 10
    if load >= 0.4:
        return 15
    return 20


def _assignment_reason(score: int, same_department: bool, matched_skills: int, hours: float) -> str:
    reasons = []
    if score >= 80:
        reasons.append("Excellent match")
    elif score >= 60:
        reasons.append("Good match")
    elif score >= 40:
        reasons.append("Adequate match")
    if same_department:
        reasons.append("Same department")
    if matched_skills:
        reasons.append(f"{matched_skills} required skills")
    if hours < 30:
        reasons.append("Low workload")
    return ", ".join(reasons) or "Available staff member"


def assignment_suggestions(shift_id: int) -> list[dict]:
    """Active staff who can work the shift, best match first.

    Each entry is ``{"user": User, "score": int, "reason": str, "weekly_hours": float}``.
    """
    shift = _get_shift(shift_id)
    candidates = User.query.filter(User.role == "staff", User.is_active.is_(True)).order_by(User.name).all()

    suggestions = []
    for user in candidates:
        if not _is_available(shift, user):
            continue
        skills_score, matched = _skills_score(shift, user)
        hours = _weekly_hours(shift, user)
        same_department = bool(shift.department) and user.department == shift.department
        score = 30 + skills_score + _workload_score(hours) + (15 if same_department else 5)
        suggestions.append({
            "user": user,
            "score": score,
            "reason": _assignment_reason(score, same_department, matched, hours),
            "weekly_hours": round(hours, 2),
        })
    suggestions.sort(key=lambda s: -s["score"])
    return suggestions


def auto_assign_shift(shift_id: int, actor: User) -> tuple[Shift, dict]:
    """Assign an open shift to the best suggestion scoring above AUTO_ASSIGN_MIN_SCORE."""
    shift = _get_shift(shift_id)
    if shift.status != "open":
        raise ValidationError(f"Shift is {shift.status}, only open shifts can be assigned", details={"status": shift.status})
    suggestions = assignment_suggestions(shift_id)
    if not suggestions or suggestions[0]["score"] <= AUTO_ASSIGN_MIN_SCORE:
        raise ValidationError("No suitable staff member found for this shift", details={"assigned_to": "no match"})

    best = suggestions[0]
    shift = assign_shift(shift.id, best["user"].id, actor)
    logger.info("Shift %s auto-assigned to user %s (score=%s)", shift.id, best["user"].id, best["score"])
    return shift, best


# ═══════════════════════════════════════════════════════════════
# Leave requests
# ═══════════════════════════════════════════════════════════════
def submit_leave(user: User, data: dict) -> LeaveRequest:
    leave_type = data.get("leave_type") or ""
    if leave_type not in LEAVE_TYPES:
        raise ValidationError(
            f"leave_type must be one of {sorted(LEAVE_TYPES)}", details={"leave_type": "invalid"},
        )
    if not data.get("start_date") or not data.get("end_date"):
        raise ValidationError("start_date and end_date are required", details={"start_date": "required"})
    start = _parse_date(data["start_date"], "start_date")
    end = _parse_date(data["end_date"], "end_date")
    if end < start:
        raise ValidationError("end_date cannot be before start_date", details={"end_date": "before start"})

    leave = LeaveRequest(
        user_id=user.id,
        leave_type=leave_type,
        start_date=start,
        end_date=end,
        reason=(data.get("reason") or "").strip(),
        status="pending",
    )
    db.session.add(leave)
    db.session.commit()
    logger.info("Leave request %s submitted by user %s", leave.id, user.id)

    admin_ids = [uid for uid in user_service.admin_user_ids() if uid != user.id]
    NotificationService.notify_leave_request(admin_ids, leave, user.name)
    return leave


def list_leaves(viewer: User, status: str | None = None) -> list[LeaveRequest]:
    q = LeaveRequest.query
    if not viewer.is_admin:
        q = q.filter(LeaveRequest.user_id == viewer.id)
    if status:
        if status not in LEAVE_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"status": "invalid"})
        q = q.filter(LeaveRequest.status == status)
    return q.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()


def decide_leave(request_id: int, outcome: str, actor: User, notes: str | None = None) -> LeaveRequest:
    """Approve or reject a pending leave request exactly once."""
    if outcome not in DECISION_OUTCOMES:
        raise ValidationError(
            f"outcome must be one of {list(DECISION_OUTCOMES)}", details={"outcome": "invalid"},
        )

    operation_id = f"leave-request:{request_id}"
    log_extra = {"operation_id": operation_id, "user_id": actor.id}
    with decision_guard.hold(operation_id):
        try:
            updated = (
                LeaveRequest.query
                .filter(LeaveRequest.id == request_id, LeaveRequest.status == "pending")
                .update(
                    {
                        "status": outcome,
                        "reviewed_by": actor.id,
                        "reviewed_at": datetime.now(timezone.utc),
                        "review_notes": (notes or "").strip(),
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                db.session.rollback()
                current = db.session.get(LeaveRequest, request_id)
                if current is None:
                    raise NotFoundError("LeaveRequest", request_id)
                db.session.refresh(current)
                raise AlreadyProcessedError("LeaveRequest", request_id, current.status)
            db.session.commit()
        except (NotFoundError, AlreadyProcessedError):
            raise
        except Exception:
            db.session.rollback()
            logger.exception("Leave request %s decision failed; nothing written", request_id, extra=log_extra)
            raise

    leave = db.session.get(LeaveRequest, request_id)
    db.session.refresh(leave)
    logger.info("Leave request %s %s by user %s", request_id, outcome, actor.id, extra=log_extra)
    NotificationService.notify_leave_decision(leave)
    return leave


def delete_leave(request_id: int, user: User) -> None:
    """Owners may withdraw their own pending request; admins may delete any."""
    leave = db.session.get(LeaveRequest, request_id)
    if leave is None:
        raise NotFoundError("LeaveRequest", request_id)
    if not user.is_admin:
        if leave.user_id != user.id:
            raise PermissionDeniedError("You can only withdraw your own leave requests")
        if leave.status != "pending":
            raise AlreadyProcessedError("LeaveRequest", request_id, leave.status)
    db.session.delete(leave)
    db.session.commit()
    logger.info("Leave request %s deleted by user %s", request_id, user.id)
