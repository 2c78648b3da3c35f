"""
ShiftCheck
Notification Service.

Central service for creating and querying per-user notifications. Creating
a notification stores the row first and then attempts push delivery to the
recipient's registered device; a push failure never fails the create.
"""

import logging
from datetime import datetime, timezone

from shiftcheck.core.exceptions import NotFoundError, PermissionDeniedError
from shiftcheck.integrations.push_gateway import push_gateway
from shiftcheck.models import db
from shiftcheck.models.auth import User
from shiftcheck.models.notification import Notification
from shiftcheck.services.notification_router import destination_for

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", type="general", data=None,
               priority="normal", action_url=None):
        """
        Create a single notification record and push it to the recipient.

        Returns:
            The created Notification instance (already committed).
        """
        payload = dict(data or {})
        payload.setdefault("type", type)
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=payload,
            priority=priority,
            action_url=action_url if action_url is not None else destination_for(type),
        )
        db.session.add(notif)
        db.session.commit()

        NotificationService.push(notif)
        return notif

    @staticmethod
    def broadcast(*, user_ids, title, message="", type="general", data=None, priority="normal"):
        """Send the same notification to several users; returns the created rows."""
        return [
            NotificationService.create(
                user_id=uid, title=title, message=message, type=type, data=data, priority=priority,
            )
            for uid in user_ids
        ]

    @staticmethod
    def push(notif):
        """Deliver a stored notification to the recipient's device, if enabled."""
        try:
            user = db.session.get(User, notif.user_id)
            if not user or not user.fcm_token or not user.settings().get("push", True):
                return None
            data = dict(notif.data or {})
            data.update({"id": notif.id, "priority": notif.priority, "userId": notif.user_id})
            result = push_gateway.send(user.fcm_token, notif.title, notif.message, data)
            if not result.ok:
                logger.warning("Push for notification %s not delivered: %s", notif.id, result.error)
            return result
        except Exception:
            logger.exception("Error sending push for notification %s", notif.id)
            return None

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a user, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def _owned(notification_id, user_id):
        notif = db.session.get(Notification, notification_id)
        if not notif:
            raise NotFoundError("Notification", notification_id)
        if notif.user_id != user_id:
            raise PermissionDeniedError("Not your notification")
        return notif

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read."""
        notif = NotificationService._owned(notification_id, user_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of a user's notifications as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(notification_id, user_id):
        notif = NotificationService._owned(notification_id, user_id)
        db.session.delete(notif)
        db.session.commit()
        return notification_id

    # ── Workflow Helpers ──────────────────────────────────────────────────

    @staticmethod
    def notify_leave_request(admin_ids, leave, requester_name):
        """Tell every admin a leave request is waiting (approve/reject actions)."""
        return NotificationService.broadcast(
            user_ids=admin_ids,
            title="New Leave Request",
            message=(
                f"{requester_name} requested {leave.leave_type} leave "
                f"from {leave.start_date} to {leave.end_date}."
            ),
            type="leave_request",
            data={"requestId": leave.id},
            priority="high",
        )

    @staticmethod
    def notify_leave_decision(leave):
        approved = leave.status == "approved"
        return NotificationService.create(
            user_id=leave.user_id,
            title="Leave Request Approved" if approved else "Leave Request Rejected",
            message=(
                f"Your {leave.leave_type} leave request from {leave.start_date} "
                f"to {leave.end_date} has been {leave.status}."
            ),
            type="leave_approved" if approved else "leave_rejected",
            data={"requestId": leave.id},
        )

    @staticmethod
    def notify_shift_assigned(shift):
        return NotificationService.create(
            user_id=shift.assigned_to,
            title="New Shift Assignment",
            message=f"You have been assigned to {shift.title} on {shift.start_time:%Y-%m-%d}.",
            type="shift_assigned",
            data={"shiftId": shift.id},
        )

    @staticmethod
    def notify_shift_picked_up(shift):
        return NotificationService.create(
            user_id=shift.assigned_to,
            title="Shift Added to Schedule",
            message=f"You have successfully picked up the {shift.title} shift on {shift.start_time:%Y-%m-%d}.",
            type="shift_picked_up",
            data={"shiftId": shift.id},
        )

    @staticmethod
    def notify_schedule_change(shift):
        return NotificationService.create(
            user_id=shift.assigned_to,
            title="Schedule Changed",
            message=f"{shift.title} now runs {shift.start_time:%Y-%m-%d %H:%M} to {shift.end_time:%Y-%m-%d %H:%M}.",
            type="schedule_change",
            data={"shiftId": shift.id},
        )

    @staticmethod
    def notify_admin_request_decision(admin_request):
        """Exactly one notification per admin-request decision."""
        approved = admin_request.status == "approved"
        return NotificationService.create(
            user_id=admin_request.user_id,
            title="Admin Access Approved" if approved else "Admin Request Rejected",
            message=(
                "Congratulations! Your admin access has been approved. You can now access admin features."
                if approved else
                "Your admin request has been rejected. Please contact an existing admin for more information."
            ),
            type="admin_request_approved" if approved else "admin_request_rejected",
            data={"requestId": admin_request.id},
            action_url="/admin-dashboard" if approved else "/staff-dashboard",
        )
