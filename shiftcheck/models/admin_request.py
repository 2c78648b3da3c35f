"""
Admin access request — a staff member asking to be promoted to admin.

Lifecycle: pending → approved | rejected. Both outcomes are terminal; the
decision is written by a conditional update in the service layer, never by
assigning ``status`` on a loaded instance.
"""

from datetime import datetime, timezone

from shiftcheck.models import db


ADMIN_REQUEST_STATUSES = {"pending", "approved", "rejected"}
DECISION_OUTCOMES = ("approved", "rejected")


class AdminRequest(db.Model):
    __tablename__ = "admin_requests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(50), default="")
    department = db.Column(db.String(100), default="")
    reason = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)

    rejection_reason = db.Column(db.Text, nullable=True)
    decided_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    decided_by_name = db.Column(db.String(200), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    requested_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "department": self.department,
            "reason": self.reason,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "decided_by": self.decided_by,
            "decided_by_name": self.decided_by_name,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
        }

    def __repr__(self):
        return f"<AdminRequest {self.id}: user={self.user_id} {self.status}>"
