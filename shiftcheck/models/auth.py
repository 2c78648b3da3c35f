"""
Auth Models — users, refresh-token sessions, user activity log.

The users table doubles as the staff directory: role, department and
notification preferences live on the same row the login checks.
"""

from datetime import datetime, timezone

from shiftcheck.models import db


# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {"staff", "admin", "manager"}
ADMIN_ROLES = {"admin", "manager"}

DEFAULT_NOTIFICATION_SETTINGS = {"email": True, "push": True, "sms": False}


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), default="staff", nullable=False)  # staff, admin, manager
    department = db.Column(db.String(100), default="")
    phone_number = db.Column(db.String(50), default="")
    skills = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    notification_settings = db.Column(db.JSON, default=lambda: dict(DEFAULT_NOTIFICATION_SETTINGS))
    fcm_token = db.Column(db.String(500), nullable=True)

    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    sessions = db.relationship("Session", back_populates="user", lazy="dynamic", cascade="all, delete-orphan")

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES

    def settings(self):
        """Notification settings merged over the defaults."""
        merged = dict(DEFAULT_NOTIFICATION_SETTINGS)
        merged.update(self.notification_settings or {})
        return merged

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "department": self.department,
            "phone_number": self.phone_number,
            "skills": self.skills or [],
            "is_active": self.is_active,
            "notification_settings": self.settings(),
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 2. SESSIONS (refresh tokens, stored hashed)
# ═══════════════════════════════════════════════════════════════
class Session(db.Model):
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        expires_at = self.expires_at
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:  # SQLite drops tzinfo
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 3. USER ACTIVITIES
# ═══════════════════════════════════════════════════════════════
class UserActivity(db.Model):
    """One row per account event (account_created, login, password_changed)."""

    __tablename__ = "user_activities"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False)
    details = db.Column(db.JSON, default=dict)
    timestamp = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "details": self.details or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
