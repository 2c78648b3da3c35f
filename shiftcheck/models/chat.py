"""
Team chat message model.

Messages are append-only: after creation only the read state changes.
``timestamp`` is filled in by the database clock when the row is inserted
(ties broken by id); neither clients nor app workers supply it.
"""

from shiftcheck.models import db


CHAT_CATEGORIES = ("general", "urgent", "info", "shift")
MAX_MESSAGE_LENGTH = 1000
MIN_URGENT_LENGTH = 10


class ChatMessage(db.Model):
    __tablename__ = "chat_messages"

    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(20), default="general", nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_name = db.Column(db.String(200), default="")
    sender_role = db.Column(db.String(20), default="staff")
    attachments = db.Column(db.JSON, default=list)

    is_read = db.Column(db.Boolean, default=False)
    read_by = db.Column(db.JSON, default=dict, comment="user_id -> ISO read time")

    timestamp = db.Column(db.DateTime(timezone=True), server_default=db.func.now(), nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "text": self.text,
            "category": self.category,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "sender_role": self.sender_role,
            "attachments": self.attachments or [],
            "is_read": self.is_read,
            "read_by": self.read_by or {},
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ChatMessage {self.id} [{self.category}]: {self.text[:40]}>"
