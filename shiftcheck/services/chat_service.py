"""
Chat Service — team chat messages and the live message window.

Ordering: ``timestamp`` is set by the database when a message row is inserted.
The live window is the newest ``CHAT_WINDOW_SIZE`` messages, fetched newest
first and then reversed, so it always reads chronologically.

Live updates: ``chat_feed`` keeps a set of subscribers. Every change (send,
delete, read) re-delivers the whole window to each subscriber; there is no
diffing. A failed window read is logged and skipped; it never fails the
write that triggered it. ``subscribe`` returns a handle whose ``close()`` removes the
listener, and the handle is a context manager so callers can scope it.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from shiftcheck.models import db
from shiftcheck.models.chat import CHAT_CATEGORIES, MAX_MESSAGE_LENGTH, MIN_URGENT_LENGTH, ChatMessage
from shiftcheck.utils.store_errors import handle_store_error

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 100

MESSAGE_TEMPLATES = {
    "urgent": [
        "URGENT: Immediate attention required",
        "Critical situation - all hands on deck",
        "Emergency protocol activated",
    ],
    "shift": [
        "Shift change reminder",
        "Shift starting in 30 minutes",
        "Shift handover complete",
        "Schedule updated",
    ],
    "info": [
        "Important announcement",
        "Policy update",
        "Training session scheduled",
        "Team achievement",
    ],
    "general": [
        "Good morning team!",
        "Great work today!",
        "Team collaboration",
        "Meeting reminder",
    ],
}


def _window_size() -> int:
    try:
        return int(current_app.config.get("CHAT_WINDOW_SIZE", DEFAULT_WINDOW_SIZE))
    except RuntimeError:
        return DEFAULT_WINDOW_SIZE


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════
def validate_message(text: str | None, category: str = "general") -> list[str]:
    """Return every rule the message breaks; an empty list means valid."""
    if text is not None and not isinstance(text, str):
        return ["Message must be text"]
    errors = []
    text = text or ""
    if not text.strip():
        errors.append("Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        errors.append(f"Message too long (max {MAX_MESSAGE_LENGTH} characters)")
    if category == "urgent" and len(text.strip()) < MIN_URGENT_LENGTH:
        errors.append("Urgent messages should be more descriptive")
    if category not in CHAT_CATEGORIES:
        errors.append("Invalid category")
    return errors


# ═══════════════════════════════════════════════════════════════
# Live feed
# ═══════════════════════════════════════════════════════════════
class Subscription:
    """Handle for one live listener; close it to stop deliveries."""

    def __init__(self, feed: "ChatFeed", callback, category: str | None):
        self._feed = feed
        self.callback = callback
        self.category = category
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._feed._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ChatFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []

    def subscribe(self, callback, category: str | None = None) -> Subscription:
        sub = Subscription(self, callback, category)
        with self._lock:
            self._subscribers.append(sub)
        logger.debug("Chat subscriber added (category=%s, total=%d)", category, len(self._subscribers))
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)
        logger.debug("Chat subscriber removed (total=%d)", len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self) -> None:
        """Push the current window to every open subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        windows: dict[str | None, list[dict]] = {}
        for sub in subscribers:
            if sub.category not in windows:
                try:
                    windows[sub.category] = [m.to_dict() for m in recent_window(sub.category)]
                except SQLAlchemyError as exc:
                    windows[sub.category] = None
                    handle_store_error(exc, f"Refreshing live chat window (category={sub.category})", notify=False)
            if windows[sub.category] is None:
                continue
            try:
                sub.callback(windows[sub.category])
            except Exception:
                logger.exception("Chat subscriber callback failed; closing subscription")
                sub.close()


chat_feed = ChatFeed()


# ═══════════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════════
def recent_window(category: str | None = None, limit: int | None = None) -> list[ChatMessage]:
    """Newest ``limit`` messages in chronological order."""
    limit = limit or _window_size()
    q = ChatMessage.query
    if category:
        q = q.filter(ChatMessage.category == category)
    newest_first = q.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc()).limit(limit).all()
    return list(reversed(newest_first))


def send_message(session, text: str, category: str = "general", attachments=None) -> ChatMessage:
    """Validate and store a message; the timestamp always comes from the database."""
    user = session.require_signed_in()
    category = category or "general"
    errors = validate_message(text, category)
    if errors:
        raise ValidationError(errors[0], details={"errors": errors})
    if attachments is not None and not isinstance(attachments, list):
        raise ValidationError("attachments must be a list", details={"attachments": "invalid"})

    msg = ChatMessage(
        text=text.strip(),
        category=category,
        sender_id=user.id,
        sender_name=user.name,
        sender_role=user.role,
        attachments=list(attachments or []),
        is_read=False,
        read_by={},
    )
    db.session.add(msg)
    db.session.commit()
    logger.info("Chat message %s sent by user %s [%s]", msg.id, user.id, category)
    chat_feed.publish()
    return msg


def delete_message(message_id: int, session) -> int:
    """Sender or an admin may delete; admin is read from the real profile."""
    user = session.require_signed_in()
    msg = db.session.get(ChatMessage, message_id)
    if not msg:
        raise NotFoundError("ChatMessage", message_id)
    if msg.sender_id != user.id and not session.is_admin:
        raise PermissionDeniedError("You can only delete your own messages")
    db.session.delete(msg)
    db.session.commit()
    logger.info("Chat message %s deleted by user %s", message_id, user.id)
    chat_feed.publish()
    return message_id


def mark_as_read(message_id: int, user_id: int) -> ChatMessage:
    msg = db.session.get(ChatMessage, message_id)
    if not msg:
        raise NotFoundError("ChatMessage", message_id)
    read_by = dict(msg.read_by or {})
    read_by[str(user_id)] = datetime.now(timezone.utc).isoformat()
    msg.read_by = read_by
    msg.is_read = True
    db.session.commit()
    chat_feed.publish()
    return msg


# ═══════════════════════════════════════════════════════════════
# Read helpers
# ═══════════════════════════════════════════════════════════════
def message_stats() -> dict:
    messages = recent_window()
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    by_category = Counter(m.category for m in messages)
    by_sender = Counter(m.sender_name or str(m.sender_id) for m in messages)
    recent = 0
    for m in messages:
        ts = m.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        if ts >= since:
            recent += 1
    return {
        "total": len(messages),
        "by_category": dict(by_category),
        "by_sender": dict(by_sender),
        "recent_activity": recent,
    }


def search_messages(term: str, category: str | None = None) -> list[ChatMessage]:
    term = (term or "").strip().lower()
    if not term:
        return []
    like = f"%{term}%"
    q = ChatMessage.query.filter(
        or_(func.lower(ChatMessage.text).like(like), func.lower(ChatMessage.sender_name).like(like))
    )
    if category:
        q = q.filter(ChatMessage.category == category)
    newest_first = q.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc()).limit(_window_size()).all()
    return list(reversed(newest_first))


def message_templates() -> dict:
    return {k: list(v) for k, v in MESSAGE_TEMPLATES.items()}


def format_message(message: ChatMessage) -> dict:
    data = message.to_dict()
    data.update({
        "display_text": message.text,
        "is_urgent": message.category == "urgent",
        "is_shift_update": message.category == "shift",
        "is_info": message.category == "info",
        "is_general": message.category == "general",
    })
    return data
