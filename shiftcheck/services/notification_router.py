"""
Notification Router — maps an inbound event to actions and a deep link.

Given an event ``{type, data, priority}`` the router produces:

    * the ordered list of user actions offered for ``type``
    * one deep-link destination from a fixed lookup table
    * ``require_interaction`` when ``priority == "high"``

Both tables are fixed. An unrecognised or missing type gets no actions and
the generic destination.

Clicking a notification focuses an already-open window on the app origin, or
opens a new one at the destination. Clicking an action re-enters the router
through ``dispatch``, which performs the state transition on the referenced
record (leave approve/reject, shift decline).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from shiftcheck.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


# ── Tables ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NotificationAction:
    action: str
    title: str

    def to_dict(self) -> dict:
        return {"action": self.action, "title": self.title}


ACTION_TABLE: dict[str, tuple[NotificationAction, ...]] = {
    "shift_assigned": (
        NotificationAction("view", "View Shift"),
        NotificationAction("decline", "Decline"),
    ),
    "leave_request": (
        NotificationAction("approve", "Approve"),
        NotificationAction("reject", "Reject"),
    ),
    "schedule_change": (
        NotificationAction("view", "View Changes"),
    ),
}

SCHEDULE_DESTINATION = "/staff-dashboard?tab=schedule"
STAFF_REQUESTS_DESTINATION = "/staff-dashboard?tab=requests"
ADMIN_REQUESTS_DESTINATION = "/admin-dashboard?tab=requests"
GENERIC_DESTINATION = "/staff-dashboard?tab=notifications"

DESTINATION_TABLE: dict[str, str] = {
    "shift_assigned": SCHEDULE_DESTINATION,
    "schedule_change": SCHEDULE_DESTINATION,
    "leave_request": ADMIN_REQUESTS_DESTINATION,
    "leave_approved": STAFF_REQUESTS_DESTINATION,
    "leave_rejected": STAFF_REQUESTS_DESTINATION,
}

KNOWN_ACTIONS = ("view", "approve", "reject", "decline")
DEFAULT_TITLE = "ShiftCheck"


# ── Payload shape checks ─────────────────────────────────────────────────────

def _mapping(value, name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{name} must be an object", details={name: "invalid"})
    return value


def _text(value, name: str, default: str | None) -> str | None:
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", details={name: "invalid"})
    return value


def _windows(open_windows) -> list[dict]:
    if open_windows is None:
        return []
    if not isinstance(open_windows, list) or not all(isinstance(w, dict) for w in open_windows):
        raise ValidationError("open_windows must be a list of objects", details={"open_windows": "invalid"})
    return open_windows


# ── Event / result types ─────────────────────────────────────────────────────

@dataclass
class NotificationEvent:
    """One inbound event; produced and consumed once."""

    type: str | None = None
    data: dict = field(default_factory=dict)
    priority: str = "normal"
    title: str = DEFAULT_TITLE
    body: str = ""

    @classmethod
    def from_payload(cls, payload: dict | None) -> "NotificationEvent":
        """Parse a push payload ``{notification: {title, body}, data: {type, priority, ...}}``."""
        payload = _mapping(payload, "payload")
        data = dict(_mapping(payload.get("data"), "data"))
        notification = _mapping(payload.get("notification"), "notification")
        return cls(
            type=_text(data.get("type") or payload.get("type"), "type", None),
            data=data,
            priority=_text(data.get("priority") or payload.get("priority"), "priority", "normal"),
            title=_text(notification.get("title"), "title", DEFAULT_TITLE),
            body=_text(notification.get("body"), "body", ""),
        )


@dataclass
class RoutedNotification:
    title: str
    body: str
    tag: str
    actions: list[NotificationAction]
    destination: str
    require_interaction: bool
    data: dict

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "tag": self.tag,
            "actions": [a.to_dict() for a in self.actions],
            "destination": self.destination,
            "require_interaction": self.require_interaction,
            "data": self.data,
        }


@dataclass
class ClickResolution:
    """Either focus an existing window or open a new one at ``url``."""

    kind: str  # "focus" | "open"
    url: str
    window_id: str | None = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "url": self.url, "window_id": self.window_id}


# ── Routing ──────────────────────────────────────────────────────────────────

def actions_for(event_type: str | None) -> list[NotificationAction]:
    return list(ACTION_TABLE.get(event_type or "", ()))


def destination_for(event_type: str | None) -> str:
    return DESTINATION_TABLE.get(event_type or "", GENERIC_DESTINATION)


def route(event: NotificationEvent) -> RoutedNotification:
    return RoutedNotification(
        title=event.title,
        body=event.body,
        tag=event.type or "general",
        actions=actions_for(event.type),
        destination=destination_for(event.type),
        require_interaction=event.priority == "high",
        data=event.data,
    )


def resolve_click(data: dict | None, open_windows=None, origin: str | None = None) -> ClickResolution:
    """Focus the first open window on ``origin``; otherwise open the destination."""
    data = _mapping(data, "data")
    url = destination_for(_text(data.get("type"), "type", None))
    windows = _windows(open_windows)
    if origin:
        for window in windows:
            window_url = window.get("url")
            if isinstance(window_url, str) and origin in window_url:
                return ClickResolution(kind="focus", url=url, window_id=window.get("id"))
    return ClickResolution(kind="open", url=url)


# ── Action dispatch ──────────────────────────────────────────────────────────

def _record_id(data: dict, *keys: str) -> int:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be an integer", details={key: "invalid"})
    raise ValidationError(f"{keys[0]} is required for this action", details={keys[0]: "required"})


def dispatch(action: str, data: dict | None, session, open_windows=None, origin: str | None = None) -> dict:
    """Run the handler for a clicked notification action.

    Returns ``{"action": ..., "result": ...}``; raises ValidationError for an
    unknown action or a payload without the referenced record id.
    """
    from shiftcheck.services import scheduling_service

    data = dict(_mapping(data, "data"))
    if not isinstance(action, str) or action not in KNOWN_ACTIONS:
        raise ValidationError(f"Unknown notification action: {action!r}", details={"action": "unknown"})

    if action == "view":
        return {"action": action, "result": resolve_click(data, open_windows, origin).to_dict()}

    if action in ("approve", "reject"):
        request_id = _record_id(data, "requestId", "request_id")
        outcome = "approved" if action == "approve" else "rejected"
        leave = scheduling_service.decide_leave(request_id, outcome, session.require_admin())
        logger.info("Leave request %s %s from notification action", request_id, outcome)
        return {"action": action, "result": leave.to_dict()}

    shift_id = _record_id(data, "shiftId", "shift_id")
    shift = scheduling_service.decline_shift(shift_id, session.require_signed_in())
    logger.info("Shift %s declined from notification action", shift_id)
    return {"action": action, "result": shift.to_dict()}
