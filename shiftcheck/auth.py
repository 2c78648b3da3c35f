"""
ShiftCheck
Session context — the explicit auth state handed to every view.

A request moves through three states:

    signed_out ──(bearer token present)──▶ loading ──▶ signed_in(profile)
                                              └──────▶ signed_out

The JWT middleware builds the context; views receive it as their ``session``
argument through ``require_signed_in`` / ``require_admin`` and never read
auth state from anywhere else.

Usage:
    @chat_bp.route("/chat/messages", methods=["POST"])
    @require_signed_in
    def send_message(session):
        ...
"""

from __future__ import annotations

import enum
import functools
import logging
from dataclasses import dataclass, field

from flask import g, has_request_context

from shiftcheck.core.exceptions import PermissionDeniedError, UnauthenticatedError

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    SIGNED_OUT = "signed_out"
    LOADING = "loading"
    SIGNED_IN = "signed_in"


@dataclass
class SessionContext:
    """Auth state for one request; ``profile`` is the live User row when signed in."""

    state: SessionState = SessionState.SIGNED_OUT
    profile: object | None = None
    claims: dict = field(default_factory=dict)

    # ── Transitions ──────────────────────────────────────────────────────

    @classmethod
    def signed_out(cls) -> "SessionContext":
        return cls(state=SessionState.SIGNED_OUT)

    @classmethod
    def loading(cls, claims: dict | None = None) -> "SessionContext":
        return cls(state=SessionState.LOADING, claims=claims or {})

    def sign_in(self, profile) -> "SessionContext":
        if not getattr(profile, "is_active", False):
            logger.info("Session for inactive user %s resolved as signed out", getattr(profile, "id", None))
            return self.sign_out()
        self.state = SessionState.SIGNED_IN
        self.profile = profile
        return self

    def sign_out(self) -> "SessionContext":
        self.state = SessionState.SIGNED_OUT
        self.profile = None
        self.claims = {}
        return self

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def is_signed_in(self) -> bool:
        return self.state is SessionState.SIGNED_IN and self.profile is not None

    @property
    def is_admin(self) -> bool:
        return self.is_signed_in and bool(getattr(self.profile, "is_admin", False))

    @property
    def user_id(self) -> int | None:
        return self.profile.id if self.is_signed_in else None

    def require_signed_in(self):
        if not self.is_signed_in:
            raise UnauthenticatedError()
        return self.profile

    def require_admin(self):
        profile = self.require_signed_in()
        if not self.is_admin:
            raise PermissionDeniedError("Admin access required")
        return profile

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "user": self.profile.to_dict() if self.is_signed_in else None,
        }


def current_session() -> SessionContext:
    """Return the session context of the running request (signed out if none)."""
    if not has_request_context():
        return SessionContext.signed_out()
    ctx = getattr(g, "session_context", None)
    if ctx is None:
        ctx = SessionContext.signed_out()
        g.session_context = ctx
    return ctx


def require_signed_in(f):
    """Decorator: inject the signed-in ``session``; 401 otherwise."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        session = current_session()
        session.require_signed_in()
        return f(*args, session=session, **kwargs)
    return decorated


def require_admin(f):
    """Decorator: inject the ``session`` of an admin; 401/403 otherwise."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        session = current_session()
        session.require_admin()
        return f(*args, session=session, **kwargs)
    return decorated
