"""
Token service — signed bearer tokens and the refresh sessions behind them.

A sign-in issues two HS256 tokens: a short access token that the middleware
turns into a ``SessionContext`` on every request, and a refresh token whose
SHA-256 hash is stored as a ``Session`` row. Refreshing rotates that row, so
each refresh token can be spent once.

    issue_session(user, ip, agent)     → token bundle (signup / login)
    refresh_session(raw, ip, agent)    → new bundle, old row deactivated
    revoke_session(raw)                → logout
    revoke_user_sessions(user_id)      → logout everywhere / account disabled
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from shiftcheck.core.exceptions import UnauthenticatedError
from shiftcheck.models import db
from shiftcheck.models.auth import Session, User

ALGORITHM = "HS256"
TOKEN_LIFETIMES = {
    "access": ("JWT_ACCESS_EXPIRES", 900),
    "refresh": ("JWT_REFRESH_EXPIRES", 604800),
}


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _lifetime(token_type: str) -> int:
    key, default = TOKEN_LIFETIMES[token_type]
    return int(current_app.config.get(key, default))


def _encode(user_id: int, token_type: str, **claims) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=_lifetime(token_type))
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iat": now,
        "exp": expires_at,
        "jti": str(uuid.uuid4()),
        **claims,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM), expires_at


def generate_access_token(user_id: int, role: str) -> str:
    token, _ = _encode(user_id, "access", role=role)
    return token


def decode_token(token: str, expected_type: str) -> dict:
    """Verified payload; raises ``jwt.InvalidTokenError`` (or a subclass)."""
    payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ── Refresh sessions ───────────────────────────────────────────────────────────


def _new_session(user: User, ip_address: str | None, user_agent: str | None) -> tuple[dict, Session]:
    refresh_token, expires_at = _encode(user.id, "refresh")
    row = Session(
        user_id=user.id,
        token_hash=hash_token(refresh_token),
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(row)
    bundle = {
        "access_token": generate_access_token(user.id, user.role),
        "refresh_token": refresh_token,
        "token_type": "Bearer",
        "expires_in": _lifetime("access"),
    }
    return bundle, row


def issue_session(user: User, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    bundle, _ = _new_session(user, ip_address, user_agent)
    db.session.commit()
    return bundle


def refresh_session(raw_token: str, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """Swap a refresh token for a new bundle.

    Raises:
        UnauthenticatedError: bad signature, expired, unknown or revoked
            session, or the account is gone or disabled. Expired and
            orphaned sessions are deactivated on the way out.
    """
    try:
        payload = decode_token(raw_token, "refresh")
        user_id = int(payload.get("sub"))
    except (jwt.InvalidTokenError, TypeError, ValueError):
        raise UnauthenticatedError("Invalid or expired refresh token")

    row = Session.query.filter_by(user_id=user_id, token_hash=hash_token(raw_token), is_active=True).first()
    if row is None:
        raise UnauthenticatedError("Session not found or revoked")

    if row.is_expired:
        row.is_active = False
        db.session.commit()
        raise UnauthenticatedError("Session expired")

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        row.is_active = False
        db.session.commit()
        raise UnauthenticatedError("User inactive or not found")

    row.is_active = False
    row.last_used_at = datetime.now(timezone.utc)
    bundle, _ = _new_session(user, ip_address, user_agent)
    db.session.commit()
    return bundle


def revoke_session(raw_token: str) -> bool:
    """True when an active session matched the token."""
    row = Session.query.filter_by(token_hash=hash_token(raw_token), is_active=True).first()
    if row is None:
        return False
    row.is_active = False
    db.session.commit()
    return True


def revoke_user_sessions(user_id: int) -> int:
    count = Session.query.filter_by(user_id=user_id, is_active=True).update({"is_active": False})
    db.session.commit()
    return count
