"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in shiftcheck/__init__.py with no default limits and keyed by
``rate_limit_key``; this module applies the limits per route category.

Usage:
    from shiftcheck.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

AUTH_LIMIT = "20/minute"
WRITE_LIMIT = "60/minute"

WRITE_BLUEPRINTS = ("chat_bp", "admin_request_bp", "scheduling_bp", "notification_bp", "users_bp")


def rate_limit_key():
    """Signed-in user id when known, else remote IP."""
    session = getattr(g, "session_context", None)
    if session is not None and session.is_signed_in:
        return f"user:{session.user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Auth endpoints:   20/minute  (credential guessing)
        - Write endpoints:  60/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured — auth: %s, write: %s", AUTH_LIMIT, WRITE_LIMIT)
