"""
JWT Auth Middleware — resolves the bearer token into ``g.session_context``.

Every request starts signed out. When an ``Authorization: Bearer <token>``
header is present the context moves to ``loading`` while the token is decoded
and the user row fetched, then to ``signed_in`` or back to ``signed_out``.

The middleware never rejects a request itself; views that need a user use
``require_signed_in`` / ``require_admin`` from ``shiftcheck.auth``.
"""

import logging

import jwt as pyjwt
from flask import g, request
from sqlalchemy.exc import SQLAlchemyError

from shiftcheck.auth import SessionContext
from shiftcheck.services.jwt_service import decode_token

logger = logging.getLogger(__name__)


# Paths that skip JWT resolution entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/signup",
    "/api/v1/auth/refresh",
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.session_context = SessionContext.signed_out()

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_token(token, "access")
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.debug("Invalid access token on %s", path)
            return

        ctx = SessionContext.loading(payload)
        g.session_context = ctx

        from shiftcheck.services.user_service import get_user_by_id

        try:
            user = get_user_by_id(int(payload.get("sub")))
        except (TypeError, ValueError):
            user = None
        except SQLAlchemyError:
            logger.exception("Could not load profile for token subject %s", payload.get("sub"))
            user = None

        if user is None:
            ctx.sign_out()
        else:
            ctx.sign_in(user)
