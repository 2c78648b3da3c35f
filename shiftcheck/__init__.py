"""
ShiftCheck
Flask Application Factory.

Usage:
    from shiftcheck import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from shiftcheck.config import config
from shiftcheck.middleware.jwt_auth import init_jwt_middleware
from shiftcheck.middleware.logging_config import configure_logging
from shiftcheck.middleware.rate_limiter import init_rate_limits, rate_limit_key
from shiftcheck.middleware.security_headers import init_security_headers
from shiftcheck.middleware.timing import init_request_timing
from shiftcheck.models import db
from shiftcheck.utils.store_errors import init_store_notices

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Logging (must be first) ──────────────────────────────────────────
    configure_logging(app)

    if not app.config.get("TESTING"):
        os.makedirs(app.instance_path, exist_ok=True)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_security_headers(app)
    init_jwt_middleware(app)
    init_store_notices(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from shiftcheck.models import admin_request as _admin_request_models  # noqa: F401
    from shiftcheck.models import auth as _auth_models                    # noqa: F401
    from shiftcheck.models import chat as _chat_models                    # noqa: F401
    from shiftcheck.models import notification as _notification_models    # noqa: F401
    from shiftcheck.models import scheduling as _scheduling_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from shiftcheck.blueprints.admin_request_bp import admin_request_bp
    from shiftcheck.blueprints.auth_bp import auth_bp
    from shiftcheck.blueprints.chat_bp import chat_bp
    from shiftcheck.blueprints.health_bp import health_bp
    from shiftcheck.blueprints.notification_bp import notification_bp
    from shiftcheck.blueprints.scheduling_bp import scheduling_bp
    from shiftcheck.blueprints.users_bp import users_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(admin_request_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(scheduling_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Resource not found", "code": "ERR_NOT_FOUND"}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description or "Unsupported media type"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        logger.error("Unhandled server error: %s", e)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
