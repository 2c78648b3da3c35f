"""
Shared pytest fixtures for the ShiftCheck test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - staff_user / other_staff / admin_user: pre-created accounts
    - make_user / auth_headers: helpers for ad-hoc accounts and bearer tokens
"""

import pytest

from shiftcheck import create_app
from shiftcheck.models import db as _db
from shiftcheck.models.auth import DEFAULT_NOTIFICATION_SETTINGS, User
from shiftcheck.services.jwt_service import generate_access_token
from shiftcheck.utils.crypto import hash_password

TEST_PASSWORD = "secret123"

# bcrypt is slow on purpose; hash the shared test password once
_PASSWORD_HASH = None


def _password_hash():
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(TEST_PASSWORD)
    return _PASSWORD_HASH


def _make_user(email, name=None, role="staff", is_active=True, **fields):
    """Insert a user directly; password is TEST_PASSWORD."""
    fields.setdefault("notification_settings", dict(DEFAULT_NOTIFICATION_SETTINGS))
    user = User(
        email=email,
        name=name or email.split("@")[0].title(),
        password_hash=_password_hash(),
        role=role,
        is_active=is_active,
        **fields,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _auth_headers(user):
    return {"Authorization": f"Bearer {generate_access_token(user.id, user.role)}"}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Accounts ─────────────────────────────────────────────────────────────


@pytest.fixture()
def staff_user():
    return _make_user("nurse.joy@example.com", name="Nurse Joy", department="ER")


@pytest.fixture()
def other_staff():
    return _make_user("dr.house@example.com", name="Greg House", department="Diagnostics")


@pytest.fixture()
def admin_user():
    return _make_user("chief.admin@example.com", name="Chief Admin", role="admin", department="Admin")


@pytest.fixture()
def staff_headers(staff_user):
    return _auth_headers(staff_user)


@pytest.fixture()
def admin_headers(admin_user):
    return _auth_headers(admin_user)


@pytest.fixture()
def make_user():
    """Factory: make_user(email, name=None, role="staff", is_active=True, **fields)."""
    return _make_user


@pytest.fixture()
def auth_headers():
    """Factory: auth_headers(user) -> {"Authorization": "Bearer ..."}."""
    return _auth_headers
