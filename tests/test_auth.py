"""
Authentication, session context and user directory tests.

Tests cover:
  - SessionContext transitions and guards
  - Signup validation (email, password length, duplicates)
  - Login: wrong credentials, disabled account, best-effort side effects
  - Refresh rotation and logout
  - Token service: typed tokens, hashed refresh sessions, expiry, revocation
  - Password change, activity log cap
  - /users permissions and admin account management (create, disable, role, delete)
  - Health endpoints, security headers, request id echo
"""
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt as pyjwt
import pytest
from sqlalchemy.exc import OperationalError

from shiftcheck.auth import SessionContext, SessionState
from shiftcheck.core.exceptions import PermissionDeniedError, UnauthenticatedError, ValidationError
from shiftcheck.models import db
from shiftcheck.models.auth import Session, User, UserActivity
from shiftcheck.models.chat import ChatMessage
from shiftcheck.models.notification import Notification
from shiftcheck.models.scheduling import LeaveRequest, Shift
from shiftcheck.services import chat_service, jwt_service, scheduling_service, user_service

PASSWORD = "secret123"


def _login(client, email, password=PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


# ═════════════════════════════════════════════════════════════════════════
# SESSION CONTEXT
# ═════════════════════════════════════════════════════════════════════════

class TestSessionContext:
    def test_signed_out_guards(self):
        ctx = SessionContext.signed_out()
        assert ctx.state is SessionState.SIGNED_OUT
        assert ctx.user_id is None
        with pytest.raises(UnauthenticatedError):
            ctx.require_signed_in()

    def test_loading_is_not_signed_in(self):
        ctx = SessionContext.loading({"sub": "1"})
        assert ctx.is_signed_in is False
        with pytest.raises(UnauthenticatedError):
            ctx.require_admin()

    def test_sign_in_staff(self, staff_user):
        ctx = SessionContext.loading().sign_in(staff_user)
        assert ctx.is_signed_in
        assert ctx.is_admin is False
        with pytest.raises(PermissionDeniedError):
            ctx.require_admin()

    def test_admin_derived_from_profile_role(self, admin_user, make_user):
        assert SessionContext.loading().sign_in(admin_user).is_admin
        manager = make_user("floor.manager@example.com", role="manager")
        assert SessionContext.loading().sign_in(manager).is_admin

    def test_inactive_profile_signs_out(self, make_user):
        user = make_user("gone.away@example.com", is_active=False)
        ctx = SessionContext.loading().sign_in(user)
        assert ctx.state is SessionState.SIGNED_OUT


# ═════════════════════════════════════════════════════════════════════════
# SIGNUP / LOGIN
# ═════════════════════════════════════════════════════════════════════════

class TestSignup:
    def test_signup_returns_tokens(self, client):
        res = client.post("/api/v1/auth/signup", json={
            "email": "Pat.Lee@Example.com", "password": "hunter22", "name": "Pat Lee", "department": "ICU",
        })
        assert res.status_code == 201
        body = res.get_json()
        assert body["access_token"]
        assert body["user"]["email"] == "pat.lee@example.com"
        assert body["user"]["role"] == "staff"
        activity = UserActivity.query.filter_by(user_id=body["user"]["id"]).all()
        assert [a.type for a in activity] == ["account_created"]

    def test_role_cannot_be_chosen(self, client):
        res = client.post("/api/v1/auth/signup", json={
            "email": "sneaky@example.com", "password": "hunter22", "name": "Sneaky", "role": "admin",
        })
        assert res.get_json()["user"]["role"] == "staff"

    def test_short_password(self, client):
        res = client.post("/api/v1/auth/signup", json={"email": "a.b@example.com", "password": "12345", "name": "A"})
        assert res.status_code == 422
        assert res.get_json()["error"] == "Password should be at least 6 characters"

    def test_bad_email(self, client):
        res = client.post("/api/v1/auth/signup", json={"email": "not-an-email", "password": "hunter22", "name": "A"})
        assert res.status_code == 422

    def test_duplicate_email(self, client, staff_user):
        res = client.post("/api/v1/auth/signup", json={
            "email": staff_user.email, "password": "hunter22", "name": "Twin",
        })
        assert res.status_code == 409


class TestLogin:
    def test_login_success_records_activity(self, client, staff_user):
        res = _login(client, staff_user.email)
        assert res.status_code == 200
        assert res.get_json()["token_type"] == "Bearer"
        assert staff_user.last_login_at is not None
        assert [a.type for a in user_service.list_activities(staff_user.id)] == ["login"]

    def test_wrong_password(self, client, staff_user):
        res = _login(client, staff_user.email, "nope-nope")
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid email or password"

    def test_unknown_email(self, client):
        assert _login(client, "nobody@example.com").status_code == 401

    def test_disabled_account(self, client, make_user):
        user = make_user("disabled@example.com", is_active=False)
        res = _login(client, user.email)
        assert res.status_code == 403
        assert res.get_json()["error"] == "This account has been disabled"

    def test_missing_fields(self, client):
        assert client.post("/api/v1/auth/login", json={}).status_code == 400

    def test_login_survives_activity_failure(self, client, staff_user):
        failure = OperationalError("INSERT", {}, Exception("disk full"))
        with patch("shiftcheck.services.user_service.UserActivity", side_effect=failure):
            res = _login(client, staff_user.email)
        assert res.status_code == 200

    def test_activity_log_capped(self, app, staff_user):
        app.config["ACTIVITY_LOG_LIMIT"] = 3
        try:
            for i in range(5):
                user_service.log_activity(staff_user.id, "login", {"n": i})
        finally:
            app.config["ACTIVITY_LOG_LIMIT"] = 50
        rows = user_service.list_activities(staff_user.id)
        assert len(rows) == 3
        assert sorted(r.details["n"] for r in rows) == [2, 3, 4]


class TestTokens:
    def test_me(self, client, staff_user, staff_headers):
        res = client.get("/api/v1/auth/me", headers=staff_headers)
        assert res.status_code == 200
        assert res.get_json()["state"] == "signed_in"
        assert res.get_json()["user"]["id"] == staff_user.id

    def test_me_without_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_me_with_garbage_token(self, client):
        assert client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401

    def test_refresh_rotates(self, client, staff_user):
        refresh_token = _login(client, staff_user.email).get_json()["refresh_token"]
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert res.status_code == 200
        assert res.get_json()["refresh_token"] != refresh_token
        # Old token was rotated out
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert res.status_code == 401

    def test_logout_revokes(self, client, staff_user):
        refresh_token = _login(client, staff_user.email).get_json()["refresh_token"]
        res = client.post("/api/v1/auth/logout", json={"refresh_token": refresh_token})
        assert res.status_code == 200
        assert res.get_json()["revoked"] is True
        assert client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token}).status_code == 401

    def test_logout_unknown_token_still_ok(self, client):
        res = client.post("/api/v1/auth/logout", json={"refresh_token": "stale"})
        assert res.status_code == 200
        assert res.get_json()["revoked"] is False

    def test_change_password(self, client, staff_user, staff_headers):
        res = client.post("/api/v1/auth/password", headers=staff_headers,
                          json={"current_password": "wrong-one", "new_password": "brandnew1"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Current password is incorrect"

        res = client.post("/api/v1/auth/password", headers=staff_headers,
                          json={"current_password": PASSWORD, "new_password": "brandnew1"})
        assert res.status_code == 200
        assert _login(client, staff_user.email, "brandnew1").status_code == 200


class TestTokenService:
    def test_token_types_are_not_interchangeable(self, staff_user):
        bundle = jwt_service.issue_session(staff_user)
        assert jwt_service.decode_token(bundle["access_token"], "access")["role"] == "staff"
        assert jwt_service.decode_token(bundle["refresh_token"], "refresh")["sub"] == str(staff_user.id)
        with pytest.raises(pyjwt.InvalidTokenError):
            jwt_service.decode_token(bundle["access_token"], "refresh")
        with pytest.raises(pyjwt.InvalidTokenError):
            jwt_service.decode_token(bundle["refresh_token"], "access")

    def test_session_row_stores_hash_only(self, staff_user):
        bundle = jwt_service.issue_session(staff_user, "10.0.0.7", "pytest-agent")
        row = Session.query.filter_by(user_id=staff_user.id).one()
        assert row.token_hash == jwt_service.hash_token(bundle["refresh_token"])
        assert row.token_hash != bundle["refresh_token"]
        assert (row.ip_address, row.user_agent) == ("10.0.0.7", "pytest-agent")
        assert bundle["token_type"] == "Bearer"
        assert bundle["expires_in"] > 0

    def test_refresh_token_spends_once(self, staff_user):
        first = jwt_service.issue_session(staff_user)
        second = jwt_service.refresh_session(first["refresh_token"])
        assert second["refresh_token"] != first["refresh_token"]
        with pytest.raises(UnauthenticatedError, match="Session not found or revoked"):
            jwt_service.refresh_session(first["refresh_token"])
        assert Session.query.filter_by(user_id=staff_user.id, is_active=True).count() == 1

    def test_refresh_rejects_garbage(self):
        with pytest.raises(UnauthenticatedError, match="Invalid or expired refresh token"):
            jwt_service.refresh_session("not-a-token")
        with pytest.raises(UnauthenticatedError):
            jwt_service.refresh_session(12345)

    def test_refresh_with_access_token_rejected(self, staff_user):
        bundle = jwt_service.issue_session(staff_user)
        with pytest.raises(UnauthenticatedError, match="Invalid or expired refresh token"):
            jwt_service.refresh_session(bundle["access_token"])

    def test_expired_session_deactivated(self, staff_user):
        bundle = jwt_service.issue_session(staff_user)
        row = Session.query.filter_by(user_id=staff_user.id).one()
        row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        with pytest.raises(UnauthenticatedError, match="Session expired"):
            jwt_service.refresh_session(bundle["refresh_token"])
        assert Session.query.filter_by(user_id=staff_user.id, is_active=True).count() == 0

    def test_disabled_user_cannot_refresh(self, staff_user):
        bundle = jwt_service.issue_session(staff_user)
        staff_user.is_active = False
        db.session.commit()
        with pytest.raises(UnauthenticatedError, match="User inactive or not found"):
            jwt_service.refresh_session(bundle["refresh_token"])
        assert Session.query.filter_by(user_id=staff_user.id, is_active=True).count() == 0

    def test_revoke(self, staff_user):
        bundle = jwt_service.issue_session(staff_user)
        jwt_service.issue_session(staff_user)
        jwt_service.issue_session(staff_user)
        assert jwt_service.revoke_session(bundle["refresh_token"]) is True
        assert jwt_service.revoke_session(bundle["refresh_token"]) is False
        assert jwt_service.revoke_user_sessions(staff_user.id) == 2
        assert jwt_service.revoke_user_sessions(staff_user.id) == 0

    def test_logout_ignores_non_string_token(self, client):
        res = client.post("/api/v1/auth/logout", json={"refresh_token": 42})
        assert res.status_code == 200
        assert res.get_json()["revoked"] is False

    def test_refresh_endpoint_non_string_token_401(self, client):
        assert client.post("/api/v1/auth/refresh", json={"refresh_token": 42}).status_code == 401


# ═════════════════════════════════════════════════════════════════════════
# USERS / APP
# ═════════════════════════════════════════════════════════════════════════

class TestUsers:
    def test_list_admin_only(self, client, staff_user, staff_headers, admin_headers):
        assert client.get("/api/v1/users", headers=staff_headers).status_code == 403
        res = client.get("/api/v1/users?role=staff", headers=admin_headers)
        assert res.status_code == 200
        assert [u["email"] for u in res.get_json()["items"]] == [staff_user.email]

    def test_get_self_or_admin(self, client, staff_user, other_staff, staff_headers, admin_headers):
        assert client.get(f"/api/v1/users/{staff_user.id}", headers=staff_headers).status_code == 200
        assert client.get(f"/api/v1/users/{other_staff.id}", headers=staff_headers).status_code == 403
        assert client.get(f"/api/v1/users/{other_staff.id}", headers=admin_headers).status_code == 200
        assert client.get("/api/v1/users/9999", headers=admin_headers).status_code == 404


class TestStaffManagement:
    NEW_STAFF = {
        "email": "New.Nurse@Example.com",
        "password": "temp-pass1",
        "name": "New Nurse",
        "department": "ICU",
        "skills": ["triage", "iv"],
    }

    def test_create_staff(self, client, admin_user, admin_headers):
        res = client.post("/api/v1/users", headers=admin_headers, json=self.NEW_STAFF)
        assert res.status_code == 201
        body = res.get_json()
        assert body["email"] == "new.nurse@example.com"
        assert body["role"] == "staff"
        assert body["skills"] == ["triage", "iv"]
        assert body["approved_by"] is None
        activity = UserActivity.query.filter_by(user_id=body["id"], type="account_created").one()
        assert activity.details["created_by"] == admin_user.id
        assert _login(client, "new.nurse@example.com", "temp-pass1").status_code == 200

    def test_create_admin_records_approver(self, admin_user):
        user = user_service.create_staff(dict(self.NEW_STAFF, role="admin"), admin_user)
        assert user.approved_by == admin_user.id
        assert user.approved_at is not None

    def test_create_rejections(self, client, staff_user, staff_headers, admin_headers):
        assert client.post("/api/v1/users", headers=staff_headers, json=self.NEW_STAFF).status_code == 403
        dup = dict(self.NEW_STAFF, email=staff_user.email)
        assert client.post("/api/v1/users", headers=admin_headers, json=dup).status_code == 409
        for bad in (
            dict(self.NEW_STAFF, role="owner"),
            dict(self.NEW_STAFF, skills="triage"),
            dict(self.NEW_STAFF, password="123"),
            dict(self.NEW_STAFF, email=["a@example.com"]),
            dict(self.NEW_STAFF, name="   "),
        ):
            assert client.post("/api/v1/users", headers=admin_headers, json=bad).status_code == 422

    def test_disable_ends_sessions_and_blocks_login(self, client, staff_user, admin_headers, auth_headers):
        refresh_token = _login(client, staff_user.email).get_json()["refresh_token"]
        res = client.patch(f"/api/v1/users/{staff_user.id}/status", headers=admin_headers, json={"is_active": False})
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

        assert client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token}).status_code == 401
        assert client.get("/api/v1/auth/me", headers=auth_headers(staff_user)).status_code == 401
        res = _login(client, staff_user.email)
        assert res.status_code == 403
        assert res.get_json()["error"] == "This account has been disabled"
        assert UserActivity.query.filter_by(user_id=staff_user.id, type="account_disabled").count() == 1

        res = client.patch(f"/api/v1/users/{staff_user.id}/status", headers=admin_headers, json={"is_active": True})
        assert res.get_json()["is_active"] is True
        assert _login(client, staff_user.email).status_code == 200

    def test_status_needs_boolean(self, client, staff_user, admin_headers):
        res = client.patch(f"/api/v1/users/{staff_user.id}/status", headers=admin_headers, json={"is_active": "no"})
        assert res.status_code == 400
        assert db.session.get(User, staff_user.id).is_active is True

    def test_role_change(self, client, staff_user, admin_user, admin_headers, auth_headers):
        staff_token_headers = auth_headers(staff_user)
        res = client.patch(f"/api/v1/users/{staff_user.id}/role", headers=admin_headers, json={"role": "manager"})
        assert res.status_code == 200
        assert res.get_json()["role"] == "manager"
        assert res.get_json()["approved_by"] == admin_user.id
        # Admin rights follow the stored role, not the claim in an older token
        assert client.get("/api/v1/users", headers=staff_token_headers).status_code == 200
        activity = UserActivity.query.filter_by(user_id=staff_user.id, type="role_changed").one()
        assert activity.details == {"from": "staff", "to": "manager", "by": admin_user.id}

    def test_role_change_rejections(self, client, staff_user, admin_headers):
        url = f"/api/v1/users/{staff_user.id}/role"
        assert client.patch(url, headers=admin_headers, json={"role": "owner"}).status_code == 422
        assert client.patch(url, headers=admin_headers, json={}).status_code == 400
        assert client.patch("/api/v1/users/9999/role", headers=admin_headers, json={"role": "admin"}).status_code == 404

    @pytest.mark.parametrize("method,suffix,body", [
        ("patch", "/status", {"is_active": False}),
        ("patch", "/role", {"role": "staff"}),
        ("delete", "", None),
    ])
    def test_admin_cannot_touch_own_account(self, client, admin_user, admin_headers, method, suffix, body):
        call = getattr(client, method)
        res = call(f"/api/v1/users/{admin_user.id}{suffix}", headers=admin_headers, json=body)
        assert res.status_code == 422
        stored = db.session.get(User, admin_user.id)
        assert (stored.is_active, stored.role) == (True, "admin")

    def test_self_guard_in_service(self, admin_user):
        with pytest.raises(ValidationError, match="You cannot disable your own account"):
            user_service.set_active(admin_user.id, False, admin_user)

    def test_delete_user_removes_owned_rows_and_reopens_shifts(self, staff_user, admin_user):
        shift = scheduling_service.create_shift({
            "title": "ER Night",
            "department": "ER",
            "shift_type": "night",
            "start_time": "2026-11-03T19:00:00+00:00",
            "end_time": "2026-11-04T07:00:00+00:00",
            "assigned_to": staff_user.id,
        }, admin_user)
        scheduling_service.submit_leave(staff_user, {
            "leave_type": "vacation", "start_date": "2026-12-20", "end_date": "2026-12-27",
        })
        chat_service.send_message(SessionContext.signed_out().sign_in(staff_user), "Signing off")
        jwt_service.issue_session(staff_user)
        user_id, shift_id = staff_user.id, shift.id

        user_service.delete_user(user_id, admin_user)
        db.session.expire_all()

        assert db.session.get(User, user_id) is None
        for model, column in (
            (Notification, Notification.user_id),
            (LeaveRequest, LeaveRequest.user_id),
            (ChatMessage, ChatMessage.sender_id),
            (Session, Session.user_id),
            (UserActivity, UserActivity.user_id),
        ):
            assert model.query.filter(column == user_id).count() == 0
        reopened = db.session.get(Shift, shift_id)
        assert (reopened.status, reopened.assigned_to) == ("open", None)
        # Rows the admin owns are untouched
        assert Notification.query.filter_by(user_id=admin_user.id).count() >= 1

    def test_delete_endpoint(self, client, staff_user, other_staff, staff_headers, admin_headers, auth_headers):
        deleted_headers = auth_headers(staff_user)
        user_id = staff_user.id
        assert client.delete(f"/api/v1/users/{other_staff.id}", headers=staff_headers).status_code == 403
        res = client.delete(f"/api/v1/users/{user_id}", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json() == {"message": "User deleted"}
        assert client.get("/api/v1/auth/me", headers=deleted_headers).status_code == 401
        assert client.delete(f"/api/v1/users/{user_id}", headers=admin_headers).status_code == 404


class TestApp:
    def test_health(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["push"]["status"] == "log_only"

    def test_security_headers(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"

    def test_unknown_route_404(self, client):
        assert client.get("/api/v1/nowhere").status_code == 404

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "req-0042"})
        assert res.headers["X-Request-ID"] == "req-0042"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0
        assert len(client.get("/api/v1/health/ready").headers["X-Request-ID"]) == 12

    def test_request_log_carries_user_and_status(self, client, staff_user, staff_headers, caplog):
        with caplog.at_level(logging.DEBUG, logger="shiftcheck.middleware.timing"):
            client.get("/api/v1/auth/me", headers={**staff_headers, "X-Request-ID": "req-7"})
        record = [r for r in caplog.records if r.name == "shiftcheck.middleware.timing"][-1]
        assert (record.method, record.path, record.status) == ("GET", "/api/v1/auth/me", 200)
        assert (record.request_id, record.user_id) == ("req-7", staff_user.id)
