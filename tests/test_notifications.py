"""
Notification inbox and push delivery tests.

Tests cover:
  - create(): stored row, default destination, push attempt
  - push skipped without token / with push disabled; push failure never fails create
  - Inbox: newest first, unread filter, mark read, mark all read, delete
  - Ownership checks on read / delete
  - Push token and notification settings endpoints
  - PushGateway: log-only mode, non-2xx, transport error, payload shape
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from shiftcheck.core.exceptions import NotFoundError, PermissionDeniedError
from shiftcheck.integrations.push_gateway import PushGateway, PushResult, build_push_payload
from shiftcheck.models import db
from shiftcheck.models.notification import Notification
from shiftcheck.services.notification import NotificationService


def _note(user, title="Heads up", type_="general"):
    return NotificationService.create(user_id=user.id, title=title, message="body", type=type_)


# ═════════════════════════════════════════════════════════════════════════
# CREATE & PUSH
# ═════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_defaults(self, staff_user):
        notif = _note(staff_user, type_="shift_assigned")
        assert notif.id is not None
        assert notif.priority == "normal"
        assert notif.is_read is False
        assert notif.action_url == "/staff-dashboard?tab=schedule"
        assert notif.data == {"type": "shift_assigned"}

    def test_explicit_action_url_kept(self, staff_user):
        notif = NotificationService.create(user_id=staff_user.id, title="x", action_url="/somewhere")
        assert notif.action_url == "/somewhere"

    def test_no_token_no_push(self, staff_user):
        with patch("shiftcheck.services.notification.push_gateway") as gateway:
            _note(staff_user)
        gateway.send.assert_not_called()

    def test_push_sent_with_routing_data(self, make_user):
        user = make_user("with.phone@example.com", fcm_token="device-token-1")
        with patch("shiftcheck.services.notification.push_gateway") as gateway:
            gateway.send.return_value = PushResult(ok=True, sent=True, status_code=200)
            notif = NotificationService.create(
                user_id=user.id, title="New Leave Request", message="Pat requested leave",
                type="leave_request", data={"requestId": 7}, priority="high",
            )
        gateway.send.assert_called_once()
        token, title, body, data = gateway.send.call_args.args
        assert (token, title, body) == ("device-token-1", "New Leave Request", "Pat requested leave")
        assert data["type"] == "leave_request"
        assert data["requestId"] == 7
        assert data["priority"] == "high"
        assert data["id"] == notif.id

    def test_push_disabled_in_settings(self, make_user):
        user = make_user("quiet@example.com", fcm_token="tok", notification_settings={"push": False})
        with patch("shiftcheck.services.notification.push_gateway") as gateway:
            _note(user)
        gateway.send.assert_not_called()

    def test_push_failure_does_not_fail_create(self, make_user):
        user = make_user("flaky@example.com", fcm_token="tok")
        with patch("shiftcheck.services.notification.push_gateway") as gateway:
            gateway.send.side_effect = RuntimeError("gateway exploded")
            notif = _note(user)
        assert db.session.get(Notification, notif.id) is not None

    def test_broadcast(self, staff_user, other_staff):
        rows = NotificationService.broadcast(user_ids=[staff_user.id, other_staff.id], title="Fire drill")
        assert sorted(r.user_id for r in rows) == sorted([staff_user.id, other_staff.id])


# ═════════════════════════════════════════════════════════════════════════
# INBOX
# ═════════════════════════════════════════════════════════════════════════

class TestInbox:
    def test_list_newest_first_and_unread_filter(self, staff_user):
        first = _note(staff_user, "first")
        _note(staff_user, "second")
        NotificationService.mark_read(first.id, staff_user.id)

        items, total = NotificationService.list_for_user(staff_user.id)
        assert total == 2
        assert [n.title for n in items] == ["second", "first"]

        items, total = NotificationService.list_for_user(staff_user.id, unread_only=True)
        assert [n.title for n in items] == ["second"]
        assert NotificationService.unread_count(staff_user.id) == 1

    def test_mark_all_read(self, staff_user, other_staff):
        _note(staff_user)
        _note(staff_user)
        _note(other_staff)
        assert NotificationService.mark_all_read(staff_user.id) == 2
        assert NotificationService.unread_count(staff_user.id) == 0
        assert NotificationService.unread_count(other_staff.id) == 1

    def test_ownership(self, staff_user, other_staff):
        notif = _note(staff_user)
        with pytest.raises(PermissionDeniedError):
            NotificationService.mark_read(notif.id, other_staff.id)
        with pytest.raises(PermissionDeniedError):
            NotificationService.delete(notif.id, other_staff.id)
        with pytest.raises(NotFoundError):
            NotificationService.delete(9999, staff_user.id)

    def test_delete(self, staff_user):
        notif = _note(staff_user)
        NotificationService.delete(notif.id, staff_user.id)
        assert db.session.get(Notification, notif.id) is None


class TestNotificationEndpoints:
    def test_list_and_count(self, client, staff_user, staff_headers):
        _note(staff_user, "one")
        _note(staff_user, "two")
        res = client.get("/api/v1/notifications?limit=1", headers=staff_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 2
        assert [n["title"] for n in body["items"]] == ["two"]
        assert body["notices"] == []

        res = client.get("/api/v1/notifications/unread-count", headers=staff_headers)
        assert res.get_json()["unread_count"] == 2

    def test_read_and_read_all(self, client, staff_user, staff_headers):
        notif = _note(staff_user)
        _note(staff_user)
        res = client.post(f"/api/v1/notifications/{notif.id}/read", headers=staff_headers)
        assert res.get_json()["is_read"] is True
        res = client.post("/api/v1/notifications/read-all", headers=staff_headers)
        assert res.get_json()["marked_read"] == 1

    def test_delete_other_users_notification_403(self, client, other_staff, staff_headers):
        notif = _note(other_staff)
        res = client.delete(f"/api/v1/notifications/{notif.id}", headers=staff_headers)
        assert res.status_code == 403
        assert db.session.get(Notification, notif.id) is not None

    def test_push_token(self, client, staff_user, staff_headers):
        res = client.put("/api/v1/notifications/push-token", headers=staff_headers, json={"token": "abc123"})
        assert res.status_code == 200
        assert staff_user.fcm_token == "abc123"

        assert client.put("/api/v1/notifications/push-token", headers=staff_headers, json={}).status_code == 422

        client.delete("/api/v1/notifications/push-token", headers=staff_headers)
        assert staff_user.fcm_token is None

    def test_settings(self, client, staff_headers):
        res = client.get("/api/v1/notifications/settings", headers=staff_headers)
        assert res.get_json() == {"email": True, "push": True, "sms": False}

        res = client.put("/api/v1/notifications/settings", headers=staff_headers, json={"sms": True})
        assert res.get_json()["sms"] is True

        res = client.put("/api/v1/notifications/settings", headers=staff_headers, json={"pager": True})
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════
# PUSH GATEWAY
# ═════════════════════════════════════════════════════════════════════════

@pytest.fixture()
def push_endpoint(app):
    app.config["PUSH_ENDPOINT_URL"] = "https://push.example.com/send"
    app.config["PUSH_SERVER_KEY"] = "server-key"
    yield app.config["PUSH_ENDPOINT_URL"]
    app.config["PUSH_ENDPOINT_URL"] = None
    app.config["PUSH_SERVER_KEY"] = None


class TestPushGateway:
    def test_payload_values_are_strings(self):
        payload = build_push_payload("tok", "Title", "Body", {"shiftId": 4, "note": None})
        assert payload["to"] == "tok"
        assert payload["notification"] == {"title": "Title", "body": "Body"}
        assert payload["data"] == {"shiftId": "4", "note": ""}

    def test_no_token(self):
        result = PushGateway(session=MagicMock()).send(None, "t", "b")
        assert result.ok is False
        assert result.sent is False

    def test_log_only_mode(self):
        session = MagicMock()
        result = PushGateway(session=session).send("tok", "t", "b")
        assert result.ok is True
        assert result.sent is False
        session.post.assert_not_called()

    def test_delivered(self, push_endpoint):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=200)
        result = PushGateway(session=session).send("tok", "t", "b", {"type": "general"})
        assert result.ok is True
        assert result.status_code == 200
        url = session.post.call_args.args[0]
        assert url == push_endpoint
        assert session.post.call_args.kwargs["headers"]["Authorization"] == "key=server-key"

    def test_non_2xx(self, push_endpoint):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=401)
        result = PushGateway(session=session).send("tok", "t", "b")
        assert result.ok is False
        assert result.sent is True
        assert result.error == "HTTP 401"

    def test_transport_error(self, push_endpoint):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        result = PushGateway(session=session).send("tok", "t", "b")
        assert result.ok is False
        assert "connection refused" in result.error
