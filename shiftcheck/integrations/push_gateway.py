"""
Push delivery gateway.

All outbound push calls go through this class. The wire payload has the same
shape background handlers receive:

    {"to": <device token>,
     "notification": {"title": ..., "body": ...},
     "data": {"type": ..., "priority": ..., ...}}

When PUSH_ENDPOINT_URL is not configured the gateway runs in log-only mode:
the push is logged and reported as not sent. There is no retry; a failed push
is reported back to the caller, which logs it and moves on.

Testability: pass a mock ``session`` to PushGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time

import requests
from flask import current_app

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class PushResult:
    """Structured return value from PushGateway.send.

    Attributes:
        ok:          True if the endpoint accepted the push (HTTP 2xx).
        sent:        False in log-only mode or when no token was given.
        status_code: HTTP status code (None if nothing was sent).
        error:       Human-readable error message or None.
        duration_ms: Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        sent: bool,
        status_code: int | None = None,
        error: str | None = None,
        duration_ms: int = 0,
    ) -> None:
        self.ok = ok
        self.sent = sent
        self.status_code = status_code
        self.error = error
        self.duration_ms = duration_ms

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "sent": self.sent,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


def build_push_payload(token: str, title: str, body: str, data: dict | None = None) -> dict:
    """Assemble the wire payload; every data value is sent as a string."""
    return {
        "to": token,
        "notification": {"title": title, "body": body},
        "data": {k: "" if v is None else str(v) for k, v in (data or {}).items()},
    }


class PushGateway:
    """Push endpoint client.

    Usage:
        from shiftcheck.integrations.push_gateway import push_gateway
        result = push_gateway.send(user.fcm_token, "New Shift", "...", {"type": "shift_assigned"})
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("PUSH_ENDPOINT_URL"))

    def send(self, token: str | None, title: str, body: str, data: dict | None = None) -> PushResult:
        if not token:
            return PushResult(ok=False, sent=False, error="No push token registered")

        payload = build_push_payload(token, title, body, data)

        if not self.is_configured():
            logger.info("[PUSH-DEV] Would push to token=%s…: %s", token[:12], title)
            return PushResult(ok=True, sent=False)

        url = current_app.config["PUSH_ENDPOINT_URL"]
        headers = {"Content-Type": "application/json"}
        server_key = current_app.config.get("PUSH_SERVER_KEY")
        if server_key:
            headers["Authorization"] = f"key={server_key}"
        timeout = current_app.config.get("PUSH_TIMEOUT", _DEFAULT_TIMEOUT)

        t0 = time.perf_counter()
        try:
            resp = self.session.post(url, json=payload, headers=headers, timeout=timeout)
        except requests.RequestException as exc:
            duration_ms = int((time.perf_counter() - t0) * 1000)
            logger.warning("Push delivery failed (%s): %s", type(exc).__name__, exc)
            return PushResult(ok=False, sent=True, error=str(exc), duration_ms=duration_ms)

        duration_ms = int((time.perf_counter() - t0) * 1000)
        if not 200 <= resp.status_code < 300:
            logger.warning("Push endpoint returned HTTP %s for %r", resp.status_code, title)
            return PushResult(
                ok=False, sent=True, status_code=resp.status_code,
                error=f"HTTP {resp.status_code}", duration_ms=duration_ms,
            )

        logger.debug("Push delivered in %dms: %s", duration_ms, title)
        return PushResult(ok=True, sent=True, status_code=resp.status_code, duration_ms=duration_ms)


push_gateway = PushGateway()
