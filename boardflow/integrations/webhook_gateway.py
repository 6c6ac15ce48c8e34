"""
Outbound webhook gateway.

All outbound HTTP calls made by automations (call_webhook / api_call
actions) go through this class. Direct `requests` calls in services are
not allowed.

  - Explicit timeout on every call (WEBHOOK_TIMEOUT_SECONDS, default 10 s)
  - No retries: webhook targets are not assumed idempotent
  - Structured GatewayResult returned to the caller; never raises

Testability: pass a mock `session` to WebhookGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class GatewayResult:
    """Structured return value from WebhookGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body, else the raw text, else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        payload_hash:   SHA-256 of the serialised request payload (hex).
    """

    __slots__ = ("ok", "status_code", "data", "error", "duration_ms", "payload_hash")

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: Any,
        error: str | None,
        duration_ms: int,
        payload_hash: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.payload_hash = payload_hash

    def to_log_dict(self) -> dict:
        return {
            "ok": self.ok,
            "status_code": self.status_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "payload_hash": self.payload_hash,
        }


class WebhookGateway:
    """HTTP gateway for automation webhooks.

    Usage:
        from boardflow.integrations.webhook_gateway import webhook_gateway
        result = webhook_gateway.send("POST", url, headers={}, json_body={...}, timeout=10)
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def _compute_payload_hash(payload: Any) -> str | None:
        if payload is None:
            return None
        serialised = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(serialised.encode()).hexdigest()

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json_body: Any = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> GatewayResult:
        """Execute one request.

        GET requests carry no body. Returns GatewayResult, never raises.
        """
        method = (method or "POST").upper()
        send_headers = {"Content-Type": "application/json", **(headers or {})}
        kwargs: dict[str, Any] = {"headers": send_headers, "timeout": timeout}
        if json_body is not None and method != "GET":
            kwargs["json"] = json_body
        payload_hash = self._compute_payload_hash(json_body)

        t0 = time.perf_counter()
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout:
            logger.warning("Webhook %s %s timed out after %ss", method, url, timeout)
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error=f"Request timed out after {timeout}s",
                duration_ms=int(timeout * 1000), payload_hash=payload_hash,
            )
        except requests.exceptions.RequestException as exc:
            duration_ms = int((time.perf_counter() - t0) * 1000)
            logger.warning("Webhook %s %s failed: %s", method, url, exc)
            return GatewayResult(
                ok=False, status_code=None, data=None, error=str(exc),
                duration_ms=duration_ms, payload_hash=payload_hash,
            )
        duration_ms = int((time.perf_counter() - t0) * 1000)

        try:
            data = resp.json()
        except ValueError:
            data = resp.text or None

        if 200 <= resp.status_code < 300:
            logger.info("Webhook %s %s -> %s in %dms", method, url, resp.status_code, duration_ms)
            return GatewayResult(
                ok=True, status_code=resp.status_code, data=data, error=None,
                duration_ms=duration_ms, payload_hash=payload_hash,
            )

        logger.warning("Webhook %s %s -> HTTP %s", method, url, resp.status_code)
        return GatewayResult(
            ok=False, status_code=resp.status_code, data=data,
            error=f"HTTP {resp.status_code}: {resp.reason or ''}".strip(),
            duration_ms=duration_ms, payload_hash=payload_hash,
        )


# Module-level singleton; tests replace it with WebhookGateway(session=mock_session)
webhook_gateway = WebhookGateway()
