"""WebhookGateway with an injected mock requests session."""

from unittest.mock import MagicMock

import requests

from boardflow.integrations.webhook_gateway import WebhookGateway


def _response(status=200, payload=None, reason="OK"):
    resp = MagicMock()
    resp.status_code = status
    resp.reason = reason
    if payload is None:
        resp.json.side_effect = ValueError("no json")
        resp.text = ""
    else:
        resp.json.return_value = payload
    return resp


def test_post_sends_json_body_and_timeout():
    session = MagicMock()
    session.request.return_value = _response(201, {"received": True})
    result = WebhookGateway(session=session).send(
        "post", "https://hooks.example.com/in", headers={"X-Token": "t"}, json_body={"a": 1}, timeout=3,
    )

    assert result.ok is True
    assert result.status_code == 201
    assert result.data == {"received": True}
    assert result.payload_hash is not None
    method, url = session.request.call_args[0]
    kwargs = session.request.call_args[1]
    assert (method, url) == ("POST", "https://hooks.example.com/in")
    assert kwargs["json"] == {"a": 1}
    assert kwargs["timeout"] == 3
    assert kwargs["headers"]["X-Token"] == "t"
    assert kwargs["headers"]["Content-Type"] == "application/json"


def test_get_carries_no_body():
    session = MagicMock()
    session.request.return_value = _response(200)
    WebhookGateway(session=session).send("GET", "https://api.example.com/ping", json_body={"a": 1})
    assert "json" not in session.request.call_args[1]


def test_http_error_status_is_not_ok():
    session = MagicMock()
    session.request.return_value = _response(500, reason="Server Error")
    result = WebhookGateway(session=session).send("POST", "https://hooks.example.com/in")
    assert result.ok is False
    assert result.error == "HTTP 500: Server Error"


def test_timeout_never_raises():
    session = MagicMock()
    session.request.side_effect = requests.exceptions.Timeout()
    result = WebhookGateway(session=session).send("POST", "https://hooks.example.com/in", timeout=2)
    assert result.ok is False
    assert result.status_code is None
    assert "timed out" in result.error


def test_connection_error_never_raises():
    session = MagicMock()
    session.request.side_effect = requests.exceptions.ConnectionError("refused")
    result = WebhookGateway(session=session).send("POST", "https://hooks.example.com/in")
    assert result.ok is False
    assert "refused" in result.error
