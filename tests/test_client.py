"""Tests for CourierClient and the transport exception hierarchy."""

import io
import sys
import os
from unittest.mock import MagicMock

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sdk.client import CourierClient, encode_params
from sdk.exceptions import APIException, CourierError, DecodeError, TransportError
from sdk.models import SendOptions, WebhookInfo


def _response(body=None, *, ok: bool = True, status: int = 200, json_error: bool = False) -> MagicMock:
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status
    resp.text = "<html>bad gateway</html>"
    if json_error:
        resp.json.side_effect = ValueError("No JSON")
    else:
        resp.json.return_value = body
    return resp


def _client(*responses) -> tuple[CourierClient, MagicMock]:
    session = MagicMock()
    session.post.side_effect = list(responses)
    return CourierClient("123:ABC", base_url="https://api.example.com/", session=session), session


# ── Exceptions ───────────────────────────────────────────────────────────────


class TestAPIException:
    """Validate the API error class."""

    def test_attributes(self) -> None:
        exc = APIException(403, {"ok": False, "error_code": 403, "description": "Forbidden"})
        assert exc.status_code == 403
        assert exc.error_code == 403
        assert exc.description == "Forbidden"
        assert "403" in str(exc)
        assert "Forbidden" in str(exc)

    def test_default_body(self) -> None:
        exc = APIException(500)
        assert exc.response_body == {}
        assert exc.error_code == 500
        assert "Unknown error" in str(exc)

    def test_response_parameters(self) -> None:
        body = {"ok": False, "error_code": 429, "description": "Too Many Requests",
                "parameters": {"retry_after": 7}}
        exc = APIException(429, body)
        assert exc.retry_after == 7
        assert exc.migrate_to_chat_id is None

    def test_hierarchy(self) -> None:
        for cls in (APIException, TransportError, DecodeError):
            assert issubclass(cls, CourierError)


# ── Construction and encoding ────────────────────────────────────────────────


class TestClientInit:
    """Validate client initialisation."""

    def test_api_url(self) -> None:
        c = CourierClient("123:ABC", base_url="https://api.example.com/")
        assert c.api_url == "https://api.example.com/bot123:ABC"

    def test_default_timeout(self) -> None:
        assert CourierClient("t").timeout == 10

    def test_encode_params(self) -> None:
        encoded = encode_params({
            "chat_id": 42,
            "flag": True,
            "off": False,
            "skip": None,
            "allowed_updates": ["message", "callback_query"],
        })
        assert encoded == {
            "chat_id": "42",
            "flag": "true",
            "off": "false",
            "allowed_updates": '["message", "callback_query"]',
        }


# ── invoke ───────────────────────────────────────────────────────────────────


class TestInvoke:
    """Validate the RPC primitive and its error mapping."""

    def test_success_returns_result(self) -> None:
        c, session = _client(_response({"ok": True, "result": {"id": 1}}))
        assert c.invoke("getMe") == {"id": 1}
        url = session.post.call_args.args[0]
        assert url == "https://api.example.com/bot123:ABC/getMe"

    def test_api_error_raises(self) -> None:
        body = {"ok": False, "error_code": 401, "description": "Unauthorized"}
        c, _ = _client(_response(body, ok=False, status=401))
        with pytest.raises(APIException) as exc_info:
            c.invoke("getMe")
        assert exc_info.value.error_code == 401

    def test_ok_false_with_200_raises(self) -> None:
        c, _ = _client(_response({"ok": False, "error_code": 400, "description": "Bad Request"}))
        with pytest.raises(APIException):
            c.invoke("sendMessage", {"chat_id": 1})

    def test_non_json_success_is_decode_error(self) -> None:
        c, _ = _client(_response(json_error=True))
        with pytest.raises(DecodeError):
            c.invoke("getMe")

    def test_non_json_failure_is_api_error(self) -> None:
        c, _ = _client(_response(ok=False, status=502, json_error=True))
        with pytest.raises(APIException) as exc_info:
            c.invoke("getMe")
        assert exc_info.value.status_code == 502

    def test_missing_result_is_decode_error(self) -> None:
        c, _ = _client(_response({"ok": True}))
        with pytest.raises(DecodeError):
            c.invoke("getMe")

    def test_network_error_wrapped(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("offline")
        c = CourierClient("t", session=session)
        with pytest.raises(TransportError) as exc_info:
            c.invoke("getMe")
        assert exc_info.value.method == "getMe"
        assert isinstance(exc_info.value.__cause__, requests.ConnectionError)

    def test_invoke_with_files_sends_multipart(self) -> None:
        c, session = _client(_response({"ok": True, "result": True}))
        stream = io.BytesIO(b"data")
        assert c.invoke_with_files("setChatPhoto", {"chat_id": 5}, {"photo": ("a.png", stream)}) is True
        kwargs = session.post.call_args.kwargs
        assert kwargs["files"] == {"photo": ("a.png", stream)}
        assert kwargs["data"] == {"chat_id": "5"}


# ── Endpoint wrappers ────────────────────────────────────────────────────────


class TestEndpointMethods:
    """Spot-check the update-source endpoints and handler conveniences."""

    def test_get_updates_params_and_timeout(self) -> None:
        c, session = _client(_response({"ok": True, "result": [{"update_id": 5}]}))
        result = c.get_updates(offset=5, limit=50, timeout=30, allowed_updates=["message"])
        assert result == [{"update_id": 5}]
        kwargs = session.post.call_args.kwargs
        assert kwargs["data"] == {"offset": "5", "limit": "50", "timeout": "30", "allowed_updates": '["message"]'}
        # HTTP timeout must outlast the long poll.
        assert kwargs["timeout"] == 40

    def test_get_updates_zero_offset_omitted(self) -> None:
        c, session = _client(_response({"ok": True, "result": []}))
        c.get_updates(offset=0)
        assert "offset" not in session.post.call_args.kwargs["data"]

    def test_get_updates_non_list_is_decode_error(self) -> None:
        c, _ = _client(_response({"ok": True, "result": {"oops": 1}}))
        with pytest.raises(DecodeError):
            c.get_updates()

    def test_set_webhook(self) -> None:
        c, session = _client(_response({"ok": True, "result": True}))
        assert c.set_webhook("https://bot.example.com/hook", secret_token="s3cret") is True
        data = session.post.call_args.kwargs["data"]
        assert data == {"url": "https://bot.example.com/hook", "secret_token": "s3cret"}

    def test_set_webhook_with_certificate(self, tmp_path) -> None:
        cert = tmp_path / "cert.pem"
        cert.write_bytes(b"-----BEGIN CERTIFICATE-----")
        c, session = _client(_response({"ok": True, "result": True}))
        c.set_webhook("https://bot.example.com/hook", certificate=str(cert))
        assert "certificate" in session.post.call_args.kwargs["files"]

    def test_delete_webhook(self) -> None:
        c, session = _client(_response({"ok": True, "result": True}))
        assert c.delete_webhook() is True
        assert session.post.call_args.args[0].endswith("/deleteWebhook")

    def test_get_webhook_info(self) -> None:
        c, _ = _client(_response({"ok": True, "result": {
            "url": "", "has_custom_certificate": False, "pending_update_count": 0,
        }}))
        info = c.get_webhook_info()
        assert isinstance(info, WebhookInfo)
        assert info.url == ""

    def test_get_me(self) -> None:
        c, _ = _client(_response({"ok": True, "result": {"id": 1, "is_bot": True, "first_name": "Bot"}}))
        me = c.get_me()
        assert me.id == 1
        assert me.is_bot is True

    def test_send_message_with_options(self) -> None:
        c, session = _client(_response({"ok": True, "result": {"message_id": 1}}))
        options = SendOptions(parse_mode="HTML", disable_notification=True)
        assert c.send_message(42, "hello", options) == {"message_id": 1}
        data = session.post.call_args.kwargs["data"]
        assert data == {"chat_id": "42", "text": "hello", "parse_mode": "HTML", "disable_notification": "true"}
