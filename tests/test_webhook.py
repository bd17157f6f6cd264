"""Tests for the webhook update source."""

import sys
import time
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from bot.dispatcher import Dispatcher
from bot.exceptions import ConfigurationError
from bot.poller import Poller, PollerConfig
from bot.registry import HandlerRegistry
from bot.source import UpdateSourceGuard
from bot.webhook import WebhookConfig, WebhookReceiver
from sdk.exceptions import APIException

SECRET = "s3cret-Token_1"


def _payload(update_id: int, text: str = "hello") -> dict:
    return {
        "update_id": update_id,
        "message": {"message_id": update_id, "date": 0, "chat": {"id": 2001, "type": "private"},
                    "from": {"id": 1001, "is_bot": False, "first_name": "Ada"}, "text": text},
    }


def _receiver(handler=None, *, secret=None, client=None, guard=None, routes=None):
    routes = routes if routes is not None else HandlerRegistry()
    if handler is not None:
        routes.text()(handler)
    config = WebhookConfig(url="https://bot.example.com/webhook", secret_token=secret)
    return WebhookReceiver(client or MagicMock(), Dispatcher(routes), config, guard=guard or UpdateSourceGuard())


# ── Configuration ────────────────────────────────────────────────────────────


class TestWebhookConfig:
    """Validate webhook settings."""

    def test_defaults(self) -> None:
        config = WebhookConfig(url="https://bot.example.com/webhook")
        assert config.path == "/webhook"
        assert config.listen_port == 8443

    @pytest.mark.parametrize("kwargs", [
        {"url": ""},
        {"url": "https://x", "path": "webhook"},
        {"url": "https://x", "secret_token": "has spaces"},
        {"url": "https://x", "secret_token": "a" * 257},
    ])
    def test_invalid(self, kwargs) -> None:
        with pytest.raises(ConfigurationError):
            WebhookConfig(**kwargs)


# ── HTTP endpoint ────────────────────────────────────────────────────────────


class TestEndpoint:
    """Validate the delivery contract of the HTTP endpoint."""

    def test_valid_update_is_dispatched(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler).app)
        response = http.post("/webhook", json=_payload(10, "ping"))
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        handler.assert_awaited_once()
        assert handler.await_args.args[0].text == "ping"

    def test_invalid_json_rejected(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler).app)
        response = http.post("/webhook", content=b"{not json", headers={"content-type": "application/json"})
        assert response.status_code == 400
        handler.assert_not_awaited()

    def test_malformed_update_rejected(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler).app)
        response = http.post("/webhook", json={"message": {"text": "no update id"}})
        assert response.status_code == 400
        handler.assert_not_awaited()

    def test_handler_failure_still_acknowledged(self) -> None:
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        http = TestClient(_receiver(handler).app)
        response = http.post("/webhook", json=_payload(11))
        assert response.status_code == 200
        handler.assert_awaited_once()

    def test_unmatched_update_acknowledged(self) -> None:
        http = TestClient(_receiver().app)
        assert http.post("/webhook", json=_payload(12)).status_code == 200

    def test_redelivery_dispatched_twice(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler).app)
        http.post("/webhook", json=_payload(13))
        http.post("/webhook", json=_payload(13))
        assert handler.await_count == 2

    def test_only_post_on_configured_path(self) -> None:
        http = TestClient(_receiver(AsyncMock()).app)
        assert http.get("/webhook").status_code == 405
        assert http.post("/other", json=_payload(14)).status_code == 404


class TestSecretToken:
    """Validate the secret-token header check."""

    def test_missing_header_forbidden(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler, secret=SECRET).app)
        assert http.post("/webhook", json=_payload(1)).status_code == 403
        handler.assert_not_awaited()

    def test_wrong_header_forbidden(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler, secret=SECRET).app)
        response = http.post("/webhook", json=_payload(1), headers={"x-telegram-bot-api-secret-token": "nope"})
        assert response.status_code == 403
        handler.assert_not_awaited()

    def test_correct_header_accepted(self) -> None:
        handler = AsyncMock()
        http = TestClient(_receiver(handler, secret=SECRET).app)
        response = http.post("/webhook", json=_payload(1), headers={"x-telegram-bot-api-secret-token": SECRET})
        assert response.status_code == 200
        handler.assert_awaited_once()


# ── Registration ─────────────────────────────────────────────────────────────


class TestRegistration:
    """Validate setWebhook / deleteWebhook handling and source exclusivity."""

    @pytest.mark.asyncio
    async def test_register_calls_set_webhook(self) -> None:
        client = MagicMock()
        client.set_webhook.return_value = True
        guard = UpdateSourceGuard()
        routes = HandlerRegistry()
        receiver = _receiver(client=client, guard=guard, routes=routes, secret=SECRET)

        await receiver.register()

        assert receiver.registered
        assert guard.owner is receiver
        assert routes.frozen
        args, kwargs = client.set_webhook.call_args
        assert args == ("https://bot.example.com/webhook",)
        assert kwargs["secret_token"] == SECRET
        assert kwargs["drop_pending_updates"] is None

    @pytest.mark.asyncio
    async def test_register_refused_while_polling(self) -> None:
        client = MagicMock()

        def idle_long_poll(**kwargs):
            time.sleep(0.01)
            return []

        client.get_updates.side_effect = idle_long_poll
        guard = UpdateSourceGuard()
        poller = Poller(client, Dispatcher(HandlerRegistry()), PollerConfig(long_poll_timeout=1), guard=guard)
        await poller.start()
        try:
            receiver = _receiver(client=client, guard=guard)
            with pytest.raises(ConfigurationError):
                await receiver.register()
            client.set_webhook.assert_not_called()
            assert not receiver.registered
            assert poller.running
            assert guard.owner is poller
        finally:
            await poller.stop()
        assert not guard.active

    @pytest.mark.asyncio
    async def test_register_twice_thaws_once(self) -> None:
        routes = HandlerRegistry()
        receiver = _receiver(client=MagicMock(), routes=routes)
        await receiver.register()
        await receiver.register()
        await receiver.unregister()
        assert not routes.frozen

    @pytest.mark.asyncio
    async def test_register_failure(self) -> None:
        client = MagicMock()
        client.set_webhook.side_effect = APIException(400, {"ok": False, "error_code": 400,
                                                            "description": "bad webhook: HTTPS url must be provided"})
        guard = UpdateSourceGuard()
        receiver = _receiver(client=client, guard=guard)
        with pytest.raises(ConfigurationError):
            await receiver.register()
        assert not receiver.registered
        assert not guard.active

    @pytest.mark.asyncio
    async def test_unregister_is_idempotent(self) -> None:
        client = MagicMock()
        guard = UpdateSourceGuard()
        routes = HandlerRegistry()
        receiver = _receiver(client=client, guard=guard, routes=routes)

        await receiver.unregister()
        client.delete_webhook.assert_not_called()

        await receiver.register()
        await receiver.unregister()
        await receiver.unregister()
        client.delete_webhook.assert_called_once()
        assert not receiver.registered
        assert not guard.active
        assert not routes.frozen

    @pytest.mark.asyncio
    async def test_poller_refused_while_webhook_registered(self) -> None:
        client = MagicMock()
        guard = UpdateSourceGuard()
        receiver = _receiver(client=client, guard=guard)
        await receiver.register()

        poller = Poller(client, Dispatcher(HandlerRegistry()), PollerConfig(), guard=guard)
        with pytest.raises(ConfigurationError):
            await poller.start()
        client.delete_webhook.assert_not_called()
        assert not poller.running

    def test_guard_shared_per_bot(self) -> None:
        first, second = MagicMock(), MagicMock()
        first.api_url = second.api_url = "https://api.test/botSHARED"
        assert UpdateSourceGuard.for_client(first) is UpdateSourceGuard.for_client(second)


# ── Serving ──────────────────────────────────────────────────────────────────


class TestServing:
    """Validate the register / serve / unregister sequence."""

    @pytest.mark.asyncio
    async def test_run_unregisters_after_serving(self) -> None:
        client = MagicMock()
        receiver = _receiver(client=client)
        with patch("bot.webhook.uvicorn.Server") as server_cls:
            server_cls.return_value.serve = AsyncMock()
            await receiver.run()
        client.set_webhook.assert_called_once()
        server_cls.return_value.serve.assert_awaited_once()
        client.delete_webhook.assert_called_once()
        assert not receiver.registered

    @pytest.mark.asyncio
    async def test_stop_signals_server(self) -> None:
        receiver = _receiver()
        with patch("bot.webhook.uvicorn.Server") as server_cls:
            server_cls.return_value.serve = AsyncMock()
            await receiver.serve()
        receiver.stop()
        assert server_cls.return_value.should_exit is True
