"""Webhook update source.

The Bot API pushes each update as one JSON ``POST`` to a public URL.  The
receiver exposes that endpoint as a FastAPI route, served by uvicorn, and
hands every well-formed update to the dispatcher before answering.  The
answer only acknowledges receipt: it is ``200`` whatever the handler did,
and ``400`` (no dispatch) for a body that is not an update.

Deliveries may be served concurrently, so updates can reach handlers out
of ``update_id`` order.  Bots that need strict ordering should poll.
"""

import asyncio
import dataclasses
import hmac
import json
import re
from typing import Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request

from bot.dispatcher import Dispatcher
from bot.exceptions import ConfigurationError
from bot.source import UpdateSourceGuard
from core.logger import CourierLogger
from sdk.client import CourierClient
from sdk.exceptions import CourierError, DecodeError
from sdk.models import decode_update

logger = CourierLogger.get_logger()

_SECRET_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{1,256}$")


@dataclasses.dataclass(frozen=True)
class WebhookConfig:
    """Webhook settings.

    ``url``: public HTTPS URL the Bot API posts to.
    ``certificate``: path to a self-signed public certificate to upload (optional).
    ``listen_host`` / ``listen_port`` / ``path``: where the local endpoint listens.
    ``tls_key``: private key; with ``certificate`` set, uvicorn terminates TLS itself.
    ``secret_token``: expected ``X-Telegram-Bot-Api-Secret-Token`` header value.
    ``max_connections``, ``allowed_updates``, ``drop_pending_updates``: passed to ``setWebhook``.
    """

    url: str
    certificate: Optional[str] = None
    listen_host: str = "0.0.0.0"
    listen_port: int = 8443
    path: str = "/webhook"
    tls_key: Optional[str] = None
    secret_token: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[tuple[str, ...]] = None
    drop_pending_updates: bool = False

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("webhook url must not be empty")
        if not self.path.startswith("/"):
            raise ConfigurationError(f"webhook path must start with '/', got {self.path!r}")
        if self.secret_token is not None and not _SECRET_TOKEN_RE.match(self.secret_token):
            raise ConfigurationError("secret_token must be 1-256 characters of A-Z, a-z, 0-9, _ or -")


class WebhookReceiver:
    """Receives pushed updates and hands them to a :class:`Dispatcher`.

    Usage::

        receiver = WebhookReceiver(client, dispatcher, WebhookConfig(url="https://bot.example.com/webhook"))
        await receiver.run()        # register, serve until stopped, unregister
    """

    def __init__(
        self,
        client: CourierClient,
        dispatcher: Dispatcher,
        config: WebhookConfig,
        *,
        guard: Optional[UpdateSourceGuard] = None,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._config = config
        self._guard = guard or UpdateSourceGuard.for_client(client)
        self._registered = False
        self._server: Optional[uvicorn.Server] = None
        self.app = self._build_app()

    @property
    def registered(self) -> bool:
        return self._registered

    @property
    def config(self) -> WebhookConfig:
        return self._config

    # ── remote registration ──────────────────────────────────────────────

    async def register(self, url: Optional[str] = None, certificate: Optional[str] = None) -> None:
        """Point the Bot API at this receiver (``setWebhook``).

        Raises:
            ConfigurationError: If a poller is active for the same bot, or the
                API refused the webhook.
        """
        self._guard.acquire(self)
        config = self._config
        try:
            await asyncio.to_thread(
                self._client.set_webhook,
                url or config.url,
                certificate=certificate or config.certificate,
                max_connections=config.max_connections,
                allowed_updates=config.allowed_updates,
                drop_pending_updates=config.drop_pending_updates or None,
                secret_token=config.secret_token,
            )
        except CourierError as exc:
            if not self._registered:
                self._guard.release(self)
            raise ConfigurationError(f"setWebhook failed: {exc}") from exc

        if not self._registered:
            self._dispatcher.registry.freeze()
            self._registered = True
        logger.info("Webhook registered", extra={"url": url or config.url, "path": config.path})

    async def unregister(self) -> None:
        """Remove the webhook (``deleteWebhook``); does nothing when not registered."""
        if not self._registered:
            return
        await asyncio.to_thread(self._client.delete_webhook)
        self._registered = False
        self._dispatcher.registry.thaw()
        self._guard.release(self)
        logger.info("Webhook unregistered")

    # ── HTTP endpoint ────────────────────────────────────────────────────

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="courier-webhook", docs_url=None, redoc_url=None, openapi_url=None)
        app.add_api_route(self._config.path, self._receive, methods=["POST"])
        return app

    async def _receive(
        self,
        request: Request,
        x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    ) -> dict:
        expected = self._config.secret_token
        if expected is not None:
            supplied = x_telegram_bot_api_secret_token or ""
            if not hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8")):
                logger.warning("Webhook delivery with invalid secret token")
                raise HTTPException(status_code=403, detail="Invalid secret token")

        raw_body = await request.body()
        try:
            update = decode_update(json.loads(raw_body))
        except (ValueError, DecodeError) as exc:
            logger.warning("Rejecting malformed webhook delivery", extra={"error": str(exc), "size": len(raw_body)})
            raise HTTPException(status_code=400, detail="Malformed update") from exc

        await self._dispatcher.dispatch(update)
        return {"ok": True}

    # ── serving ──────────────────────────────────────────────────────────

    async def serve(self) -> None:
        """Serve the endpoint with uvicorn until :meth:`stop` is called."""
        config = self._config
        tls = {}
        if config.tls_key and config.certificate:
            tls = {"ssl_certfile": config.certificate, "ssl_keyfile": config.tls_key}
        server_config = uvicorn.Config(
            self.app,
            host=config.listen_host,
            port=config.listen_port,
            log_config=None,
            access_log=False,
            **tls,
        )
        self._server = uvicorn.Server(server_config)
        logger.info("Webhook endpoint listening", extra={"host": config.listen_host, "port": config.listen_port, "path": config.path})
        await self._server.serve()

    def stop(self) -> None:
        """Ask the running server to shut down."""
        if self._server is not None:
            self._server.should_exit = True

    async def run(self) -> None:
        """Register, serve until stopped, then unregister."""
        await self.register()
        try:
            await self.serve()
        finally:
            await self.unregister()
