"""CourierClient -- the transport the dispatch engine talks through.

One synchronous RPC primitive, :meth:`CourierClient.invoke`, posts a
form-encoded request to ``<base_url>/bot<token>/<method>`` and returns the
``result`` field of the reply.  :meth:`CourierClient.invoke_with_files`
does the same as a multipart upload.  The handful of endpoints the update
sources need (``getUpdates``, ``setWebhook``, ``deleteWebhook``,
``getWebhookInfo``) plus a few conveniences for handlers are thin wrappers
on top.

HTTP calls use the ``requests`` library.  Callers on the event loop offload
them with :func:`asyncio.to_thread`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, BinaryIO, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import requests
from pydantic import BaseModel

from sdk.exceptions import APIException, DecodeError, TransportError
from sdk.models import SendOptions, User, WebhookInfo

DEFAULT_BASE_URL = "https://api.telegram.org"

FileSpec = Union[BinaryIO, Tuple[str, BinaryIO]]

_logger = logging.getLogger("courier.sdk")


def _encode_value(value: Any) -> str:
    """Encode one parameter the way the Bot API expects form values."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(value, ensure_ascii=False)


def encode_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Drop ``None`` values and stringify the rest."""
    if not params:
        return {}
    return {key: _encode_value(value) for key, value in params.items() if value is not None}


class CourierClient:
    """Client-side transport for the Bot API.

    Raises :class:`TransportError` when no response arrives,
    :class:`APIException` when the API reports a failure, and
    :class:`DecodeError` when a successful response cannot be parsed.
    """

    _DEFAULT_TIMEOUT: int = 10

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = _DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        """Create a new client for the bot identified by *token*.

        Args:
            token: Bot token issued by BotFather.
            base_url: API server root (override for a local Bot API server).
            timeout: Default request timeout in seconds.
            session: Optional pre-configured :class:`requests.Session` (proxies, adapters).
        """
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._api_url = f"{self._base_url}/bot{token}"
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def api_url(self) -> str:
        """Per-bot endpoint root; identifies the bot for source exclusivity."""
        return self._api_url

    @property
    def timeout(self) -> int:
        return self._timeout

    # ------------------------------------------------------------------
    #  Transport primitives
    # ------------------------------------------------------------------

    def invoke(
        self,
        method: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Call *method* with form-encoded *params* and return its ``result``.

        Raises:
            TransportError: On connection failures and timeouts.
            APIException: If the API answers ``ok: false`` or a non-2xx status.
            DecodeError: If a 2xx response body is not a valid API reply.
        """
        url = f"{self._api_url}/{method}"
        _logger.debug("Invoking Bot API method", extra={"api_method": method})
        try:
            response = self._session.post(
                url,
                data=encode_params(params),
                timeout=timeout if timeout is not None else self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(method, exc) from exc
        return self._unwrap(method, response)

    def invoke_with_files(
        self,
        method: str,
        params: Optional[Mapping[str, Any]],
        files: Mapping[str, FileSpec],
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Like :meth:`invoke` but sends *files* as a multipart upload.

        *files* maps form field names to open binary streams, or to
        ``(filename, stream)`` pairs.
        """
        url = f"{self._api_url}/{method}"
        _logger.debug("Invoking Bot API method with files", extra={"api_method": method, "fields": list(files)})
        try:
            response = self._session.post(
                url,
                data=encode_params(params),
                files=dict(files),
                timeout=timeout if timeout is not None else self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(method, exc) from exc
        return self._unwrap(method, response)

    @staticmethod
    def _unwrap(method: str, response: requests.Response) -> Any:
        try:
            body = response.json()
        except ValueError as exc:
            if not response.ok:
                raise APIException(response.status_code) from exc
            raise DecodeError(f"{method}: response is not JSON", response.text) from exc
        if not isinstance(body, dict):
            raise DecodeError(f"{method}: response is not a JSON object", body)
        if not response.ok or not body.get("ok"):
            raise APIException(response.status_code, body)
        if "result" not in body:
            raise DecodeError(f"{method}: response has no result", body)
        return body["result"]

    # ------------------------------------------------------------------
    #  Update source endpoints
    # ------------------------------------------------------------------

    def get_updates(
        self,
        offset: Optional[int] = None,
        limit: Optional[int] = 100,
        timeout: int = 0,
        allowed_updates: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Long-poll for updates and return them as raw dicts.

        The HTTP read timeout is ``timeout`` plus the client default, so the
        server always releases the long poll before the transport gives up.
        """
        params: Dict[str, Any] = {"timeout": timeout}
        if offset:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit
        if allowed_updates is not None:
            params["allowed_updates"] = list(allowed_updates)
        result = self.invoke("getUpdates", params, timeout=timeout + self._timeout)
        if not isinstance(result, list):
            raise DecodeError("getUpdates: result is not a list", result)
        return result

    def set_webhook(
        self,
        url: str,
        certificate: Optional[str] = None,
        max_connections: Optional[int] = None,
        allowed_updates: Optional[Sequence[str]] = None,
        drop_pending_updates: Optional[bool] = None,
        secret_token: Optional[str] = None,
    ) -> bool:
        """Register *url* as the webhook; *certificate* is a path to a public key file."""
        params: Dict[str, Any] = {
            "url": url,
            "max_connections": max_connections,
            "allowed_updates": list(allowed_updates) if allowed_updates is not None else None,
            "drop_pending_updates": drop_pending_updates,
            "secret_token": secret_token,
        }
        if certificate is None:
            return bool(self.invoke("setWebhook", params))
        with open(certificate, "rb") as cert:
            return bool(self.invoke_with_files("setWebhook", params, {"certificate": ("certificate.pem", cert)}))

    def delete_webhook(self, drop_pending_updates: Optional[bool] = None) -> bool:
        """Remove the webhook so ``getUpdates`` can be used."""
        return bool(self.invoke("deleteWebhook", {"drop_pending_updates": drop_pending_updates}))

    def get_webhook_info(self) -> WebhookInfo:
        """Return the remote webhook status (empty ``url`` when none is set)."""
        result = self.invoke("getWebhookInfo")
        try:
            return WebhookInfo.model_validate(result)
        except ValueError as exc:
            raise DecodeError("getWebhookInfo: malformed result", result) from exc

    # ------------------------------------------------------------------
    #  Conveniences for handlers
    # ------------------------------------------------------------------

    def get_me(self) -> User:
        """Return the bot's own user record (useful as a token check)."""
        result = self.invoke("getMe")
        try:
            return User.model_validate(result)
        except ValueError as exc:
            raise DecodeError("getMe: malformed result", result) from exc

    def send_message(
        self,
        chat_id: Union[int, str],
        text: str,
        options: Optional[SendOptions] = None,
    ) -> Dict[str, Any]:
        """Send a text message and return the raw sent-message object."""
        params: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if options is not None:
            params.update(options.to_params())
        return self.invoke("sendMessage", params)

    def answer_callback_query(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        show_alert: Optional[bool] = None,
    ) -> bool:
        """Acknowledge a callback query so the client stops its spinner."""
        params = {"callback_query_id": callback_query_id, "text": text, "show_alert": show_alert}
        return bool(self.invoke("answerCallbackQuery", params))

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self._session.close()
