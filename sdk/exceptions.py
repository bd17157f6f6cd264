"""Exception hierarchy for the Courier Bot API transport."""

from typing import Any, Dict, Optional


class CourierError(Exception):
    """Base class for every error raised by the transport layer."""


class TransportError(CourierError):
    """The request never produced an HTTP response (network failure, timeout).

    Attributes:
        method: Bot API method that was being called.
    """

    def __init__(self, method: str, cause: Optional[BaseException] = None) -> None:
        self.method = method
        self.cause = cause
        super().__init__(f"{method}: transport failure: {cause}")


class APIException(CourierError):
    """The Bot API answered with ``ok: false`` or a non-2xx status.

    Attributes:
        status_code: HTTP status code returned by the API.
        response_body: Raw response body as a dict, when available.
        error_code: ``error_code`` reported by the API (falls back to *status_code*).
        description: Human-readable description reported by the API.
        retry_after: Seconds to wait before retrying (flood control), if given.
        migrate_to_chat_id: New chat id when a group was upgraded, if given.
    """

    def __init__(self, status_code: int, response_body: Optional[Dict[str, Any]] = None) -> None:
        """Initialise with the HTTP status code and optional body."""
        self.status_code = status_code
        self.response_body = response_body or {}
        self.error_code: int = self.response_body.get("error_code", status_code)
        self.description: str = self.response_body.get("description", "Unknown error")
        parameters = self.response_body.get("parameters") or {}
        self.retry_after: Optional[int] = parameters.get("retry_after")
        self.migrate_to_chat_id: Optional[int] = parameters.get("migrate_to_chat_id")
        super().__init__(f"API error {self.error_code}: {self.description}")


class DecodeError(CourierError):
    """A response or pushed payload could not be decoded."""

    def __init__(self, message: str, raw: Any = None) -> None:
        self.raw = raw
        super().__init__(message)
