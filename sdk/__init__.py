"""Bot API transport -- Pydantic models, the request client, and exceptions.

Usage::

    from sdk import CourierClient, APIException
    from sdk.models import Update, Message, decode_update
"""

from sdk.client import CourierClient
from sdk.exceptions import APIException, CourierError, DecodeError, TransportError

__all__ = [
    "CourierClient",
    "CourierError",
    "APIException",
    "DecodeError",
    "TransportError",
]
