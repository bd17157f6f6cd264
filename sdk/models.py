"""Pydantic data models for the parts of the Bot API the dispatch engine reads.

Every class corresponds to a Bot API object.  :class:`Update` is a tagged
union: exactly one payload field is populated, and :attr:`Update.kind`
names which one.  Unknown fields are ignored so newer API versions still
decode.
"""

from __future__ import annotations

import enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from sdk.exceptions import DecodeError


class UpdateKind(str, enum.Enum):
    """Discriminant of :class:`Update`; each value is the payload field name."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CHANNEL_POST = "channel_post"
    EDITED_CHANNEL_POST = "edited_channel_post"
    INLINE_QUERY = "inline_query"
    CHOSEN_INLINE_RESULT = "chosen_inline_result"
    CALLBACK_QUERY = "callback_query"
    SHIPPING_QUERY = "shipping_query"
    PRE_CHECKOUT_QUERY = "pre_checkout_query"
    POLL = "poll"
    POLL_ANSWER = "poll_answer"


# Kinds whose payload is a Message and is routed by its text.
MESSAGE_KINDS: frozenset[UpdateKind] = frozenset({
    UpdateKind.MESSAGE,
    UpdateKind.EDITED_MESSAGE,
    UpdateKind.CHANNEL_POST,
    UpdateKind.EDITED_CHANNEL_POST,
})


class User(BaseModel):
    """This object represents a Telegram user or bot."""

    id: int
    is_bot: bool
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None

    model_config = {"populate_by_name": True}


class Chat(BaseModel):
    """This object represents a chat."""

    id: int
    type: str
    title: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class MessageEntity(BaseModel):
    """This object represents one special entity in a text message (hashtag, command, URL, ...)."""

    type: str
    offset: int
    length: int
    url: Optional[str] = None
    user: Optional["User"] = None
    language: Optional[str] = None

    model_config = {"populate_by_name": True}


class Location(BaseModel):
    """This object represents a point on the map."""

    longitude: float
    latitude: float

    model_config = {"populate_by_name": True}


class Message(BaseModel):
    """This object represents a message."""

    message_id: int
    date: int
    chat: "Chat"
    from_field: Optional["User"] = Field(None, alias="from")
    sender_chat: Optional["Chat"] = None
    reply_to_message: Optional["Message"] = None
    edit_date: Optional[int] = None
    media_group_id: Optional[str] = None
    text: Optional[str] = None
    entities: Optional[List["MessageEntity"]] = None
    caption: Optional[str] = None
    caption_entities: Optional[List["MessageEntity"]] = None
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True}


class CallbackQuery(BaseModel):
    """This object represents an incoming callback query from a callback button in an inline keyboard."""

    id: str
    from_field: "User" = Field(..., alias="from")
    chat_instance: str
    message: Optional["Message"] = None
    inline_message_id: Optional[str] = None
    data: Optional[str] = None
    game_short_name: Optional[str] = None

    model_config = {"populate_by_name": True}


class InlineQuery(BaseModel):
    """This object represents an incoming inline query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    query: str
    offset: str
    location: Optional["Location"] = None

    model_config = {"populate_by_name": True}


class ChosenInlineResult(BaseModel):
    """Represents a result of an inline query that was chosen by the user and sent to their chat partner."""

    result_id: str
    from_field: "User" = Field(..., alias="from")
    query: str
    location: Optional["Location"] = None
    inline_message_id: Optional[str] = None

    model_config = {"populate_by_name": True}


class ShippingAddress(BaseModel):
    """This object represents a shipping address."""

    country_code: str
    state: str
    city: str
    street_line1: str
    street_line2: str
    post_code: str

    model_config = {"populate_by_name": True}


class OrderInfo(BaseModel):
    """This object represents information about an order."""

    name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    shipping_address: Optional["ShippingAddress"] = None

    model_config = {"populate_by_name": True}


class ShippingQuery(BaseModel):
    """This object contains information about an incoming shipping query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    invoice_payload: str
    shipping_address: "ShippingAddress"

    model_config = {"populate_by_name": True}


class PreCheckoutQuery(BaseModel):
    """This object contains information about an incoming pre-checkout query."""

    id: str
    from_field: "User" = Field(..., alias="from")
    currency: str
    total_amount: int
    invoice_payload: str
    shipping_option_id: Optional[str] = None
    order_info: Optional["OrderInfo"] = None

    model_config = {"populate_by_name": True}


class PollOption(BaseModel):
    """This object contains information about one answer option in a poll."""

    text: str
    voter_count: int

    model_config = {"populate_by_name": True}


class Poll(BaseModel):
    """This object contains information about a poll."""

    id: str
    question: str
    options: List["PollOption"]
    total_voter_count: int
    is_closed: bool
    is_anonymous: bool
    type: str
    allows_multiple_answers: bool
    correct_option_id: Optional[int] = None

    model_config = {"populate_by_name": True}


class PollAnswer(BaseModel):
    """This object represents an answer of a user in a non-anonymous poll."""

    poll_id: str
    user: "User"
    option_ids: List[int]

    model_config = {"populate_by_name": True}


Payload = Union[
    Message, CallbackQuery, InlineQuery, ChosenInlineResult,
    ShippingQuery, PreCheckoutQuery, Poll, PollAnswer,
]


class Update(BaseModel):
    """An incoming update. At most **one** of the optional payload fields is present.

    Updates are immutable once decoded.  ``update_id`` increases
    monotonically per bot but may have gaps.
    """

    update_id: int
    message: Optional["Message"] = None
    edited_message: Optional["Message"] = None
    channel_post: Optional["Message"] = None
    edited_channel_post: Optional["Message"] = None
    inline_query: Optional["InlineQuery"] = None
    chosen_inline_result: Optional["ChosenInlineResult"] = None
    callback_query: Optional["CallbackQuery"] = None
    shipping_query: Optional["ShippingQuery"] = None
    pre_checkout_query: Optional["PreCheckoutQuery"] = None
    poll: Optional["Poll"] = None
    poll_answer: Optional["PollAnswer"] = None

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def _single_payload(self) -> "Update":
        populated = [kind.value for kind in UpdateKind if getattr(self, kind.value) is not None]
        if len(populated) > 1:
            raise ValueError(f"update carries more than one payload: {', '.join(populated)}")
        return self

    @property
    def kind(self) -> Optional[UpdateKind]:
        """The populated payload variant, or ``None`` for a kind this model does not know."""
        for kind in UpdateKind:
            if getattr(self, kind.value) is not None:
                return kind
        return None

    @property
    def payload(self) -> Optional[Payload]:
        """The populated payload object itself."""
        kind = self.kind
        return getattr(self, kind.value) if kind is not None else None

    def conversation_key(self) -> Optional[int]:
        """Return the chat id (or sender id) the update belongs to, when there is one."""
        payload = self.payload
        if isinstance(payload, Message):
            return payload.chat.id
        if isinstance(payload, CallbackQuery) and payload.message is not None:
            return payload.message.chat.id
        sender = getattr(payload, "from_field", None) or getattr(payload, "user", None)
        return sender.id if isinstance(sender, User) else None


def decode_update(raw: Any) -> Update:
    """Validate a raw JSON mapping into an :class:`Update`.

    Raises:
        DecodeError: If *raw* is not a well-formed update.
    """
    if not isinstance(raw, dict):
        raise DecodeError(f"update must be a JSON object, got {type(raw).__name__}", raw)
    try:
        return Update.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError(f"malformed update: {exc.error_count()} validation error(s)", raw) from exc


class WebhookInfo(BaseModel):
    """Contains information about the current status of a webhook."""

    url: str
    has_custom_certificate: bool
    pending_update_count: int
    ip_address: Optional[str] = None
    last_error_date: Optional[int] = None
    last_error_message: Optional[str] = None
    max_connections: Optional[int] = None
    allowed_updates: Optional[List[str]] = None

    model_config = {"populate_by_name": True}


class SendOptions(BaseModel):
    """Optional parameters shared by the message-sending methods.

    ``parse_mode``: ``"HTML"``, ``"Markdown"`` or ``"MarkdownV2"``.
    ``disable_web_page_preview``: suppress link previews.
    ``disable_notification``: deliver silently.
    ``reply_to_message_id``: send as a reply to that message.
    ``reply_markup``: inline or reply keyboard, serialised as JSON.
    """

    parse_mode: Optional[str] = None
    disable_web_page_preview: Optional[bool] = None
    disable_notification: Optional[bool] = None
    reply_to_message_id: Optional[int] = None
    reply_markup: Optional[dict] = None

    model_config = {"populate_by_name": True}

    def to_params(self) -> dict[str, Any]:
        """Return the options that were actually set."""
        return self.model_dump(exclude_none=True)
