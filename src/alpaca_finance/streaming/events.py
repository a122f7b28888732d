"""Wire model for the Alpaca event stream.

Inbound frames are envelopes tagged by `stream`; order updates carry a
second tag, `event`. Decoding looks at the tag first and then validates the
rest of the payload against the matching model. Unknown tags decode to an
explicit "unrecognized" value instead of failing, so new server-side event
types do not break the reader.

Outbound control frames use the `{"action": ..., "data": {...}}` envelope.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InternalJSON, MessageDecodeError
from ..models.account import AccountStatus
from ..models.order import Order
from ..utils.coercion import Float, Int


class AuthorizationStatus(str, Enum):
    AUTHORIZED = "authorized"
    UNAUTHORIZED = "unauthorized"


class AuthorizationAction(str, Enum):
    AUTHENTICATE = "authenticate"
    LISTEN = "listen"


class Authorization(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: AuthorizationStatus
    action: AuthorizationAction

    @property
    def authorized(self) -> bool:
        return self.status == AuthorizationStatus.AUTHORIZED


class ListenStreams(BaseModel):
    streams: List[str]


class AuthenticateData(BaseModel):
    key_id: str
    secret_key: str


class AccountEvent(BaseModel):
    """
    An update caused by an account change.

    The payload is thinly documented upstream; fields may drift.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    created: datetime = Field(alias="created_at")
    updated: datetime = Field(alias="updated_at")
    deleted: Optional[datetime] = Field(default=None, alias="deleted_at")
    status: AccountStatus
    cash: Float
    cash_withdrawable: Float


# --- Order events -----------------------------------------------------------

class OrderEvent(BaseModel):
    """Base class for everything on the trade_updates stream."""
    model_config = ConfigDict(frozen=True)

    event: str
    order: Order


class CalculatedEvent(OrderEvent):
    """Order completed for the day (filled or done_for_day); settlement calculations pending."""
    event: Literal["calculated"] = "calculated"


class CanceledEvent(OrderEvent):
    """A requested cancelation was processed."""
    event: Literal["canceled"] = "canceled"
    timestamp: datetime


class DoneForDayEvent(OrderEvent):
    """Done executing for the day; no more updates until the next trading day."""
    event: Literal["done_for_day"] = "done_for_day"


class ExpiredEvent(OrderEvent):
    """End of life as determined by the order's time in force."""
    event: Literal["expired"] = "expired"
    timestamp: datetime


class FillEvent(OrderEvent):
    """The order was completely filled."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event: Literal["fill"] = "fill"
    timestamp: datetime
    price: Float
    qty: Int = Field(alias="position_qty")


class NewEvent(OrderEvent):
    """Routed to the exchanges for execution."""
    event: Literal["new"] = "new"


class OrderCancelRejectedEvent(OrderEvent):
    event: Literal["order_cancel_rejected"] = "order_cancel_rejected"


class OrderReplaceRejectedEvent(OrderEvent):
    event: Literal["order_replace_rejected"] = "order_replace_rejected"


class PartialFillEvent(OrderEvent):
    """Part of the remaining quantity was filled."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event: Literal["partial_fill"] = "partial_fill"
    timestamp: datetime
    price: Float
    qty: Int = Field(alias="position_qty")


class PendingCancelEvent(OrderEvent):
    event: Literal["pending_cancel"] = "pending_cancel"


class PendingNewEvent(OrderEvent):
    """Received and routed, but not yet accepted for execution."""
    event: Literal["pending_new"] = "pending_new"


class PendingReplaceEvent(OrderEvent):
    event: Literal["pending_replace"] = "pending_replace"


class RejectedEvent(OrderEvent):
    event: Literal["rejected"] = "rejected"
    timestamp: datetime


class ReplacedEvent(OrderEvent):
    """A requested replacement was processed."""
    event: Literal["replaced"] = "replaced"
    timestamp: datetime


class StoppedEvent(OrderEvent):
    """A trade is guaranteed, usually at a stated price or better, but has not occurred yet."""
    event: Literal["stopped"] = "stopped"


class SuspendedEvent(OrderEvent):
    """Suspended and not eligible for trading."""
    event: Literal["suspended"] = "suspended"


class UnrecognizedOrderEvent(OrderEvent):
    """An order event type this client does not know about yet."""
    model_config = ConfigDict(frozen=True, extra="allow")

    order: Optional[Order] = None


ORDER_EVENT_TYPES: Dict[str, Type[OrderEvent]] = {
    "calculated": CalculatedEvent,
    "canceled": CanceledEvent,
    "done_for_day": DoneForDayEvent,
    "expired": ExpiredEvent,
    "fill": FillEvent,
    "new": NewEvent,
    "order_cancel_rejected": OrderCancelRejectedEvent,
    "order_replace_rejected": OrderReplaceRejectedEvent,
    "partial_fill": PartialFillEvent,
    "pending_cancel": PendingCancelEvent,
    "pending_new": PendingNewEvent,
    "pending_replace": PendingReplaceEvent,
    "rejected": RejectedEvent,
    "replaced": ReplacedEvent,
    "stopped": StoppedEvent,
    "suspended": SuspendedEvent,
}


def parse_order_event(value: Any) -> OrderEvent:
    """Dispatch on the `event` tag and validate the matching variant."""
    if isinstance(value, OrderEvent):
        return value
    if not isinstance(value, dict):
        raise ValueError(f"order event must be an object, got {type(value).__name__}")

    tag = value.get("event")
    if not isinstance(tag, str):
        raise ValueError("order event is missing its 'event' tag")

    event_type = ORDER_EVENT_TYPES.get(tag, UnrecognizedOrderEvent)
    return event_type.model_validate(value)


# --- Stream envelopes -------------------------------------------------------

class StreamMessage(BaseModel):
    """Base class for inbound envelopes."""
    model_config = ConfigDict(frozen=True)

    stream: str


class AuthorizationMessage(StreamMessage):
    stream: Literal["authorization"] = "authorization"
    data: Authorization


class ListeningMessage(StreamMessage):
    stream: Literal["listening"] = "listening"
    data: ListenStreams


class OrderMessage(StreamMessage):
    """Updates to orders: fills, partial fills, cancellations, rejections."""
    stream: Literal["trade_updates"] = "trade_updates"
    data: OrderEvent

    @field_validator("data", mode="before")
    @classmethod
    def _dispatch_event(cls, value):
        return parse_order_event(value)


class AccountMessage(StreamMessage):
    """Updates to the brokerage account, including balances."""
    stream: Literal["account_updates"] = "account_updates"
    data: AccountEvent


class UnrecognizedMessage(StreamMessage):
    """A stream this client does not know about; kept for logging, never forwarded."""
    data: Any = None


STREAM_MESSAGE_TYPES: Dict[str, Type[StreamMessage]] = {
    "authorization": AuthorizationMessage,
    "listening": ListeningMessage,
    "trade_updates": OrderMessage,
    "account_updates": AccountMessage,
}

DomainMessage = Union[OrderMessage, AccountMessage]


def is_domain_event(message: StreamMessage) -> bool:
    """True for the messages a caller of the stream gets to see."""
    return isinstance(message, (OrderMessage, AccountMessage))


def decode_message(raw: Union[str, bytes]) -> StreamMessage:
    """
    Decode one text or binary frame into a stream envelope.

    Raises:
        MessageDecodeError: if the payload is not UTF-8, not JSON, lacks the
            `stream` tag, or does not match the variant's shape
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MessageDecodeError(f"Binary frame is not valid UTF-8: {e}") from e

    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise MessageDecodeError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("stream"), str):
        raise MessageDecodeError("Frame has no 'stream' tag")

    message_type = STREAM_MESSAGE_TYPES.get(payload["stream"], UnrecognizedMessage)
    try:
        return message_type.model_validate(payload)
    except (ValidationError, ValueError) as e:
        raise MessageDecodeError(f"Invalid '{payload['stream']}' message: {e}") from e


class ActionMessage(BaseModel):
    action: str
    data: Dict[str, Any]


def encode_action(action: str, data: BaseModel) -> str:
    """Serialize a control frame: `{"action": action, "data": {...}}`."""
    try:
        return ActionMessage(action=action, data=data.model_dump()).model_dump_json()
    except (ValueError, TypeError) as e:
        raise InternalJSON(f"Could not encode '{action}' frame: {e}") from e


def listen_frame(streams: List[str]) -> str:
    return encode_action("listen", ListenStreams(streams=list(streams)))
