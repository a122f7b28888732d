"""Realtime order and account event stream."""

from .events import (
    AccountEvent,
    AccountMessage,
    Authorization,
    AuthorizationAction,
    AuthorizationMessage,
    AuthorizationStatus,
    FillEvent,
    ListeningMessage,
    OrderEvent,
    OrderMessage,
    PartialFillEvent,
    StreamMessage,
    UnrecognizedMessage,
    UnrecognizedOrderEvent,
    decode_message,
)
from .shutdown import ShutdownCoordinator, ShutdownReason
from .streamer import Streamer, StreamState
