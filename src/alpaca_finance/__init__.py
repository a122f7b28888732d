"""
Alpaca Finance - async client for the Alpaca trading API.

Provides:
- Authentication against the paper and live trading APIs
- The account API
- The orders API: place, replace, cancel and list open orders
- Realtime streaming of order and account updates

ALWAYS VERIFY WITH THE PAPER API BEFORE USING THE LIVE API.
"""

from .clients.alpaca import Alpaca
from .config.settings import AlpacaSettings, load_settings
from .errors import (
    AlpacaError,
    BadData,
    CallFailed,
    InternalJSON,
    InternalURL,
    InvalidCredentials,
    OrderForbidden,
    OrderInvalid,
    OrderNotCancelable,
    OrderNotFound,
    RequestFailed,
    StreamingFailed,
    Unavailable,
    Unknown,
)
from .models import (
    Account,
    AccountStatus,
    Order,
    OrderBuilder,
    OrderSide,
    OrderStatus,
    OrderType,
    OrderUpdater,
    TimeInForce,
)
from .streaming import (
    AccountEvent,
    AccountMessage,
    OrderEvent,
    OrderMessage,
    StreamMessage,
    StreamState,
    Streamer,
)

__version__ = "1.0.0"
