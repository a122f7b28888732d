"""Order resource, order placement and replacement."""

import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import BadData, InvalidCredentials, OrderForbidden, OrderInvalid, OrderNotCancelable, OrderNotFound, Unknown
from ..utils.coercion import Int, OptionalFloat, to_wire_string

if TYPE_CHECKING:
    from ..clients.alpaca import Alpaca, ApiResponse

logger = logging.getLogger(__name__)

ORDERS_PATH = "v2/orders"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    """Lifecycle states an order moves through."""
    ACCEPTED = "accepted"
    ACCEPTED_FOR_BIDDING = "accepted_for_bidding"
    CALCULATED = "calculated"
    CANCELED = "canceled"
    DONE_FOR_DAY = "done_for_day"
    EXPIRED = "expired"
    FILLED = "filled"
    NEW = "new"
    PARTIALLY_FILLED = "partially_filled"
    PENDING_CANCEL = "pending_cancel"
    PENDING_NEW = "pending_new"
    PENDING_REPLACE = "pending_replace"
    REJECTED = "rejected"
    REPLACED = "replaced"
    STOPPED = "stopped"
    SUSPENDED = "suspended"


class OrderType(str, Enum):
    LIMIT = "limit"
    MARKET = "market"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class TimeInForce(str, Enum):
    """
    How long an order stays working.

    DAY orders are only eligible for execution on the day they are live.
    FOK (fill or kill) orders execute only if the entire quantity can be
    filled, otherwise they are canceled.
    """
    CLS = "cls"
    DAY = "day"
    FOK = "fok"
    GTC = "gtc"
    IOC = "ioc"
    OPG = "opg"


def _raise_for_order_status(response: "ApiResponse"):
    if response.status == 403:
        raise OrderForbidden()
    raise Unknown(response.status)


def _decode_order(response: "ApiResponse") -> "Order":
    try:
        return Order.model_validate_json(response.body)
    except ValidationError as e:
        logger.error(f"Failed to decode order from {response.url}: {e}")
        raise BadData(f"Alpaca returned invalid order data - {e}") from e


class Order(BaseModel):
    """An order as reported by Alpaca, over REST or the event stream."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    asset_class: str
    client_order_id: str
    extended_hours: bool
    filled_qty: Int
    filled_avg_price: OptionalFloat = None
    limit_price: OptionalFloat = None
    order_type: OrderType = Field(alias="type")
    qty: Int
    side: OrderSide
    status: OrderStatus
    stop_price: OptionalFloat = None
    symbol: str
    time_in_force: TimeInForce

    @classmethod
    async def get_open(cls, alpaca: "Alpaca") -> List["Order"]:
        """Get all currently open orders."""
        response = await alpaca.call("GET", ORDERS_PATH, params={"status": "open"})
        if not response.ok:
            logger.warning(f"Open orders request rejected with status {response.status}")
            raise InvalidCredentials()

        try:
            return _ORDER_LIST.validate_json(response.body)
        except ValidationError as e:
            logger.error(f"Failed to decode open orders: {e}")
            raise BadData(f"Alpaca returned invalid order data - {e}") from e

    @staticmethod
    def buy(symbol: str, qty: int, order_type: OrderType, time_in_force: TimeInForce, **options) -> "OrderBuilder":
        return OrderBuilder(symbol, qty, OrderSide.BUY, order_type, time_in_force, **options)

    @staticmethod
    def sell(symbol: str, qty: int, order_type: OrderType, time_in_force: TimeInForce, **options) -> "OrderBuilder":
        return OrderBuilder(symbol, qty, OrderSide.SELL, order_type, time_in_force, **options)

    async def cancel(self, alpaca: "Alpaca") -> None:
        """Request cancellation of this order."""
        response = await alpaca.call("DELETE", f"{ORDERS_PATH}/{self.id}")
        if response.ok:
            logger.info(f"Canceled order {self.id}")
            return

        if response.status == 404:
            raise OrderNotFound(self.id)
        if response.status == 422:
            raise OrderNotCancelable(self.id)
        raise Unknown(response.status)

    def update(self) -> "OrderUpdater":
        """Start a replace request for this order."""
        return OrderUpdater(self.id)


_ORDER_LIST = TypeAdapter(List[Order])


class OrderBuilder:
    """
    A new order, validated locally before anything is sent.

    Required fields are given up front; the optional ones can be passed as
    keywords or set with the chainable setters:

        order = await Order.buy("AAPL", 100, OrderType.LIMIT, TimeInForce.DAY) \\
            .limit_price(100.0) \\
            .place(alpaca)
    """

    def __init__(
        self,
        symbol: str,
        qty: int,
        side: OrderSide,
        order_type: OrderType,
        time_in_force: TimeInForce,
        limit_price: Optional[float] = None,
        stop_price: Optional[float] = None,
        extended_hours: bool = False
    ):
        self.symbol = symbol
        self.qty = qty
        self.side = OrderSide(side)
        self.order_type = OrderType(order_type)
        self.time_in_force = TimeInForce(time_in_force)
        self._limit_price = limit_price
        self._stop_price = stop_price
        self._extended_hours = extended_hours

    def limit_price(self, limit_price: float) -> "OrderBuilder":
        self._limit_price = limit_price
        return self

    def stop_price(self, stop_price: float) -> "OrderBuilder":
        self._stop_price = stop_price
        return self

    def extended_hours(self, extended_hours: bool = True) -> "OrderBuilder":
        self._extended_hours = extended_hours
        return self

    def validate(self) -> None:
        """Raise OrderInvalid if the order cannot be submitted as built."""
        if self.qty <= 0:
            raise OrderInvalid("Quantity must be positive.")
        if self.order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT) and self._limit_price is None:
            raise OrderInvalid("Limit orders need a limit price.")
        if self.order_type in (OrderType.STOP, OrderType.STOP_LIMIT) and self._stop_price is None:
            raise OrderInvalid("Stop orders need a stop price.")
        if self._extended_hours and (self.order_type != OrderType.LIMIT or self.time_in_force != TimeInForce.DAY):
            raise OrderInvalid("Extended hours only works for limit orders for today.")

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "symbol": self.symbol,
            "qty": to_wire_string(self.qty),
            "side": self.side.value,
            "type": self.order_type.value,
            "time_in_force": self.time_in_force.value,
            "extended_hours": self._extended_hours,
        }
        if self._limit_price is not None:
            payload["limit_price"] = self._limit_price
        if self._stop_price is not None:
            payload["stop_price"] = self._stop_price
        return payload

    async def place(self, alpaca: "Alpaca") -> Order:
        """Validate and submit the order."""
        self.validate()

        response = await alpaca.call("POST", ORDERS_PATH, json=self.to_payload())
        if not response.ok:
            logger.warning(f"Order for {self.qty} {self.symbol} rejected with status {response.status}")
            _raise_for_order_status(response)

        order = _decode_order(response)
        logger.info(f"Placed {order.side.value} order {order.id} for {order.qty} {order.symbol}")
        return order

    def __repr__(self):
        return f"OrderBuilder({json.dumps(self.to_payload())})"


class OrderUpdater:
    """A replace request; only the fields that were set are sent."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        self._changes: Dict[str, Any] = {}

    def limit_price(self, limit_price: float) -> "OrderUpdater":
        self._changes["limit_price"] = limit_price
        return self

    def qty(self, qty: int) -> "OrderUpdater":
        self._changes["qty"] = qty
        return self

    def stop_price(self, stop_price: float) -> "OrderUpdater":
        self._changes["stop_price"] = stop_price
        return self

    def time_in_force(self, time_in_force: TimeInForce) -> "OrderUpdater":
        self._changes["time_in_force"] = TimeInForce(time_in_force)
        return self

    def validate(self) -> None:
        if not self._changes:
            raise OrderInvalid("Nothing to update.")
        qty = self._changes.get("qty")
        if qty is not None and qty <= 0:
            raise OrderInvalid("Quantity must be positive.")
        for field in ("limit_price", "stop_price"):
            price = self._changes.get(field)
            if price is not None and price <= 0:
                raise OrderInvalid(f"{field} must be positive.")

    def to_payload(self) -> Dict[str, str]:
        return {key: to_wire_string(value) for key, value in self._changes.items()}

    async def place(self, alpaca: "Alpaca") -> Order:
        """Validate and submit the replace request."""
        self.validate()

        response = await alpaca.call("PATCH", f"{ORDERS_PATH}/{self.order_id}", json=self.to_payload())
        if not response.ok:
            logger.warning(f"Replace of order {self.order_id} rejected with status {response.status}")
            _raise_for_order_status(response)

        return _decode_order(response)
