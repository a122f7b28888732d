"""Integration tests for order listing, placement, cancellation and replacement."""

import pytest

from alpaca_finance import Order
from alpaca_finance.errors import (
    BadData,
    InvalidCredentials,
    OrderForbidden,
    OrderInvalid,
    OrderNotCancelable,
    OrderNotFound,
    Unknown,
)
from alpaca_finance.models.order import OrderSide, OrderStatus, OrderType, TimeInForce


ORDER_ID = "904837e3-3b76-47ec-b432-046db621571b"


@pytest.mark.integration
class TestGetOpen:

    async def test_open_orders(self, alpaca, alpaca_server, sample_order):
        alpaca_server.set_response("GET", "/v2/orders", 200, [sample_order])

        orders = await Order.get_open(alpaca)

        assert len(orders) == 1
        order = orders[0]
        assert order.id == ORDER_ID
        assert order.client_order_id == ORDER_ID
        assert order.qty == 15
        assert order.filled_qty == 0
        assert order.filled_avg_price is None
        assert order.order_type == OrderType.LIMIT
        assert order.status == OrderStatus.NEW
        assert alpaca_server.requests[-1].query == {"status": "open"}

    async def test_empty(self, alpaca, alpaca_server):
        alpaca_server.set_response("GET", "/v2/orders", 200, [])

        assert await Order.get_open(alpaca) == []

    async def test_rejected(self, alpaca, alpaca_server):
        alpaca_server.set_response("GET", "/v2/orders", 401, {"message": "unauthorized"})

        with pytest.raises(InvalidCredentials):
            await Order.get_open(alpaca)

    async def test_bad_body(self, alpaca, alpaca_server, sample_order):
        sample_order["side"] = "sideways"
        alpaca_server.set_response("GET", "/v2/orders", 200, [sample_order])

        with pytest.raises(BadData):
            await Order.get_open(alpaca)


@pytest.mark.integration
class TestPlace:

    async def test_limit_order(self, alpaca, alpaca_server, sample_order):
        alpaca_server.set_response("POST", "/v2/orders", 200, sample_order)

        order = await Order.buy("AAPL", 100, OrderType.LIMIT, TimeInForce.DAY) \
            .limit_price(100.0) \
            .place(alpaca)

        assert order.id == ORDER_ID
        body = alpaca_server.requests[-1].json()
        assert body["symbol"] == "AAPL"
        assert body["qty"] == "100"
        assert body["side"] == "buy"
        assert body["type"] == "limit"
        assert body["time_in_force"] == "day"
        assert body["limit_price"] == 100.0
        assert "stop_price" not in body

    async def test_invalid_order_is_never_sent(self, alpaca, alpaca_server):
        """Local validation failures make no network call."""
        with pytest.raises(OrderInvalid):
            await Order.buy("AAPL", 100, OrderType.LIMIT, TimeInForce.DAY).place(alpaca)
        with pytest.raises(OrderInvalid):
            await Order.sell("AAPL", 100, OrderType.MARKET, TimeInForce.DAY).extended_hours().place(alpaca)

        assert alpaca_server.count("POST") == 0

    async def test_forbidden(self, alpaca, alpaca_server):
        alpaca_server.set_response("POST", "/v2/orders", 403, {"message": "insufficient buying power"})

        with pytest.raises(OrderForbidden):
            await Order.sell("AAPL", 100, OrderType.MARKET, TimeInForce.GTC).place(alpaca)

        assert alpaca_server.count("POST", "/v2/orders") == 1

    async def test_other_failure(self, alpaca, alpaca_server):
        alpaca_server.set_response("POST", "/v2/orders", 422, {"message": "bad symbol"})

        with pytest.raises(Unknown) as exc_info:
            await Order.buy("ZZZZ", 1, OrderType.MARKET, TimeInForce.DAY).place(alpaca)

        assert exc_info.value.status == 422


@pytest.mark.integration
class TestCancel:

    @pytest.fixture
    def order(self, sample_order):
        return Order.model_validate(sample_order)

    async def test_cancel(self, alpaca, alpaca_server, order):
        alpaca_server.set_response("DELETE", f"/v2/orders/{ORDER_ID}", 204)

        await order.cancel(alpaca)

        assert alpaca_server.count("DELETE", f"/v2/orders/{ORDER_ID}") == 1

    async def test_not_found(self, alpaca, alpaca_server, order):
        alpaca_server.set_response("DELETE", f"/v2/orders/{ORDER_ID}", 404, {"message": "not found"})

        with pytest.raises(OrderNotFound) as exc_info:
            await order.cancel(alpaca)

        assert exc_info.value.order_id == ORDER_ID

    async def test_not_cancelable(self, alpaca, alpaca_server, order):
        alpaca_server.set_response("DELETE", f"/v2/orders/{ORDER_ID}", 422, {"message": "filled"})

        with pytest.raises(OrderNotCancelable):
            await order.cancel(alpaca)

    async def test_unexpected(self, alpaca, alpaca_server, order):
        alpaca_server.set_response("DELETE", f"/v2/orders/{ORDER_ID}", 500, {"message": "boom"})

        with pytest.raises(Unknown):
            await order.cancel(alpaca)


@pytest.mark.integration
class TestUpdate:

    async def test_patch_only_changed_fields(self, alpaca, alpaca_server, sample_order):
        sample_order["limit_price"] = "101.5"
        alpaca_server.set_response("PATCH", f"/v2/orders/{ORDER_ID}", 200, sample_order)
        order = Order.model_validate({**sample_order, "limit_price": "107.00"})

        updated = await order.update().limit_price(101.5).time_in_force(TimeInForce.GTC).place(alpaca)

        assert updated.limit_price == 101.5
        request = alpaca_server.requests[-1]
        assert request.method == "PATCH"
        assert request.json() == {"limit_price": "101.5", "time_in_force": "gtc"}

    async def test_empty_update_not_sent(self, alpaca, alpaca_server, sample_order):
        order = Order.model_validate(sample_order)

        with pytest.raises(OrderInvalid):
            await order.update().place(alpaca)

        assert alpaca_server.count("PATCH") == 0

    async def test_forbidden(self, alpaca, alpaca_server, sample_order):
        alpaca_server.set_response("PATCH", f"/v2/orders/{ORDER_ID}", 403, {"message": "no"})
        order = Order.model_validate(sample_order)

        with pytest.raises(OrderForbidden):
            await order.update().qty(10).place(alpaca)

    async def test_side_round_trips(self, sample_order):
        sample_order["side"] = "sell"

        assert Order.model_validate(sample_order).side == OrderSide.SELL
