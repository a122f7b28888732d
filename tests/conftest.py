"""Pytest configuration and shared fixtures."""

import asyncio
import copy
import json
import logging
import signal
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from alpaca_finance import Alpaca


KEY_ID = "someKey"
SECRET = "someSecret"


SAMPLE_ORDER: Dict[str, Any] = {
    "id": "904837e3-3b76-47ec-b432-046db621571b",
    "client_order_id": "904837e3-3b76-47ec-b432-046db621571b",
    "created_at": "2018-10-05T05:48:59.123456Z",
    "asset_class": "us_equity",
    "symbol": "AAPL",
    "qty": "15",
    "filled_qty": "0",
    "filled_avg_price": None,
    "type": "limit",
    "side": "buy",
    "time_in_force": "day",
    "limit_price": "107.00",
    "stop_price": None,
    "status": "new",
    "extended_hours": False,
}


SAMPLE_ACCOUNT: Dict[str, Any] = {
    "id": "e6fe16f3-64a4-4921-8928-cadf02f92f98",
    "account_number": "010203ABCD",
    "status": "ACTIVE",
    "currency": "USD",
    "cash": "-23140.2",
    "equity": "103820.56",
    "long_market_value": "126960.76",
    "short_market_value": "0",
    "buying_power": "262113.632",
    "account_blocked": False,
    "pattern_day_trader": False,
    "trade_suspended_by_user": False,
    "trading_blocked": False,
    "transfers_blocked": False,
}


SAMPLE_ACCOUNT_EVENT: Dict[str, Any] = {
    "id": "ef505a9a-2f3c-4b8a-be95-6b6f185f8a03",
    "created_at": "2018-02-26T19:22:31.123456Z",
    "updated_at": "2018-02-27T18:16:24.654321Z",
    "deleted_at": None,
    "status": "ACTIVE",
    "currency": "USD",
    "cash": "1241.54",
    "cash_withdrawable": 523.71,
}


def order_event(event: str, **fields) -> Dict[str, Any]:
    """Build a trade_updates payload around the sample order."""
    return {"event": event, "order": copy.deepcopy(SAMPLE_ORDER), **fields}


def envelope(stream: str, data: Any) -> str:
    return json.dumps({"stream": stream, "data": data})


def authorization_frame(status: str = "authorized", action: str = "authenticate") -> str:
    return envelope("authorization", {"action": action, "status": status})


def fill_frame() -> str:
    return envelope("trade_updates", order_event(
        "fill",
        timestamp="2020-03-06T19:58:24.123456Z",
        price="179.08",
        position_qty=100,
    ))


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: Dict[str, str]
    headers: Mapping[str, str]
    body: str

    def json(self) -> Any:
        return json.loads(self.body)


StreamHandler = Callable[[web.WebSocketResponse, "MockAlpacaServer"], Awaitable[None]]


class MockAlpacaServer:
    """Local stand-in for the Alpaca REST API and its /stream endpoint."""

    def __init__(self):
        self.responses: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self.requests: List[RecordedRequest] = []
        self.stream_handler: Optional[StreamHandler] = None
        self.stream_enabled = True
        self.frames: List[str] = []
        self.pongs: List[bytes] = []
        self.stream_connections = 0

        self.app = web.Application()
        self.app.router.add_get('/stream', self._stream)
        self.app.router.add_route('*', '/{tail:.*}', self._rest)

        self.set_response("GET", "/v2/clock", 200, {"is_open": True})

    def set_response(self, method: str, path: str, status: int = 200, body: Any = None):
        self.responses[(method, path)] = (status, body)

    def count(self, method: str, path: Optional[str] = None) -> int:
        return sum(
            1 for r in self.requests
            if r.method == method and (path is None or r.path == path)
        )

    async def _rest(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(RecordedRequest(
            method=request.method,
            path=request.path,
            query=dict(request.query),
            headers=request.headers.copy(),
            body=await request.text(),
        ))

        key = (request.method, request.path)
        if key not in self.responses:
            return web.json_response({"message": "not found"}, status=404)

        status, body = self.responses[key]
        if isinstance(body, (dict, list)):
            return web.json_response(body, status=status)
        return web.Response(text=body or "", status=status, content_type="application/json")

    async def _stream(self, request: web.Request) -> web.StreamResponse:
        if not self.stream_enabled:
            return web.json_response({"message": "no stream"}, status=404)

        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)
        self.stream_connections += 1

        if self.stream_handler:
            await self.stream_handler(ws, self)

        if not ws.closed:
            await ws.close()
        return ws

    async def read_text(self, ws: web.WebSocketResponse, timeout: float = 2.0) -> str:
        """Receive the next text frame from the client and record it."""
        msg = await ws.receive(timeout=timeout)
        assert msg.type == web.WSMsgType.TEXT, f"expected a text frame, got {msg.type}"
        self.frames.append(msg.data)
        return msg.data

    async def wait_closed(self, ws: web.WebSocketResponse):
        """Drain until the client goes away."""
        async for msg in ws:
            if msg.type == web.WSMsgType.PONG:
                self.pongs.append(msg.data)


@pytest.fixture
async def alpaca_server(monkeypatch):
    """Start the mock Alpaca server and point TEST_URL at it."""
    mock = MockAlpacaServer()
    server = TestServer(mock.app)
    await server.start_server()
    monkeypatch.setenv("TEST_URL", f"http://{server.host}:{server.port}")

    yield mock

    await server.close()


@pytest.fixture
async def alpaca(alpaca_server):
    """An Alpaca session bound to the mock server."""
    client = await Alpaca.live(KEY_ID, SECRET)
    yield client
    await client.close()


@pytest.fixture
def sample_order() -> Dict[str, Any]:
    return copy.deepcopy(SAMPLE_ORDER)


@pytest.fixture
def sample_account() -> Dict[str, Any]:
    return copy.deepcopy(SAMPLE_ACCOUNT)


@pytest.fixture
def restore_logging():
    """Undo root logger changes made by setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def restore_signals():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0):
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)
