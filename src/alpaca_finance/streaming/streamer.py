"""Realtime order and account event streamer."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional, Tuple, Union

import aiohttp

from ..config.settings import StreamConfig
from ..errors import AlpacaError, InvalidCredentials, MessageDecodeError, StreamingFailed
from ..utils.logging import log_with_context
from .events import (
    AuthorizationAction,
    Authorization,
    AuthorizationMessage,
    DomainMessage,
    ListeningMessage,
    StreamMessage,
    decode_message,
    is_domain_event,
    listen_frame,
)
from .shutdown import ShutdownCoordinator, ShutdownReason

if TYPE_CHECKING:
    from ..clients.alpaca import Alpaca

logger = logging.getLogger(__name__)

_END = object()

_CLOSE_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED)


class StreamState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class OutboundFrame:
    """A frame waiting in the writer queue."""
    kind: str
    data: Union[str, bytes]

    @classmethod
    def text(cls, data: str) -> "OutboundFrame":
        return cls("text", data)

    @classmethod
    def pong(cls, data: bytes = b"") -> "OutboundFrame":
        return cls("pong", data)


@dataclass
class _Connection:
    """Everything that lives exactly as long as one websocket."""
    shutdown: ShutdownCoordinator
    outbound: asyncio.Queue
    events: asyncio.Queue
    phase: StreamState = StreamState.CONNECTING
    ws: Optional[aiohttp.ClientWebSocketResponse] = None
    writer_task: Optional[asyncio.Task] = None
    reader_task: Optional[asyncio.Task] = None
    pending_listen: Optional[str] = None
    failure: Optional[AlpacaError] = None
    loops_running: int = 0
    released: bool = False
    release_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class Streamer:
    """
    Realtime event streamer for order and account updates.

    `start()` opens the websocket, queues the authentication frame followed
    by the listen frame, and returns an async iterator of domain events
    (`OrderMessage` and `AccountMessage`). Authorization and listen
    acknowledgements are consumed internally; the last authorization result
    is available as `streamer.authorization`.

    Two loops run per connection: a writer draining the outbound queue
    (auth, listen, pong) and a reader that classifies inbound frames and
    forwards decoded events. Both watch one shutdown flag.

    Example:

        async with Streamer(alpaca) as streamer:
            async for message in await streamer.start():
                if isinstance(message, OrderMessage):
                    print(f"Got an order update: {message.data.event}")

    `stop()` is cooperative: it sets the flag, the writer exits between
    frames and the iterator ends, but the socket is only released once the
    reader sees another frame. `close()` also closes the socket, which wakes
    the reader, and cancels whatever is still running after a deadline.
    """

    def __init__(self, alpaca: "Alpaca", config: Optional[StreamConfig] = None):
        self.alpaca = alpaca
        self.config = config or StreamConfig()
        self.authorization: Optional[Authorization] = None
        self._conn: Optional[_Connection] = None

        self.stats = {
            'connection_count': 0,
            'frames_received': 0,
            'frames_sent': 0,
            'pongs_sent': 0,
            'events_forwarded': 0,
            'messages_dropped': 0,
            'decode_errors': 0,
            'last_message_time': None,
        }

    @property
    def state(self) -> StreamState:
        conn = self._conn
        if conn is None:
            return StreamState.IDLE
        if conn.released:
            return StreamState.CLOSED
        if conn.shutdown.is_set():
            return StreamState.CLOSING
        return conn.phase

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> AsyncIterator[DomainMessage]:
        """
        Connect and start streaming.

        Raises:
            StreamingFailed: if the websocket cannot be opened
            RuntimeError: if a connection is already active
        """
        if self.state not in (StreamState.IDLE, StreamState.CLOSED):
            raise RuntimeError(f"Streamer is already running (state={self.state.value})")

        url, auth_frame = self.alpaca.stream_target()
        conn = _Connection(
            shutdown=ShutdownCoordinator(),
            outbound=asyncio.Queue(),
            events=asyncio.Queue(maxsize=self.config.event_queue_size),
        )
        self._conn = conn
        self.authorization = None

        logger.info(f"Connecting to Alpaca stream: {url}")
        try:
            conn.ws = await self.alpaca.ws_connect(
                url,
                autoping=False,
                heartbeat=self.config.heartbeat,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            conn.released = True
            logger.error(f"Failed to connect to Alpaca stream: {e}")
            raise StreamingFailed(f"Could not connect to {url}: {e}") from e

        self.stats['connection_count'] += 1

        # Authentication goes out first, the listen frame second
        conn.phase = StreamState.AUTHENTICATING
        conn.outbound.put_nowait(OutboundFrame.text(auth_frame))

        listen = listen_frame(self.config.streams)
        if self.config.wait_for_authorization:
            conn.pending_listen = listen
        else:
            self._subscribe(conn, listen)

        conn.loops_running = 2
        conn.writer_task = asyncio.create_task(self._writer_loop(conn))
        conn.reader_task = asyncio.create_task(self._reader_loop(conn))

        return self._event_stream(conn)

    def stop(self):
        """
        Ask the connection to shut down.

        Safe to call from any thread. Does not close the socket.
        """
        conn = self._conn
        if conn is None:
            logger.warning("stop() called on a streamer that was never started")
            return
        if conn.shutdown.request(ShutdownReason.STOP_REQUESTED):
            logger.info("Stream stop requested")

    async def close(self, timeout: Optional[float] = None):
        """
        Stop, start closing the socket and wait up to `timeout` seconds for
        both loops to exit, then cancel any loop still running.

        Closing the socket unblocks a reader waiting on a silent peer, so the
        deadline only matters when the peer does not answer the close.
        """
        conn = self._conn
        if conn is None or conn.released:
            return

        if timeout is None:
            timeout = self.config.shutdown_timeout_seconds

        conn.shutdown.request(ShutdownReason.STOP_REQUESTED)

        # closing the socket wakes a reader blocked in receive()
        release = asyncio.ensure_future(self._release(conn, timeout))

        pending = [t for t in (conn.writer_task, conn.reader_task) if t is not None and not t.done()]
        if pending:
            _, pending = await asyncio.wait(pending, timeout=timeout)

        if pending:
            logger.warning(f"{len(pending)} stream loop(s) still running after {timeout}s, forcing close")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        await release

    def _subscribe(self, conn: _Connection, listen: str):
        conn.phase = StreamState.SUBSCRIBING
        conn.outbound.put_nowait(OutboundFrame.text(listen))
        conn.phase = StreamState.STREAMING
        logger.info(f"Subscribing to streams: {', '.join(self.config.streams)}")

    async def _until_shutdown(self, conn: _Connection, awaitable) -> Tuple[bool, Any]:
        """Await `awaitable` unless the shutdown flag fires first."""
        task = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(conn.shutdown.wait())
        try:
            await asyncio.wait({task, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (task, stop):
                if not pending.done():
                    pending.cancel()

        if task.done() and not task.cancelled():
            return True, task.result()
        return False, None

    def _fail(self, conn: _Connection, error: AlpacaError):
        if conn.failure is None:
            conn.failure = error
        conn.shutdown.request(ShutdownReason.ERROR)

    # --- writer -------------------------------------------------------------

    async def _writer_loop(self, conn: _Connection):
        """Send queued frames in FIFO order until shutdown."""
        try:
            while not conn.shutdown.is_set():
                completed, frame = await self._until_shutdown(conn, conn.outbound.get())
                if not completed or conn.shutdown.is_set():
                    break
                await self._send(conn, frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Websocket write failed: {e}")
            failure = StreamingFailed(f"Websocket write failed: {e}")
            failure.__cause__ = e
            self._fail(conn, failure)
        finally:
            logger.debug("Stream writer stopped")
            await self._loop_exited(conn)

    async def _send(self, conn: _Connection, frame: OutboundFrame):
        if frame.kind == "pong":
            await conn.ws.pong(frame.data)
            self.stats['pongs_sent'] += 1
        else:
            await conn.ws.send_str(frame.data)
        self.stats['frames_sent'] += 1

    # --- reader -------------------------------------------------------------

    async def _reader_loop(self, conn: _Connection):
        """Read, classify and forward inbound frames until shutdown."""
        try:
            while not conn.shutdown.is_set():
                msg = await conn.ws.receive()
                if conn.shutdown.is_set():
                    break
                await self._handle_frame(conn, msg)
        except asyncio.CancelledError:
            raise
        except StreamingFailed as e:
            logger.error(f"{e}")
            self._fail(conn, e)
        except Exception as e:
            logger.error(f"Websocket read failed: {e}")
            failure = StreamingFailed(f"Websocket read failed: {e}")
            failure.__cause__ = e
            self._fail(conn, failure)
        finally:
            try:
                conn.events.put_nowait(conn.failure or _END)
            except asyncio.QueueFull:
                pass
            logger.debug("Stream reader stopped")
            await self._loop_exited(conn)

    async def _handle_frame(self, conn: _Connection, msg: aiohttp.WSMessage):
        self.stats['frames_received'] += 1
        self.stats['last_message_time'] = time.time()

        if msg.type == aiohttp.WSMsgType.PING:
            conn.outbound.put_nowait(OutboundFrame.pong(msg.data or b""))
        elif msg.type == aiohttp.WSMsgType.PONG:
            pass
        elif msg.type in _CLOSE_TYPES:
            logger.info("Alpaca stream closed by server")
            conn.shutdown.request(ShutdownReason.PEER_CLOSED)
        elif msg.type == aiohttp.WSMsgType.ERROR:
            error = StreamingFailed(f"Websocket protocol error: {msg.data}")
            if isinstance(msg.data, BaseException):
                error.__cause__ = msg.data
            raise error
        elif msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            await self._handle_payload(conn, msg.data)
        else:
            logger.debug(f"Ignoring websocket frame of type {msg.type}")

    async def _handle_payload(self, conn: _Connection, data: Union[str, bytes]):
        try:
            message = decode_message(data)
        except MessageDecodeError as e:
            self.stats['decode_errors'] += 1
            log_with_context(
                logger, logging.WARNING, f"Dropping undecodable frame: {e}",
                error=str(e), frame_type=type(data).__name__,
                decode_errors=self.stats['decode_errors'],
            )
            logger.debug(f"Raw frame: {str(data)[:200]}...")
            return

        if isinstance(message, AuthorizationMessage):
            self._on_authorization(conn, message.data)
        elif isinstance(message, ListeningMessage):
            logger.info(f"Listening on streams: {', '.join(message.data.streams)}")
        elif is_domain_event(message):
            await self._forward(conn, message)
        else:
            self.stats['messages_dropped'] += 1
            logger.debug(f"Ignoring message on stream '{message.stream}'")

    def _on_authorization(self, conn: _Connection, authorization: Authorization):
        self.authorization = authorization

        if authorization.authorized:
            logger.info(f"Alpaca stream authorized ({authorization.action.value})")
            if conn.pending_listen and authorization.action == AuthorizationAction.AUTHENTICATE:
                listen, conn.pending_listen = conn.pending_listen, None
                self._subscribe(conn, listen)
            return

        logger.error(f"Alpaca stream rejected {authorization.action.value}")
        if self.config.wait_for_authorization:
            self._fail(conn, InvalidCredentials())

    async def _forward(self, conn: _Connection, message: StreamMessage):
        if conn.shutdown.is_set():
            return
        if self.authorization is None:
            logger.debug("Event received before the stream was authorized")

        if conn.events.full():
            completed, _ = await self._until_shutdown(conn, conn.events.put(message))
            if not completed:
                return
        else:
            conn.events.put_nowait(message)
        self.stats['events_forwarded'] += 1

    # --- caller-visible sequence -------------------------------------------

    async def _event_stream(self, conn: _Connection) -> AsyncIterator[DomainMessage]:
        while True:
            item = await self._next_event(conn)
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def _next_event(self, conn: _Connection):
        while True:
            reason = conn.shutdown.reason
            if reason == ShutdownReason.STOP_REQUESTED:
                return _END
            if reason is not None:
                # drain what the reader forwarded before the close or failure
                if not conn.events.empty():
                    return conn.events.get_nowait()
                if reason == ShutdownReason.ERROR:
                    return conn.failure or StreamingFailed()
                if conn.reader_task.done():
                    return _END
                await asyncio.wait({conn.reader_task})
                continue

            completed, item = await self._until_shutdown(conn, conn.events.get())
            if completed:
                if conn.shutdown.reason == ShutdownReason.STOP_REQUESTED:
                    return _END
                return item

    # --- teardown -----------------------------------------------------------

    async def _loop_exited(self, conn: _Connection):
        conn.loops_running -= 1
        if conn.loops_running <= 0:
            await self._release(conn, self.config.shutdown_timeout_seconds)

    async def _release(self, conn: _Connection, timeout: float):
        async with conn.release_lock:
            if conn.released:
                return
            if conn.ws is not None and not conn.ws.closed:
                try:
                    await asyncio.wait_for(conn.ws.close(), timeout=max(timeout, 0.1))
                except asyncio.TimeoutError:
                    logger.warning("Timed out closing the Alpaca stream socket")
                except (aiohttp.ClientError, OSError) as e:
                    logger.warning(f"Error closing the Alpaca stream socket: {e}")
            conn.released = True
            logger.info("Alpaca stream closed")

    # --- introspection ------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get connection and processing statistics."""
        last_message_age = None
        if self.stats['last_message_time']:
            last_message_age = time.time() - self.stats['last_message_time']

        conn = self._conn
        return {
            **self.stats,
            'state': self.state.value,
            'last_message_age_seconds': last_message_age,
            'authorized': self.authorization.authorized if self.authorization else None,
            'outbound_queue_size': conn.outbound.qsize() if conn else 0,
            'event_queue_size': conn.events.qsize() if conn else 0,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the stream connection."""
        stats = self.get_stats()
        issues = []

        if stats['state'] != StreamState.STREAMING.value:
            issues.append(f"Stream not streaming (state={stats['state']})")

        if stats['authorized'] is False:
            issues.append("Stream credentials rejected")

        if stats['frames_received'] > 0:
            error_rate = stats['decode_errors'] / stats['frames_received']
            if error_rate > 0.05:
                issues.append(f"High decode error rate: {error_rate:.2%}")

        return {
            'status': 'healthy' if not issues else 'unhealthy',
            'issues': issues,
            'stats': stats
        }
