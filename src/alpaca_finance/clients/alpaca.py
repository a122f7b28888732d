"""Alpaca REST session: host selection, credential headers and URL composition."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import aiohttp
from yarl import URL

from ..config.settings import AlpacaSettings, HttpConfig, resolve_host
from ..errors import CallFailed, InternalURL, InvalidCredentials, RequestFailed, Unavailable
from ..streaming.events import AuthenticateData, encode_action

logger = logging.getLogger(__name__)

KEY_ID_HEADER = "APCA-API-KEY-ID"
SECRET_KEY_HEADER = "APCA-API-SECRET-KEY"
STREAM_PATH = "/stream"
CLOCK_PATH = "v2/clock"


@dataclass
class ApiResponse:
    """Status and raw body of a completed REST call."""
    url: str
    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body)


class Alpaca:
    """
    Authenticated session against the live or paper Alpaca API.

    The session holds only immutable configuration (credentials and host)
    plus a pooled aiohttp.ClientSession, so one instance can be shared by
    concurrent callers. Use `await Alpaca.live(...)` / `await Alpaca.sandbox(...)`
    to build one; both perform a liveness probe against the clock endpoint.
    """

    def __init__(
        self,
        api_key_id: str,
        api_secret_key: str,
        host: str,
        http_config: Optional[HttpConfig] = None
    ):
        self.api_key_id = api_key_id
        self.api_secret_key = api_secret_key
        self.host = host
        self.http_config = http_config or HttpConfig()
        self.session: Optional[aiohttp.ClientSession] = None

    @classmethod
    async def build(
        cls,
        live: bool,
        api_key_id: str,
        api_secret_key: str,
        settings: Optional[AlpacaSettings] = None
    ) -> "Alpaca":
        """Create a session and verify the credentials with one probe call."""
        settings = settings or AlpacaSettings()
        host = resolve_host(live, settings.test_url)
        alpaca = cls(api_key_id, api_secret_key, host, settings.http)

        try:
            await alpaca._probe()
        except BaseException:
            await alpaca.close()
            raise

        logger.info(f"Connected to Alpaca at {host} ({'live' if live else 'paper'})")
        return alpaca

    @classmethod
    async def live(cls, api_key_id: str, api_secret_key: str, settings: Optional[AlpacaSettings] = None) -> "Alpaca":
        return await cls.build(True, api_key_id, api_secret_key, settings)

    @classmethod
    async def sandbox(cls, api_key_id: str, api_secret_key: str, settings: Optional[AlpacaSettings] = None) -> "Alpaca":
        return await cls.build(False, api_key_id, api_secret_key, settings)

    @classmethod
    async def from_settings(cls, settings: AlpacaSettings) -> "Alpaca":
        return await cls.build(settings.live, settings.key_id, settings.secret_key, settings)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the underlying HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.http_config.request_timeout_seconds)
            )
        return self.session

    @property
    def headers(self) -> dict:
        return {
            KEY_ID_HEADER: self.api_key_id,
            SECRET_KEY_HEADER: self.api_secret_key,
        }

    def url_for(self, path: str) -> URL:
        """Join an API path onto the configured host."""
        try:
            base = URL(self.host)
            if not base.is_absolute():
                raise ValueError("host is not an absolute URL")
            return base.join(URL(path))
        except (ValueError, TypeError) as e:
            raise InternalURL(f"{self.host}/{path}", str(e)) from e

    def request(self, method: str, path: str, **kwargs):
        """
        Build a request carrying the credential headers.

        Returns the aiohttp request context manager; use it with `async with`.
        """
        url = self.url_for(path)
        headers = {**self.headers, **kwargs.pop('headers', {})}
        return self._get_session().request(method, url, headers=headers, **kwargs)

    async def call(self, method: str, path: str, **kwargs) -> ApiResponse:
        """Perform a request and read the whole body; transport errors become RequestFailed."""
        try:
            async with self.request(method, path, **kwargs) as response:
                body = await response.read()
                logger.debug(f"{method} {response.url} -> {response.status}")
                return ApiResponse(url=str(response.url), status=response.status, body=body)
        except aiohttp.ClientError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise RequestFailed(f"Alpaca call failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"{method} {path} timed out")
            raise RequestFailed(f"Alpaca call to {path} timed out") from e

    async def _probe(self):
        response = await self.call("GET", CLOCK_PATH)
        if response.ok:
            return
        if response.status in (401, 403):
            raise InvalidCredentials()
        if response.status >= 500:
            raise Unavailable(response.url, response.status)
        raise CallFailed(response.url, response.status)

    def stream_target(self) -> Tuple[str, str]:
        """
        Derive the websocket endpoint and the serialized authentication frame.

        No network I/O happens here.
        """
        base = URL(self.host)
        scheme = "wss" if base.scheme == "https" else "ws"
        endpoint = base.with_scheme(scheme).with_path(base.path.rstrip("/") + STREAM_PATH)

        auth_frame = encode_action(
            "authenticate",
            AuthenticateData(key_id=self.api_key_id, secret_key=self.api_secret_key)
        )

        return str(endpoint), auth_frame

    def ws_connect(self, url: str, **kwargs):
        """Open a websocket on the shared HTTP session."""
        return self._get_session().ws_connect(url, **kwargs)
