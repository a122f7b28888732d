"""Cooperative shutdown signal shared by a connection's reader and writer loops."""

import asyncio
import logging
import threading
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ShutdownReason(str, Enum):
    STOP_REQUESTED = "stop_requested"
    PEER_CLOSED = "peer_closed"
    ERROR = "error"


class ShutdownCoordinator:
    """
    One-way shutdown flag for a single connection.

    Once set it stays set; a new connection gets a new coordinator. The first
    caller to set it records the reason. The flag lives on the event loop that
    created it; `request()` may be called from any thread and is marshalled
    onto that loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._event = asyncio.Event()
        self._lock = threading.Lock()
        self._reason: Optional[ShutdownReason] = None

    @property
    def reason(self) -> Optional[ShutdownReason]:
        with self._lock:
            return self._reason

    def is_set(self) -> bool:
        with self._lock:
            return self._reason is not None

    def request(self, reason: ShutdownReason = ShutdownReason.STOP_REQUESTED) -> bool:
        """
        Set the flag. Returns False if it was already set.
        """
        reason = ShutdownReason(reason)
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason

        logger.debug(f"Shutdown requested: {reason.value}")
        if self._on_loop_thread():
            self._event.set()
        else:
            self._loop.call_soon_threadsafe(self._event.set)
        return True

    async def wait(self):
        await self._event.wait()

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False
