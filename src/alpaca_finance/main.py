"""Stream watcher - logs realtime order and account updates."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from .clients.alpaca import Alpaca
from .config.settings import load_settings
from .errors import AlpacaError
from .streaming.events import AccountMessage, FillEvent, OrderMessage, PartialFillEvent
from .streaming.streamer import Streamer
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class StreamWatcherService:
    """Connects to Alpaca and logs every order and account event until stopped."""

    def __init__(self, config_file: Optional[str] = None):
        self.config = load_settings(config_file)
        self.alpaca: Optional[Alpaca] = None
        self.streamer: Optional[Streamer] = None
        self._stopping = False

        setup_logging(self.config.logging, service_name="alpaca-stream")
        logger.info("Stream watcher initialized")

    async def start(self):
        """Run until the stream ends or a shutdown signal arrives."""
        logger.info(f"Starting stream watcher ({'live' if self.config.live else 'paper'})")

        self.alpaca = await Alpaca.from_settings(self.config)
        self.streamer = Streamer(self.alpaca, self.config.stream)
        self._setup_signal_handlers()

        try:
            async for message in await self.streamer.start():
                self.handle_message(message)
        finally:
            self._remove_signal_handlers()
            await self.streamer.close()
            await self.alpaca.close()
            logger.info("Stream watcher stopped")

    def stop(self):
        if self._stopping:
            return
        self._stopping = True
        logger.info("Shutting down stream watcher")
        if self.streamer:
            self.streamer.stop()

    def handle_message(self, message):
        if isinstance(message, OrderMessage):
            event = message.data
            order = event.order
            if isinstance(event, (FillEvent, PartialFillEvent)):
                logger.info(
                    f"Order {event.event}: {order.symbol} {event.qty} @ {event.price:.2f} "
                    f"(order {order.id})"
                )
            elif order is not None:
                logger.info(f"Order {event.event}: {order.side.value} {order.qty} {order.symbol} ({order.status.value})")
            else:
                logger.info(f"Order event {event.event}")
        elif isinstance(message, AccountMessage):
            account = message.data
            logger.info(
                f"Account {account.id} {account.status.value}: cash={account.cash:.2f} "
                f"withdrawable={account.cash_withdrawable:.2f}"
            )

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self.stop()

        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, signal_handler, sig)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)

    async def health_check(self) -> dict:
        """Perform health check."""
        health_status = {
            "service": "alpaca-stream",
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {}
        }

        if self.streamer:
            health_status["components"]["streamer"] = await self.streamer.health_check()

        if any(comp.get("status") == "unhealthy" for comp in health_status["components"].values()):
            health_status["status"] = "unhealthy"

        return health_status


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE")
    service = StreamWatcherService(config_file)

    try:
        await service.start()
    except AlpacaError as e:
        logger.error(f"Stream watcher failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
