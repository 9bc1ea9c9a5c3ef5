"""
Main entry point for the Adaptive Digit Trading Bot.

This script initializes the bot, loads configuration, and starts the trading session.
"""

import asyncio
import argparse
import signal
import sys
from typing import Optional

from .engine import TradingEngine
from .notifications import TelegramNotifier
from .storage import JsonStore
from .trading import SessionSettings, TradingSession
from .utils.config import Config
from .utils.logger import setup_logger, log_system_event, EventType
from .venue import DerivClient, DerivMessageParser
from .venue.exceptions import ConnectionError as VenueConnectionError


class TradingBot:
    """Main trading bot coordinator."""

    def __init__(self, config_path: str):
        """
        Initialize the trading bot.

        Args:
            config_path: Path to configuration file

        Raises:
            FileNotFoundError: If the configuration file is missing
            ValueError: If the configuration is invalid
        """
        self.config_path = config_path
        self.config = Config.load(config_path)
        self.logger = setup_logger(
            log_level=self.config.get("logging.level", "INFO"),
            log_dir=self.config.get("logging.log_dir", "logs"),
            log_format=self.config.get("logging.format", "json"),
            service_name="adaptive-digit-bot"
        )

        self.settings = SessionSettings.from_config(self.config)
        if self.settings.enable_trading and not self.settings.token:
            raise ValueError("DERIV_TOKEN is required when trading.enable_trading is true")
        if not self.config.get("venue.app_id"):
            raise ValueError("DERIV_APP_ID is required")

        self.store = JsonStore(self.config.get("storage.data_dir", "data"))
        self.engine = TradingEngine(self.config.engine_config(), store=self.store)
        self.notifier = TelegramNotifier(
            self.config.get("notifications.telegram.bot_token"),
            self.config.get("notifications.telegram.chat_id")
        )
        self.engine.register_callback(self.notifier.handle_event)

        self.client = DerivClient(
            app_id=str(self.config.get("venue.app_id")),
            parser=DerivMessageParser(self.engine.config.digit_decimals),
            reconnect_enabled=bool(self.config.get("reconnect.enabled", True)),
            max_attempts=int(self.config.get("reconnect.max_attempts", 5)),
            interval_seconds=float(self.config.get("reconnect.interval_seconds", 5.0))
        )
        self.session = TradingSession(self.engine, self.client, self.settings)
        self.running = False
        self._shutdown_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the trading bot."""
        self.running = True
        log_system_event(
            self.logger,
            EventType.STARTUP,
            "Trading bot starting",
            config_path=self.config_path,
            symbol=self.engine.config.symbol,
            live_trading=self.settings.enable_trading,
            config=self.config.as_dict()
        )

        try:
            self.store.init()
            self.engine.load_state()
            await self.session.run()

        except VenueConnectionError as e:
            self.logger.error(
                "critical_error",
                error=str(e),
                error_type=type(e).__name__
            )
            raise
        finally:
            if self._shutdown_task is not None:
                await self._shutdown_task
            else:
                await self.shutdown()

    async def shutdown(self):
        """Gracefully shutdown the bot."""
        if not self.running:
            return

        self.running = False
        log_system_event(
            self.logger,
            EventType.SHUTDOWN,
            "Trading bot shutting down gracefully"
        )

        await self.session.stop()
        state = self.engine.state
        self.notifier.notify_summary(state.wins, state.losses, state.total_profit)
        await self.notifier.close()

        self.logger.info("Shutdown complete", **self.engine.performance_summary())

    def handle_signal(self, signum, frame):
        """Handle shutdown signals (Ctrl+C)."""
        self.logger.warning("shutdown_signal_received", signal=signum)
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.create_task(self.shutdown())


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Adaptive Odd/Even Digit Trading Bot"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/config.json",
        help="Path to configuration file"
    )
    args = parser.parse_args()

    # Create and start bot
    bot = TradingBot(args.config)

    # Setup signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, bot.handle_signal)
    signal.signal(signal.SIGTERM, bot.handle_signal)

    try:
        await bot.start()
    except VenueConnectionError:
        return 1
    return 0


def run():
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
