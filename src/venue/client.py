"""
WebSocket client for the Deriv API.

Handles the single venue connection with:
- Auto-reconnection with exponential backoff, bounded by max attempts
- Typed event parsing and callback dispatch
- Re-initialization hook after every (re)connect
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .events import VenueEvent
from .exceptions import ConnectionError as VenueConnectionError
from .parser import DerivMessageParser

logger = structlog.get_logger(__name__)


DERIV_WS_URL = "wss://ws.derivws.com/websockets/v3"


class DerivClient:
    """
    Manages the websocket connection to the venue.

    Messages are parsed into venue events and handed to the event
    callback one at a time, in arrival order.
    """

    # Reconnection parameters
    MAX_RECONNECT_DELAY = 120  # seconds
    RECONNECT_BACKOFF_FACTOR = 2

    # Heartbeat parameters
    PING_INTERVAL = 30  # seconds
    PONG_TIMEOUT = 10  # seconds
    OPEN_TIMEOUT = 10  # seconds

    def __init__(
        self,
        app_id: str,
        parser: DerivMessageParser,
        reconnect_enabled: bool = True,
        max_attempts: int = 5,
        interval_seconds: float = 5.0,
        url: Optional[str] = None,
        connector: Callable[..., Any] = websockets.connect
    ):
        """
        Initialize the client.

        Args:
            app_id: Deriv application id
            parser: Message parser
            reconnect_enabled: Whether to reconnect after a drop
            max_attempts: Consecutive failed attempts before giving up
            interval_seconds: First reconnect delay, doubled per attempt
            url: Override of the endpoint (tests, proxies)
            connector: websockets.connect compatible factory
        """
        self.app_id = app_id
        self.url = url or f"{DERIV_WS_URL}?app_id={app_id}"
        self._parser = parser
        self._connector = connector

        self.reconnect_enabled = reconnect_enabled
        self.max_attempts = max_attempts
        self.interval_seconds = interval_seconds

        self._ws = None
        self._is_connected = False
        self._running = False
        self._attempts = 0

        self._event_callback: Optional[Callable[[VenueEvent], Any]] = None
        self._connect_callback: Optional[Callable[[], Awaitable[None]]] = None

        # Statistics
        self._stats = {
            'messages_received': 0,
            'events_dispatched': 0,
            'reconnections': 0,
            'last_message_time': None,
            'connected_at': None
        }

        logger.info("Deriv client initialized", url=self.url)

    @property
    def is_connected(self) -> bool:
        """Check if the websocket is connected."""
        return self._is_connected

    @property
    def stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        return self._stats.copy()

    def on_event(self, callback: Callable[[VenueEvent], Any]):
        """
        Register the callback that receives parsed venue events.

        Args:
            callback: Sync or async function taking one event
        """
        self._event_callback = callback

    def on_connect(self, callback: Callable[[], Awaitable[None]]):
        """
        Register a coroutine run after every successful (re)connect.

        Args:
            callback: Async function with no arguments
        """
        self._connect_callback = callback

    def _reconnect_delay(self) -> float:
        delay = self.interval_seconds * self.RECONNECT_BACKOFF_FACTOR ** max(0, self._attempts - 1)
        return min(delay, self.MAX_RECONNECT_DELAY)

    async def run(self):
        """
        Connect and process messages until stopped.

        Raises:
            ConnectionError: When reconnection attempts are exhausted
        """
        self._running = True

        while self._running:
            error: Optional[BaseException] = None
            try:
                logger.info("Connecting to Deriv API", url=self.url, attempt=self._attempts)

                async with self._connector(
                    self.url,
                    ping_interval=self.PING_INTERVAL,
                    ping_timeout=self.PONG_TIMEOUT,
                    open_timeout=self.OPEN_TIMEOUT
                ) as ws:
                    self._ws = ws
                    self._is_connected = True
                    self._attempts = 0
                    self._stats['connected_at'] = datetime.now(timezone.utc)

                    logger.info("Connected to Deriv API")

                    if self._connect_callback:
                        await self._connect_callback()

                    async for message in ws:
                        await self._handle_message(message)

            except (ConnectionClosed, WebSocketException, OSError, asyncio.TimeoutError) as e:
                error = e

            finally:
                self._is_connected = False
                self._ws = None

            if not self._running:
                break

            self._attempts += 1
            self._stats['reconnections'] += 1
            reason = str(error) if error is not None else "closed by server"

            if not self.reconnect_enabled or self._attempts > self.max_attempts:
                logger.error(
                    "Max reconnection attempts reached",
                    attempts=self._attempts - 1,
                    error=reason
                )
                self._running = False
                raise VenueConnectionError(
                    f"Connection lost after {self._attempts - 1} reconnection attempts: {reason}"
                ) from error

            delay = self._reconnect_delay()
            logger.warning(
                "Deriv websocket disconnected",
                error=reason,
                attempt=self._attempts,
                max_attempts=self.max_attempts,
                reconnect_delay=delay
            )
            await asyncio.sleep(delay)

    async def close(self):
        """Stop the run loop and close the connection."""
        self._running = False
        ws = self._ws
        if ws is not None:
            await ws.close()
        self._ws = None
        self._is_connected = False
        logger.info(
            "Deriv client stopped",
            messages_received=self._stats['messages_received'],
            reconnections=self._stats['reconnections']
        )

    async def send(self, payload: Dict[str, Any]) -> bool:
        """
        Send one request.

        Returns:
            False if not connected or the send failed
        """
        if self._ws is None or not self._is_connected:
            logger.error("Cannot send: websocket not connected", request=next(iter(payload), None))
            return False

        try:
            await self._ws.send(json.dumps(payload))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.error("Send failed", request=next(iter(payload), None), error=str(e))
            return False
        return True

    # ========================================================================
    # Requests
    # ========================================================================

    async def authorize(self, token: str) -> bool:
        return await self.send({"authorize": token})

    async def subscribe_balance(self) -> bool:
        return await self.send({"balance": 1, "subscribe": 1})

    async def request_history(self, symbol: str, count: int) -> bool:
        return await self.send({
            "ticks_history": symbol,
            "end": "latest",
            "count": count,
            "style": "ticks"
        })

    async def subscribe_ticks(self, symbol: str) -> bool:
        return await self.send({"ticks": symbol, "subscribe": 1})

    async def request_proposal(
        self,
        amount: float,
        contract_type: str,
        currency: str,
        duration: int,
        symbol: str
    ) -> bool:
        return await self.send({
            "proposal": 1,
            "amount": amount,
            "basis": "stake",
            "contract_type": contract_type,
            "currency": currency,
            "duration": duration,
            "duration_unit": "t",
            "symbol": symbol
        })

    async def buy(self, proposal_id: str, price: float) -> bool:
        return await self.send({"buy": proposal_id, "price": price})

    async def subscribe_contract(self, contract_id: str) -> bool:
        return await self.send({
            "proposal_open_contract": 1,
            "contract_id": contract_id,
            "subscribe": 1
        })

    async def forget(self, subscription_id: str) -> bool:
        return await self.send({"forget": subscription_id})

    # ========================================================================
    # Inbound
    # ========================================================================

    async def _handle_message(self, message: str | bytes):
        """
        Parse one message and dispatch it.

        Callback failures are logged so one bad event cannot drop the
        connection.
        """
        self._stats['messages_received'] += 1
        self._stats['last_message_time'] = datetime.now(timezone.utc)

        event = self._parser.parse(message)
        if event is None or self._event_callback is None:
            return

        try:
            if asyncio.iscoroutinefunction(self._event_callback):
                await self._event_callback(event)
            else:
                self._event_callback(event)
            self._stats['events_dispatched'] += 1
        except Exception as e:
            logger.error(
                "Error in venue event callback",
                event_type=type(event).__name__,
                error=str(e),
                exc_info=True
            )
