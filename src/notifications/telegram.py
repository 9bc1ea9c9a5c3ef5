"""
Telegram notifications.

One-way observer of engine events. Messages are sent in background tasks
so a slow or failing Telegram API never delays trading.
"""

import asyncio
from typing import Optional, Set

import aiohttp
import structlog

from ..engine.events import EngineEvent, EngineEventType
from ..utils.retry import retry_on_transient_error
from ..venue.exceptions import PermanentError, TransientError

logger = structlog.get_logger(__name__)


TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramNotifier:
    """Sends selected engine events to a Telegram chat."""

    REQUEST_TIMEOUT = 6  # seconds

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize notifier.

        Disabled when either credential is missing.

        Args:
            bot_token: Bot token from @BotFather
            chat_id: Chat ID to send messages to
            session: Shared HTTP session (created lazily if None)
        """
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.enabled = bool(bot_token and chat_id)

        self._session = session
        self._owns_session = session is None
        self._tasks: Set[asyncio.Task] = set()

        if self.enabled:
            logger.info("Telegram notifications enabled")

    async def close(self):
        """Wait for pending sends and close the owned session."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    @retry_on_transient_error(max_attempts=3)
    async def _post(self, text: str):
        """
        Raises:
            TransientError: On 5xx, 429, timeouts and connection errors
            PermanentError: On other non-200 responses
        """
        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
        body = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"}
        try:
            async with self._get_session().post(
                url, json=body, timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT)
            ) as resp:
                if resp.status == 200:
                    return
                detail = await resp.text()
                if resp.status == 429 or resp.status >= 500:
                    raise TransientError(f"Telegram HTTP {resp.status}: {detail}", str(resp.status))
                raise PermanentError(f"Telegram HTTP {resp.status}: {detail}", str(resp.status))
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise TransientError(f"Telegram request failed: {e}") from e

    async def send(self, text: str) -> bool:
        """
        Send a message; failures are logged, never raised.

        Returns:
            True if delivered
        """
        if not self.enabled:
            return False
        try:
            await self._post(text)
        except (TransientError, PermanentError, aiohttp.ClientError) as e:
            logger.error("Telegram notification failed", error=str(e))
            return False
        return True

    def _schedule(self, text: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, Telegram notification dropped")
            return
        task = loop.create_task(self.send(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ========================================================================
    # Engine observer
    # ========================================================================

    def format_event(self, event: EngineEvent) -> Optional[str]:
        """Message text for an engine event, None for events not forwarded."""
        data = event.data

        if event.event_type is EngineEventType.DECISION_MADE:
            return (
                "🎯 <b>New Trade</b>\n"
                f"Prediction: {str(data.get('prediction', '')).upper()}\n"
                f"Stake: ${data.get('stake', 0):.2f}\n"
                f"Confidence: {data.get('confidence', 0) * 100:.1f}%\n"
                f"Strategy: {data.get('strategy', '')} | Mode: {data.get('mode', '')}"
            )

        if event.event_type is EngineEventType.TRADE_RESOLVED:
            emoji = "✅" if data.get("won") else "❌"
            return (
                f"{emoji} <b>Trade Result</b>\n"
                f"Profit: ${data.get('profit', 0):.2f}\n"
                f"Win Rate: {data.get('win_rate', 0) * 100:.1f}% "
                f"({data.get('wins', 0)}W / {data.get('losses', 0)}L)\n"
                f"Total P/L: ${data.get('total_profit', 0):.2f}"
            )

        if event.event_type is EngineEventType.MODE_SWITCH:
            return (
                "🔄 <b>Mode Switch</b>\n"
                f"{data.get('old_mode')} → {data.get('new_mode')} "
                f"(entropy {data.get('entropy', 0):.3f})"
            )

        if event.event_type is EngineEventType.HEALTH_WARNING:
            return (
                "⚠️ <b>Reasoning Health Low</b>\n"
                f"Health: {data.get('health', 0):.2f}"
            )

        return None

    def handle_event(self, event: EngineEvent) -> None:
        """Engine callback: forward selected events."""
        if not self.enabled:
            return
        text = self.format_event(event)
        if text is not None:
            self._schedule(text)

    def notify_summary(self, wins: int, losses: int, total_profit: float) -> None:
        if not self.enabled:
            return
        self._schedule(
            "📊 <b>Session Summary</b>\n"
            f"Wins: {wins}\n"
            f"Losses: {losses}\n"
            f"Total P/L: ${total_profit:.2f}"
        )
