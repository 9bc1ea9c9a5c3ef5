"""
Trading session.

Connects the engine to the venue: every venue event goes through one
dispatch function, engine trade commands become venue requests, and the
learned state is flushed periodically without blocking the event loop.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from ..engine.decision import DecisionStatus
from ..engine.engine import TradingEngine
from ..engine.models import TradeCommand
from ..utils.logger import EventType, log_system_event, log_trade_event
from ..venue.client import DerivClient
from ..venue.events import (
    Authorized,
    BalanceUpdated,
    ContractResolved,
    HistoryReceived,
    ObservationReceived,
    ProposalReady,
    TradeFilled,
    VenueErrorEvent,
    VenueEvent,
)
from ..venue.exceptions import ConnectionError as VenueConnectionError

logger = structlog.get_logger(__name__)


DRY_RUN_PAYOUT_RATIO = 0.95


@dataclass
class SessionSettings:
    token: str = ""
    history_count: int = 5000
    enable_trading: bool = False
    proposal_timeout_seconds: float = 10.0
    dry_run_settle_seconds: float = 3.0
    flush_interval_seconds: float = 300.0
    performance_interval_seconds: float = 300.0

    @classmethod
    def from_config(cls, config) -> "SessionSettings":
        return cls(
            token=config.get("venue.token", "") or "",
            history_count=int(config.get("venue.history_count", 5000)),
            enable_trading=bool(config.get("trading.enable_trading", False)),
            proposal_timeout_seconds=float(config.get("trading.proposal_timeout_seconds", 10.0)),
            dry_run_settle_seconds=float(config.get("trading.dry_run_settle_seconds", 3.0)),
            flush_interval_seconds=float(config.get("storage.flush_interval_seconds", 300.0)),
            performance_interval_seconds=float(
                config.get("logging.performance_interval_seconds", 300.0)
            ),
        )


class TradingSession:
    """
    Single flow between venue events and the engine.

    Note: This implementation is designed for single-threaded async use.
    """

    def __init__(
        self,
        engine: TradingEngine,
        client: DerivClient,
        settings: SessionSettings,
        rng: Optional[random.Random] = None
    ):
        self.engine = engine
        self.client = client
        self.settings = settings
        self.rng = rng or random.Random()

        self.balance: Optional[float] = None
        self.currency: str = ""

        self._timeout_task: Optional[asyncio.Task] = None
        self._background: List[asyncio.Task] = []
        self._flush_lock = asyncio.Lock()

        self._handlers = {
            Authorized: self._on_authorized,
            BalanceUpdated: self._on_balance,
            HistoryReceived: self._on_history,
            ObservationReceived: self._on_observation,
            ProposalReady: self._on_proposal,
            TradeFilled: self._on_filled,
            ContractResolved: self._on_resolved,
            VenueErrorEvent: self._on_error,
        }

        client.on_event(self.handle_event)
        client.on_connect(self._on_connect)

        logger.info(
            "Trading session initialized",
            live_trading=settings.enable_trading,
            symbol=engine.config.symbol
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def run(self):
        """
        Run until the connection is lost for good or ``stop`` is called.

        Raises:
            ConnectionError: When reconnection attempts are exhausted
        """
        self._background = [
            asyncio.create_task(self._flush_loop()),
            asyncio.create_task(self._performance_loop()),
        ]
        try:
            await self.client.run()
        except VenueConnectionError:
            logger.error("Venue connection lost, flushing state before exit")
            await self.flush()
            raise
        finally:
            await self._cancel_background()

    async def stop(self):
        """Stop trading, close the connection and flush state."""
        self.engine.stop()
        self._cancel_timeout()
        await self.client.close()
        await self._cancel_background()
        await self.flush()

    def _spawn(self, coro):
        self._background = [task for task in self._background if not task.done()]
        self._background.append(asyncio.create_task(coro))

    async def _cancel_background(self):
        for task in self._background:
            if not task.done():
                task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []

    async def _on_connect(self):
        log_system_event(logger, EventType.WEBSOCKET_CONNECTED, "Venue connected")
        if self.settings.token:
            await self.client.authorize(self.settings.token)
        else:
            logger.warning("No API token configured, streaming without authorization")
            await self._request_history()

    async def _request_history(self):
        logger.info(
            "Fetching historical ticks",
            symbol=self.engine.config.symbol,
            count=self.settings.history_count
        )
        await self.client.request_history(self.engine.config.symbol, self.settings.history_count)

    # ========================================================================
    # Dispatch
    # ========================================================================

    async def handle_event(self, event: VenueEvent):
        """Route one venue event to its handler."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("Ignoring venue event", event_type=type(event).__name__)
            return
        await handler(event)

    async def _on_authorized(self, event: Authorized):
        self.balance = event.balance
        self.currency = event.currency
        logger.info(
            "Authorized successfully",
            balance=event.balance,
            currency=event.currency,
            account=event.login_id
        )
        await self.client.subscribe_balance()
        await self._request_history()

    async def _on_balance(self, event: BalanceUpdated):
        self.balance = event.balance
        logger.debug("Balance updated", balance=event.balance)

    async def _on_history(self, event: HistoryReceived):
        if self.settings.enable_trading and self.engine.status is DecisionStatus.COMMITTED:
            # Replies to requests sent on the previous connection never arrive
            self._cancel_timeout()
            self.engine.abort_pending("connection_reset")

        self.engine.load_history(event.observations)
        await self.client.subscribe_ticks(self.engine.config.symbol)
        logger.info("Subscribed to real-time ticks", symbol=self.engine.config.symbol)

        contract_id = self.engine.decisions.contract_id
        if contract_id is not None:
            await self.client.subscribe_contract(contract_id)

        if not self.engine.running:
            self.engine.start()
            log_system_event(
                logger,
                EventType.STATUS,
                "Trading started",
                live_trading=self.settings.enable_trading,
                history=len(self.engine.buffer)
            )

    async def _on_observation(self, event: ObservationReceived):
        command = self.engine.ingest(event.observation)
        if command is not None:
            await self._submit(command)

    async def _submit(self, command: TradeCommand):
        sent = await self.client.request_proposal(
            amount=command.stake,
            contract_type=command.contract_type,
            currency=command.currency,
            duration=command.duration_ticks,
            symbol=command.symbol
        )
        if not sent:
            self.engine.abort_pending("proposal_not_sent")
            return

        log_trade_event(
            logger,
            EventType.PROPOSAL_SENT,
            command.symbol,
            contract_type=command.contract_type,
            stake=command.stake,
            duration=command.duration_ticks
        )
        self._start_timeout()

    async def _on_proposal(self, event: ProposalReady):
        if self.engine.status is not DecisionStatus.COMMITTED:
            logger.debug("Ignoring unsolicited proposal", proposal_id=event.proposal_id)
            return

        self._cancel_timeout()
        if self.settings.enable_trading:
            if not await self.client.buy(event.proposal_id, event.ask_price):
                self.engine.abort_pending("buy_not_sent")
                return
            # Pending until the fill or a buy error arrives
            logger.info("Buying contract", contract_type=event.contract_type, price=event.ask_price)
            return

        logger.info(
            "Dry run: contract not bought",
            contract_type=event.contract_type,
            price=event.ask_price
        )
        self._spawn(self._simulate_settlement(event.ask_price))

    async def _simulate_settlement(self, ask_price: float):
        await asyncio.sleep(self.settings.dry_run_settle_seconds)
        if self.rng.random() > 0.5:
            profit = ask_price * DRY_RUN_PAYOUT_RATIO
        else:
            profit = -ask_price
        logger.info("Dry run settlement", profit=round(profit, 2))
        await self._resolve(profit)

    async def _on_filled(self, event: TradeFilled):
        if self.engine.status is not DecisionStatus.COMMITTED:
            logger.warning("Ignoring unexpected purchase", contract_id=event.contract_id)
            return

        self._cancel_timeout()
        self.engine.mark_filled(event.contract_id)
        log_trade_event(
            logger,
            EventType.CONTRACT_BOUGHT,
            self.engine.config.symbol,
            contract_id=event.contract_id,
            buy_price=event.buy_price
        )
        await self.client.subscribe_contract(event.contract_id)

    async def _on_resolved(self, event: ContractResolved):
        if event.contract_id != self.engine.decisions.contract_id:
            logger.debug("Ignoring update for another contract", contract_id=event.contract_id)
            return

        log_trade_event(
            logger,
            EventType.TRADE_RESOLVED,
            self.engine.config.symbol,
            contract_id=event.contract_id,
            profit=event.profit,
            payout=event.payout
        )
        await self._resolve(event.profit)

        if event.subscription_id:
            await self.client.forget(event.subscription_id)

    async def _resolve(self, profit: float):
        self.engine.report_outcome(profit)
        if self.engine.flush_requested:
            self._spawn(self.flush())

    async def _on_error(self, event: VenueErrorEvent):
        log_system_event(
            logger,
            EventType.API_ERROR,
            "Venue API error",
            error=event.message,
            code=event.code,
            msg_type=event.msg_type
        )
        if event.msg_type in ("proposal", "buy") and self.engine.status is DecisionStatus.COMMITTED:
            self._cancel_timeout()
            self.engine.abort_pending(f"{event.msg_type}_error: {event.message}")

    # ========================================================================
    # Proposal timeout
    # ========================================================================

    def _start_timeout(self):
        self._cancel_timeout()
        self._timeout_task = asyncio.create_task(self._proposal_timeout())

    def _cancel_timeout(self):
        task = self._timeout_task
        self._timeout_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _proposal_timeout(self):
        await asyncio.sleep(self.settings.proposal_timeout_seconds)
        self._timeout_task = None
        if self.engine.status is DecisionStatus.COMMITTED:
            self.engine.abort_pending("proposal_timeout")

    # ========================================================================
    # Persistence and reporting
    # ========================================================================

    async def flush(self) -> bool:
        """
        Snapshot state on the loop, write it in a worker thread.

        Returns:
            True if the write succeeded
        """
        async with self._flush_lock:
            snapshot = self.engine.snapshot()
            self.engine.flush_requested = False
            try:
                ok = await asyncio.to_thread(self.engine.write_snapshot, snapshot)
            except Exception as e:
                logger.error("State flush failed", error=str(e), exc_info=True)
                return False

        if ok:
            log_system_event(logger, EventType.STATE_FLUSHED, "Engine state saved")
        return ok

    async def _flush_loop(self):
        while True:
            await asyncio.sleep(self.settings.flush_interval_seconds)
            await self.flush()

    async def _performance_loop(self):
        while True:
            await asyncio.sleep(self.settings.performance_interval_seconds)
            logger.info("Performance", **self.performance())

    def performance(self) -> Dict[str, Any]:
        summary = self.engine.performance_summary()
        summary["balance"] = self.balance
        summary["status"] = self.engine.status.value
        return summary
