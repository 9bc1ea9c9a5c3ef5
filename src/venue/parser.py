"""
Deriv message parser.

Converts raw websocket messages into typed venue events.
"""

import json
from typing import Any, Dict, Optional

import structlog

from ..engine.exceptions import InvalidObservationError
from ..engine.models import Observation
from .events import (
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

logger = structlog.get_logger(__name__)


class DerivMessageParser:
    """Parser for Deriv API responses."""

    def __init__(self, digit_decimals: int = 2):
        """
        Initialize parser.

        Args:
            digit_decimals: Decimal places used to extract the last digit
        """
        self.digit_decimals = digit_decimals
        self._handlers = {
            "authorize": self.parse_authorize,
            "balance": self.parse_balance,
            "history": self.parse_history,
            "tick": self.parse_tick,
            "proposal": self.parse_proposal,
            "buy": self.parse_buy,
            "proposal_open_contract": self.parse_contract_update,
        }

    def parse(self, raw: str | bytes | Dict[str, Any]) -> Optional[VenueEvent]:
        """
        Parse one message.

        Args:
            raw: JSON text or an already decoded message

        Returns:
            Typed event, or None if the message is ignored or malformed
        """
        if isinstance(raw, (str, bytes)):
            try:
                message = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.error("Failed to decode venue message", error=str(e))
                return None
        else:
            message = raw

        if not isinstance(message, dict):
            logger.warning("Ignoring non-object venue message")
            return None

        msg_type = message.get("msg_type")

        if message.get("error"):
            error = message["error"]
            if not isinstance(error, dict):
                error = {"message": str(error)}
            return VenueErrorEvent(
                message=str(error.get("message", "Unknown error")),
                code=error.get("code"),
                msg_type=msg_type
            )

        handler = self._handlers.get(msg_type)
        if handler is None:
            return None

        try:
            return handler(message)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.error("Failed to parse venue message", msg_type=msg_type, error=str(e))
            return None

    def parse_authorize(self, message: Dict[str, Any]) -> Authorized:
        data = message["authorize"]
        return Authorized(
            balance=float(data.get("balance", 0.0)),
            currency=str(data.get("currency", "")),
            login_id=str(data.get("loginid", ""))
        )

    def parse_balance(self, message: Dict[str, Any]) -> BalanceUpdated:
        data = message["balance"]
        return BalanceUpdated(
            balance=float(data["balance"]),
            currency=str(data.get("currency", ""))
        )

    def parse_history(self, message: Dict[str, Any]) -> Optional[HistoryReceived]:
        """
        Parse a tick history response.

        Quotes that cannot be converted are skipped.
        """
        history = message.get("history") or {}
        times = history.get("times")
        prices = history.get("prices")
        if not times or not prices:
            return None

        observations = []
        skipped = 0
        for epoch, price in zip(times, prices):
            try:
                observations.append(Observation.from_price(epoch, price, self.digit_decimals))
            except InvalidObservationError:
                skipped += 1

        if skipped:
            logger.warning("Skipped malformed historical ticks", skipped=skipped)

        return HistoryReceived(observations=observations, skipped=skipped)

    def parse_tick(self, message: Dict[str, Any]) -> Optional[ObservationReceived]:
        tick = message["tick"]
        try:
            observation = Observation.from_price(
                tick.get("epoch"), tick.get("quote"), self.digit_decimals
            )
        except InvalidObservationError as e:
            logger.error("Invalid tick quote received", error=str(e))
            return None
        return ObservationReceived(observation=observation)

    def parse_proposal(self, message: Dict[str, Any]) -> Optional[ProposalReady]:
        proposal = message.get("proposal") or {}
        if not proposal.get("id"):
            return None

        echo = message.get("echo_req") or {}
        return ProposalReady(
            proposal_id=str(proposal["id"]),
            ask_price=float(proposal["ask_price"]),
            contract_type=proposal.get("contract_type") or echo.get("contract_type")
        )

    def parse_buy(self, message: Dict[str, Any]) -> TradeFilled:
        data = message["buy"]
        return TradeFilled(
            contract_id=str(data["contract_id"]),
            buy_price=float(data.get("buy_price", 0.0))
        )

    def parse_contract_update(self, message: Dict[str, Any]) -> Optional[ContractResolved]:
        """Only settled contracts produce an event."""
        contract = message.get("proposal_open_contract") or {}
        if not (contract.get("is_sold") or contract.get("status") == "sold"):
            return None

        subscription = message.get("subscription") or {}
        return ContractResolved(
            contract_id=str(contract["contract_id"]),
            profit=float(contract["profit"]),
            payout=float(contract.get("payout") or 0.0),
            subscription_id=subscription.get("id")
        )
