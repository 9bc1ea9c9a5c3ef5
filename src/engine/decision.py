"""
Decision Gate - lifecycle state machine.

Tracks the single decision that may be in flight at any time.
"""

from enum import Enum
from typing import Optional

import structlog

from .exceptions import InvalidTransitionError
from .models import TradeRecord

logger = structlog.get_logger(__name__)


class DecisionStatus(Enum):
    """Lifecycle of one decision cycle."""
    IDLE = "IDLE"              # Waiting for an eligible observation
    EVALUATING = "EVALUATING"  # Models and fusion running
    SKIPPED = "SKIPPED"        # Rejected by the gate
    COMMITTED = "COMMITTED"    # Trade command emitted, awaiting the venue
    OPEN = "OPEN"              # Contract bought, awaiting settlement


class DecisionStateMachine:
    """
    Decision state machine for managing the decision lifecycle.

    Valid transitions:
    - IDLE → EVALUATING (eligible observation received)
    - EVALUATING → SKIPPED (confidence or consensus too low)
    - EVALUATING → COMMITTED (trade command emitted)
    - SKIPPED → IDLE
    - COMMITTED → OPEN (venue confirmed the purchase)
    - COMMITTED → IDLE (rejected, timed out, or settled without a fill event)
    - OPEN → IDLE (contract settled or aborted)
    """

    VALID_TRANSITIONS = {
        DecisionStatus.IDLE: [
            DecisionStatus.EVALUATING
        ],
        DecisionStatus.EVALUATING: [
            DecisionStatus.SKIPPED,
            DecisionStatus.COMMITTED
        ],
        DecisionStatus.SKIPPED: [
            DecisionStatus.IDLE
        ],
        DecisionStatus.COMMITTED: [
            DecisionStatus.OPEN,
            DecisionStatus.IDLE
        ],
        DecisionStatus.OPEN: [
            DecisionStatus.IDLE
        ]
    }

    @classmethod
    def can_transition(cls, from_status: DecisionStatus, to_status: DecisionStatus) -> bool:
        """
        Check if transition is valid.

        Args:
            from_status: Current decision status
            to_status: Target decision status

        Returns:
            True if transition is valid
        """
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: DecisionStatus, to_status: DecisionStatus):
        """
        Validate state transition and raise exception if invalid.

        Raises:
            InvalidTransitionError: If transition is not allowed
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(
                f"Invalid decision state transition: {from_status.value} → {to_status.value}"
            )

    @classmethod
    def is_in_flight(cls, status: DecisionStatus) -> bool:
        """A trade is in flight while committed or open."""
        return status in [
            DecisionStatus.COMMITTED,
            DecisionStatus.OPEN
        ]


class DecisionManager:
    """
    Holds the current decision status and the record of the in-flight trade.

    Note: This implementation is designed for single-threaded async use.
    """

    def __init__(self):
        self._status = DecisionStatus.IDLE
        self._pending: Optional[TradeRecord] = None
        self._contract_id: Optional[str] = None
        self._committed_at: Optional[float] = None

    @property
    def status(self) -> DecisionStatus:
        return self._status

    @property
    def is_idle(self) -> bool:
        return self._status is DecisionStatus.IDLE

    @property
    def in_flight(self) -> bool:
        return DecisionStateMachine.is_in_flight(self._status)

    @property
    def pending_record(self) -> Optional[TradeRecord]:
        return self._pending

    @property
    def contract_id(self) -> Optional[str]:
        return self._contract_id

    @property
    def committed_at(self) -> Optional[float]:
        return self._committed_at

    def transition(self, to_status: DecisionStatus) -> None:
        """
        Move to ``to_status``.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        DecisionStateMachine.validate_transition(self._status, to_status)
        logger.debug(
            "Decision status transition",
            old_status=self._status.value,
            new_status=to_status.value
        )
        self._status = to_status

    def begin(self) -> None:
        self.transition(DecisionStatus.EVALUATING)

    def skip(self) -> None:
        self.transition(DecisionStatus.SKIPPED)
        self.transition(DecisionStatus.IDLE)

    def commit(self, record: TradeRecord, now: float) -> None:
        self.transition(DecisionStatus.COMMITTED)
        self._pending = record
        self._committed_at = now

    def mark_open(self, contract_id: str) -> None:
        self.transition(DecisionStatus.OPEN)
        self._contract_id = contract_id

    def release(self) -> Optional[TradeRecord]:
        """
        Return to IDLE after settlement or abort.

        Returns:
            The record that was in flight
        """
        self.transition(DecisionStatus.IDLE)
        record = self._pending
        self._pending = None
        self._contract_id = None
        self._committed_at = None
        return record

    def reset(self) -> None:
        """Force IDLE from EVALUATING after an unexpected analysis failure."""
        if self._status is DecisionStatus.EVALUATING:
            self._status = DecisionStatus.IDLE
