"""
Bounded, ordered buffer of observations.
"""

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional

import structlog

from .exceptions import InvalidObservationError
from .models import Observation

logger = structlog.get_logger(__name__)


class TickBuffer:
    """
    Capacity-bounded sequence of observations, oldest evicted first.

    Invariant: sequence ids are strictly increasing. Out-of-order and
    duplicate observations are rejected with InvalidObservationError.
    """

    def __init__(self, capacity: int):
        """
        Initialize the buffer.

        Args:
            capacity: Maximum number of observations kept
        """
        if capacity < 1:
            raise ValueError("Buffer capacity must be positive")
        self.capacity = capacity
        self._ticks: Deque[Observation] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._ticks)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._ticks)

    @property
    def last(self) -> Optional[Observation]:
        return self._ticks[-1] if self._ticks else None

    def append(self, observation: Observation) -> None:
        """
        Append an observation.

        Raises:
            InvalidObservationError: If sequence id does not advance
        """
        last = self.last
        if last is not None and observation.sequence_id <= last.sequence_id:
            raise InvalidObservationError(
                f"Out-of-order observation {observation.sequence_id} "
                f"(last {last.sequence_id})",
                observation.sequence_id
            )
        self._ticks.append(observation)

    def load(self, observations: Iterable[Observation]) -> int:
        """
        Replace the buffer contents with a historical batch.

        Observations that do not advance the sequence are dropped.

        Returns:
            Number of observations kept
        """
        self._ticks.clear()
        dropped = 0
        for observation in observations:
            try:
                self.append(observation)
            except InvalidObservationError:
                dropped += 1

        if dropped:
            logger.warning("Dropped out-of-order historical ticks", dropped=dropped)

        return len(self._ticks)

    def window(self, size: Optional[int] = None) -> List[Observation]:
        """Return the last ``size`` observations (all if None)."""
        if size is None or size >= len(self._ticks):
            return list(self._ticks)
        return list(self._ticks)[-size:]
