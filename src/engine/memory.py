"""
Pattern and context memories.

PatternMemory maps short class sequences to the outcome that worked after
them. ContextMemory keeps a bounded log of feature snapshots and their
results so similar market contexts can bias new decisions.
"""

import heapq
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import structlog

from .models import DigitClass

logger = structlog.get_logger(__name__)


PATTERN_LENGTH = 5
PATTERN_MIN_SIMILARITY = 0.8

CONTEXT_MIN_SIZE = 20
CONTEXT_SCAN_SIZE = 100
CONTEXT_MIN_SIMILARITY = 0.7
CONTEXT_BIAS_WEIGHT = 0.1
CONTEXT_TRIM_RATIO = 0.6


# ============================================================================
# Pattern memory
# ============================================================================

@dataclass
class PatternEntry:
    """Historical outcome of one class sequence."""
    sequence: Tuple[int, ...]
    predicted_outcome: DigitClass
    occurrences: int = 0
    successes: int = 0
    success_rate: float = 0.0

    @property
    def score(self) -> float:
        """Retention score; lowest is evicted first."""
        return self.success_rate * self.occurrences

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": list(self.sequence),
            "predicted_outcome": self.predicted_outcome.value,
            "occurrences": self.occurrences,
            "successes": self.successes,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternEntry":
        return cls(
            sequence=tuple(int(bit) for bit in data["sequence"]),
            predicted_outcome=DigitClass(data["predicted_outcome"]),
            occurrences=int(data["occurrences"]),
            successes=int(data["successes"]),
            success_rate=float(data["success_rate"]),
        )


class PatternMemory:
    """
    Bounded best-of-K store of class sequences.

    Eviction removes the entry with the lowest ``success_rate * occurrences``
    (newest first among ties). A lazily-invalidated min-heap keeps each
    insert at O(log n); stale heap items are skipped on pop and the heap is
    rebuilt when it grows past a multiple of the capacity.
    """

    def __init__(self, capacity: int, pattern_length: int = PATTERN_LENGTH):
        if capacity < 1:
            raise ValueError("Pattern memory capacity must be positive")
        self.capacity = capacity
        self.pattern_length = pattern_length
        self._entries: Dict[Tuple[int, ...], PatternEntry] = {}
        self._inserted_at: Dict[Tuple[int, ...], int] = {}
        self._versions: Dict[Tuple[int, ...], int] = {}
        self._heap: List[Tuple[float, int, int, Tuple[int, ...]]] = []
        self._counter = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PatternEntry]:
        return iter(self._entries.values())

    def get(self, sequence: Sequence[int]) -> Optional[PatternEntry]:
        return self._entries.get(tuple(sequence))

    def record(self, sequence: Sequence[int], outcome: DigitClass, was_correct: bool) -> PatternEntry:
        """
        Insert or update the entry for ``sequence``.

        The recorded outcome is replaced only when the update was correct.

        Args:
            sequence: Class bits preceding the decision
            outcome: Side that was predicted after the sequence
            was_correct: Whether the prediction won

        Returns:
            The inserted or updated entry (it may have been evicted)
        """
        key = tuple(sequence)
        entry = self._entries.get(key)

        if entry is None:
            entry = PatternEntry(sequence=key, predicted_outcome=outcome)
            self._entries[key] = entry
            self._counter += 1
            self._inserted_at[key] = self._counter
        elif was_correct:
            entry.predicted_outcome = outcome

        entry.occurrences += 1
        if was_correct:
            entry.successes += 1
        entry.success_rate = entry.successes / entry.occurrences

        self._push(key)
        self._evict_overflow()
        return entry

    def best_match(
        self,
        current: Sequence[int],
        min_similarity: float = PATTERN_MIN_SIMILARITY
    ) -> Optional[Tuple[PatternEntry, float]]:
        """
        Find the stored pattern most similar to ``current``.

        Similarity is the fraction of equal positions. Only patterns of the
        configured length are considered.

        Returns:
            (entry, similarity) or None if nothing reaches ``min_similarity``
        """
        if len(current) != self.pattern_length:
            return None

        best: Optional[PatternEntry] = None
        best_similarity = 0.0
        for entry in self._entries.values():
            if len(entry.sequence) != self.pattern_length:
                continue
            matches = sum(1 for a, b in zip(entry.sequence, current) if a == b)
            similarity = matches / self.pattern_length
            if similarity > best_similarity and similarity >= min_similarity:
                best_similarity = similarity
                best = entry

        if best is None:
            return None
        return best, best_similarity

    def _push(self, key: Tuple[int, ...]) -> None:
        version = self._versions.get(key, 0) + 1
        self._versions[key] = version
        entry = self._entries[key]
        heapq.heappush(self._heap, (entry.score, -self._inserted_at[key], version, key))

        if len(self._heap) > 4 * self.capacity + 16:
            self._rebuild_heap()

    def _rebuild_heap(self) -> None:
        self._heap = [
            (entry.score, -self._inserted_at[key], self._versions[key], key)
            for key, entry in self._entries.items()
        ]
        heapq.heapify(self._heap)

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.capacity and self._heap:
            _, _, version, key = heapq.heappop(self._heap)
            if key not in self._entries or self._versions.get(key) != version:
                continue
            evicted = self._entries.pop(key)
            self._inserted_at.pop(key, None)
            self._versions.pop(key, None)
            logger.debug(
                "Pattern evicted",
                sequence=evicted.sequence,
                score=evicted.score
            )

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries.values()]

    @classmethod
    def from_list(
        cls,
        data: Any,
        capacity: int,
        pattern_length: int = PATTERN_LENGTH
    ) -> "PatternMemory":
        """Rebuild from persisted entries, skipping malformed ones."""
        memory = cls(capacity, pattern_length)
        if not isinstance(data, list):
            return memory

        for item in data:
            try:
                entry = PatternEntry.from_dict(item)
            except (KeyError, ValueError, TypeError):
                logger.warning("Skipping malformed pattern entry", entry=item)
                continue
            memory._entries[entry.sequence] = entry
            memory._counter += 1
            memory._inserted_at[entry.sequence] = memory._counter
            memory._versions[entry.sequence] = 0

        memory._rebuild_heap()
        memory._evict_overflow()
        return memory


# ============================================================================
# Context memory
# ============================================================================

@dataclass
class ContextSnapshot:
    """Features and result of one resolved decision."""
    volatility: float
    entropy: float
    streak: int
    confidence: float
    predicted_side: DigitClass
    result: str  # "win" or "loss"
    timestamp: float

    @property
    def won(self) -> bool:
        return self.result == "win"

    def similarity(self, volatility: float, entropy: float, streak: int) -> float:
        distance = (
            abs(self.volatility - volatility)
            + abs(self.entropy - entropy)
            + abs(self.streak - streak) * 0.1
        )
        return 1 - distance / 3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volatility": self.volatility,
            "entropy": self.entropy,
            "streak": self.streak,
            "confidence": self.confidence,
            "predicted_side": self.predicted_side.value,
            "result": self.result,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextSnapshot":
        return cls(
            volatility=float(data["volatility"]),
            entropy=float(data["entropy"]),
            streak=int(data["streak"]),
            confidence=float(data.get("confidence", 0.5)),
            predicted_side=DigitClass(data["predicted_side"]),
            result=str(data["result"]),
            timestamp=float(data.get("timestamp", 0.0)),
        )


class ContextMemory:
    """Append-only bounded log of context snapshots, trimmed by truncation."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("Context memory capacity must be positive")
        self.capacity = capacity
        self._snapshots: List[ContextSnapshot] = []

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self) -> Iterator[ContextSnapshot]:
        return iter(self._snapshots)

    @property
    def last(self) -> Optional[ContextSnapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def append(self, snapshot: ContextSnapshot) -> None:
        """Append a snapshot; when over capacity keep the newest 60%."""
        self._snapshots.append(snapshot)
        if len(self._snapshots) > self.capacity:
            keep = int(self.capacity * CONTEXT_TRIM_RATIO)
            self._snapshots = self._snapshots[-keep:] if keep > 0 else []
            logger.debug("Context memory trimmed", kept=len(self._snapshots))

    def best_match(
        self,
        volatility: float,
        entropy: float,
        streak: int
    ) -> Optional[Tuple[ContextSnapshot, float]]:
        """
        Most similar of the last 100 snapshots.

        Requires at least 20 snapshots. Returns None when no snapshot
        reaches a similarity of 0.7.
        """
        if len(self._snapshots) < CONTEXT_MIN_SIZE:
            return None

        best: Optional[ContextSnapshot] = None
        best_similarity = 0.0
        for snapshot in self._snapshots[-CONTEXT_SCAN_SIZE:]:
            similarity = snapshot.similarity(volatility, entropy, streak)
            if similarity > best_similarity and similarity >= CONTEXT_MIN_SIMILARITY:
                best_similarity = similarity
                best = snapshot

        if best is None:
            return None
        return best, best_similarity

    def bias(self, volatility: float, entropy: float, streak: int) -> float:
        """
        Signed odd-side bias from the most similar winning context.

        Positive favors odd, negative favors even, 0 when no match or the
        best match lost.
        """
        match = self.best_match(volatility, entropy, streak)
        if match is None:
            return 0.0

        snapshot, similarity = match
        if not snapshot.won:
            return 0.0

        weight = CONTEXT_BIAS_WEIGHT * similarity
        logger.debug("Context match", similarity=round(similarity, 3), result=snapshot.result)
        return weight if snapshot.predicted_side is DigitClass.ODD else -weight

    def to_list(self) -> List[Dict[str, Any]]:
        return [snapshot.to_dict() for snapshot in self._snapshots]

    @classmethod
    def from_list(cls, data: Any, capacity: int) -> "ContextMemory":
        memory = cls(capacity)
        if not isinstance(data, list):
            return memory

        for item in data:
            try:
                memory._snapshots.append(ContextSnapshot.from_dict(item))
            except (KeyError, ValueError, TypeError):
                logger.warning("Skipping malformed context entry", entry=item)

        memory._snapshots = memory._snapshots[-capacity:]
        return memory
