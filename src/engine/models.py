"""
Core data models for the prediction engine.

These models are shared by the feature extractors, prediction models,
learning tables and the decision gate. Everything that is persisted
provides a ``to_dict``/``from_dict`` pair producing plain JSON types.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .exceptions import InvalidObservationError


# Order matters: the same order is used for votes, weights and persistence
MODEL_NAMES: Tuple[str, ...] = (
    "stat",
    "markov",
    "trend",
    "qlearning",
    "streak",
    "pattern",
    "entropy",
    "cycle",
)


class DigitClass(Enum):
    """Binary class of the last significant price digit."""
    ODD = "odd"
    EVEN = "even"

    @classmethod
    def from_digit(cls, digit: int) -> "DigitClass":
        return cls.ODD if digit % 2 == 1 else cls.EVEN

    @property
    def other(self) -> "DigitClass":
        return DigitClass.EVEN if self is DigitClass.ODD else DigitClass.ODD

    @property
    def bit(self) -> int:
        """1 for odd, 0 for even (used in pattern sequences)."""
        return 1 if self is DigitClass.ODD else 0

    @property
    def contract_type(self) -> str:
        return "DIGITODD" if self is DigitClass.ODD else "DIGITEVEN"


class Mode(Enum):
    """Engine operating mode."""
    PRECISION = "precision"      # No exploration, consensus required
    BALANCED = "balanced"        # Configured epsilon
    EXPLORATION = "exploration"  # Fixed 10% exploration


class Strategy(Enum):
    """Meta-strategy variants selected per market bucket."""
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


STRATEGIES: Tuple[Strategy, ...] = (
    Strategy.CONSERVATIVE,
    Strategy.BALANCED,
    Strategy.AGGRESSIVE,
)


@dataclass(frozen=True)
class Observation:
    """
    One price tick reduced to its last significant digit.

    ``sequence_id`` is the venue epoch and must be strictly increasing.
    """
    sequence_id: int
    price: float
    digit: int
    digit_class: DigitClass

    @classmethod
    def from_price(cls, sequence_id: Any, price: Any, decimals: int = 2) -> "Observation":
        """
        Build an observation from a raw venue quote.

        The digit is extracted with Decimal arithmetic so that quotes such
        as 100.13 are not truncated by binary float error.

        Args:
            sequence_id: Venue epoch (int or numeric string)
            price: Quote (float or numeric string)
            decimals: Number of significant decimals of the quote

        Returns:
            Observation

        Raises:
            InvalidObservationError: If price or sequence id is not numeric
        """
        if isinstance(price, bool) or price is None:
            raise InvalidObservationError(f"Non-numeric price: {price!r}", sequence_id)

        try:
            price_value = float(price)
            seq = int(sequence_id)
        except (TypeError, ValueError):
            raise InvalidObservationError(
                f"Non-numeric observation: price={price!r} sequence_id={sequence_id!r}",
                sequence_id
            )

        if not math.isfinite(price_value):
            raise InvalidObservationError(f"Non-finite price: {price!r}", sequence_id)

        try:
            scaled = Decimal(str(price)) * (Decimal(10) ** decimals)
            digit = int(scaled.to_integral_value(rounding=ROUND_FLOOR)) % 10
        except InvalidOperation:
            raise InvalidObservationError(f"Non-numeric price: {price!r}", sequence_id)

        return cls(
            sequence_id=seq,
            price=price_value,
            digit=digit,
            digit_class=DigitClass.from_digit(digit)
        )


@dataclass(frozen=True)
class ProbabilityPair:
    """Probability pair over {odd, even}."""
    odd: float
    even: float

    @classmethod
    def neutral(cls) -> "ProbabilityPair":
        return cls(0.5, 0.5)

    @classmethod
    def favoring(cls, side: DigitClass, probability: float) -> "ProbabilityPair":
        """Pair giving ``probability`` (clamped to [0, 1]) to ``side`` and the rest to the other."""
        probability = min(1.0, max(0.0, probability))
        if side is DigitClass.ODD:
            return cls(probability, 1.0 - probability)
        return cls(1.0 - probability, probability)

    def get(self, side: DigitClass) -> float:
        return self.odd if side is DigitClass.ODD else self.even

    @property
    def vote(self) -> DigitClass:
        """Discrete vote; ties go to even."""
        return DigitClass.ODD if self.odd > self.even else DigitClass.EVEN

    def clipped(self) -> "ProbabilityPair":
        return ProbabilityPair(min(1.0, max(0.0, self.odd)), min(1.0, max(0.0, self.even)))

    def normalized(self) -> "ProbabilityPair":
        """Scale so both sides sum to 1 (neutral if the sum is not positive)."""
        total = self.odd + self.even
        if total <= 0 or not math.isfinite(total):
            return ProbabilityPair.neutral()
        return ProbabilityPair(self.odd / total, self.even / total)


@dataclass
class ModelState:
    """Lifetime accuracy counters for one prediction model."""
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float:
        """Accuracy, 0.5 when the model has no history."""
        return self.correct / self.total if self.total > 0 else 0.5

    def record(self, was_correct: bool) -> None:
        self.total += 1
        if was_correct:
            self.correct += 1


@dataclass(frozen=True)
class TradeCommand:
    """Command emitted to the venue when a decision is committed."""
    side: DigitClass
    stake: float
    duration_ticks: int
    symbol: str
    currency: str = "USD"

    @property
    def contract_type(self) -> str:
        return self.side.contract_type


@dataclass
class TradeRecord:
    """
    One entry per committed decision.

    Holds the inputs used to reach the decision so the learning tables,
    memories and health monitor can be updated once the profit is known.
    """
    sequence_id: int
    prediction: DigitClass
    stake: float
    raw_confidence: float
    smoothed_confidence: float
    state: DigitClass
    deep_bucket: int
    meta_bucket: int
    strategy: Strategy
    pattern: Tuple[int, ...]
    volatility: float
    entropy: float
    streak: int
    model_votes: Dict[str, DigitClass]
    weights: Dict[str, float]
    consensus: float
    mode: Mode
    health_score: float
    data_integrity: float
    consecutive_losses: int
    timestamp: float
    profit: Optional[float] = None

    @property
    def resolved(self) -> bool:
        return self.profit is not None

    @property
    def won(self) -> bool:
        return self.profit is not None and self.profit > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "prediction": self.prediction.value,
            "stake": self.stake,
            "raw_confidence": self.raw_confidence,
            "smoothed_confidence": self.smoothed_confidence,
            "state": self.state.value,
            "deep_bucket": self.deep_bucket,
            "meta_bucket": self.meta_bucket,
            "strategy": self.strategy.value,
            "pattern": list(self.pattern),
            "volatility": self.volatility,
            "entropy": self.entropy,
            "streak": self.streak,
            "model_votes": {name: vote.value for name, vote in self.model_votes.items()},
            "weights": dict(self.weights),
            "consensus": self.consensus,
            "mode": self.mode.value,
            "health_score": self.health_score,
            "data_integrity": self.data_integrity,
            "consecutive_losses": self.consecutive_losses,
            "timestamp": self.timestamp,
            "profit": self.profit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        """
        Rebuild a record from its persisted form.

        Raises:
            KeyError, ValueError, TypeError: If the data is malformed
        """
        profit = data.get("profit")
        return cls(
            sequence_id=int(data["sequence_id"]),
            prediction=DigitClass(data["prediction"]),
            stake=float(data["stake"]),
            raw_confidence=float(data["raw_confidence"]),
            smoothed_confidence=float(data["smoothed_confidence"]),
            state=DigitClass(data["state"]),
            deep_bucket=int(data["deep_bucket"]),
            meta_bucket=int(data["meta_bucket"]),
            strategy=Strategy(data["strategy"]),
            pattern=tuple(int(bit) for bit in data["pattern"]),
            volatility=float(data["volatility"]),
            entropy=float(data["entropy"]),
            streak=int(data["streak"]),
            model_votes={name: DigitClass(vote) for name, vote in data["model_votes"].items()},
            weights={name: float(w) for name, w in data["weights"].items()},
            consensus=float(data["consensus"]),
            mode=Mode(data["mode"]),
            health_score=float(data["health_score"]),
            data_integrity=float(data["data_integrity"]),
            consecutive_losses=int(data["consecutive_losses"]),
            timestamp=float(data["timestamp"]),
            profit=float(profit) if profit is not None else None,
        )


@dataclass
class DataIntegrity:
    """Running measure of recent price anomalies."""
    score: float = 1.0
    recent_anomalies: float = 0.0


@dataclass
class FeatureSnapshot:
    """Features computed for one analysis pass."""
    state: DigitClass
    volatility: float
    trend_strength: float
    trend_score: float
    streak_length: int
    streak_class: Optional[DigitClass]
    momentum: float
    entropy: float
    cycle_period: int = 0
    cycle_strength: float = 0.0
    has_cycle: bool = False
